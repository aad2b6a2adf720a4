import io
from datetime import datetime

import pandas as pd
import pytest

from student_import import (
    clean_gender,
    clean_phone_number,
    clean_roll_number,
    normalize_row,
    parse_date_of_birth,
    read_spreadsheet,
)


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("9876543210", "9876543210"),
        ("+91 98765-43210", "9876543210"),
        ("1 987 654 3210", "9876543210"),
        (9876543210.0, "9876543210"),
        ("12345", None),
        ("", None),
        (None, None),
    ],
)
def test_clean_phone_number(raw, expected):
    assert clean_phone_number(raw) == expected


def test_parse_date_of_birth():
    assert parse_date_of_birth("05/06/2011") == datetime(2011, 6, 5)
    assert parse_date_of_birth("05-06-2011") == datetime(2011, 6, 5)
    assert parse_date_of_birth("2011-06-05") == datetime(2011, 6, 5)
    assert parse_date_of_birth("31/02/2011") is None
    assert parse_date_of_birth("someday") is None
    assert parse_date_of_birth(None) is None


def test_clean_gender():
    assert clean_gender("m") == "Male"
    assert clean_gender("FEMALE") == "Female"
    assert clean_gender("other") == "Other"
    assert clean_gender("x") is None


def test_clean_roll_number():
    assert clean_roll_number("  12 ") == "12"
    assert clean_roll_number(12.0) == "12"
    assert clean_roll_number("7.0") == "7"
    assert clean_roll_number("   ") is None
    assert clean_roll_number(float("nan")) is None


def test_normalize_row():
    row = normalize_row({"name": " Ravi ", "roll_number": 3, "phone": "+919876543210", "gender": "m"})
    assert row["name"] == "Ravi"
    assert row["roll_number"] == "3"
    assert row["gender"] == "Male"
    assert row["parent_contact"] == {"phone": "9876543210", "email": None}

    with pytest.raises(ValueError, match="Name is required"):
        normalize_row({"name": "  "})


def test_import_allocates_roll_numbers_and_reports_problems(client, headers, classroom, make_student):
    standard, division = classroom
    make_student(headers, standard["id"], division["id"], name="Existing", rollNumber="5")

    resp = client.post(
        "/api/students/import",
        json={
            "standardId": standard["id"],
            "divisionId": division["id"],
            "students": [
                {"name": "Asha", "rollNumber": "1"},
                {"name": "Bina"},
                {"name": "Chetan", "phone": "98765 43210"},
                {"name": "Dup", "rollNumber": 5},
                {"rollNumber": "9"},
            ],
        },
        headers=headers,
    )
    assert resp.status_code == 200
    body = resp.json()
    assert body["successCount"] == 3
    assert body["duplicateCount"] == 1
    assert body["errorCount"] == 1
    assert body["message"] == "Import completed: 3 imported, 1 duplicates skipped, 1 failed"
    assert [(s["name"], s["rollNumber"]) for s in body["students"]] == [("Asha", "1"), ("Bina", "6"), ("Chetan", "7")]
    assert body["students"][2]["parentContact"]["phone"] == "9876543210"
    assert body["duplicates"] == [{"row": 4, "name": "Dup", "field": "rollNumber", "value": "5"}]
    assert body["errors"][0]["row"] == 5
    assert body["errors"][0]["message"] == "Name is required"


def test_import_revives_deleted_student(client, headers, classroom, make_student):
    standard, division = classroom
    student = make_student(headers, standard["id"], division["id"], name="Ravi", rollNumber="4")
    client.delete(f"/api/students/{student['id']}", headers=headers)

    resp = client.post(
        "/api/students/import",
        json={"standardId": standard["id"], "divisionId": division["id"], "students": [{"name": "Ravi", "rollNumber": "4"}]},
        headers=headers,
    )
    body = resp.json()
    assert body["successCount"] == 1
    assert body["reactivatedCount"] == 1
    assert body["students"][0]["id"] == student["id"]


def test_import_csv_with_title_row(client, headers, classroom):
    standard, division = classroom
    csv = b"School roster,,\nNAME,ROLL NO,MOBILE\nAsha,1,9876543210\nRavi,,\n"

    resp = client.post(
        "/api/students/import/file",
        data={"standardId": standard["id"], "divisionId": division["id"]},
        files={"file": ("roster.csv", csv, "text/csv")},
        headers=headers,
    )
    assert resp.status_code == 200
    body = resp.json()
    assert body["successCount"] == 2
    assert [(s["name"], s["rollNumber"]) for s in body["students"]] == [("Asha", "1"), ("Ravi", "2")]
    assert body["students"][0]["parentContact"]["phone"] == "9876543210"


def test_read_excel_spreadsheet():
    frame = pd.DataFrame({"Student Name": ["Asha", "Ravi"], "DOB": ["01/02/2012", "03/04/2012"], "Gender": ["F", "M"]})
    buffer = io.BytesIO()
    frame.to_excel(buffer, index=False)

    rows = read_spreadsheet(buffer.getvalue(), "class.xlsx")
    assert [r["name"] for r in rows] == ["Asha", "Ravi"]
    assert rows[0]["date_of_birth"] == "01/02/2012"
    assert rows[1]["gender"] == "M"


def test_spreadsheet_without_name_column(client, headers, classroom):
    standard, division = classroom
    resp = client.post(
        "/api/students/import/file",
        data={"standardId": standard["id"], "divisionId": division["id"]},
        files={"file": ("roster.csv", b"ROLL,PHONE\n1,9876543210\n", "text/csv")},
        headers=headers,
    )
    assert resp.status_code == 400
    assert resp.json()["message"] == "Could not find a NAME column in the uploaded file"


@pytest.mark.parametrize(
    "upload",
    [("roster.txt", b"Asha", "text/plain"), ("roster.xls", b"\xd0\xcf\x11\xe0", "application/vnd.ms-excel")],
)
def test_import_rejects_other_file_types(client, headers, classroom, upload):
    standard, division = classroom
    resp = client.post(
        "/api/students/import/file",
        data={"standardId": standard["id"], "divisionId": division["id"]},
        files={"file": upload},
        headers=headers,
    )
    assert resp.status_code == 400
    assert resp.json()["message"] == "Only CSV and Excel files are supported"


def test_import_rejects_corrupt_workbook(client, headers, classroom):
    standard, division = classroom
    resp = client.post(
        "/api/students/import/file",
        data={"standardId": standard["id"], "divisionId": division["id"]},
        files={"file": ("roster.xlsx", b"not a workbook", "application/octet-stream")},
        headers=headers,
    )
    assert resp.status_code == 400
    assert resp.json()["message"].startswith("Invalid spreadsheet file")


def test_import_uid_clashes(client, headers, classroom, make_student):
    standard, division = classroom
    make_student(headers, standard["id"], division["id"], name="Existing", rollNumber="1", uid="GR-1")

    resp = client.post(
        "/api/students/import",
        json={
            "standardId": standard["id"],
            "divisionId": division["id"],
            "students": [
                {"name": "Uid only", "rollNumber": "2", "uid": "GR-1"},
                {"name": "Both", "rollNumber": "1", "uid": "GR-1"},
                {"name": "Auto uid", "uid": "GR-1"},
                {"name": "Next auto"},
            ],
        },
        headers=headers,
    )
    assert resp.status_code == 200
    body = resp.json()
    assert body["duplicateCount"] == 3
    assert body["duplicates"] == [
        {"row": 1, "name": "Uid only", "field": "uid", "value": "GR-1"},
        {"row": 2, "name": "Both", "field": "rollNumber", "value": "1"},
        {"row": 2, "name": "Both", "field": "uid", "value": "GR-1"},
        {"row": 3, "name": "Auto uid", "field": "uid", "value": "GR-1"},
    ]
    assert body["successCount"] == 1
    assert [(s["name"], s["rollNumber"]) for s in body["students"]] == [("Next auto", "2")]
