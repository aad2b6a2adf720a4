from conftest import PASSWORD


def test_end_to_end_roll_number_scoping(client):
    resp = client.post(
        "/api/auth/register",
        json={"name": "Asha Patel", "email": "asha@school.edu", "password": PASSWORD},
    )
    assert resp.status_code == 201
    assert resp.json()["token"]

    resp = client.post("/api/auth/login", json={"email": "asha@school.edu", "password": PASSWORD})
    assert resp.status_code == 200
    headers = {"Authorization": f"Bearer {resp.json()['token']}"}

    resp = client.post("/api/standards", json={"name": "6th Standard"}, headers=headers)
    assert resp.status_code == 201
    standard_id = resp.json()["standard"]["id"]

    resp = client.post("/api/divisions", json={"name": "A", "standardId": standard_id}, headers=headers)
    assert resp.status_code == 201
    assert resp.json()["division"]["fullName"] == "6th Standard-A"
    division_a = resp.json()["division"]["id"]

    student = {"name": "Ravi Kumar", "standardId": standard_id, "divisionId": division_a, "rollNumber": "1"}
    resp = client.post("/api/students", json=student, headers=headers)
    assert resp.status_code == 201

    resp = client.post("/api/students", json={**student, "name": "Meera Shah"}, headers=headers)
    assert resp.status_code == 400
    assert resp.json()["error"] == "DUPLICATE_ROLL_NUMBER"

    resp = client.post("/api/divisions", json={"name": "B", "standardId": standard_id}, headers=headers)
    division_b = resp.json()["division"]["id"]
    resp = client.post("/api/students", json={**student, "name": "Meera Shah", "divisionId": division_b}, headers=headers)
    assert resp.status_code == 201
    assert resp.json()["student"]["rollNumber"] == "1"


def test_roll_number_is_assigned_when_missing(client, headers, classroom, make_student):
    standard, division = classroom
    make_student(headers, standard["id"], division["id"], name="First", rollNumber="7")
    make_student(headers, standard["id"], division["id"], name="Odd", rollNumber="A-12")

    second = make_student(headers, standard["id"], division["id"], name="Second")
    third = make_student(headers, standard["id"], division["id"], name="Third", rollNumber="   ")
    assert second["rollNumber"] == "8"
    assert third["rollNumber"] == "9"


def test_duplicate_uid_in_division(client, headers, classroom, make_student):
    standard, division = classroom
    make_student(headers, standard["id"], division["id"], uid="GR-100")
    resp = client.post(
        "/api/students",
        json={"name": "Someone", "standardId": standard["id"], "divisionId": division["id"], "uid": "GR-100"},
        headers=headers,
    )
    assert resp.status_code == 400
    assert resp.json()["error"] == "DUPLICATE_UID"


def test_student_fields_are_cleaned(client, headers, classroom, make_student):
    standard, division = classroom
    student = make_student(
        headers,
        standard["id"],
        division["id"],
        gender="f",
        dateOfBirth="15/08/2012",
        parentContact={"phone": "+91 98765 43210", "email": "Parent@Mail.com"},
    )
    assert student["gender"] == "Female"
    assert student["dateOfBirth"].startswith("2012-08-15")
    assert student["parentContact"] == {"phone": "9876543210", "email": "parent@mail.com"}


def test_invalid_student_fields(client, headers, classroom):
    standard, division = classroom
    base = {"name": "Ravi", "standardId": standard["id"], "divisionId": division["id"]}

    resp = client.post("/api/students", json={**base, "gender": "unknown"}, headers=headers)
    assert resp.status_code == 400
    assert resp.json()["message"] == "Gender must be Male, Female, or Other"

    resp = client.post("/api/students", json={**base, "parentContact": {"phone": "12345"}}, headers=headers)
    assert resp.status_code == 400
    assert resp.json()["message"] == "Please enter a valid 10-digit phone number"


def test_division_must_belong_to_standard(client, headers, make_standard, make_division):
    six = make_standard(headers, "6th Standard")
    seven = make_standard(headers, "7th Standard")
    division = make_division(headers, seven["id"], "A")
    resp = client.post(
        "/api/students",
        json={"name": "Ravi", "standardId": six["id"], "divisionId": division["id"]},
        headers=headers,
    )
    assert resp.status_code == 404
    assert resp.json()["message"] == "Division not found"


def test_deleted_student_is_reactivated_by_roll_number(client, mongo, headers, classroom, make_student):
    standard, division = classroom
    student = make_student(headers, standard["id"], division["id"], name="Ravi", rollNumber="3")
    assert client.delete(f"/api/students/{student['id']}", headers=headers).status_code == 200
    assert client.get(f"/api/students/{student['id']}", headers=headers).status_code == 404

    resp = client.post(
        "/api/students",
        json={"name": "Ravi K", "standardId": standard["id"], "divisionId": division["id"], "rollNumber": "3"},
        headers=headers,
    )
    assert resp.status_code == 201
    assert resp.json()["message"] == "Student reactivated successfully"
    assert resp.json()["student"]["id"] == student["id"]
    assert resp.json()["student"]["name"] == "Ravi K"
    assert mongo["student"].count_documents({}) == 1


def test_list_students_paginates(client, headers, classroom, make_student):
    standard, division = classroom
    for name in ("Charlie", "Alice", "Bob"):
        make_student(headers, standard["id"], division["id"], name=name)

    resp = client.get("/api/students", params={"page": 2, "limit": 2}, headers=headers)
    assert resp.status_code == 200
    body = resp.json()
    assert [s["name"] for s in body["students"]] == ["Charlie"]
    assert body["pagination"] == {"current": 2, "pages": 2, "total": 3}

    by_division = client.get(f"/api/students/by-division/{division['id']}", headers=headers).json()["students"]
    assert [s["name"] for s in by_division] == ["Alice", "Bob", "Charlie"]


def test_students_are_private(client, register, make_standard, make_division, make_student):
    owner = register("one@school.edu")
    other = register("two@school.edu")
    standard = make_standard(owner)
    division = make_division(owner, standard["id"])
    student = make_student(owner, standard["id"], division["id"])

    assert client.get(f"/api/students/{student['id']}", headers=other).status_code == 404
    assert client.get("/api/students", headers=other).json()["students"] == []


def test_update_student(client, headers, classroom, make_division, make_student):
    standard, division = classroom
    other_division = make_division(headers, standard["id"], "B")
    first = make_student(headers, standard["id"], division["id"], name="Ravi", rollNumber="1")
    second = make_student(headers, standard["id"], division["id"], name="Meera", rollNumber="2")

    resp = client.put(f"/api/students/{second['id']}", json={"rollNumber": "1"}, headers=headers)
    assert resp.status_code == 400
    assert resp.json()["error"] == "DUPLICATE_ROLL_NUMBER"

    resp = client.put(
        f"/api/students/{second['id']}",
        json={"rollNumber": "1", "divisionId": other_division["id"], "address": " 12 Park Road "},
        headers=headers,
    )
    assert resp.status_code == 200
    updated = resp.json()["student"]
    assert updated["divisionId"] == other_division["id"]
    assert updated["rollNumber"] == "1"
    assert updated["address"] == "12 Park Road"

    resp = client.put(f"/api/students/{first['id']}", json={"name": "Ravi Kumar"}, headers=headers)
    assert resp.status_code == 200
    assert resp.json()["student"]["rollNumber"] == "1"


def test_student_profile_picture(client, headers, classroom, make_student, storage):
    standard, division = classroom
    student = make_student(headers, standard["id"], division["id"])

    resp = client.post(
        f"/api/students/{student['id']}/profile-picture",
        files={"profilePicture": ("me.png", b"\x89PNG fake", "image/png")},
        headers=headers,
    )
    assert resp.status_code == 200
    picture = resp.json()["student"]["profilePicture"]
    assert picture["url"].startswith("http://testserver/uploads/profiles/students/")
    assert (storage.root / picture["publicId"]).read_bytes() == b"\x89PNG fake"

    resp = client.post(
        f"/api/students/{student['id']}/profile-picture",
        files={"profilePicture": ("notes.pdf", b"%PDF", "application/pdf")},
        headers=headers,
    )
    assert resp.status_code == 400
