def test_create_division_derives_full_name(client, headers, make_standard):
    standard = make_standard(headers)
    resp = client.post("/api/divisions", json={"name": " a ", "standardId": standard["id"]}, headers=headers)
    assert resp.status_code == 201
    division = resp.json()["division"]
    assert division["name"] == "A"
    assert division["fullName"] == "6th Standard-A"
    assert division["studentCount"] == 0


def test_duplicate_division(client, headers, classroom):
    standard, _ = classroom
    resp = client.post("/api/divisions", json={"name": "a", "standardId": standard["id"]}, headers=headers)
    assert resp.status_code == 400
    body = resp.json()
    assert body["error"] == "DUPLICATE_DIVISION"
    assert body["message"] == 'Division "A" already exists for 6th Standard'


def test_same_division_name_in_another_standard(client, headers, make_standard, make_division):
    six = make_standard(headers, "6th Standard")
    seven = make_standard(headers, "7th Standard")
    make_division(headers, six["id"], "A")
    assert make_division(headers, seven["id"], "A")["fullName"] == "7th Standard-A"


def test_create_division_for_unknown_standard(client, headers):
    resp = client.post(
        "/api/divisions",
        json={"name": "A", "standardId": "64b7f9f0c2a4e5d6f7a8b9c0"},
        headers=headers,
    )
    assert resp.status_code == 400
    assert resp.json()["message"] == "Standard not found"


def test_list_by_standard_counts_students(client, headers, classroom, make_division, make_student):
    standard, a = classroom
    make_division(headers, standard["id"], "B")
    make_student(headers, standard["id"], a["id"], name="Ravi")
    make_student(headers, standard["id"], a["id"], name="Meera")

    resp = client.get(f"/api/divisions/by-standard/{standard['id']}", headers=headers)
    assert resp.status_code == 200
    divisions = resp.json()["divisions"]
    assert [(d["name"], d["studentCount"]) for d in divisions] == [("A", 2), ("B", 0)]


def test_list_by_unknown_standard_is_empty(client, headers):
    resp = client.get("/api/divisions/by-standard/64b7f9f0c2a4e5d6f7a8b9c0", headers=headers)
    assert resp.status_code == 200
    assert resp.json()["divisions"] == []


def test_foreign_division_is_forbidden(client, register, make_standard, make_division):
    owner = register("one@school.edu")
    other = register("two@school.edu")
    standard = make_standard(owner)
    division = make_division(owner, standard["id"])

    resp = client.get(f"/api/divisions/{division['id']}", headers=other)
    assert resp.status_code == 403
    assert resp.json()["message"] == "Access denied"


def test_rename_division(client, headers, classroom, make_division):
    standard, a = classroom
    make_division(headers, standard["id"], "B")

    resp = client.put(f"/api/divisions/{a['id']}", json={"name": "c"}, headers=headers)
    assert resp.status_code == 200
    assert resp.json()["division"]["fullName"] == "6th Standard-C"

    resp = client.put(f"/api/divisions/{a['id']}", json={"name": "B"}, headers=headers)
    assert resp.status_code == 400
    assert resp.json()["error"] == "DUPLICATE_DIVISION"


def test_delete_division_cascades(client, headers, classroom, make_student):
    standard, division = classroom
    make_student(headers, standard["id"], division["id"])

    resp = client.delete(f"/api/divisions/{division['id']}", headers=headers)
    assert resp.status_code == 200
    assert resp.json()["message"] == "Division deleted successfully (1 students also moved to inactive)"
    students = client.get(f"/api/students/by-standard/{standard['id']}", headers=headers).json()["students"]
    assert students == []


def test_recreating_deleted_division_reactivates_it(client, headers, classroom):
    standard, division = classroom
    client.delete(f"/api/divisions/{division['id']}", headers=headers)

    resp = client.post("/api/divisions", json={"name": "A", "standardId": standard["id"]}, headers=headers)
    assert resp.status_code == 201
    assert resp.json()["message"] == "Division reactivated successfully"
    assert resp.json()["division"]["id"] == division["id"]


def test_rename_division_to_blank_name(client, headers, classroom):
    _, division = classroom
    resp = client.put(f"/api/divisions/{division['id']}", json={"name": "   "}, headers=headers)
    assert resp.status_code == 400
    assert resp.json()["message"] == "Validation failed"
    assert client.get(f"/api/divisions/{division['id']}", headers=headers).json()["division"]["name"] == "A"
