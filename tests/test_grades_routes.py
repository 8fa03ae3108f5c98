GRADES = [
    {"id": 1, "student_id": 7, "course_id": 3, "assessment": "Midterm", "category": "Exam",
     "score": 95, "max_score": 100, "weight": 30, "letter": "A", "semester": "Fall 2024",
     "graded_on": "2024-10-01", "comments": "", "course_code": "CS101",
     "course_name": "Intro to CS", "instructor": "John Smith"},
    {"id": 2, "student_id": 7, "course_id": 4, "assessment": "Quiz 1", "category": "Quiz",
     "score": 15, "max_score": 20, "weight": 10, "letter": "C", "semester": "Spring 2025",
     "graded_on": "2025-02-01", "comments": "", "course_code": "MATH201",
     "course_name": "Calculus I", "instructor": "Jane Doe"},
]


def test_my_grades_with_summary(client, login, fake_db):
    fake_db.on("FROM grades g", GRADES)
    login("student", student_id=7)

    data = client.get("/api/grades/my").get_json()["data"]
    assert data["semesters"] == ["all", "Fall 2024", "Spring 2025"]
    assert data["summary"]["gpa"] == 3.0
    assert data["summary"]["count"] == 2


def test_my_grades_semester_filter(client, login, fake_db):
    fake_db.on("FROM grades g", GRADES)
    login("student", student_id=7)

    data = client.get("/api/grades/my", query_string={"semester": "Fall 2024"}).get_json()["data"]
    assert [g["id"] for g in data["grades"]] == [1]
    assert data["summary"]["gpa"] == 4.0
    assert data["semesters"][0] == "all"


def test_save_grade_computes_letter(client, login, fake_db):
    fake_db.on("FROM grades g", GRADES[0])
    login("teacher", user_id=2)

    resp = client.post("/api/grades", json={
        "student_id": 7, "course_id": 3, "assessment": "Midterm",
        "score": 88, "max_score": 100, "weight": 30, "semester": "Fall 2024",
    })
    assert resp.status_code == 201
    sql, params = fake_db.writes("INSERT INTO grades")[0]
    assert "ON DUPLICATE KEY UPDATE" in sql
    assert params[7] == "B+"


def test_save_grade_rejects_score_above_max(client, login, fake_db):
    login("teacher", user_id=2)
    resp = client.post("/api/grades", json={
        "student_id": 7, "course_id": 3, "assessment": "Midterm",
        "score": 120, "max_score": 100, "semester": "Fall 2024",
    })
    assert resp.status_code == 400
    assert fake_db.executed == []


def test_save_grade_rejects_unknown_letter(client, login, fake_db):
    login("admin", user_id=1)
    resp = client.post("/api/grades", json={
        "student_id": 7, "course_id": 3, "assessment": "Final",
        "score": 50, "letter": "E", "semester": "Fall 2024",
    })
    assert resp.status_code == 400


def test_student_cannot_write_grades(client, login, fake_db):
    login("student", student_id=7)
    assert client.post("/api/grades", json={}).status_code == 403


def test_update_grade_recomputes_letter_on_score_change(client, login, fake_db):
    fake_db.on("SELECT * FROM grades WHERE id=%s", GRADES[0])
    fake_db.on("FROM grades g", GRADES[0])
    login("teacher", user_id=2)

    resp = client.put("/api/grades/1", json={"score": 71})
    assert resp.status_code == 200
    _, params = fake_db.writes("UPDATE grades")[0]
    assert params[3] == "C-"


def test_update_grade_keeps_letter_for_comment_only(client, login, fake_db):
    fake_db.on("SELECT * FROM grades WHERE id=%s", GRADES[0])
    fake_db.on("FROM grades g", GRADES[0])
    login("teacher", user_id=2)

    client.put("/api/grades/1", json={"comments": "Well done"})
    _, params = fake_db.writes("UPDATE grades")[0]
    assert params[3] == "A"
    assert params[4] == "Well done"


def test_get_grade_of_another_student(client, login, fake_db):
    fake_db.on("FROM grades g", GRADES[0])
    login("student", student_id=8)
    assert client.get("/api/grades/1").status_code == 403

    login("student", student_id=7)
    assert client.get("/api/grades/1").get_json()["data"]["id"] == 1


def test_delete_grade_not_found(client, login, fake_db):
    fake_db.rowcount = 0
    login("admin", user_id=1)
    assert client.delete("/api/grades/42").status_code == 404


def test_report_card_pdf(client, login, fake_db):
    fake_db.on("FROM students s", {"id": 7, "student_code": "S7", "program": "BTech",
                                   "name": "Priya Sharma"})
    fake_db.on("FROM grades g", GRADES)
    login("student", student_id=7)

    resp = client.get("/api/grades/report-card/7")
    assert resp.status_code == 200
    assert resp.mimetype == "application/pdf"
    assert resp.data.startswith(b"%PDF")
    assert "report_card_Priya_Sharma_all.pdf" in resp.headers["Content-Disposition"]


def test_report_card_of_other_student_forbidden(client, login, fake_db):
    login("student", student_id=8)
    assert client.get("/api/grades/report-card/7").status_code == 403


def test_export_grades_csv(client, login, fake_db):
    fake_db.on("FROM grades g", GRADES)
    login("student", student_id=7)

    lines = client.get("/api/grades/export").get_data(as_text=True).splitlines()
    assert lines[0].startswith("Course Code,Course Name,Assessment")
    assert lines[1].startswith("CS101,Intro to CS,Midterm,95,100,A")


def test_save_grade_rejects_non_text_assessment(client, login, fake_db):
    login("teacher", user_id=2)
    resp = client.post("/api/grades", json={
        "student_id": 7, "course_id": 3, "assessment": 12, "score": 80, "semester": "Fall 2024",
    })
    assert resp.status_code == 400
    bad_date = client.post("/api/grades", json={
        "student_id": 7, "course_id": 3, "assessment": "Quiz", "score": 80,
        "semester": "Fall 2024", "graded_on": 20241001,
    })
    assert bad_date.status_code == 400
    assert fake_db.executed == []
