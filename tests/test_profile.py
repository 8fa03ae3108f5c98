import io
import json
import os

from werkzeug.security import check_password_hash, generate_password_hash

PROFILE = {"id": 5, "username": "student1", "email": "student1@university.edu", "role": "student",
           "first_name": "Priya", "last_name": "Sharma", "phone": None, "address": None,
           "bio": None, "avatar": None, "created_at": "2024-08-01 09:00:00",
           "student_code": "S7", "program": "BTech", "current_semester": "Fall 2024",
           "guardian_name": None}


def test_get_profile(client, login, fake_db):
    fake_db.on("FROM users u LEFT JOIN students s", PROFILE)
    login("student", user_id=5, student_id=7)
    assert client.get("/api/profile").get_json()["data"]["student_code"] == "S7"


def test_update_profile_whitelist(client, login, fake_db):
    fake_db.on("FROM users u LEFT JOIN students s", PROFILE)
    login("student", user_id=5, student_id=7)

    resp = client.put("/api/profile", json={"phone": " 555-0101 ", "role": "admin"})
    assert resp.status_code == 200
    sql, params = fake_db.writes("UPDATE users")[0]
    assert sql == "UPDATE users SET phone=%s WHERE id=%s"
    assert params == ("555-0101", 5)

    assert client.put("/api/profile", json={"role": "admin"}).status_code == 400
    assert client.put("/api/profile", json={"first_name": "  "}).status_code == 400


def test_change_password(client, login, fake_db):
    fake_db.on("SELECT id, password FROM users", {"id": 5, "password": generate_password_hash("oldpass123")})
    login("student", user_id=5, student_id=7)

    wrong = client.post("/api/profile/password", json={
        "current_password": "nope", "new_password": "newpass123"})
    assert wrong.status_code == 400
    short = client.post("/api/profile/password", json={
        "current_password": "oldpass123", "new_password": "short"})
    assert short.status_code == 400

    resp = client.post("/api/profile/password", json={
        "current_password": "oldpass123", "new_password": "newpass123"})
    assert resp.status_code == 200
    _, params = fake_db.writes("UPDATE users SET password")[0]
    assert check_password_hash(params[0], "newpass123")


def test_avatar_upload(app, client, login, fake_db):
    login("student", user_id=5, student_id=7)

    bad = client.post("/api/profile/avatar", data={"avatar": (io.BytesIO(b"x"), "notes.pdf")},
                      content_type="multipart/form-data")
    assert bad.status_code == 400

    resp = client.post("/api/profile/avatar", data={"avatar": (io.BytesIO(b"img"), "me photo.png")},
                       content_type="multipart/form-data")
    assert resp.status_code == 200
    name = resp.get_json()["data"]["avatar"]
    assert name == "user_5_me_photo.png"
    assert os.path.exists(os.path.join(app.config["UPLOAD_FOLDER"], name))


def test_delete_avatar_without_one(client, login, fake_db):
    login("student", user_id=5, student_id=7)
    assert client.delete("/api/profile/avatar").status_code == 404


def test_export_profile(client, login, fake_db):
    fake_db.on("FROM users u LEFT JOIN students s", PROFILE)
    login("student", user_id=5, student_id=7)

    resp = client.get("/api/profile/export")
    assert "attachment; filename=profile_5.json" in resp.headers["Content-Disposition"]
    assert json.loads(resp.data)["profile"]["email"] == "student1@university.edu"


def test_dashboard_student(client, login, fake_db):
    fake_db.on("FROM attendance", [{"status": "present"}, {"status": "absent"}])
    fake_db.on("FROM grades", [{"letter": "A", "weight": 1}, {"letter": "B", "weight": 1}])
    fake_db.on("FROM fees", [{"amount": "100.00", "paid_amount": "40.00", "status": "partial",
                              "due_date": "2099-01-01"}])
    fake_db.on("FROM messages", {"cnt": 3})
    fake_db.on("FROM enrollments", {"cnt": 2})
    login("student", user_id=5, student_id=7)

    stats = client.get("/api/dashboard").get_json()["data"]["stats"]
    assert stats == {"attendance_rate": 50.0, "gpa": 3.5, "pending_fees": 60.0,
                     "unread_messages": 3, "enrolled_courses": 2}


def test_dashboard_admin(client, login, fake_db):
    fake_db.on("FROM fees", [{"amount": "100.00", "paid_amount": "100.00", "status": "paid",
                              "due_date": "2024-01-01"}])
    fake_db.on("COUNT(*)", {"cnt": 4})
    login("admin", user_id=1)

    data = client.get("/api/dashboard").get_json()["data"]
    assert data["role"] == "admin"
    assert data["stats"]["users"] == 4
    assert data["stats"]["fees_collected"] == 100.0


def test_update_profile_rejects_non_text(client, login, fake_db):
    login("student", user_id=5, student_id=7)
    assert client.put("/api/profile", json={"bio": ["x"]}).status_code == 400
    assert client.post("/api/profile/password", json={
        "current_password": 123, "new_password": "newpass123"}).status_code == 400
    assert fake_db.executed == []
