from werkzeug.security import check_password_hash, generate_password_hash

from unierp import approvals

NEW_STUDENT = {"username": "stu9", "email": "Stu9@University.edu", "password": "longenough",
               "first_name": "Asha", "last_name": "Verma", "student_code": "STU0009"}
PENDING = {"id": 30, "username": "stu9", "email": "stu9@university.edu", "role": "student",
           "first_name": "Asha", "last_name": "Verma", "status": "pending"}


def test_register_creates_pending_student(client, fake_db):
    resp = client.post("/api/auth/register", json=NEW_STUDENT)
    assert resp.status_code == 201
    assert resp.get_json()["data"] == {"username": "stu9", "email": "stu9@university.edu",
                                       "role": "student", "status": "pending"}

    (user_sql, user_params), (student_sql, student_params) = fake_db.executed
    assert "'pending'" in user_sql
    assert user_params[:2] == ("stu9", "stu9@university.edu")
    assert check_password_hash(user_params[2], "longenough")
    assert "LAST_INSERT_ID()" in student_sql
    assert student_params[0] == "STU0009"


def test_register_teacher_needs_no_student_code(client, fake_db):
    resp = client.post("/api/auth/register", json={
        "username": "prof", "email": "prof@university.edu", "password": "longenough",
        "first_name": "Meera", "last_name": "Iyer", "role": "teacher"})
    assert resp.status_code == 201
    assert len(fake_db.executed) == 1


def test_register_validation(client, fake_db):
    assert client.post("/api/auth/register", json=dict(NEW_STUDENT, role="admin")).status_code == 400
    assert client.post("/api/auth/register", json=dict(NEW_STUDENT, email="not-an-email")).status_code == 400
    assert client.post("/api/auth/register", json=dict(NEW_STUDENT, password="short")).status_code == 400
    no_code = client.post("/api/auth/register", json=dict(NEW_STUDENT, student_code=""))
    assert no_code.get_json()["details"] == {"missing": ["student_code"]}
    assert fake_db.executed == []


def test_register_duplicate(client, fake_db):
    fake_db.on("SELECT id FROM users WHERE username=%s OR email=%s", {"id": 5})
    assert client.post("/api/auth/register", json=NEW_STUDENT).status_code == 409
    assert fake_db.executed == []


def test_pending_account_cannot_log_in(client, fake_db):
    fake_db.on("FROM users WHERE username=%s OR email=%s",
               dict(PENDING, password=generate_password_hash("longenough")))

    resp = client.post("/api/auth/login", json={"username": "stu9", "password": "longenough"})
    assert resp.status_code == 403
    assert resp.get_json()["details"] == {"status": "pending"}
    with client.session_transaction() as sess:
        assert "user_id" not in sess


def test_rejected_account_cannot_log_in(client, fake_db):
    fake_db.on("FROM users WHERE username=%s OR email=%s",
               dict(PENDING, status="rejected", rejection_reason="Unknown student code",
                    password=generate_password_hash("longenough")))

    resp = client.post("/api/auth/login", json={"username": "stu9", "password": "longenough"})
    assert resp.status_code == 403
    assert resp.get_json()["details"]["reason"] == "Unknown student code"


def test_pending_list_by_reviewer(client, login, fake_db):
    seen = []
    fake_db.on("WHERE u.status = 'pending'", lambda sql, params: seen.append(params) or [PENDING])

    login("teacher", user_id=2)
    assert client.get("/api/approvals/pending").get_json()["data"][0]["id"] == 30
    login("admin", user_id=1)
    client.get("/api/approvals/pending")
    assert seen == [("student",), ("student", "teacher")]

    login("student", student_id=7)
    assert client.get("/api/approvals/pending").status_code == 403


def test_approve_user(client, login, fake_db):
    fake_db.on("FROM users WHERE id=%s", PENDING)
    login("admin", user_id=1)

    resp = client.post("/api/approvals/30/approve")
    assert resp.status_code == 200
    assert resp.get_json()["data"]["status"] == "approved"
    sql, params = fake_db.writes("UPDATE users SET status")[0]
    assert "AND status='pending'" in sql
    assert params[:2] == ("approved", 1)
    assert params[-1] == 30


def test_reject_user_with_reason(client, login, fake_db):
    fake_db.on("FROM users WHERE id=%s", PENDING)
    login("teacher", user_id=2)

    resp = client.post("/api/approvals/30/reject", json={"reason": " Unknown student code "})
    data = resp.get_json()["data"]
    assert data["status"] == "rejected"
    assert data["rejection_reason"] == "Unknown student code"


def test_teacher_cannot_review_teacher(client, login, fake_db):
    fake_db.on("FROM users WHERE id=%s", dict(PENDING, role="teacher"))
    login("teacher", user_id=2)
    assert client.post("/api/approvals/30/approve").status_code == 403


def test_review_only_pending(client, login, fake_db):
    fake_db.on("FROM users WHERE id=%s", dict(PENDING, status="approved"))
    login("admin", user_id=1)
    resp = client.post("/api/approvals/30/approve")
    assert resp.status_code == 400
    assert resp.get_json()["error"] == "User is not pending approval"


def test_concurrent_review_conflicts(client, login, fake_db):
    fake_db.on("FROM users WHERE id=%s", PENDING)
    fake_db.rowcount = 0
    login("admin", user_id=1)
    assert client.post("/api/approvals/30/approve").status_code == 409


def test_approval_emails_the_user(client, login, fake_db, monkeypatch):
    fake_db.on("FROM users WHERE id=%s", PENDING)
    sent = []
    monkeypatch.setattr(approvals.mailer, "send_email", lambda to, subject, body: sent.append((to, body)))
    login("admin", user_id=1)

    client.post("/api/approvals/30/approve")
    assert sent[0][0] == "stu9@university.edu"
    assert "approved" in sent[0][1]


def test_status_lookup(client, fake_db):
    fake_db.on("FROM users WHERE email=%s", {"username": "stu9", "email": "stu9@university.edu",
                                             "role": "student", "status": "pending",
                                             "reviewed_at": None, "rejection_reason": None})
    resp = client.get("/api/approvals/status", query_string={"email": "Stu9@University.edu"})
    assert resp.get_json()["data"]["status"] == "pending"
    assert client.get("/api/approvals/status").status_code == 400


def test_status_unknown_email(client, fake_db):
    assert client.get("/api/approvals/status?email=nobody@university.edu").status_code == 404
