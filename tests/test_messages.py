from unierp import messages

ME = 5


def msg(id, sender, recipient, created, **flags):
    row = {
        "id": id, "sender_id": sender, "recipient_id": recipient,
        "subject": f"Subject {id}", "content": f"Body {id}", "type": "general",
        "priority": "medium", "is_read": 0, "is_starred": 0, "is_archived": 0,
        "created_at": created, "read_at": None,
        "sender_name": "John Smith" if sender == 2 else "Priya Sharma",
        "sender_email": "x@y.z", "recipient_name": "R", "recipient_email": "r@y.z",
    }
    row.update(flags)
    return row


BOX = [
    msg(1, 2, ME, "2024-09-01 10:00:00", type="academic"),
    msg(2, 2, ME, "2024-09-03 10:00:00", is_read=1, is_starred=1),
    msg(3, 2, ME, "2024-09-02 10:00:00", is_archived=1, is_read=1),
    msg(4, ME, 2, "2024-09-04 10:00:00"),
]


def test_inbox_newest_first_without_archived():
    inbox = messages.filter_messages(BOX, ME, "inbox")
    assert [m["id"] for m in inbox] == [2, 1]


def test_folders():
    assert [m["id"] for m in messages.filter_messages(BOX, ME, "archived")] == [3]
    assert [m["id"] for m in messages.filter_messages(BOX, ME, "starred")] == [2]
    assert [m["id"] for m in messages.filter_messages(BOX, ME, "sent")] == [4]


def test_filters():
    assert [m["id"] for m in messages.filter_messages(BOX, ME, msg_type="academic")] == [1]
    assert [m["id"] for m in messages.filter_messages(BOX, ME, status="unread")] == [1]
    assert [m["id"] for m in messages.filter_messages(BOX, ME, status="read")] == [2]
    assert [m["id"] for m in messages.filter_messages(BOX, ME, search="body 2")] == [2]


def test_folder_counts():
    assert messages.folder_counts(BOX, ME) == {"unread": 1, "archived": 1, "starred": 1}


def test_reply_subject_prefixed_once():
    assert messages.reply_subject("Exam dates") == "Re: Exam dates"
    assert messages.reply_subject("Re: Exam dates") == "Re: Exam dates"
    assert messages.reply_subject("RE: Exam dates") == "RE: Exam dates"


def test_list_endpoint(client, login, fake_db):
    fake_db.on("FROM messages m", BOX)
    login("student", user_id=ME, student_id=7)

    data = client.get("/api/messages?folder=inbox").get_json()["data"]
    assert [m["id"] for m in data["messages"]] == [2, 1]
    assert data["counts"]["unread"] == 1
    assert client.get("/api/messages?folder=trash").status_code == 400


def test_view_marks_read(client, login, fake_db):
    fake_db.on("FROM messages m", BOX[0])
    login("student", user_id=ME, student_id=7)

    data = client.get("/api/messages/1").get_json()["data"]
    assert data["is_read"] == 1
    assert fake_db.writes("UPDATE messages SET is_read=1")


def test_view_by_outsider_forbidden(client, login, fake_db):
    fake_db.on("FROM messages m", BOX[0])
    login("teacher", user_id=77)
    assert client.get("/api/messages/1").status_code == 403


def test_send_by_email(client, login, fake_db):
    fake_db.on("FROM users WHERE email=%s", {"id": 2})
    fake_db.on("FROM messages m", BOX[3])
    login("student", user_id=ME, student_id=7)

    resp = client.post("/api/messages", json={
        "recipient": "Dr.Smith@University.edu", "subject": " Hello ", "content": "Question",
    })
    assert resp.status_code == 201
    _, params = fake_db.writes("INSERT INTO messages")[0]
    assert params[:3] == (ME, 2, "Hello")
    assert params[4:] == ("general", "medium")


def test_send_validation(client, login, fake_db):
    fake_db.on("FROM users WHERE id=%s", {"id": 2})
    login("student", user_id=ME, student_id=7)
    resp = client.post("/api/messages", json={
        "recipient": 2, "subject": "x", "content": "y", "type": "spam"})
    assert resp.status_code == 400
    missing = client.post("/api/messages", json={"recipient": 2})
    assert missing.get_json()["details"] == {"missing": ["subject", "content"]}


def test_reply_goes_to_sender_with_quote(client, login, fake_db):
    fake_db.on("FROM messages m", BOX[0])
    login("student", user_id=ME, student_id=7)

    resp = client.post("/api/messages/1/reply", json={"content": "Thanks"})
    assert resp.status_code == 201
    _, params = fake_db.writes("INSERT INTO messages")[0]
    assert params[1] == 2
    assert params[2] == "Re: Subject 1"
    assert params[3].startswith("Thanks")
    assert "--- Original Message ---" in params[3]
    assert params[4] == "academic"


def test_only_recipient_changes_flags(client, login, fake_db):
    fake_db.on("FROM messages m", BOX[3])
    login("student", user_id=ME, student_id=7)
    assert client.patch("/api/messages/4", json={"starred": True}).status_code == 403


def test_patch_flags(client, login, fake_db):
    fake_db.on("FROM messages m", BOX[0])
    login("student", user_id=ME, student_id=7)

    data = client.patch("/api/messages/1", json={"archived": True, "starred": 1}).get_json()["data"]
    assert data["is_archived"] == 1
    assert data["is_starred"] == 1
    sql, params = fake_db.writes("UPDATE messages")[0]
    assert sql == "UPDATE messages SET is_starred=%s, is_archived=%s WHERE id=%s"
    assert params == (1, 1, 1)


def test_export_csv(client, login, fake_db):
    fake_db.on("FROM messages m", BOX)
    login("student", user_id=ME, student_id=7)
    lines = client.get("/api/messages/export?folder=sent").get_data(as_text=True).splitlines()
    assert lines[0] == "From,To,Subject,Type,Priority,Status,Date"
    assert len(lines) == 2


def test_send_rejects_non_text_subject(client, login, fake_db):
    fake_db.on("FROM users WHERE id=%s", {"id": 2})
    login("student", user_id=ME, student_id=7)

    resp = client.post("/api/messages", json={"recipient": 2, "subject": ["x"], "content": "y"})
    assert resp.status_code == 400
    blank = client.post("/api/messages", json={"recipient": 2, "subject": "  ", "content": "y"})
    assert blank.status_code == 400
    assert fake_db.executed == []


def test_reply_rejects_non_text_content(client, login, fake_db):
    fake_db.on("FROM messages m", BOX[0])
    login("student", user_id=ME, student_id=7)
    assert client.post("/api/messages/1/reply", json={"content": {"text": "hi"}}).status_code == 400
