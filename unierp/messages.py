from datetime import date, datetime

from flask import Blueprint, abort, request

from . import db, exports
from .auth import current_user_id, login_required
from .errors import ApiError, ok, require_fields, text

bp = Blueprint("messages", __name__, url_prefix="/api/messages")

TYPES = ("general", "academic", "administrative", "service", "social", "urgent")
PRIORITIES = ("low", "medium", "high")
FOLDERS = ("inbox", "archived", "starred", "sent")

MESSAGE_SELECT = """
    SELECT m.*,
           CONCAT(su.first_name, ' ', su.last_name) AS sender_name, su.email AS sender_email,
           CONCAT(ru.first_name, ' ', ru.last_name) AS recipient_name, ru.email AS recipient_email
    FROM messages m
    JOIN users su ON su.id = m.sender_id
    JOIN users ru ON ru.id = m.recipient_id
"""


def in_folder(message, folder, user_id):
    if folder == "sent":
        return message["sender_id"] == user_id
    if message["recipient_id"] != user_id:
        return False
    if folder == "archived":
        return bool(message["is_archived"])
    if folder == "starred":
        return bool(message["is_starred"])
    return not message["is_archived"]


def filter_messages(messages, user_id, folder="inbox", search=None, msg_type=None, status=None):
    """Messages of one folder matching the search/type/status filters, newest first."""
    result = []
    needle = (search or "").lower()
    for m in messages:
        if not in_folder(m, folder, user_id):
            continue
        if needle and not any(
                needle in (m.get(f) or "").lower()
                for f in ("subject", "content", "sender_name")):
            continue
        if msg_type and msg_type != "all" and m["type"] != msg_type:
            continue
        if status and status != "all":
            if (status == "read") != bool(m["is_read"]):
                continue
        result.append(m)
    return sorted(result, key=lambda m: m["created_at"], reverse=True)


def folder_counts(messages, user_id):
    received = [m for m in messages if m["recipient_id"] == user_id]
    return {
        "unread": sum(1 for m in received if not m["is_read"] and not m["is_archived"]),
        "archived": sum(1 for m in received if m["is_archived"]),
        "starred": sum(1 for m in received if m["is_starred"]),
    }


def reply_subject(subject):
    if subject.lower().startswith("re:"):
        return subject
    return f"Re: {subject}"


def quote(message):
    sent = message["created_at"]
    if isinstance(sent, datetime):
        sent = sent.strftime("%Y-%m-%d %H:%M")
    return (
        "\n\n--- Original Message ---\n"
        f"From: {message['sender_name']}\n"
        f"Date: {sent}\n\n"
        f"{message['content']}"
    )


def my_messages():
    uid = current_user_id()
    return db.fetch_all(
        MESSAGE_SELECT + " WHERE m.sender_id = %s OR m.recipient_id = %s ORDER BY m.created_at DESC",
        (uid, uid)
    )


def load_message(message_id):
    message = db.fetch_one(MESSAGE_SELECT + " WHERE m.id = %s", (message_id,))
    if not message:
        raise ApiError("Message not found", 404)
    uid = current_user_id()
    if uid not in (message["sender_id"], message["recipient_id"]):
        abort(403, description="Insufficient permissions to view this message")
    return message


def find_recipient(value):
    if isinstance(value, int) or str(value).isdigit():
        user = db.fetch_one("SELECT id FROM users WHERE id=%s", (int(value),))
    else:
        user = db.fetch_one("SELECT id FROM users WHERE email=%s", (str(value).strip().lower(),))
    if not user:
        raise ApiError("Recipient not found", 404)
    return user["id"]


def create_message(recipient_id, subject, content, msg_type, priority):
    if msg_type not in TYPES:
        raise ApiError("Invalid message type", 400)
    if priority not in PRIORITIES:
        raise ApiError("Invalid priority", 400)
    message_id, _ = db.execute(
        "INSERT INTO messages (sender_id, recipient_id, subject, content, type, priority) "
        "VALUES (%s,%s,%s,%s,%s,%s)",
        (current_user_id(), recipient_id, subject.strip(), content.strip(), msg_type, priority)
    )
    return db.fetch_one(MESSAGE_SELECT + " WHERE m.id = %s", (message_id,))


# ---------- MESSAGES MODULE ----------
@bp.route("")
@login_required
def list_messages():
    folder = request.args.get("folder", "inbox")
    if folder not in FOLDERS:
        raise ApiError("Invalid folder", 400)

    messages = my_messages()
    uid = current_user_id()
    return ok({
        "messages": filter_messages(
            messages, uid, folder,
            search=request.args.get("q"),
            msg_type=request.args.get("type"),
            status=request.args.get("status"),
        ),
        "counts": folder_counts(messages, uid),
    })


@bp.route("/<int:message_id>")
@login_required
def get_message(message_id):
    message = load_message(message_id)
    if message["recipient_id"] == current_user_id() and not message["is_read"]:
        now = datetime.now()
        db.execute("UPDATE messages SET is_read=1, read_at=%s WHERE id=%s", (now, message_id))
        message["is_read"] = 1
        message["read_at"] = now
    return ok(message)


@bp.route("", methods=["POST"])
@login_required
def send_message():
    payload = request.get_json(silent=True) or {}
    require_fields(payload, "recipient", "subject", "content")
    subject = text(payload, "subject")
    content = text(payload, "content")
    if not subject or not content:
        raise ApiError("Subject and content cannot be empty", 400)
    message = create_message(
        find_recipient(payload["recipient"]),
        subject,
        content,
        payload.get("type", "general"),
        payload.get("priority", "medium"),
    )
    return ok(message, "Message sent successfully", 201)


@bp.route("/<int:message_id>/reply", methods=["POST"])
@login_required
def reply_message(message_id):
    payload = request.get_json(silent=True) or {}
    require_fields(payload, "content")
    content = text(payload, "content")
    if not content:
        raise ApiError("Content cannot be empty", 400)
    original = load_message(message_id)

    # replying to your own sent message goes back to its recipient
    if original["sender_id"] == current_user_id():
        to_id = original["recipient_id"]
    else:
        to_id = original["sender_id"]

    message = create_message(
        to_id,
        reply_subject(original["subject"]),
        content + quote(original),
        original["type"],
        payload.get("priority", original["priority"]),
    )
    return ok(message, "Reply sent", 201)


@bp.route("/<int:message_id>", methods=["PATCH"])
@login_required
def update_flags(message_id):
    payload = request.get_json(silent=True) or {}
    message = load_message(message_id)
    if message["recipient_id"] != current_user_id():
        abort(403, description="Only the recipient can change message flags")

    columns = {"read": "is_read", "starred": "is_starred", "archived": "is_archived"}
    sets = []
    params = []
    for key, column in columns.items():
        if key in payload:
            sets.append(f"{column}=%s")
            params.append(1 if payload[key] else 0)
            message[column] = 1 if payload[key] else 0
    if not sets:
        raise ApiError("Nothing to update", 400)

    db.execute(f"UPDATE messages SET {', '.join(sets)} WHERE id=%s", params + [message_id])
    return ok(message, "Message updated")


@bp.route("/<int:message_id>", methods=["DELETE"])
@login_required
def delete_message(message_id):
    load_message(message_id)
    db.execute("DELETE FROM messages WHERE id=%s", (message_id,))
    return ok(message="Message deleted")


@bp.route("/export")
@login_required
def export_messages():
    folder = request.args.get("folder", "inbox")
    if folder not in FOLDERS:
        raise ApiError("Invalid folder", 400)
    messages = filter_messages(my_messages(), current_user_id(), folder)
    return exports.csv_response(
        f"messages-{folder}-{date.today().isoformat()}.csv",
        exports.MESSAGES_HEADER,
        exports.message_rows(messages)
    )
