from datetime import datetime

from flask import Blueprint, request

from . import db
from .auth import current_student_id, current_user_id, login_required, role_required
from .errors import ApiError, integer, ok, require_fields, text

bp = Blueprint("hostel", __name__, url_prefix="/api/hostel")

WARDENS = ("admin", "warden")
HOSTEL_STAFF = ("admin", "warden", "teacher")

ROOM_CAPACITY = {"single": 1, "double": 2, "triple": 3}
COMPLAINT_CATEGORIES = ("electricity", "water", "cleaning", "maintenance", "other")
NOTICE_PRIORITIES = ("low", "medium", "high")
COMPLAINT_FLOW = {
    "open": ("in_progress", "resolved", "closed"),
    "in_progress": ("resolved", "closed"),
    "resolved": ("closed", "open"),
    "closed": (),
}


def room_status(occupants, capacity):
    if occupants >= capacity:
        return "occupied"
    if occupants > 0:
        return "reserved"
    return "available"


def can_move(current, new):
    return new in COMPLAINT_FLOW.get(current, ())


def parse_day(value, name):
    try:
        return datetime.strptime(value, "%Y-%m-%d").date()
    except (TypeError, ValueError):
        raise ApiError(f"Invalid {name}", 400)


def load_room(room_id):
    room = db.fetch_one("""
        SELECT r.*, (SELECT COUNT(*) FROM hostel_allocations a WHERE a.room_id = r.id) AS occupants
        FROM hostel_rooms r WHERE r.id = %s
    """, (room_id,))
    if not room:
        raise ApiError("Room not found", 404)
    return room


# ---------- ROOMS ----------
@bp.route("/rooms")
@role_required(*HOSTEL_STAFF)
def list_rooms():
    where = []
    params = []
    for arg, column in (("status", "r.status"), ("type", "r.room_type")):
        value = request.args.get(arg)
        if value:
            where.append(f"{column} = %s")
            params.append(value)
    sql = """
        SELECT r.*, (SELECT COUNT(*) FROM hostel_allocations a WHERE a.room_id = r.id) AS occupants
        FROM hostel_rooms r
    """
    if where:
        sql += " WHERE " + " AND ".join(where)
    return ok(db.fetch_all(sql + " ORDER BY r.room_number", params))


@bp.route("/rooms", methods=["POST"])
@role_required(*WARDENS)
def create_room():
    payload = request.get_json(silent=True) or {}
    require_fields(payload, "room_number", "room_type")
    room_type = text(payload, "room_type")
    if room_type not in ROOM_CAPACITY:
        raise ApiError("Invalid room type", 400)
    capacity = integer(payload.get("capacity") or ROOM_CAPACITY[room_type], "capacity")
    floor = payload.get("floor")
    if floor is not None:
        floor = integer(floor, "floor")
    if not 1 <= capacity <= ROOM_CAPACITY[room_type]:
        raise ApiError(f"Capacity for a {room_type} room is 1 to {ROOM_CAPACITY[room_type]}", 400)

    room_id, _ = db.execute(
        "INSERT INTO hostel_rooms (room_number, room_type, capacity, floor, notes) VALUES (%s,%s,%s,%s,%s)",
        (text(payload, "room_number"), room_type, capacity, floor, text(payload, "notes", None))
    )
    return ok(load_room(room_id), "Room created", 201)


@bp.route("/rooms/<int:room_id>/allocate", methods=["POST"])
@role_required(*WARDENS)
def allocate_room(room_id):
    payload = request.get_json(silent=True) or {}
    require_fields(payload, "student_id")
    room = load_room(room_id)
    if room["status"] == "maintenance":
        raise ApiError("Room is under maintenance", 400)
    if room["occupants"] >= room["capacity"]:
        raise ApiError("Room is full", 400)

    held = db.fetch_one("SELECT room_id FROM hostel_allocations WHERE student_id=%s", (payload["student_id"],))
    if held:
        raise ApiError("Student already has a room", 409)

    status = room_status(room["occupants"] + 1, room["capacity"])
    db.execute_many([
        ("INSERT INTO hostel_allocations (room_id, student_id) VALUES (%s,%s)", (room_id, payload["student_id"])),
        ("UPDATE hostel_rooms SET status=%s WHERE id=%s", (status, room_id)),
    ])
    return ok({"room_id": room_id, "student_id": payload["student_id"], "status": status}, "Room allocated")


@bp.route("/rooms/<int:room_id>/deallocate", methods=["POST"])
@role_required(*WARDENS)
def deallocate_room(room_id):
    payload = request.get_json(silent=True) or {}
    require_fields(payload, "student_id")
    room = load_room(room_id)

    held = db.fetch_one(
        "SELECT id FROM hostel_allocations WHERE room_id=%s AND student_id=%s",
        (room_id, payload["student_id"])
    )
    if not held:
        raise ApiError("Student is not in this room", 404)

    status = room["status"]
    if status != "maintenance":
        status = room_status(room["occupants"] - 1, room["capacity"])
    db.execute_many([
        ("DELETE FROM hostel_allocations WHERE id=%s", (held["id"],)),
        ("UPDATE hostel_rooms SET status=%s WHERE id=%s", (status, room_id)),
    ])
    return ok({"room_id": room_id, "status": status}, "Room deallocated")


# ---------- LEAVES ----------
@bp.route("/leaves", methods=["POST"])
@role_required("student")
def apply_leave():
    payload = request.get_json(silent=True) or {}
    require_fields(payload, "from_date", "to_date", "reason")
    reason = text(payload, "reason")
    if not reason:
        raise ApiError("reason cannot be empty", 400)
    start = parse_day(payload["from_date"], "from_date")
    end = parse_day(payload["to_date"], "to_date")
    if start > end:
        raise ApiError("from_date must not be after to_date", 400)

    leave_id, _ = db.execute(
        "INSERT INTO hostel_leaves (student_id, from_date, to_date, reason) VALUES (%s,%s,%s,%s)",
        (current_student_id(), start, end, reason)
    )
    return ok({"id": leave_id, "from_date": start, "to_date": end, "status": "pending"},
              "Leave applied", 201)


@bp.route("/leaves/my")
@role_required("student")
def my_leaves():
    return ok(db.fetch_all(
        "SELECT * FROM hostel_leaves WHERE student_id=%s ORDER BY created_at DESC", (current_student_id(),)
    ))


@bp.route("/leaves")
@role_required(*WARDENS)
def list_leaves():
    sql = """
        SELECT l.*, s.student_code, CONCAT(u.first_name, ' ', u.last_name) AS student_name
        FROM hostel_leaves l
        JOIN students s ON s.id = l.student_id
        JOIN users u ON u.id = s.user_id
    """
    params = []
    status = request.args.get("status")
    if status:
        sql += " WHERE l.status = %s"
        params.append(status)
    return ok(db.fetch_all(sql + " ORDER BY l.created_at DESC", params))


@bp.route("/leaves/<int:leave_id>/review", methods=["POST"])
@role_required(*WARDENS)
def review_leave(leave_id):
    payload = request.get_json(silent=True) or {}
    action = payload.get("action")
    if action not in ("approve", "reject"):
        raise ApiError("action must be approve or reject", 400)

    leave = db.fetch_one("SELECT id, status FROM hostel_leaves WHERE id=%s", (leave_id,))
    if not leave:
        raise ApiError("Leave not found", 404)
    if leave["status"] != "pending":
        raise ApiError(f"Leave already {leave['status']}", 409)

    status = "approved" if action == "approve" else "rejected"
    db.execute(
        "UPDATE hostel_leaves SET status=%s, reviewed_by=%s, reviewed_at=%s, notes=%s WHERE id=%s",
        (status, current_user_id(), datetime.now(), text(payload, "notes", None), leave_id)
    )
    return ok({"id": leave_id, "status": status}, f"Leave {status}")


# ---------- COMPLAINTS ----------
@bp.route("/complaints", methods=["POST"])
@role_required("student")
def create_complaint():
    payload = request.get_json(silent=True) or {}
    require_fields(payload, "category", "description")
    if payload["category"] not in COMPLAINT_CATEGORIES:
        raise ApiError("Invalid category", 400)
    description = text(payload, "description")
    if not description:
        raise ApiError("description cannot be empty", 400)
    complaint_id, _ = db.execute(
        "INSERT INTO hostel_complaints (student_id, category, description) VALUES (%s,%s,%s)",
        (current_student_id(), payload["category"], description)
    )
    return ok({"id": complaint_id, "status": "open"}, "Complaint registered", 201)


@bp.route("/complaints/my")
@role_required("student")
def my_complaints():
    return ok(db.fetch_all(
        "SELECT * FROM hostel_complaints WHERE student_id=%s ORDER BY created_at DESC",
        (current_student_id(),)
    ))


@bp.route("/complaints")
@role_required(*HOSTEL_STAFF)
def list_complaints():
    where = []
    params = []
    for arg in ("status", "category"):
        value = request.args.get(arg)
        if value:
            where.append(f"c.{arg} = %s")
            params.append(value)
    sql = """
        SELECT c.*, s.student_code, CONCAT(u.first_name, ' ', u.last_name) AS student_name
        FROM hostel_complaints c
        JOIN students s ON s.id = c.student_id
        JOIN users u ON u.id = s.user_id
    """
    if where:
        sql += " WHERE " + " AND ".join(where)
    return ok(db.fetch_all(sql + " ORDER BY c.created_at DESC", params))


@bp.route("/complaints/<int:complaint_id>", methods=["PATCH"])
@role_required(*HOSTEL_STAFF)
def update_complaint(complaint_id):
    payload = request.get_json(silent=True) or {}
    complaint = db.fetch_one("SELECT * FROM hostel_complaints WHERE id=%s", (complaint_id,))
    if not complaint:
        raise ApiError("Complaint not found", 404)

    status = payload.get("status", complaint["status"])
    if status != complaint["status"] and not can_move(complaint["status"], status):
        raise ApiError(f"Cannot move complaint from {complaint['status']} to {status}", 400)

    resolved_at = complaint["resolved_at"]
    if status == "resolved" and complaint["status"] != "resolved":
        resolved_at = datetime.now()
    elif status == "closed" and resolved_at is None:
        resolved_at = datetime.now()
    elif status == "open":
        resolved_at = None
    notes = (text(payload, "resolution_notes", None) if "resolution_notes" in payload
             else complaint["resolution_notes"])

    db.execute(
        "UPDATE hostel_complaints SET status=%s, assigned_to=%s, resolution_notes=%s, resolved_at=%s "
        "WHERE id=%s",
        (status, payload.get("assigned_to", complaint["assigned_to"]),
         notes, resolved_at, complaint_id)
    )
    return ok({"id": complaint_id, "status": status, "resolved_at": resolved_at}, "Complaint updated")


# ---------- NOTICES ----------
@bp.route("/notices")
@login_required
def list_notices():
    return ok(db.fetch_all(
        "SELECT * FROM hostel_notices WHERE is_active=1 ORDER BY created_at DESC"
    ))


@bp.route("/notices", methods=["POST"])
@role_required(*WARDENS)
def create_notice():
    payload = request.get_json(silent=True) or {}
    require_fields(payload, "title", "body")
    title = text(payload, "title")
    body = text(payload, "body")
    if not title or not body:
        raise ApiError("title and body cannot be empty", 400)
    priority = payload.get("priority", "medium")
    if priority not in NOTICE_PRIORITIES:
        raise ApiError("Invalid priority", 400)
    notice_id, _ = db.execute(
        "INSERT INTO hostel_notices (title, body, priority, posted_by) VALUES (%s,%s,%s,%s)",
        (title, body, priority, current_user_id())
    )
    return ok({"id": notice_id}, "Notice posted", 201)


@bp.route("/notices/<int:notice_id>", methods=["PATCH"])
@role_required(*WARDENS)
def update_notice(notice_id):
    payload = request.get_json(silent=True) or {}
    notice = db.fetch_one("SELECT * FROM hostel_notices WHERE id=%s", (notice_id,))
    if not notice:
        raise ApiError("Notice not found", 404)
    title = text(payload, "title") if "title" in payload else notice["title"]
    body = text(payload, "body") if "body" in payload else notice["body"]
    if not title or not body:
        raise ApiError("title and body cannot be empty", 400)
    priority = payload.get("priority", notice["priority"])
    if priority not in NOTICE_PRIORITIES:
        raise ApiError("Invalid priority", 400)
    db.execute(
        "UPDATE hostel_notices SET title=%s, body=%s, priority=%s, is_active=%s WHERE id=%s",
        (title, body, priority,
         1 if payload.get("is_active", notice["is_active"]) else 0, notice_id)
    )
    return ok({"id": notice_id}, "Notice updated")


# ---------- DASHBOARDS ----------
@bp.route("/dashboard/student")
@role_required("student")
def student_dashboard():
    student_id = current_student_id()
    room = db.fetch_one("""
        SELECT r.room_number, r.room_type, r.floor
        FROM hostel_allocations a JOIN hostel_rooms r ON r.id = a.room_id
        WHERE a.student_id = %s
    """, (student_id,))
    return ok({
        "room": room,
        "pending_leaves": db.scalar(
            "SELECT COUNT(*) AS cnt FROM hostel_leaves WHERE student_id=%s AND status='pending'",
            (student_id,)) or 0,
        "open_complaints": db.scalar(
            "SELECT COUNT(*) AS cnt FROM hostel_complaints WHERE student_id=%s "
            "AND status IN ('open','in_progress')", (student_id,)) or 0,
    })


@bp.route("/dashboard/warden")
@role_required(*WARDENS)
def warden_dashboard():
    rooms = db.fetch_all("SELECT status, COUNT(*) AS cnt FROM hostel_rooms GROUP BY status")
    return ok({
        "rooms": {r["status"]: r["cnt"] for r in rooms},
        "pending_leaves": db.scalar(
            "SELECT COUNT(*) AS cnt FROM hostel_leaves WHERE status='pending'") or 0,
        "open_complaints": db.scalar(
            "SELECT COUNT(*) AS cnt FROM hostel_complaints WHERE status IN ('open','in_progress')") or 0,
    })
