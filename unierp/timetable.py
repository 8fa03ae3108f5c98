from datetime import date, time, timedelta

from flask import Blueprint, request

from . import db
from .auth import STAFF, current_role, current_student_id, current_user_id, login_required, role_required
from .errors import ApiError, integer, ok, require_fields, text

bp = Blueprint("timetable", __name__, url_prefix="/api/timetable")

WEEKDAYS = ["Monday", "Tuesday", "Wednesday", "Thursday", "Friday"]
ALL_DAYS = WEEKDAYS + ["Saturday"]
SLOT_TYPES = ("Theory", "Lab", "Seminar", "Project", "Practice")
FREE_SLOT = {"subject": "Free Slot", "code": "", "room": "", "type": "Free"}

SLOT_SELECT = """
    SELECT t.id, t.course_id, t.day, t.start_time, t.end_time, t.room, t.slot_type,
           c.code, c.title AS subject, CONCAT(u.first_name, ' ', u.last_name) AS instructor
    FROM timetable_slots t
    JOIN courses c ON c.id = t.course_id
    LEFT JOIN users u ON u.id = c.instructor_id
"""


def to_minutes(value):
    """Minutes after midnight for TIME columns (timedelta), time objects or "HH:MM" text."""
    if isinstance(value, timedelta):
        return int(value.total_seconds() // 60)
    if isinstance(value, time):
        return value.hour * 60 + value.minute
    try:
        parts = [int(p) for p in str(value).split(":")[:2]]
        hours, minutes = parts[0], parts[1]
    except (ValueError, IndexError):
        raise ApiError(f"Invalid time: {value}", 400)
    if not (0 <= hours < 24 and 0 <= minutes < 60):
        raise ApiError(f"Invalid time: {value}", 400)
    return hours * 60 + minutes


def fmt_minutes(minutes):
    return f"{minutes // 60:02d}:{minutes % 60:02d}"


def time_range(slot):
    return f"{fmt_minutes(to_minutes(slot['start_time']))}-{fmt_minutes(to_minutes(slot['end_time']))}"


def overlaps(a_start, a_end, b_start, b_end):
    return a_start < b_end and b_start < a_end


def find_conflicts(slots, candidate):
    """Slots that share the candidate's day and overlap it in room or course."""
    start = to_minutes(candidate["start_time"])
    end = to_minutes(candidate["end_time"])
    clashes = []
    for s in slots:
        if s.get("id") is not None and s.get("id") == candidate.get("id"):
            continue
        if s["day"] != candidate["day"]:
            continue
        if not overlaps(start, end, to_minutes(s["start_time"]), to_minutes(s["end_time"])):
            continue
        if s["room"] == candidate["room"] or s["course_id"] == candidate["course_id"]:
            clashes.append(s)
    return clashes


def cell(slot):
    return {
        "id": slot["id"],
        "subject": slot["subject"],
        "code": slot["code"],
        "room": slot["room"],
        "type": slot["slot_type"],
        "instructor": slot.get("instructor"),
    }


def build_grid(slots):
    days = list(WEEKDAYS)
    if any(s["day"] == "Saturday" for s in slots):
        days.append("Saturday")

    rows = {}
    for s in slots:
        start, end = to_minutes(s["start_time"]), to_minutes(s["end_time"])
        rows.setdefault((start, end), {})[s["day"]] = cell(s)

    grid = []
    for (start, end) in sorted(rows):
        row = {"time": f"{fmt_minutes(start)}-{fmt_minutes(end)}"}
        for day in days:
            row[day.lower()] = rows[(start, end)].get(day, dict(FREE_SLOT))
        grid.append(row)
    return {"days": days, "rows": grid}


def visible_slots():
    if current_role() == "student":
        return db.fetch_all(SLOT_SELECT + """
            JOIN enrollments e ON e.course_id = t.course_id
            WHERE e.student_id = %s AND e.status = 'enrolled'
            ORDER BY t.start_time
        """, (current_student_id(),))
    if current_role() == "teacher" and request.args.get("scope") != "all":
        return db.fetch_all(
            SLOT_SELECT + " WHERE c.instructor_id = %s ORDER BY t.start_time", (current_user_id(),)
        )
    return db.fetch_all(SLOT_SELECT + " ORDER BY t.start_time")


def validated_slot(payload, slot_id=None):
    day = payload.get("day")
    if day not in ALL_DAYS:
        raise ApiError("Invalid day", 400)
    slot_type = payload.get("slot_type", "Theory")
    if slot_type not in SLOT_TYPES:
        raise ApiError("Invalid slot type", 400)
    start = to_minutes(payload["start_time"])
    end = to_minutes(payload["end_time"])
    if start >= end:
        raise ApiError("start_time must be before end_time", 400)

    slot = {
        "id": slot_id,
        "course_id": integer(payload["course_id"], "course_id"),
        "day": day,
        "start_time": fmt_minutes(start),
        "end_time": fmt_minutes(end),
        "room": text(payload, "room"),
        "slot_type": slot_type,
    }
    if not slot["room"]:
        raise ApiError("room cannot be empty", 400)
    existing = db.fetch_all(
        "SELECT id, course_id, day, start_time, end_time, room FROM timetable_slots WHERE day=%s",
        (day,)
    )
    clashes = find_conflicts(existing, slot)
    if clashes:
        raise ApiError("Slot conflicts with an existing booking", 409,
                       {"conflicts": [c["id"] for c in clashes]})
    return slot


# ---------- TIMETABLE MODULE ----------
@bp.route("")
@login_required
def weekly():
    return ok(build_grid(visible_slots()))


@bp.route("/today")
@login_required
def today():
    day = date.today().strftime("%A")
    slots = []
    for s in visible_slots():
        if s["day"] == day:
            item = cell(s)
            item["time"] = time_range(s)
            slots.append(item)
    return ok({"day": day, "slots": slots})


@bp.route("/slots", methods=["POST"])
@role_required(*STAFF)
def add_slot():
    payload = request.get_json(silent=True) or {}
    require_fields(payload, "course_id", "day", "start_time", "end_time", "room")
    slot = validated_slot(payload)
    slot_id, _ = db.execute(
        "INSERT INTO timetable_slots (course_id, day, start_time, end_time, room, slot_type) "
        "VALUES (%s,%s,%s,%s,%s,%s)",
        (slot["course_id"], slot["day"], slot["start_time"], slot["end_time"],
         slot["room"], slot["slot_type"])
    )
    slot["id"] = slot_id
    return ok(slot, "Slot added", 201)


@bp.route("/slots/<int:slot_id>", methods=["PUT"])
@role_required(*STAFF)
def update_slot(slot_id):
    current = db.fetch_one("SELECT * FROM timetable_slots WHERE id=%s", (slot_id,))
    if not current:
        raise ApiError("Slot not found", 404)
    payload = dict(current)
    payload.update(request.get_json(silent=True) or {})

    slot = validated_slot(payload, slot_id)
    db.execute(
        "UPDATE timetable_slots SET course_id=%s, day=%s, start_time=%s, end_time=%s, "
        "room=%s, slot_type=%s WHERE id=%s",
        (slot["course_id"], slot["day"], slot["start_time"], slot["end_time"],
         slot["room"], slot["slot_type"], slot_id)
    )
    return ok(slot, "Slot updated")


@bp.route("/slots/<int:slot_id>", methods=["DELETE"])
@role_required(*STAFF)
def clear_slot(slot_id):
    _, count = db.execute("DELETE FROM timetable_slots WHERE id=%s", (slot_id,))
    if not count:
        raise ApiError("Slot not found", 404)
    return ok(message="Slot cleared")
