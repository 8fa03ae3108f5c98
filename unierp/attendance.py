import logging
from datetime import date, datetime

from flask import Blueprint, abort, current_app, request

from . import attendance_stats, db, exports, mailer
from .auth import STAFF, current_role, current_student_id, current_user_id, role_required, login_required
from .errors import ApiError, ok, require_fields, text

log = logging.getLogger(__name__)

bp = Blueprint("attendance", __name__, url_prefix="/api/attendance")

RECORD_SELECT = """
    SELECT a.id, a.student_id, a.course_id, a.date, a.status, a.notes,
           c.code AS course_code, c.title AS course_name, c.semester,
           CONCAT(u.first_name, ' ', u.last_name) AS instructor,
           (SELECT MIN(t.room) FROM timetable_slots t WHERE t.course_id = c.id) AS room
    FROM attendance a
    JOIN courses c ON c.id = a.course_id
    LEFT JOIN users u ON u.id = c.instructor_id
"""


def parse_day(value):
    try:
        return datetime.strptime(value, "%Y-%m-%d").date()
    except (TypeError, ValueError):
        raise ApiError("Invalid date", 400)


def load_course(course_id):
    course = db.fetch_one("SELECT id, code, title, instructor_id FROM courses WHERE id=%s", (course_id,))
    if not course:
        raise ApiError("Course not found", 404)
    return course


def check_can_mark(course, day):
    """Teachers mark only their own courses and only inside the lock window."""
    if current_role() == "admin":
        return
    if course["instructor_id"] != current_user_id():
        abort(403, description="You do not teach this course")
    lock_days = current_app.config["ATTENDANCE_LOCK_DAYS"]
    if attendance_stats.is_locked(day, date.today(), lock_days):
        raise ApiError(f"Attendance locked for this date (older than {lock_days} days)", 423)


def my_records():
    return db.fetch_all(
        RECORD_SELECT + " WHERE a.student_id = %s ORDER BY a.date DESC",
        (current_student_id(),)
    )


# ---------- ATTENDANCE MODULE ----------
@bp.route("/my")
@role_required("student")
def my_attendance():
    records = my_records()
    filtered = attendance_stats.filter_records(
        records,
        course=request.args.get("course"),
        month=request.args.get("month"),
        search=request.args.get("q"),
    )
    filtered = attendance_stats.sort_records(
        filtered,
        sort_by=request.args.get("sort", "date"),
        order=request.args.get("order", "desc"),
    )
    return ok({
        "records": filtered,
        "summary": attendance_stats.summarize(filtered),
        "by_course": attendance_stats.by_course(filtered),
        "weekly": attendance_stats.weekly_trends(filtered),
        "filters": attendance_stats.filter_options(records),
    })


@bp.route("")
@role_required(*STAFF)
def list_attendance():
    where = []
    params = []

    course_id = request.args.get("course_id")
    student_id = request.args.get("student_id")
    day = request.args.get("date")

    if course_id:
        where.append("a.course_id = %s")
        params.append(course_id)
    if student_id:
        where.append("a.student_id = %s")
        params.append(student_id)
    if day:
        where.append("a.date = %s")
        params.append(parse_day(day))

    sql = RECORD_SELECT
    if where:
        sql += " WHERE " + " AND ".join(where)
    sql += " ORDER BY a.date DESC"
    return ok(db.fetch_all(sql, params))


@bp.route("/mark", methods=["POST"])
@role_required(*STAFF)
def mark_attendance():
    payload = request.get_json(silent=True) or {}
    require_fields(payload, "course_id", "date", "entries")

    day = parse_day(payload["date"])
    if day > date.today():
        raise ApiError("Cannot mark attendance for a future date", 400)
    course = load_course(payload["course_id"])
    check_can_mark(course, day)

    entries = payload["entries"]
    if not isinstance(entries, list) or not entries:
        raise ApiError("No students submitted.", 400)

    rows = []
    for entry in entries:
        if not isinstance(entry, dict):
            raise ApiError("Each entry must be an object", 400)
        status = str(entry.get("status") or "").lower()
        if status not in attendance_stats.STATUSES:
            raise ApiError(f"Invalid status: {entry.get('status')}", 400)
        try:
            student_id = int(entry.get("student_id"))
        except (TypeError, ValueError):
            raise ApiError("Invalid student id", 400)
        rows.append((student_id, status, text(entry, "notes")))

    ids = [r[0] for r in rows]
    existing = db.fetch_all(
        f"SELECT student_id FROM attendance WHERE course_id=%s AND date=%s "
        f"AND student_id IN ({db.placeholders(ids)})",
        [course["id"], day] + ids
    )
    existing_ids = {r["student_id"] for r in existing}

    insert_sql = """
        INSERT INTO attendance (student_id, course_id, date, status, notes, marked_by)
        VALUES (%s, %s, %s, %s, %s, %s)
        ON DUPLICATE KEY UPDATE status = VALUES(status), notes = VALUES(notes),
            marked_by = VALUES(marked_by)
    """
    db.execute_many([
        (insert_sql, (sid, course["id"], day, status, notes, current_user_id()))
        for sid, status, notes in rows
    ])

    updated = len(existing_ids & set(ids))
    inserted = len(set(ids)) - updated
    log.info("attendance for %s on %s: %d added, %d updated", course["code"], day, inserted, updated)
    return ok({"inserted": inserted, "updated": updated}, f"{inserted} added, {updated} updated")


@bp.route("/<int:record_id>", methods=["PUT"])
@role_required(*STAFF)
def edit_attendance(record_id):
    payload = request.get_json(silent=True) or {}
    record = db.fetch_one(
        "SELECT id, course_id, date, status, notes FROM attendance WHERE id=%s", (record_id,)
    )
    if not record:
        raise ApiError("Attendance record not found", 404)

    status = str(payload.get("status") or record["status"]).lower()
    if status not in attendance_stats.STATUSES:
        raise ApiError("Invalid status", 400)
    notes = text(payload, "notes") if "notes" in payload else record["notes"]

    check_can_mark(load_course(record["course_id"]), record["date"])
    db.execute("UPDATE attendance SET status=%s, notes=%s WHERE id=%s", (status, notes, record_id))
    return ok({"id": record_id, "status": status, "notes": notes}, "Attendance updated")


def course_report(course_id):
    records = db.fetch_all("""
        SELECT a.student_id, a.status, a.date, s.student_code,
               CONCAT(u.first_name, ' ', u.last_name) AS name, u.email
        FROM attendance a
        JOIN students s ON s.id = a.student_id
        JOIN users u ON u.id = s.user_id
        WHERE a.course_id = %s
        ORDER BY name
    """, (course_id,))

    students = {}
    for r in records:
        students.setdefault(r["student_id"], {
            "student_id": r["student_id"],
            "student_code": r["student_code"],
            "name": r["name"],
            "email": r["email"],
            "records": [],
        })["records"].append(r)

    report = []
    for row in students.values():
        row.update(attendance_stats.summarize(row.pop("records")))
        report.append(row)
    return report


@bp.route("/report")
@role_required(*STAFF)
def attendance_report():
    course_id = request.args.get("course_id")
    if not course_id:
        raise ApiError("course_id is required", 400)
    course = load_course(course_id)
    return ok({"course": course, "students": course_report(course["id"])})


@bp.route("/export")
@login_required
def export_attendance():
    if current_role() == "student":
        records = my_records()
        filename = f"attendance-report-{date.today().isoformat()}.csv"
    elif current_role() in STAFF:
        course_id = request.args.get("course_id")
        if not course_id:
            raise ApiError("course_id is required", 400)
        course = load_course(course_id)
        records = db.fetch_all(
            RECORD_SELECT + " WHERE a.course_id = %s ORDER BY a.date DESC", (course["id"],)
        )
        filename = f"attendance-{course['code']}-{date.today().isoformat()}.csv"
    else:
        abort(403)

    return exports.csv_response(filename, exports.ATTENDANCE_HEADER, exports.attendance_rows(records))


@bp.route("/notify-low", methods=["POST"])
@role_required(*STAFF)
def notify_low_attendance():
    payload = request.get_json(silent=True) or {}
    require_fields(payload, "course_id")
    course = load_course(payload["course_id"])
    try:
        threshold = float(payload.get("threshold") or current_app.config["LOW_ATTENDANCE_THRESHOLD"])
    except (TypeError, ValueError):
        raise ApiError("threshold must be a number", 400)

    low = attendance_stats.below_threshold(course_report(course["id"]), threshold)
    sent, failed = mailer.send_bulk(
        (r["email"],
         f"Low attendance in {course['code']}",
         mailer.low_attendance_body(r["name"], course["code"], r["attendance_rate"], threshold),
         r["student_id"])
        for r in low
    )
    return ok({"students": len(low), "sent": sent, "failed": failed},
              f"Notices sent: {sent}. Failed: {len(failed)}.")
