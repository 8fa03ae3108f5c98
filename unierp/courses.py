from flask import Blueprint, request

from . import db
from .auth import STAFF, current_student_id, role_required, login_required
from .errors import ApiError, integer, ok, require_fields, text

bp = Blueprint("courses", __name__, url_prefix="/api/courses")

COURSE_SELECT = """
    SELECT c.*, CONCAT(u.first_name, ' ', u.last_name) AS instructor,
           (SELECT COUNT(*) FROM enrollments e
            WHERE e.course_id = c.id AND e.status = 'enrolled') AS enrolled
    FROM courses c
    LEFT JOIN users u ON u.id = c.instructor_id
"""

SORT_FIELDS = ("code", "title", "credits", "department", "instructor", "enrolled")
EDITABLE = ("title", "description", "department", "credits", "max_students",
            "instructor_id", "semester", "status")


def with_seats(courses):
    for c in courses:
        c["seats_left"] = max(int(c["max_students"]) - int(c["enrolled"] or 0), 0)
    return courses


def filter_courses(courses, search=None, status=None, department=None):
    needle = (search or "").lower()
    result = []
    for c in courses:
        if needle and not any(
                needle in (c.get(f) or "").lower()
                for f in ("title", "code", "instructor", "department")):
            continue
        if status and status != "all" and c.get("status") != status:
            continue
        if department and department != "all" and c.get("department") != department:
            continue
        result.append(c)
    return result


def sort_courses(courses, sort_by="code", order="asc"):
    if sort_by not in SORT_FIELDS:
        sort_by = "code"

    def key(c):
        value = c.get(sort_by)
        if isinstance(value, str):
            return (0, value.lower())
        return (0, value) if value is not None else (1, 0)

    return sorted(courses, key=key, reverse=(order == "desc"))


def load_course(course_id):
    course = db.fetch_one(COURSE_SELECT + " WHERE c.id = %s", (course_id,))
    if not course:
        raise ApiError("Course not found", 404)
    return with_seats([course])[0]


def enrollment_status(enrolled, max_students):
    return "enrolled" if enrolled < max_students else "waitlist"


def parse_sizes(payload, credits=3, max_students=60):
    try:
        credits = int(payload.get("credits", credits))
        max_students = int(payload.get("max_students", max_students))
    except (TypeError, ValueError):
        raise ApiError("credits and max_students must be integers", 400)
    if credits <= 0 or max_students <= 0:
        raise ApiError("credits and max_students must be positive", 400)
    return credits, max_students


def promotions(course_id, free_seats):
    """Statements moving the oldest waitlisted students into ``free_seats`` seats."""
    if free_seats <= 0:
        return [], []
    waiting = db.fetch_all(
        "SELECT id, student_id FROM enrollments WHERE course_id=%s AND status='waitlist' "
        "ORDER BY enrolled_at, id LIMIT %s",
        (course_id, free_seats)
    )
    statements = [("UPDATE enrollments SET status='enrolled' WHERE id=%s", (w["id"],)) for w in waiting]
    return statements, [w["student_id"] for w in waiting]


def claim_seat(student_id, course_id, enrollment_id=None):
    """Take a seat only while the course still has one. Returns the affected row count."""
    if enrollment_id:
        _, count = db.execute("""
            UPDATE enrollments e
            JOIN courses c ON c.id = e.course_id
            JOIN (SELECT COUNT(*) AS taken FROM enrollments
                  WHERE course_id = %s AND status = 'enrolled') seats
            SET e.status = 'enrolled', e.enrolled_at = NOW()
            WHERE e.id = %s AND seats.taken < c.max_students
        """, (course_id, enrollment_id))
    else:
        _, count = db.execute("""
            INSERT INTO enrollments (student_id, course_id, status)
            SELECT %s, c.id, 'enrolled' FROM courses c
            WHERE c.id = %s
              AND (SELECT COUNT(*) FROM enrollments x
                   WHERE x.course_id = c.id AND x.status = 'enrolled') < c.max_students
        """, (student_id, course_id))
    return count


def join_waitlist(student_id, course_id, enrollment_id=None):
    if enrollment_id:
        db.execute(
            "UPDATE enrollments SET status=%s, enrolled_at=NOW() WHERE id=%s",
            ("waitlist", enrollment_id)
        )
    else:
        db.execute(
            "INSERT INTO enrollments (student_id, course_id, status) VALUES (%s,%s,%s)",
            (student_id, course_id, "waitlist")
        )


# ---------- COURSE CATALOG ----------
@bp.route("")
@login_required
def catalog():
    courses = with_seats(db.fetch_all(COURSE_SELECT + " WHERE c.status <> 'archived'"))
    courses = filter_courses(
        courses,
        search=request.args.get("q"),
        status=request.args.get("status"),
        department=request.args.get("department"),
    )
    return ok(sort_courses(courses, request.args.get("sort", "code"), request.args.get("order", "asc")))


@bp.route("/<int:course_id>")
@login_required
def get_course(course_id):
    return ok(load_course(course_id))


@bp.route("", methods=["POST"])
@role_required("admin")
def add_course():
    payload = request.get_json(silent=True) or {}
    require_fields(payload, "code", "title", "department")
    credits, max_students = parse_sizes(payload)

    course_id, _ = db.execute(
        "INSERT INTO courses (code, title, description, department, credits, max_students, "
        "instructor_id, semester) VALUES (%s,%s,%s,%s,%s,%s,%s,%s)",
        (text(payload, "code").upper(), text(payload, "title"), text(payload, "description", None),
         text(payload, "department"), credits, max_students, payload.get("instructor_id"),
         text(payload, "semester", None))
    )
    return ok(load_course(course_id), "Course created", 201)


@bp.route("/<int:course_id>", methods=["PUT"])
@role_required("admin")
def update_course(course_id):
    payload = request.get_json(silent=True) or {}
    course = load_course(course_id)

    fields = [f for f in EDITABLE if f in payload]
    if not fields:
        raise ApiError("Nothing to update", 400)
    if "status" in payload and payload["status"] not in ("open", "closed", "archived"):
        raise ApiError("Invalid status", 400)

    values = dict(payload)
    values["credits"], values["max_students"] = parse_sizes(
        payload, course["credits"], course["max_students"]
    )
    for name in ("title", "description", "department", "semester"):
        if name in fields:
            values[name] = text(payload, name, None)
    if "title" in fields and not values["title"]:
        raise ApiError("Title cannot be empty", 400)
    if values.get("instructor_id") is not None:
        values["instructor_id"] = integer(values["instructor_id"], "instructor_id")

    statements = [(
        f"UPDATE courses SET {', '.join(f + '=%s' for f in fields)} WHERE id=%s",
        [values[f] for f in fields] + [course_id]
    )]
    promoted = []
    if values["max_students"] > int(course["max_students"]):
        free = values["max_students"] - int(course["enrolled"] or 0)
        extra, promoted = promotions(course_id, free)
        statements += extra
    db.execute_many(statements)

    updated = load_course(course_id)
    updated["promoted_student_ids"] = promoted
    return ok(updated, "Course updated")


@bp.route("/my")
@role_required("student")
def my_courses():
    courses = with_seats(db.fetch_all("""
        SELECT c.*, e.status AS enrollment_status,
               CONCAT(u.first_name, ' ', u.last_name) AS instructor,
               (SELECT COUNT(*) FROM enrollments x
                WHERE x.course_id = c.id AND x.status = 'enrolled') AS enrolled
        FROM enrollments e
        JOIN courses c ON c.id = e.course_id
        LEFT JOIN users u ON u.id = c.instructor_id
        WHERE e.student_id = %s AND e.status IN ('enrolled','waitlist','completed')
        ORDER BY c.code
    """, (current_student_id(),)))
    active = [c for c in courses if c["enrollment_status"] == "enrolled"]
    return ok({
        "courses": courses,
        "stats": {
            "total_courses": len(active),
            "total_credits": sum(int(c["credits"]) for c in active),
            "waitlisted": sum(1 for c in courses if c["enrollment_status"] == "waitlist"),
        },
    })


@bp.route("/<int:course_id>/enroll", methods=["POST"])
@role_required("student")
def enroll(course_id):
    student_id = current_student_id()
    course = load_course(course_id)
    if course["status"] != "open":
        raise ApiError("Course is not open for enrollment", 400)

    existing = db.fetch_one(
        "SELECT id, status FROM enrollments WHERE student_id=%s AND course_id=%s",
        (student_id, course_id)
    )
    if existing and existing["status"] != "dropped":
        raise ApiError(f"Already {existing['status']} in this course", 409)

    status = enrollment_status(int(course["enrolled"] or 0), int(course["max_students"]))
    existing_id = existing["id"] if existing else None
    # a seat that looked free may have been taken by a concurrent request
    if status == "enrolled" and not claim_seat(student_id, course_id, existing_id):
        status = "waitlist"
    if status == "waitlist":
        join_waitlist(student_id, course_id, existing_id)
    message = "Enrolled successfully" if status == "enrolled" else "Course is full; added to waitlist"
    return ok({"course_id": course_id, "status": status}, message, 201)


@bp.route("/<int:course_id>/drop", methods=["POST"])
@role_required("student")
def drop(course_id):
    student_id = current_student_id()
    enrollment = db.fetch_one(
        "SELECT id, status FROM enrollments WHERE student_id=%s AND course_id=%s",
        (student_id, course_id)
    )
    if not enrollment or enrollment["status"] not in ("enrolled", "waitlist"):
        raise ApiError("Not enrolled in this course", 404)

    statements = [("UPDATE enrollments SET status='dropped' WHERE id=%s", (enrollment["id"],))]
    promoted = None
    if enrollment["status"] == "enrolled":
        waiting = db.fetch_one(
            "SELECT id, student_id FROM enrollments WHERE course_id=%s AND status='waitlist' "
            "ORDER BY enrolled_at, id LIMIT 1",
            (course_id,)
        )
        if waiting:
            statements.append(("UPDATE enrollments SET status='enrolled' WHERE id=%s", (waiting["id"],)))
            promoted = waiting["student_id"]
    db.execute_many(statements)
    return ok({"course_id": course_id, "promoted_student_id": promoted}, "Course dropped")


@bp.route("/<int:course_id>/students")
@role_required(*STAFF)
def course_students(course_id):
    load_course(course_id)
    return ok(db.fetch_all("""
        SELECT s.id AS student_id, s.student_code, e.status, e.enrolled_at,
               CONCAT(u.first_name, ' ', u.last_name) AS name, u.email
        FROM enrollments e
        JOIN students s ON s.id = e.student_id
        JOIN users u ON u.id = s.user_id
        WHERE e.course_id = %s AND e.status <> 'dropped'
        ORDER BY e.status, name
    """, (course_id,)))
