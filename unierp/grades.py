from datetime import date, datetime

from flask import Blueprint, abort, request

from . import db, exports, grading
from .auth import STAFF, current_role, current_student_id, current_user_id, login_required, role_required
from .errors import ApiError, ok, require_fields, text

bp = Blueprint("grades", __name__, url_prefix="/api/grades")

GRADE_SELECT = """
    SELECT g.id, g.student_id, g.course_id, g.assessment, g.category, g.score, g.max_score,
           g.weight, g.letter, g.semester, g.graded_on, g.comments,
           c.code AS course_code, c.title AS course_name,
           CONCAT(u.first_name, ' ', u.last_name) AS instructor
    FROM grades g
    JOIN courses c ON c.id = g.course_id
    LEFT JOIN users u ON u.id = c.instructor_id
"""


def student_grades(student_id, semester=None):
    sql = GRADE_SELECT + " WHERE g.student_id = %s"
    params = [student_id]
    if semester and semester != "all":
        sql += " AND g.semester = %s"
        params.append(semester)
    return db.fetch_all(sql + " ORDER BY g.graded_on DESC", params)


def _number(payload, name, default=None):
    value = payload.get(name, default)
    try:
        return float(value)
    except (TypeError, ValueError):
        raise ApiError(f"{name} must be a number", 400)


def validate_scores(score, max_score, weight):
    if max_score <= 0:
        raise ApiError("max_score must be greater than zero", 400)
    if score < 0 or score > max_score:
        raise ApiError("score must be between 0 and max_score", 400)
    if weight < 0:
        raise ApiError("weight cannot be negative", 400)


def resolve_letter(letter, score, max_score):
    if letter:
        letter = str(letter).strip().upper()
        if letter not in grading.GRADE_POINTS:
            raise ApiError("Invalid grade letter", 400)
        return letter
    return grading.letter_for_percentage(grading.percentage(score, max_score))


def can_view_student(student_id):
    if current_role() in STAFF:
        return True
    return current_role() == "student" and current_student_id() == student_id


# ---------- GRADES MODULE ----------
@bp.route("/my")
@role_required("student")
def my_grades():
    semester = request.args.get("semester")
    every = student_grades(current_student_id())
    selected = grading.filter_by_semester(every, semester)
    return ok({
        "grades": selected,
        "summary": grading.summarize(selected),
        "semesters": ["all"] + grading.semesters(every),
    })


@bp.route("")
@role_required(*STAFF)
def list_grades():
    where = []
    params = []
    for arg, column in (("course_id", "g.course_id"), ("student_id", "g.student_id"),
                        ("semester", "g.semester")):
        value = request.args.get(arg)
        if value:
            where.append(f"{column} = %s")
            params.append(value)

    sql = GRADE_SELECT
    if where:
        sql += " WHERE " + " AND ".join(where)
    return ok(db.fetch_all(sql + " ORDER BY g.graded_on DESC", params))


@bp.route("", methods=["POST"])
@role_required(*STAFF)
def save_grade():
    """Create a grade, or update it when the student already has one for the assessment."""
    payload = request.get_json(silent=True) or {}
    require_fields(payload, "student_id", "course_id", "assessment", "score", "semester")

    score = _number(payload, "score")
    max_score = _number(payload, "max_score", 100)
    weight = _number(payload, "weight", 0)
    validate_scores(score, max_score, weight)
    letter = resolve_letter(payload.get("letter"), score, max_score)

    graded_on = payload.get("graded_on") or date.today().isoformat()
    try:
        datetime.strptime(graded_on, "%Y-%m-%d")
    except (TypeError, ValueError):
        raise ApiError("Invalid date", 400)

    assessment = text(payload, "assessment")
    if not assessment:
        raise ApiError("assessment cannot be empty", 400)

    db.execute("""
        INSERT INTO grades
            (student_id, course_id, assessment, category, score, max_score, weight,
             letter, semester, graded_on, comments, graded_by)
        VALUES (%s,%s,%s,%s,%s,%s,%s,%s,%s,%s,%s,%s)
        ON DUPLICATE KEY UPDATE
            category=VALUES(category), score=VALUES(score), max_score=VALUES(max_score),
            weight=VALUES(weight), letter=VALUES(letter), semester=VALUES(semester),
            graded_on=VALUES(graded_on), comments=VALUES(comments), graded_by=VALUES(graded_by)
    """, (payload["student_id"], payload["course_id"], assessment,
          text(payload, "category") or "Exam", score, max_score, weight, letter,
          text(payload, "semester"), graded_on, text(payload, "comments"), current_user_id()))

    grade = db.fetch_one(
        GRADE_SELECT + " WHERE g.student_id=%s AND g.course_id=%s AND g.assessment=%s",
        (payload["student_id"], payload["course_id"], assessment)
    )
    return ok(grade, "Grade saved successfully", 201)


@bp.route("/<int:grade_id>", methods=["PUT"])
@role_required(*STAFF)
def update_grade(grade_id):
    payload = request.get_json(silent=True) or {}
    grade = db.fetch_one("SELECT * FROM grades WHERE id=%s", (grade_id,))
    if not grade:
        raise ApiError("Grade not found", 404)

    score = _number(payload, "score", grade["score"])
    max_score = _number(payload, "max_score", grade["max_score"])
    weight = _number(payload, "weight", grade["weight"])
    validate_scores(score, max_score, weight)

    # a score change without an explicit letter recomputes the letter
    letter = payload.get("letter")
    if not letter and "score" not in payload and "max_score" not in payload:
        letter = grade["letter"]
    letter = resolve_letter(letter, score, max_score)

    comments = text(payload, "comments") if "comments" in payload else grade["comments"]
    db.execute(
        "UPDATE grades SET score=%s, max_score=%s, weight=%s, letter=%s, comments=%s WHERE id=%s",
        (score, max_score, weight, letter, comments, grade_id)
    )
    return ok(db.fetch_one(GRADE_SELECT + " WHERE g.id=%s", (grade_id,)), "Grade updated successfully")


@bp.route("/<int:grade_id>", methods=["DELETE"])
@role_required("admin")
def delete_grade(grade_id):
    _, count = db.execute("DELETE FROM grades WHERE id=%s", (grade_id,))
    if not count:
        raise ApiError("Grade not found", 404)
    return ok(message="Grade deleted successfully")


@bp.route("/<int:grade_id>")
@login_required
def get_grade(grade_id):
    grade = db.fetch_one(GRADE_SELECT + " WHERE g.id=%s", (grade_id,))
    if not grade:
        raise ApiError("Grade not found", 404)
    if not can_view_student(grade["student_id"]):
        abort(403, description="Insufficient permissions to view this grade")
    return ok(grade)


@bp.route("/export")
@role_required("student")
def export_grades():
    grades = student_grades(current_student_id(), request.args.get("semester"))
    return exports.csv_response(
        f"grades-{date.today().isoformat()}.csv",
        exports.GRADES_HEADER,
        exports.grade_rows(grades)
    )


@bp.route("/report-card/<int:student_id>")
@login_required
def report_card(student_id):
    if not can_view_student(student_id):
        abort(403)

    student = db.fetch_one("""
        SELECT s.id, s.student_code, s.program,
               CONCAT(u.first_name, ' ', u.last_name) AS name
        FROM students s
        JOIN users u ON u.id = s.user_id
        WHERE s.id = %s
    """, (student_id,))
    if not student:
        abort(404, description="Student not found")

    term = request.args.get("semester") or "all"
    grades = student_grades(student_id, term)
    summary = grading.summarize(grades)
    pdf = exports.report_card_pdf(student, grades, summary, "All semesters" if term == "all" else term)

    safe_name = (student["name"] or "student").replace(" ", "_")
    safe_term = term.replace(" ", "_")
    return exports.pdf_response(f"report_card_{safe_name}_{safe_term}.pdf", pdf)
