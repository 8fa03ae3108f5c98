from datetime import date

from flask import Blueprint

from . import attendance_stats, db, fee_utils, grading
from .auth import current_role, current_student_id, current_user_id, login_required
from .errors import ok

bp = Blueprint("dashboard", __name__, url_prefix="/api/dashboard")


def count(sql, params=()):
    return db.scalar(sql, params) or 0


def admin_stats():
    fees = db.fetch_all("SELECT amount, paid_amount, status, due_date FROM fees")
    totals = fee_utils.totals(fees, date.today())
    return {
        "users": count("SELECT COUNT(*) AS cnt FROM users"),
        "students": count("SELECT COUNT(*) AS cnt FROM students"),
        "teachers": count("SELECT COUNT(*) AS cnt FROM users WHERE role='teacher'"),
        "courses": count("SELECT COUNT(*) AS cnt FROM courses WHERE status <> 'archived'"),
        "fees_collected": totals["total_paid"],
        "fees_pending": totals["total_pending"],
        "fees_overdue": totals["overdue_count"],
    }


def teacher_stats():
    uid = current_user_id()
    return {
        "courses": count("SELECT COUNT(*) AS cnt FROM courses WHERE instructor_id=%s", (uid,)),
        "students": count("""
            SELECT COUNT(DISTINCT e.student_id) AS cnt
            FROM enrollments e JOIN courses c ON c.id = e.course_id
            WHERE c.instructor_id = %s AND e.status = 'enrolled'
        """, (uid,)),
        "today_slots": count("""
            SELECT COUNT(*) AS cnt
            FROM timetable_slots t JOIN courses c ON c.id = t.course_id
            WHERE c.instructor_id = %s AND t.day = %s
        """, (uid, date.today().strftime("%A"))),
    }


def student_stats():
    student_id = current_student_id()
    records = db.fetch_all("SELECT status FROM attendance WHERE student_id=%s", (student_id,))
    grades = db.fetch_all("SELECT letter, weight FROM grades WHERE student_id=%s", (student_id,))
    fees = db.fetch_all(
        "SELECT amount, paid_amount, status, due_date FROM fees WHERE student_id=%s", (student_id,)
    )
    return {
        "attendance_rate": attendance_stats.summarize(records)["attendance_rate"],
        "gpa": grading.gpa(grades),
        "pending_fees": fee_utils.totals(fees, date.today())["total_pending"],
        "unread_messages": count(
            "SELECT COUNT(*) AS cnt FROM messages WHERE recipient_id=%s AND is_read=0 AND is_archived=0",
            (current_user_id(),)
        ),
        "enrolled_courses": count(
            "SELECT COUNT(*) AS cnt FROM enrollments WHERE student_id=%s AND status='enrolled'",
            (student_id,)
        ),
    }


def accountant_stats():
    fees = db.fetch_all("SELECT amount, paid_amount, status, due_date, student_id FROM fees")
    totals = fee_utils.totals(fees, date.today())
    totals["students_with_dues"] = len({
        f["student_id"] for f in fees if fee_utils.outstanding(f) > 0
    })
    return totals


def warden_stats():
    rooms = db.fetch_all("SELECT status, COUNT(*) AS cnt FROM hostel_rooms GROUP BY status")
    return {
        "rooms": {r["status"]: r["cnt"] for r in rooms},
        "pending_leaves": count("SELECT COUNT(*) AS cnt FROM hostel_leaves WHERE status='pending'"),
        "open_complaints": count(
            "SELECT COUNT(*) AS cnt FROM hostel_complaints WHERE status IN ('open','in_progress')"
        ),
    }


STATS = {
    "admin": admin_stats,
    "teacher": teacher_stats,
    "student": student_stats,
    "accountant": accountant_stats,
    "warden": warden_stats,
}


# ---------- DASHBOARD ----------
@bp.route("")
@login_required
def dashboard():
    role = current_role()
    return ok({"role": role, "stats": STATS[role]()})
