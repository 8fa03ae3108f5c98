import logging
import smtplib
from datetime import datetime

from flask import Blueprint, abort, request

from . import db, mailer
from .auth import STAFF, current_role, current_user_id, role_required
from .errors import ApiError, ok, text

log = logging.getLogger(__name__)

bp = Blueprint("approvals", __name__, url_prefix="/api/approvals")

PENDING_SELECT = """
    SELECT u.id, u.username, u.email, u.role, u.first_name, u.last_name, u.status, u.created_at,
           s.student_code, s.program
    FROM users u
    LEFT JOIN students s ON s.user_id = u.id
    WHERE u.status = 'pending'
"""


def reviewable_roles():
    # teachers review student sign-ups only
    if current_role() == "teacher":
        return ("student",)
    return ("student", "teacher")


def load_pending(user_id):
    user = db.fetch_one(
        "SELECT id, username, email, role, first_name, last_name, status FROM users WHERE id=%s",
        (user_id,)
    )
    if not user:
        raise ApiError("User not found", 404)
    if user["status"] != "pending":
        raise ApiError("User is not pending approval", 400)
    if user["role"] not in reviewable_roles():
        abort(403, description="Insufficient permissions to review this user")
    return user


def notify(user, approved, reason=None):
    name = f"{user['first_name']} {user['last_name']}".strip() or user["username"]
    try:
        mailer.send_email(user["email"], "Your account registration",
                          mailer.approval_body(name, approved, reason))
    except (RuntimeError, smtplib.SMTPException, OSError) as e:
        log.warning("approval email to %s failed: %s", user["email"], e)


def review(user_id, status, reason=None):
    user = load_pending(user_id)
    reviewed_at = datetime.now()
    _, count = db.execute(
        "UPDATE users SET status=%s, reviewed_by=%s, reviewed_at=%s, rejection_reason=%s "
        "WHERE id=%s AND status='pending'",
        (status, current_user_id(), reviewed_at, reason, user_id)
    )
    if not count:
        raise ApiError("User is not pending approval", 409)
    log.info("user %s %s by %s", user["username"], status, current_user_id())
    notify(user, status == "approved", reason)
    return {
        "id": user_id,
        "username": user["username"],
        "email": user["email"],
        "role": user["role"],
        "status": status,
        "reviewed_at": reviewed_at,
        "rejection_reason": reason,
    }


# ---------- REGISTRATION APPROVALS ----------
@bp.route("/pending")
@role_required(*STAFF)
def pending_users():
    roles = reviewable_roles()
    return ok(db.fetch_all(
        PENDING_SELECT + f" AND u.role IN ({db.placeholders(roles)}) ORDER BY u.created_at",
        roles
    ))


@bp.route("/<int:user_id>/approve", methods=["POST"])
@role_required(*STAFF)
def approve_user(user_id):
    return ok(review(user_id, "approved"), "User approved successfully")


@bp.route("/<int:user_id>/reject", methods=["POST"])
@role_required(*STAFF)
def reject_user(user_id):
    payload = request.get_json(silent=True) or {}
    reason = text(payload, "reason", None) or None
    return ok(review(user_id, "rejected", reason), "User rejected successfully")


@bp.route("/status")
def approval_status():
    """Public lookup so a new user can check on their registration."""
    email = request.args.get("email", "").strip().lower()
    if not email:
        raise ApiError("email is required", 400)
    user = db.fetch_one(
        "SELECT username, email, role, status, reviewed_at, rejection_reason FROM users WHERE email=%s",
        (email,)
    )
    if not user:
        raise ApiError("User not found", 404)
    return ok(user)
