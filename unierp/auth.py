import logging
import re
import secrets
import smtplib
from datetime import datetime, timedelta
from functools import wraps

import bcrypt
from flask import Blueprint, abort, current_app, request, session
from werkzeug.security import check_password_hash, generate_password_hash

from . import db, mailer
from .errors import ApiError, ok, require_fields, text

log = logging.getLogger(__name__)

bp = Blueprint("auth", __name__, url_prefix="/api/auth")

ROLES = ("admin", "teacher", "student", "accountant", "warden")
STAFF = ("admin", "teacher")
OTP_RE = re.compile(r"^\d{6}$")
EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
SELF_REGISTER_ROLES = ("student", "teacher")


# ---------- SESSION HELPERS ----------
def login_required(view):
    @wraps(view)
    def wrapped(*args, **kwargs):
        if "user_id" not in session:
            abort(401, description="Login required")
        return view(*args, **kwargs)

    return wrapped


def role_required(*roles):
    def decorator(view):
        @wraps(view)
        def wrapped(*args, **kwargs):
            if "user_id" not in session:
                abort(401, description="Login required")
            if session.get("role") not in roles:
                abort(403, description="Insufficient permissions")
            return view(*args, **kwargs)

        return wrapped

    return decorator


def current_user_id():
    return session.get("user_id")


def current_role():
    return session.get("role")


def is_staff():
    return session.get("role") in STAFF


def current_student_id():
    """The logged-in student's id, or 403 for any other role."""
    student_id = session.get("student_id")
    if session.get("role") != "student" or not student_id:
        abort(403, description="Student access only")
    return student_id


def public_user(user):
    return {
        "id": user["id"],
        "username": user["username"],
        "email": user["email"],
        "role": user["role"],
        "first_name": user.get("first_name"),
        "last_name": user.get("last_name"),
    }


def check_approved(user):
    if user["status"] == "pending":
        raise ApiError("Your account is awaiting admin approval", 403, {"status": "pending"})
    if user["status"] == "rejected":
        raise ApiError("Your registration was rejected", 403,
                       {"status": "rejected", "reason": user.get("rejection_reason")})


def start_session(user):
    check_approved(user)
    session.clear()
    session["user"] = user["username"]
    session["role"] = user["role"]
    session["user_id"] = user["id"]

    if user["role"] == "student":
        student = db.fetch_one("SELECT id FROM students WHERE user_id=%s", (user["id"],))
        if not student:
            session.clear()
            raise ApiError("Student profile not linked. Contact admin.", 403)
        session["student_id"] = student["id"]


# ---------- AUTH / LOGIN ----------
@bp.route("/login", methods=["POST"])
def login():
    payload = request.get_json(silent=True) or {}
    username = text(payload, "username") or text(payload, "email")
    password = payload.get("password") or ""
    if not username or not password or not isinstance(password, str):
        raise ApiError("Username and password are required", 400)

    user = db.fetch_one(
        "SELECT * FROM users WHERE username=%s OR email=%s",
        (username, username.lower())
    )
    if not user or not check_password_hash(user["password"], password):
        log.warning("failed login for %s", username)
        raise ApiError("Invalid username or password", 401)

    start_session(user)
    log.info("user %s logged in", user["username"])
    return ok(public_user(user), "Logged in")


@bp.route("/logout", methods=["POST"])
def logout():
    session.clear()
    return ok(message="Logged out")


@bp.route("/me")
@login_required
def me():
    user = db.fetch_one("SELECT * FROM users WHERE id=%s", (current_user_id(),))
    if not user:
        session.clear()
        abort(401, description="Login required")
    data = public_user(user)
    data["student_id"] = session.get("student_id")
    return ok(data)


# ---------- SELF REGISTRATION ----------
@bp.route("/register", methods=["POST"])
def register():
    """Create an account that waits for approval before it can log in."""
    payload = request.get_json(silent=True) or {}
    require_fields(payload, "username", "email", "password", "first_name", "last_name")

    username = text(payload, "username")
    email = text(payload, "email").lower()
    role = payload.get("role", "student")
    if role not in SELF_REGISTER_ROLES:
        raise ApiError("Invalid role", 400)
    if not EMAIL_RE.match(email):
        raise ApiError("Please use a valid email address", 400)
    password = payload["password"]
    min_len = current_app.config["MIN_PASSWORD_LENGTH"]
    if not isinstance(password, str) or len(password) < min_len:
        raise ApiError(f"Password must be at least {min_len} characters", 400)
    student_code = text(payload, "student_code")
    if role == "student" and not student_code:
        raise ApiError("Validation error", 400, {"missing": ["student_code"]})

    if db.fetch_one("SELECT id FROM users WHERE username=%s OR email=%s", (username, email)):
        raise ApiError("User already exists with this username or email", 409)

    statements = [(
        "INSERT INTO users (username, email, password, role, first_name, last_name, status) "
        "VALUES (%s,%s,%s,%s,%s,%s,'pending')",
        (username, email, generate_password_hash(password), role,
         text(payload, "first_name"), text(payload, "last_name"))
    )]
    if role == "student":
        statements.append((
            "INSERT INTO students (user_id, student_code, program, current_semester) "
            "VALUES (LAST_INSERT_ID(), %s, %s, %s)",
            (student_code, text(payload, "program", None), text(payload, "current_semester", None))
        ))
    db.execute_many(statements)
    log.info("registration pending approval: %s (%s)", username, role)

    return ok({"username": username, "email": email, "role": role, "status": "pending"},
              "Registration received. Your account is awaiting approval.", 201)


# ---------- ADMIN OTP ----------
def hash_otp(code):
    return bcrypt.hashpw(code.encode(), bcrypt.gensalt()).decode()


def otp_matches(code, hashed):
    return bcrypt.checkpw(code.encode(), hashed.encode())


def generate_otp():
    return str(100000 + secrets.randbelow(900000))


@bp.route("/send-otp", methods=["POST"])
def send_otp():
    payload = request.get_json(silent=True) or {}
    require_fields(payload, "email")
    email = text(payload, "email").lower()

    user = db.fetch_one("SELECT id, role FROM users WHERE email=%s", (email,))
    if not user or user["role"] != "admin":
        raise ApiError("OTP login is only available for admin accounts", 403)

    ttl = current_app.config["OTP_TTL_MINUTES"]
    code = generate_otp()
    db.execute("UPDATE admin_otps SET used=1 WHERE email=%s AND used=0", (email,))
    otp_id, _ = db.execute(
        "INSERT INTO admin_otps (email, otp_hash, expires_at) VALUES (%s,%s,%s)",
        (email, hash_otp(code), datetime.now() + timedelta(minutes=ttl))
    )

    try:
        mailer.send_email(email, "Your admin login code", mailer.otp_body(code, ttl))
    except (RuntimeError, smtplib.SMTPException, OSError) as e:
        log.error("OTP email to %s failed: %s", email, e)
        db.execute("DELETE FROM admin_otps WHERE id=%s", (otp_id,))
        raise ApiError("Failed to send OTP email. Please try again.", 502)

    log.info("OTP issued for %s", email)
    return ok({"expires_in_minutes": ttl}, "OTP sent successfully to your email")


@bp.route("/verify-otp", methods=["POST"])
def verify_otp():
    payload = request.get_json(silent=True) or {}
    email = text(payload, "email").lower()
    code = str(payload.get("otp") or "").strip()
    if not email or not OTP_RE.match(code):
        raise ApiError("Invalid OTP format", 400)

    row = db.fetch_one(
        "SELECT id, otp_hash FROM admin_otps "
        "WHERE email=%s AND used=0 AND expires_at > %s ORDER BY id DESC LIMIT 1",
        (email, datetime.now())
    )
    if not row or not otp_matches(code, row["otp_hash"]):
        log.warning("invalid OTP attempt for %s", email)
        raise ApiError("Invalid or expired OTP", 401)

    db.execute("UPDATE admin_otps SET used=1 WHERE id=%s", (row["id"],))
    user = db.fetch_one("SELECT * FROM users WHERE email=%s", (email,))
    if not user or user["role"] != "admin":
        raise ApiError("Invalid or expired OTP", 401)

    start_session(user)
    return ok(public_user(user), "Logged in")
