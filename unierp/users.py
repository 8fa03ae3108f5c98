from flask import Blueprint, request
from werkzeug.security import generate_password_hash

from . import db
from .auth import ROLES, current_user_id, role_required
from .errors import ApiError, ok, require_fields, text

bp = Blueprint("users", __name__, url_prefix="/api/users")

USER_COLUMNS = ("u.id, u.username, u.email, u.role, u.status, u.first_name, u.last_name, "
                "u.phone, u.created_at")


@bp.route("")
@role_required("admin")
def list_users():
    role = request.args.get("role", "").strip()
    sql = f"""
        SELECT {USER_COLUMNS}, s.id AS student_id, s.student_code
        FROM users u
        LEFT JOIN students s ON s.user_id = u.id
    """
    params = []
    if role:
        sql += " WHERE u.role = %s"
        params.append(role)
    sql += " ORDER BY u.role, u.username"
    return ok(db.fetch_all(sql, params))


@bp.route("/directory")
@role_required(*ROLES)
def directory():
    """Names and emails for composing messages."""
    q = request.args.get("q", "").strip()
    sql = "SELECT id, first_name, last_name, email, role FROM users"
    params = []
    if q:
        sql += " WHERE first_name LIKE %s OR last_name LIKE %s OR email LIKE %s"
        params = [f"%{q}%"] * 3
    sql += " ORDER BY first_name, last_name LIMIT 50"
    return ok(db.fetch_all(sql, params))


@bp.route("", methods=["POST"])
@role_required("admin")
def add_user():
    payload = request.get_json(silent=True) or {}
    require_fields(payload, "username", "email", "password", "role")

    role = payload["role"]
    if role not in ROLES:
        raise ApiError("Invalid role", 400)
    username = text(payload, "username")
    if not isinstance(payload["password"], str) or len(payload["password"]) < 8:
        raise ApiError("Password must be at least 8 characters", 400)
    if role == "student" and not payload.get("student_code"):
        raise ApiError("Validation error", 400, {"missing": ["student_code"]})

    statements = [(
        "INSERT INTO users (username, email, password, role, first_name, last_name, phone) "
        "VALUES (%s,%s,%s,%s,%s,%s,%s)",
        (username, text(payload, "email").lower(),
         generate_password_hash(payload["password"]), role,
         text(payload, "first_name"), text(payload, "last_name"), text(payload, "phone", None))
    )]
    if role == "student":
        statements.append((
            "INSERT INTO students (user_id, student_code, program, current_semester) "
            "VALUES (LAST_INSERT_ID(), %s, %s, %s)",
            (payload["student_code"], payload.get("program"), payload.get("current_semester"))
        ))
    db.execute_many(statements)

    user = db.fetch_one(
        f"SELECT {USER_COLUMNS} FROM users u WHERE u.username=%s",
        (username,)
    )
    return ok(user, "User created", 201)


@bp.route("/<int:user_id>", methods=["DELETE"])
@role_required("admin")
def delete_user(user_id):
    if user_id == current_user_id():
        raise ApiError("You cannot delete your own account", 400)
    _, count = db.execute("DELETE FROM users WHERE id=%s", (user_id,))
    if not count:
        raise ApiError("User not found", 404)
    return ok(message="User deleted")
