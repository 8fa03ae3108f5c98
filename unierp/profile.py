import os
from datetime import datetime

from flask import Blueprint, Response, current_app, request
from werkzeug.security import check_password_hash, generate_password_hash
from werkzeug.utils import secure_filename

from . import db
from .auth import current_user_id, login_required
from .errors import ApiError, ok, require_fields, text

bp = Blueprint("profile", __name__, url_prefix="/api/profile")

EDITABLE = ("first_name", "last_name", "phone", "address", "bio")
PROFILE_SELECT = """
    SELECT u.id, u.username, u.email, u.role, u.first_name, u.last_name, u.phone,
           u.address, u.bio, u.avatar, u.created_at,
           s.student_code, s.program, s.current_semester, s.guardian_name
    FROM users u
    LEFT JOIN students s ON s.user_id = u.id
    WHERE u.id = %s
"""


def allowed_file(filename):
    return "." in filename and filename.rsplit(".", 1)[1].lower() in current_app.config["ALLOWED_EXT"]


def load_profile():
    user = db.fetch_one(PROFILE_SELECT, (current_user_id(),))
    if not user:
        raise ApiError("User not found", 404)
    return user


def remove_avatar_file(name):
    if not name:
        return
    path = os.path.join(current_app.config["UPLOAD_FOLDER"], name)
    if os.path.exists(path):
        os.remove(path)


# ---------- PROFILE MODULE ----------
@bp.route("")
@login_required
def get_profile():
    return ok(load_profile())


@bp.route("", methods=["PUT"])
@login_required
def update_profile():
    payload = request.get_json(silent=True) or {}
    fields = [f for f in EDITABLE if f in payload]
    if not fields:
        raise ApiError("Nothing to update", 400)
    values = {f: text(payload, f) for f in fields}
    for name in ("first_name", "last_name"):
        if name in values and not values[name]:
            raise ApiError(f"{name} cannot be empty", 400)

    db.execute(
        f"UPDATE users SET {', '.join(f + '=%s' for f in fields)} WHERE id=%s",
        [values[f] for f in fields] + [current_user_id()]
    )
    return ok(load_profile(), "Profile updated")


@bp.route("/password", methods=["POST"])
@login_required
def change_password():
    payload = request.get_json(silent=True) or {}
    require_fields(payload, "current_password", "new_password")
    if not all(isinstance(payload[n], str) for n in ("current_password", "new_password")):
        raise ApiError("Passwords must be strings", 400)

    user = db.fetch_one("SELECT id, password FROM users WHERE id=%s", (current_user_id(),))
    if not user or not check_password_hash(user["password"], payload["current_password"]):
        raise ApiError("Current password is incorrect", 400)

    min_len = current_app.config["MIN_PASSWORD_LENGTH"]
    if len(payload["new_password"]) < min_len:
        raise ApiError(f"New password must be at least {min_len} characters", 400)
    if payload.get("confirm_password") not in (None, payload["new_password"]):
        raise ApiError("Passwords do not match", 400)

    db.execute(
        "UPDATE users SET password=%s WHERE id=%s",
        (generate_password_hash(payload["new_password"]), user["id"])
    )
    return ok(message="Password changed")


@bp.route("/avatar", methods=["POST"])
@login_required
def upload_avatar():
    photo = request.files.get("avatar")
    if not photo or not photo.filename:
        raise ApiError("No file uploaded", 400)
    if not allowed_file(photo.filename):
        raise ApiError("Only png, jpg, jpeg or gif images are allowed", 400)

    uid = current_user_id()
    fname = f"user_{uid}_{secure_filename(photo.filename)}"
    photo.save(os.path.join(current_app.config["UPLOAD_FOLDER"], fname))

    old = db.scalar("SELECT avatar FROM users WHERE id=%s", (uid,))
    db.execute("UPDATE users SET avatar=%s WHERE id=%s", (fname, uid))
    if old and old != fname:
        remove_avatar_file(old)
    return ok({"avatar": fname}, "Avatar updated")


@bp.route("/avatar", methods=["DELETE"])
@login_required
def delete_avatar():
    uid = current_user_id()
    old = db.scalar("SELECT avatar FROM users WHERE id=%s", (uid,))
    if not old:
        raise ApiError("No avatar to remove", 404)
    db.execute("UPDATE users SET avatar=NULL WHERE id=%s", (uid,))
    remove_avatar_file(old)
    return ok(message="Avatar removed")


@bp.route("/export")
@login_required
def export_profile():
    data = {
        "profile": load_profile(),
        "exported_at": datetime.now(),
    }
    body = current_app.json.dumps(data, indent=2)
    return Response(
        body,
        mimetype="application/json",
        headers={"Content-Disposition": f"attachment; filename=profile_{current_user_id()}.json"}
    )
