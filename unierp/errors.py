from flask import jsonify
from mysql.connector import Error, IntegrityError
from werkzeug.exceptions import HTTPException


class ApiError(Exception):
    """Error raised inside a request and returned to the client as JSON."""

    def __init__(self, message, status=400, details=None):
        super().__init__(message)
        self.message = message
        self.status = status
        self.details = details


def ok(data=None, message=None, status=200):
    body = {"success": True}
    if data is not None:
        body["data"] = data
    if message:
        body["message"] = message
    return jsonify(body), status


def fail(message, status, details=None):
    body = {"success": False, "error": message}
    if details:
        body["details"] = details
    return jsonify(body), status


def require_fields(payload, *names):
    missing = [n for n in names if payload.get(n) in (None, "")]
    if missing:
        raise ApiError("Validation error", 400, {"missing": missing})


def text(payload, name, default=""):
    """Stripped string field; anything but a string or null is a 400."""
    value = payload.get(name)
    if value is None:
        return default
    if not isinstance(value, str):
        raise ApiError(f"{name} must be a string", 400)
    return value.strip()


def integer(value, name):
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ApiError(f"{name} must be an integer", 400)


def register_error_handlers(app):

    @app.errorhandler(ApiError)
    def handle_api_error(e):
        return fail(e.message, e.status, e.details)

    @app.errorhandler(HTTPException)
    def handle_http_error(e):
        return fail(e.description, e.code)

    @app.errorhandler(IntegrityError)
    def handle_integrity_error(e):
        app.logger.warning("integrity error: %s", e)
        return fail("Duplicate or conflicting record", 409)

    @app.errorhandler(Error)
    def handle_db_error(e):
        app.logger.error("database error: %r", e)
        return fail("Database error", 500)
