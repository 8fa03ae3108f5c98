import os

BASE_DIR = os.path.dirname(os.path.abspath(__file__))


class Config:
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key")

    # ---- Database ----
    DB_HOST = os.environ.get("DB_HOST", "127.0.0.1")
    DB_PORT = int(os.environ.get("DB_PORT", "3306"))
    DB_USER = os.environ.get("DB_USER", "erp_user")
    DB_PASS = os.environ.get("DB_PASS", "erp123")
    DB_NAME = os.environ.get("DB_NAME", "uni_erp")

    # ---- Uploads ----
    UPLOAD_FOLDER = os.environ.get("UPLOAD_FOLDER", os.path.join(BASE_DIR, "static", "uploads"))
    ALLOWED_EXT = {"png", "jpg", "jpeg", "gif"}
    MAX_CONTENT_LENGTH = 2 * 1024 * 1024

    # ---- Mail ----
    SMTP_HOST = os.environ.get("SMTP_HOST")
    SMTP_PORT = int(os.environ.get("SMTP_PORT", "587"))
    SMTP_USER = os.environ.get("SMTP_USER")
    SMTP_PASS = os.environ.get("SMTP_PASS")
    SMTP_FROM = os.environ.get("SMTP_FROM", SMTP_USER)

    # ---- Institution (receipts / report cards) ----
    INSTITUTION_NAME = os.environ.get("INSTITUTION_NAME", "University ERP System")
    INSTITUTION_ADDRESS = os.environ.get("INSTITUTION_ADDRESS", "")
    INSTITUTION_PHONE = os.environ.get("INSTITUTION_PHONE", "")
    CURRENCY = os.environ.get("CURRENCY", "INR")

    # ---- Rules ----
    ATTENDANCE_LOCK_DAYS = int(os.environ.get("ATTENDANCE_LOCK_DAYS", "3"))
    LOW_ATTENDANCE_THRESHOLD = float(os.environ.get("LOW_ATTENDANCE_THRESHOLD", "75"))
    OTP_TTL_MINUTES = int(os.environ.get("OTP_TTL_MINUTES", "10"))
    MIN_PASSWORD_LENGTH = 8

    # ---- Logging ----
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
    LOG_FILE = os.environ.get("LOG_FILE")
