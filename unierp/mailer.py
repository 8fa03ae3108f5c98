import logging
import smtplib
from email.message import EmailMessage

from flask import current_app

log = logging.getLogger(__name__)


def send_email(to_email: str, subject: str, body: str):
    """
    Simple SMTP sender using the SMTP_* settings.
    Raises RuntimeError when SMTP is not configured.
    """
    cfg = current_app.config
    host = cfg.get("SMTP_HOST")
    user = cfg.get("SMTP_USER")
    password = cfg.get("SMTP_PASS")

    if not (host and user and password):
        raise RuntimeError("SMTP not configured. Set SMTP_HOST/SMTP_USER/SMTP_PASS env vars.")

    msg = EmailMessage()
    msg["Subject"] = subject
    msg["From"] = cfg.get("SMTP_FROM") or user
    msg["To"] = to_email
    msg.set_content(body)

    with smtplib.SMTP(host, cfg.get("SMTP_PORT", 587)) as s:
        s.starttls()
        s.login(user, password)
        s.send_message(msg)
    log.info("email sent to %s: %s", to_email, subject)


def otp_body(code, ttl_minutes):
    return (
        f"Your admin login code is {code}.\n\n"
        f"It expires in {ttl_minutes} minutes. If you did not request it, ignore this email."
    )


def approval_body(name, approved, reason=None):
    if approved:
        return f"Dear {name},\n\nYour account has been approved. You can now log in.\n\nThanks."
    body = f"Dear {name},\n\nYour account registration was not approved."
    if reason:
        body += f" Reason: {reason}"
    return body + "\n\nThanks."


def fee_reminder_body(name, total_due, currency):
    return (
        f"Dear {name},\n\nOur records show outstanding fees of {currency} {total_due:.2f}. "
        "Please pay at your earliest convenience.\n\nThanks."
    )


def low_attendance_body(name, course_code, rate, threshold):
    return (
        f"Dear {name},\n\nYour attendance in {course_code} is {rate:.1f}%, "
        f"below the required {threshold:.0f}%. Please meet your instructor.\n\nThanks."
    )


def send_bulk(items):
    """Send (email, subject, body, key) tuples. Returns (sent, failed)."""
    sent = 0
    failed = []
    for email, subject, body, key in items:
        if not email:
            failed.append({"id": key, "error": "no email"})
            continue
        try:
            send_email(email, subject, body)
            sent += 1
        except (RuntimeError, smtplib.SMTPException, OSError) as e:
            log.warning("email to %s failed: %s", email, e)
            failed.append({"id": key, "error": str(e)})
    return sent, failed
