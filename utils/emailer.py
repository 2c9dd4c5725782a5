import logging
import smtplib
from email.message import EmailMessage

from flask import current_app

logger = logging.getLogger(__name__)


def send_email(to_email: str, subject: str, body: str):
    """Returns (sent, error). Never raises; booking notifications are best-effort."""
    cfg = current_app.config
    host = cfg.get("SMTP_HOST")
    username = cfg.get("SMTP_USERNAME")
    from_email = cfg.get("SMTP_FROM_EMAIL") or username

    if not host or not from_email:
        return False, "Email not configured"

    msg = EmailMessage()
    msg["From"] = from_email
    msg["To"] = to_email
    msg["Subject"] = f"{cfg.get('EMAIL_SUBJECT_PREFIX', '')}{subject}"
    msg.set_content(body)

    try:
        with smtplib.SMTP(host, cfg.get("SMTP_PORT", 587), timeout=cfg.get("SMTP_TIMEOUT_SECONDS", 10)) as server:
            if cfg.get("SMTP_USE_TLS", True):
                server.starttls()
            if username and cfg.get("SMTP_PASSWORD"):
                server.login(username, cfg.get("SMTP_PASSWORD"))
            server.send_message(msg)
    except (smtplib.SMTPException, OSError) as exc:
        logger.warning("SMTP delivery to %s failed: %s", to_email, exc)
        return False, str(exc)
    return True, None
