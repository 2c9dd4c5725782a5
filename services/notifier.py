import logging
from concurrent.futures import ThreadPoolExecutor

from flask import current_app

from models import db
from models.notification import Notification
from models.user import User
from utils.emailer import send_email

logger = logging.getLogger(__name__)

# SMTP round trips run here so request handlers and webhooks never wait on them
_executor = ThreadPoolExecutor(max_workers=2, thread_name_prefix="notify-email")


def _deliver(app, user_id, to_email, title, body):
    with app.app_context():
        try:
            ok, err = send_email(to_email, title, body)
            if not ok:
                logger.info("Email to user %s not sent: %s", user_id, err)
        except Exception:
            logger.exception("Email to user %s failed", user_id)


def notify(receiver_id, title: str, body: str, sender_id=None, email: bool = True):
    """
    Fire-and-forget notification: stored in-app and emailed when SMTP is set up.
    Runs after the business change has committed and never raises. With
    EMAIL_ASYNC on, the email goes out on a worker thread.
    """
    if receiver_id is None:
        return
    try:
        db.session.add(Notification(receiver_id=receiver_id, sender_id=sender_id, title=title, message=body))
        db.session.commit()
    except Exception:
        db.session.rollback()
        logger.exception("Storing notification for user %s failed", receiver_id)
        return

    if not email:
        return
    user = db.session.get(User, receiver_id)
    if not user or not user.email:
        return

    app = current_app._get_current_object()
    if app.config.get("EMAIL_ASYNC", True):
        try:
            _executor.submit(_deliver, app, receiver_id, user.email, title, body)
        except RuntimeError:
            # executor shut down at interpreter exit
            logger.warning("Email to user %s dropped, worker stopped", receiver_id)
        return
    _deliver(app, receiver_id, user.email, title, body)
