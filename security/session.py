import hashlib
import secrets
from datetime import timedelta
from flask import request, current_app

from models import db
from models.session import Session
from utils.clock import utcnow


def _hash_token(token: str) -> str:
    # tokens are random, a plain digest is enough
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def _client_meta():
    ip = request.headers.get("X-Forwarded-For", request.remote_addr)
    user_agent = (request.headers.get("User-Agent") or "")[:255]
    return ip, user_agent


def create_session(user_id: int) -> str:
    """
    Creates a server-side session and returns the RAW token (to set as cookie).
    Only the hash is stored in DB.
    """
    raw_token = secrets.token_urlsafe(32)
    lifetime = timedelta(seconds=current_app.config.get("SESSION_LIFETIME_SECONDS", 28800))
    now = utcnow()
    ip, user_agent = _client_meta()

    db.session.add(
        Session(
            user_id=user_id,
            token_hash=_hash_token(raw_token),
            created_at=now,
            last_seen_at=now,
            expires_at=now + lifetime,
            ip=ip,
            user_agent=user_agent,
        )
    )
    db.session.commit()
    return raw_token


def _is_stale(sess: Session, now) -> bool:
    if sess.expires_at <= now:
        return True
    idle = timedelta(seconds=current_app.config.get("IDLE_TIMEOUT_SECONDS", 1200))
    return (sess.last_seen_at or sess.created_at) + idle <= now


def get_session_from_request(now=None):
    cookie_name = current_app.config.get("AUTH_COOKIE_NAME", "servicebook_session")
    raw_token = request.cookies.get(cookie_name)
    if not raw_token:
        return None

    now = now or utcnow()
    sess = Session.query.filter_by(token_hash=_hash_token(raw_token), revoked=False).first()
    if not sess:
        return None

    if _is_stale(sess, now):
        sess.revoked = True
        db.session.commit()
        return None

    # every commit takes the SQLite write lock, so only touch now and then
    touch_every = timedelta(seconds=current_app.config.get("SESSION_TOUCH_SECONDS", 60))
    if sess.last_seen_at is None or now - sess.last_seen_at >= touch_every:
        sess.last_seen_at = now
        db.session.commit()
    return sess


def revoke_session(raw_token: str) -> bool:
    if not raw_token:
        return False
    sess = Session.query.filter_by(token_hash=_hash_token(raw_token)).first()
    if not sess:
        return False
    sess.revoked = True
    db.session.commit()
    return True


def revoke_all_sessions(user_id: int) -> int:
    """Revoke every live session of a user; returns how many were live."""
    count = (
        Session.query
        .filter_by(user_id=user_id, revoked=False)
        .update({Session.revoked: True}, synchronize_session=False)
    )
    db.session.commit()
    return count
