from flask import Blueprint, request, jsonify, current_app, g

from models.user import User
from security.password import verify_password
from security.session import create_session, revoke_session, revoke_all_sessions
from security.csrf import issue_csrf_token
from utils.audit import LoggedOut, LoginFailed, LoginSucceeded, log_event
from utils.auth_context import login_required


auth_bp = Blueprint("auth", __name__, url_prefix="/auth")


def _cookie_name():
    return current_app.config.get("AUTH_COOKIE_NAME", "servicebook_session")


def _set_session_cookie(resp, raw_token):
    cfg = current_app.config
    resp.set_cookie(
        _cookie_name(),
        raw_token,
        httponly=True,
        secure=cfg.get("SESSION_COOKIE_SECURE", False),
        samesite=cfg.get("SESSION_COOKIE_SAMESITE", "Lax"),
        max_age=cfg.get("SESSION_LIFETIME_SECONDS", 8 * 60 * 60),
        path="/",
    )
    return resp


@auth_bp.post("/login")
def login():
    data = request.get_json(silent=True) or {}
    email = (data.get("email") or "").strip().lower()
    password = data.get("password") or ""

    user = User.query.filter_by(email=email).first()
    if not user or not verify_password(password, user.password_hash):
        log_event(LoginFailed(email=email[:255]), user_id=user.id if user else None)
        return jsonify(error="Invalid credentials", code="INVALID_CREDENTIALS"), 401
    if not user.is_active:
        log_event(LoginFailed(email=email[:255]), user_id=user.id)
        return jsonify(error="Account disabled", code="ACCOUNT_DISABLED"), 403

    # one live session per user
    revoked = revoke_all_sessions(user.id)
    resp = jsonify(message="Login OK", roles=[r.name for r in user.roles])
    _set_session_cookie(resp, create_session(user.id))
    issue_csrf_token(resp)

    log_event(LoginSucceeded(revoked_sessions=revoked), user_id=user.id)
    return resp, 200


@auth_bp.get("/me")
@login_required
def me():
    return jsonify(
        id=g.user.id,
        email=g.user.email,
        full_name=g.user.full_name,
        roles=[r.name for r in g.user.roles],
        availability=g.user.availability.value,
    ), 200


@auth_bp.post("/logout")
@login_required
def logout():
    revoke_session(request.cookies.get(_cookie_name()))
    log_event(LoggedOut(), user_id=g.user.id)

    resp = jsonify(message="Logged out")
    resp.delete_cookie(_cookie_name(), path="/")
    return resp, 200
