from __future__ import annotations

from collections import defaultdict
from datetime import datetime, timedelta

from flask import Blueprint, Response, current_app, g, request

from app.tracker.errors import ApiError
from app.tracker.rbac import require_login
from app.tracker.routes import error, request_api, success
from app.tracker.utils import utcnow
from app.tracker.validators import request_body, validate_new_password, validate_string, validate_username

bp = Blueprint("auth", __name__)
_login_attempts: dict[str, list[datetime]] = defaultdict(list)
_LOGIN_RATE_LIMIT = 5
_LOGIN_RATE_WINDOW = 300  # seconds


def _check_rate_limit(ip: str) -> bool:
    now = utcnow()
    cutoff = now - timedelta(seconds=_LOGIN_RATE_WINDOW)
    recent = [t for t in _login_attempts.get(ip, ()) if t > cutoff]
    if recent:
        _login_attempts[ip] = recent
    else:
        _login_attempts.pop(ip, None)
    return len(recent) >= _LOGIN_RATE_LIMIT


def _record_attempt(ip: str) -> None:
    _login_attempts[ip].append(utcnow())


def _set_session_cookie(response: Response, session) -> None:
    response.set_cookie(
        current_app.config["LOGIN_COOKIE_NAME"],
        session.id,
        expires=session.expires,
        httponly=True,
        secure=bool(current_app.config.get("LOGIN_COOKIE_SECURE")),
        samesite="Lax",
    )


def _clear_session_cookie(response: Response) -> None:
    response.delete_cookie(current_app.config["LOGIN_COOKIE_NAME"], httponly=True, samesite="Lax")


def load_current_user() -> None:
    """Loads g.current_login / g.login_session from the session cookie."""
    g.current_login = None
    g.login_session = None
    if request.path.startswith("/health"):
        return

    session_id = request.cookies.get(current_app.config["LOGIN_COOKIE_NAME"])
    if not session_id:
        return

    api = request_api()
    session = api.sessions.from_id(session_id)
    if session is None:
        return
    login = session.login()
    if login is None:
        return
    g.login_session = session
    g.current_login = login


def renew_session_cookie(response: Response) -> Response:
    """Swap a session past half its lifetime for a fresh one."""
    session = getattr(g, "login_session", None)
    if session is None or getattr(g, "session_replaced", False) or not session.should_renew():
        return response

    renewed = session.renew()
    if renewed is None:
        return response
    session.invalidate()
    _set_session_cookie(response, renewed)
    return response


@bp.post("/login")
def login_post():
    ip = request.remote_addr or "unknown"
    if _check_rate_limit(ip):
        return error("rate-limited", "Too many login attempts. Please wait 5 minutes.", 429)

    body = request_body(request)
    username = validate_string(body.get("username"), "username").strip()
    password = validate_string(body.get("password"), "password")

    _record_attempt(ip)
    api = request_api()
    login = api.logins.from_credentials(username, password)
    if login is None:
        current_app.logger.info("Failed login for %r from %s", username, ip)
        return error("invalid-credentials", "Invalid credentials.", 401)

    _login_attempts.pop(ip, None)
    session = api.sessions.create(login)
    old_session = getattr(g, "login_session", None)
    if old_session is not None:
        old_session.invalidate()
    g.session_replaced = True

    response = current_app.make_response(success(login.to_json()))
    _set_session_cookie(response, session)
    return response


@bp.post("/logout")
def logout():
    session = getattr(g, "login_session", None)
    if session is not None:
        session.invalidate()
    g.session_replaced = True

    response = current_app.make_response(success())
    _clear_session_cookie(response)
    return response


@bp.get("/me")
@require_login
def me():
    return success(g.current_login.to_json())


@bp.patch("/me")
@require_login
def update_me():
    body = request_body(request)
    login = g.current_login

    if "password" in body:
        current = validate_string(body.get("currentPassword"), "current password")
        if not login.verify_password(current):
            raise ApiError("Current password is incorrect.")
        login.update_password(validate_new_password(body.get("password"), body.get("passwordRepeat")))
    if "username" in body:
        login.update_username(validate_username(body.get("username")))

    return success(login.to_json())
