from collections.abc import Callable
from functools import wraps
from typing import Any

from flask import g

from app.tracker.routes import error


def require_login(fn: Callable[..., Any]) -> Callable[..., Any]:
    @wraps(fn)
    def wrapped(*args: Any, **kwargs: Any):
        if getattr(g, "current_login", None) is None:
            return error("not-logged-in", "You must be logged in.", 401)
        return fn(*args, **kwargs)

    return wrapped


def require_admin(fn: Callable[..., Any]) -> Callable[..., Any]:
    @wraps(fn)
    def wrapped(*args: Any, **kwargs: Any):
        login = getattr(g, "current_login", None)
        if login is None:
            return error("not-logged-in", "You must be logged in.", 401)
        # Authenticated but not an admin -> 403
        if not login.is_admin:
            return error("forbidden", "Only admins may do this.", 403)
        return fn(*args, **kwargs)

    return wrapped
