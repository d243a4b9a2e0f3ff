from __future__ import annotations

import re
from datetime import date
from urllib.parse import urlsplit, urlunsplit

from flask import Request

from app.tracker.errors import ApiError

MAX_STRING_LENGTH = 1024

_NAME_PATTERN = re.compile(r"^[a-züöäéèëï][a-züöäéèëï\d\-/()* .]+$", re.IGNORECASE)
_USERNAME_PATTERN = re.compile(r"^\w+$")


def is_empty(value: object) -> bool:
    return value is None or (isinstance(value, str) and value.strip() == "")


def validate_string(value: object, label: str) -> str:
    if not isinstance(value, str):
        raise ApiError(f"Expected {label} to be a string, got {type(value).__name__}.")
    if len(value) > MAX_STRING_LENGTH:
        raise ApiError(f"{label} is too long.")
    return value


def validate_name(value: object, label: str, *, min_length: int = 4) -> str:
    name = validate_string(value, label).strip()
    if len(name) < min_length:
        raise ApiError(f"{label} must be at least {min_length} characters long.")
    if not _NAME_PATTERN.match(name):
        raise ApiError(f"{label} must contain only latin letters.")
    return name


def validate_text(value: object, label: str, *, min_length: int = 1) -> str:
    text = validate_string(value, label).strip()
    if len(text) < min_length:
        raise ApiError(f"{label} is too short. Must be at least {min_length} characters.")
    return text


def validate_website(value: object, label: str = "website") -> str:
    """http(s) URL with fragment and credentials stripped."""
    url = validate_string(value, label).strip()
    try:
        parts = urlsplit(url)
        port = parts.port
    except ValueError as e:
        raise ApiError(f"Cannot parse {label} as url.") from e
    if parts.scheme not in ("http", "https") or not parts.hostname:
        raise ApiError(f"{label} must be an http: or https: url.")

    netloc = parts.hostname
    if ":" in netloc:
        netloc = f"[{netloc}]"
    if port is not None:
        netloc = f"{netloc}:{port}"
    return urlunsplit((parts.scheme, netloc, parts.path or "/", parts.query, ""))


def validate_optional_website(value: object, label: str = "website") -> str | None:
    if is_empty(value):
        return None
    return validate_website(value, label)


def validate_date(value: object, label: str) -> date:
    raw = validate_string(value, label).strip()
    try:
        parsed = date.fromisoformat(raw)
    except ValueError as e:
        raise ApiError(f"Invalid date for {label}: {raw!r}. Expected YYYY-MM-DD.") from e
    if parsed.isoformat() != raw:
        raise ApiError(f'Normalising {label} "{raw}" returned "{parsed.isoformat()}". Expected both to be equal.')
    return parsed


def validate_optional_date(value: object, label: str) -> date | None:
    if is_empty(value):
        return None
    return validate_date(value, label)


def validate_username(value: object) -> str:
    username = validate_string(value, "username").strip()
    if len(username) < 4:
        raise ApiError("Username is too short.")
    if not _USERNAME_PATTERN.match(username):
        raise ApiError("Username must only contain letters, digits or underscore.")
    return username


def validate_new_password(password: object, password_repeat: object) -> str:
    password = validate_string(password, "password")
    password_repeat = validate_string(password_repeat, "repeated password")
    if password != password_repeat:
        raise ApiError("New passwords must match.")
    if len(password) < 10:
        raise ApiError("Password must be at least 10 characters long.")
    for pattern in (r"\d", r"[a-z]", r"[A-Z]", r"[^a-zA-Z\d]"):
        if not re.search(pattern, password):
            raise ApiError("Password must contain lowercase and uppercase letters, digits, and special characters.")
    return password


def validate_file(value: object, label: str) -> bytes | str:
    """An upload's bytes, or a URL to fetch it from."""
    if isinstance(value, bytes):
        if not value:
            raise ApiError(f"{label} is required, but was empty.")
        return value
    if is_empty(value):
        raise ApiError(f"{label} is required.")
    return validate_website(value, label)


def validate_optional_file(value: object, label: str) -> bytes | str | None:
    if is_empty(value) or value == b"":
        return None
    return validate_file(value, label)


def request_body(request: Request, file_keys: tuple[str, ...] = ()) -> dict:
    """
    JSON body, or form fields merged with the named file uploads (as bytes).
    Non-empty uploads win over a same-named form field.
    """
    if request.is_json:
        body = request.get_json(silent=True)
        if not isinstance(body, dict):
            raise ApiError(f"Invalid type of body. Expected object, got {type(body).__name__}.")
        return dict(body)

    body: dict = request.form.to_dict()
    for key in file_keys:
        upload = request.files.get(key)
        if upload is None:
            continue
        data = upload.read()
        if data:
            body[key] = data
    return body


def reject_unknown_keys(body: dict, allowed: tuple[str, ...]) -> None:
    for key in body:
        if key not in allowed:
            raise ApiError(f'Unknown key "{key}".')
