from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    VALIDATION = "validation"
    CONFLICT = "conflict"
    NOT_FOUND = "not-found"
    EXTERNAL = "external"


HTTP_STATUS = {
    ErrorKind.VALIDATION: 400,
    ErrorKind.CONFLICT: 409,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.EXTERNAL: 400,
}


class ApiError(RuntimeError):
    """
    Domain-layer error carrying a human-readable message.
    The HTTP layer maps `kind` to a status code and the JSON error envelope.
    """

    def __init__(self, message: str, *, kind: ErrorKind = ErrorKind.VALIDATION) -> None:
        super().__init__(message)
        self.message = message
        self.kind = kind

    @property
    def http_status(self) -> int:
        return HTTP_STATUS[self.kind]
