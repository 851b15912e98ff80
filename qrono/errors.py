"""
Error taxonomy shared by the auth and resource services.

Every error maps to one HTTP status and a machine-readable code; the app
renders them as ``{"detail": message, "code": code}``.
"""

from __future__ import annotations


class QronoError(Exception):
    status_code: int = 500
    code: str = "server_error"
    message: str = "Server Error"

    def __init__(self, message: str | None = None, *, code: str | None = None):
        super().__init__(message or self.message)
        if message is not None:
            self.message = message
        if code is not None:
            self.code = code


class InvalidInput(QronoError):
    status_code = 400
    code = "invalid_input"
    message = "Invalid input"


class Unauthorized(QronoError):
    status_code = 401
    code = "invalid_token"
    message = "Token is not valid"


class NotFound(QronoError):
    """Absent, or owned by someone else. The two are deliberately identical."""

    status_code = 404
    code = "not_found"
    message = "Not found"


class Conflict(QronoError):
    status_code = 409
    code = "conflict"
    message = "Already exists"


class InvalidCredentials(QronoError):
    status_code = 400
    code = "invalid_credentials"
    message = "Invalid credentials"


class ServerError(QronoError):
    pass


class UpstreamStorageFailure(ServerError):
    """Blob store write failed. Rendered to the caller as a plain server error."""


def no_token() -> Unauthorized:
    return Unauthorized("No token, authorization denied", code="no_token")


def invalid_token() -> Unauthorized:
    return Unauthorized("Token is not valid", code="invalid_token")
