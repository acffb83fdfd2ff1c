# backend/errors.py
"""
Application errors.

Every error a service raises on purpose is an HTTPException, so the global
handler in app.py renders it as {"error": description} with its status code.
Anything else reaching the handler is an unexpected 500.
"""
from __future__ import annotations

from werkzeug.exceptions import HTTPException

__all__ = [
    "APIError",
    "ValidationError",
    "AuthError",
    "Forbidden",
    "NotFoundError",
    "ConflictError",
    "OperationFailed",
]


class APIError(HTTPException):
    code = 400
    description = "Bad request"

    def __init__(self, description: str | None = None):
        super().__init__(description=description or self.description)

    def __str__(self) -> str:
        return self.description


class ValidationError(APIError):
    """Bad input shape: malformed import file, out-of-range settings, bad OTP."""
    code = 400
    description = "Validation failed"


class AuthError(APIError):
    code = 401
    description = "Invalid credentials"


class Forbidden(APIError):
    code = 403
    description = "Insufficient permissions"


class NotFoundError(APIError):
    code = 404
    description = "Not found"


class ConflictError(APIError):
    code = 409
    description = "Already exists"


class OperationFailed(APIError):
    """Filesystem / database failure, wrapped with the failing operation's name."""
    code = 500
    description = "Operation failed"

    @classmethod
    def wrap(cls, operation: str, exc: BaseException) -> "OperationFailed":
        return cls(f"{operation}: {exc}")
