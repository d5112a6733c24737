"""
Domain error taxonomy.

Services raise these; the HTTP layer maps them to status codes and the
``{success: false, error}`` envelope in one exception handler.
"""
from __future__ import annotations

from typing import Optional


class ServiceError(Exception):
    """Base class for failures surfaced to API callers."""

    status_code: int = 500
    default_message: str = "Internal server error"

    def __init__(self, message: Optional[str] = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationError(ServiceError):
    status_code = 400
    default_message = "Validation failed"


class InvalidDueDate(ServiceError):
    status_code = 400
    default_message = "due date cannot be in the past"


class CategoryNotFound(ServiceError):
    """A task refers to a category the caller does not own (bad request)."""

    status_code = 400
    default_message = "category not found"


class NotFound(ServiceError):
    """Missing row, or a row owned by someone else. Both look the same."""

    status_code = 404
    default_message = "resource not found"


class TaskNotFound(NotFound):
    default_message = "task not found"


class CategoryMissing(NotFound):
    default_message = "category not found"


class UserNotFound(NotFound):
    default_message = "user not found"


class Conflict(ServiceError):
    status_code = 409
    default_message = "duplicate entry"


class Unauthorized(ServiceError):
    status_code = 401
    default_message = "unauthorized"


class InvalidCredentials(Unauthorized):
    default_message = "invalid credentials"


class InvalidToken(Unauthorized):
    default_message = "invalid token"


class ExpiredToken(Unauthorized):
    default_message = "token has expired"


class ConfigError(ServiceError):
    default_message = "server is not configured"


class InternalError(ServiceError):
    pass
