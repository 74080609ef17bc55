"""
Application error types.

Services raise these; HTML views catch them and flash the message, JSON API
views let them propagate to the app-level handler registered in create_app().
"""
from __future__ import annotations


class AppError(Exception):
    status_code = 500
    code = "APP_ERROR"

    def __init__(self, message: str = "An unexpected error occurred", *, status_code: int | None = None, code: str | None = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        if code is not None:
            self.code = code

    def to_dict(self) -> dict:
        return {"error": self.message, "code": self.code}


class ValidationError(AppError):
    status_code = 400
    code = "VALIDATION_ERROR"

    def __init__(self, message: str = "Validation failed", *, errors: list[str] | None = None):
        super().__init__(message)
        self.errors = errors or [message]

    def to_dict(self) -> dict:
        d = super().to_dict()
        if len(self.errors) > 1:
            d["errors"] = list(self.errors)
        return d


class AuthError(AppError):
    status_code = 401
    code = "AUTH_ERROR"

    def __init__(self, message: str = "Authentication required"):
        super().__init__(message)


class ForbiddenError(AppError):
    status_code = 403
    code = "PERMISSION_ERROR"

    def __init__(self, message: str = "Insufficient permissions"):
        super().__init__(message)


class NotFoundError(AppError):
    status_code = 404
    code = "NOT_FOUND"

    def __init__(self, message: str = "Not found"):
        super().__init__(message)


class ConflictError(AppError):
    status_code = 409
    code = "CONFLICT"


class LockedError(ConflictError):
    code = "LOCKED"
