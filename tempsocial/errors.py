"""Domain error taxonomy shared by services, routes and the relay"""

from typing import Any


class AppError(Exception):
    """Base class for errors that map onto a client-visible response"""

    status_code: int = 500

    def __init__(self, message: str, **extra: Any):
        super().__init__(message)
        self.message = message
        self.extra = extra

    def to_dict(self) -> dict[str, Any]:
        return {"error": self.message, **self.extra}


class ValidationError(AppError):
    """Malformed input (phone format, code length, amount bounds)"""
    status_code = 400


class AuthenticationError(AppError):
    status_code = 401


class PermissionDeniedError(AppError):
    status_code = 403


class NotFoundError(AppError):
    status_code = 404


class ConflictError(AppError):
    """Username taken, duplicate relationship, illegal state transition"""
    status_code = 400


class RateExceededError(AppError):
    """OTP attempts exhausted; the caller must request a new challenge"""
    status_code = 400


class RegistrationRequired(AppError):
    """OTP verified for an unknown number; a username must be supplied"""
    status_code = 400

    def __init__(self, message: str = "Username is required for new users"):
        super().__init__(message, newUserRequired=True)


class DependencyError(AppError):
    """Notifier or payment gateway unavailable"""
    status_code = 500
