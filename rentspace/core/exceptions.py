from __future__ import annotations
from typing import Optional


class AppError(Exception):
    status_code = 500
    message = "Server Error"

    def __init__(self, message: Optional[str] = None, *, errors: Optional[dict] = None):
        super().__init__(message or self.message)
        self.message = message or self.message
        self.errors = errors


class ValidationError(AppError):
    status_code = 400
    message = "Validation failed"


class AuthenticationError(AppError):
    status_code = 401
    message = "Not authenticated"


class AuthorizationError(AppError):
    status_code = 403
    message = "Not authorized to access this route"


class NotFoundError(AppError):
    status_code = 404
    message = "Resource not found"


class LockedError(AppError):
    status_code = 423
    message = "Account is temporarily locked due to too many failed login attempts"


class RateLimitedError(AppError):
    status_code = 429
    message = "Too many attempts. Please request a new code."


class ServerError(AppError):
    status_code = 500


# Registration and verification

class AlreadyExistsError(ValidationError):
    message = "User already exists with this email or phone"


class AlreadyVerifiedError(ValidationError):
    message = "Already verified"


class CodeExpiredError(AuthenticationError):
    message = "Code has expired. Please request a new one."


class InvalidCodeError(AuthenticationError):
    message = "Invalid code"


# Login and sessions

class InvalidCredentialsError(AuthenticationError):
    message = "Invalid credentials"


class InvalidTokenError(AuthenticationError):
    message = "Invalid token"


class AccountSuspendedError(AuthorizationError):
    message = "Account is suspended"


class AccountBannedError(AuthorizationError):
    message = "Account is banned"


# Password reset

class InvalidOrExpiredTokenError(ValidationError):
    message = "Invalid or expired token"


# Two-factor

class AlreadyEnabledError(ValidationError):
    message = "Two-factor authentication is already enabled"


class TwoFactorNotSetUpError(ValidationError):
    message = "Two-factor authentication has not been set up"


class TwoFactorNotEnabledError(ValidationError):
    message = "Two-factor authentication is not enabled"
