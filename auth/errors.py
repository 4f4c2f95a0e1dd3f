"""
auth/errors.py -- Typed failures raised by AuthService.

Each subclass carries a stable machine-readable code and a user-safe message.
The API layer maps classes to HTTP status codes (see api/main.py); nothing in
auth/ knows about HTTP.
"""

from __future__ import annotations


class AuthError(Exception):
    code = "auth_error"
    message = "Authentication failed."

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.message)
        if message:
            self.message = message


class DuplicateIdentifier(AuthError):
    code = "duplicate_identifier"
    message = "An account with that email or username already exists."


class NotFound(AuthError):
    code = "not_found"
    message = "Not found."


class InvalidCredentials(AuthError):
    # Same wording for unknown identifier and wrong password.
    code = "invalid_credentials"
    message = "Incorrect email or password."


class AccountNotConfirmed(AuthError):
    code = "account_not_confirmed"
    message = "Please confirm your email address before logging in."


class AlreadyConfirmed(AuthError):
    code = "already_confirmed"
    message = "This account is already confirmed."


class Unauthorized(AuthError):
    code = "unauthorized"
    message = "Authentication required."


class ExpiredOrConsumedToken(AuthError):
    code = "expired_or_consumed_token"
    message = "This link is invalid, has expired, or has already been used."


class Forbidden(AuthError):
    code = "forbidden"
    message = "You do not have permission to perform this action."
