"""
API request and response models for CourseHub Auth REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

Input validation lives here: by the time a value reaches AuthService the email
is lowercased and well-formed and the password meets the strength rule.
"""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

# Deliberately loose: one @, no whitespace, a dot in the domain. Deliverability
# is proven by the confirmation email, not by a regex.
EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"
USERNAME_PATTERN = r"^[A-Za-z0-9_.-]{3,30}$"

# Strength beyond letter+digit is left to the client. bcrypt rejects input over
# 72 bytes, so the cap is checked on the UTF-8 encoding, not on characters.
PASSWORD_MIN = 1
PASSWORD_MAX_BYTES = 72


def _check_password_bytes(value: str) -> str:
    if len(value.encode("utf-8")) > PASSWORD_MAX_BYTES:
        raise ValueError(f"Password must be at most {PASSWORD_MAX_BYTES} bytes when UTF-8 encoded.")
    return value


def _check_password_strength(value: str) -> str:
    _check_password_bytes(value)
    if not any(c.isalpha() for c in value) or not any(c.isdigit() for c in value):
        raise ValueError("Password must contain at least one letter and one digit.")
    return value


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class RoleEnum(str, Enum):
    student = "student"
    instructor = "instructor"
    admin = "admin"


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class EmailRequest(BaseModel):
    """Body for endpoints that take only an email address."""

    model_config = ConfigDict(str_strip_whitespace=True)

    email: str = Field(min_length=3, max_length=255, pattern=EMAIL_PATTERN)

    @field_validator("email")
    @classmethod
    def lower_email(cls, value: str) -> str:
        return value.lower()


class SignUpRequest(EmailRequest):
    """Body for POST /v1/auth/student/email/signup and /v1/auth/admin/email/signup."""

    password: str = Field(min_length=PASSWORD_MIN, max_length=PASSWORD_MAX_BYTES)
    username: Optional[str] = Field(default=None, pattern=USERNAME_PATTERN)

    @field_validator("password")
    @classmethod
    def password_strength(cls, value: str) -> str:
        return _check_password_strength(value)


class LoginRequest(BaseModel):
    """Body for POST /v1/auth/email/login. identifier is an email or a username."""

    model_config = ConfigDict(str_strip_whitespace=True)

    identifier: str = Field(min_length=1, max_length=255)
    # No strength rule on login: legacy passwords must still be accepted.
    password: str = Field(min_length=1, max_length=PASSWORD_MAX_BYTES)

    @field_validator("password")
    @classmethod
    def password_bytes(cls, value: str) -> str:
        return _check_password_bytes(value)


class ChangePasswordRequest(BaseModel):
    old_password: str = Field(min_length=1, max_length=PASSWORD_MAX_BYTES)
    new_password: str = Field(min_length=PASSWORD_MIN, max_length=PASSWORD_MAX_BYTES)

    @field_validator("old_password")
    @classmethod
    def password_bytes(cls, value: str) -> str:
        return _check_password_bytes(value)

    @field_validator("new_password")
    @classmethod
    def password_strength(cls, value: str) -> str:
        return _check_password_strength(value)


class TokenRequest(BaseModel):
    """Body for POST /v1/auth/email/confirm -- the token from the emailed link."""

    token: str = Field(min_length=1, max_length=256)


class TokenPasswordRequest(TokenRequest):
    """Body for completing a reset or accepting an invite."""

    password: str = Field(min_length=PASSWORD_MIN, max_length=PASSWORD_MAX_BYTES)

    @field_validator("password")
    @classmethod
    def password_strength(cls, value: str) -> str:
        return _check_password_strength(value)


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class MessageResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str


class UserSummary(BaseModel):
    """Public view of an account. Never includes the password hash."""

    model_config = ConfigDict(frozen=True)

    id: int
    email: str
    username: Optional[str] = None
    role: RoleEnum
    is_course_instructor: bool
    confirmed: bool
    created_at: str = ""
    last_login: Optional[str] = None


class SignUpResponse(BaseModel):
    """Response for the signup endpoints.

    session is always null: a session is only issued by login, and login
    requires a confirmed account.
    """

    model_config = ConfigDict(frozen=True)

    message: str
    user: UserSummary
    session: None = None


class SignInResponse(BaseModel):
    """Response for POST /v1/auth/email/login."""

    model_config = ConfigDict(frozen=True)

    access_token: str
    token_type: str = "bearer"
    expires_at: datetime
    expires_in: int
    user: UserSummary


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "ok"
    version: str
