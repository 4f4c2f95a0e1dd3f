"""
api/routes/v1/auth.py -- Authentication REST endpoints.

Routes:
  POST  /v1/auth/student/email/signup             -- student signup; emails confirmation link
  POST  /v1/auth/resend-confirmation-link         -- fresh confirmation link
  POST  /v1/auth/email/confirm                    -- consume confirmation link
  POST  /v1/auth/email/login                      -- email/username + password -> session JWT
  PATCH /v1/auth/email/change-password            -- requires session
  POST  /v1/auth/email/reset-password             -- email reset link (enumeration-safe)
  POST  /v1/auth/email/reset-password/complete    -- consume reset link, set password
  POST  /v1/auth/signout                          -- revoke the bearer session (idempotent)
  GET   /v1/auth/me                               -- current account (requires session)
  POST  /v1/auth/admin/email/signup               -- admin signup (admin only)
  POST  /v1/auth/admin/instructor/email-invite    -- invite instructor (admin only)
  POST  /v1/auth/instructor/accept-invite         -- consume invite link, set password

Security:
  [H2] Login, signup, resend, and reset are rate-limited per IP.
  [C1] Login timing equalization and uniform errors live in AuthService.
  [M5] Cache-Control: no-store on login responses.
  Admin signup requires an admin session. The route it replaces accepted an
  elevated role from anonymous callers; the first admin is created with
  `python main.py create-admin` instead.

Handlers are plain def functions: FastAPI runs them in its threadpool, so the
blocking store and SMTP calls inside AuthService never stall the event loop.
AuthError subclasses propagate to the handler in api/main.py, which maps
them to status codes.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from api.limiter import limiter
from api.models import (
    ChangePasswordRequest,
    EmailRequest,
    LoginRequest,
    MessageResponse,
    SignInResponse,
    SignUpRequest,
    SignUpResponse,
    TokenPasswordRequest,
    TokenRequest,
    UserSummary,
)
from auth.dependencies import CurrentSession, get_auth_service, require_admin, require_bearer_token, require_session
from auth.models import UserAccount
from auth.service import AuthService
from core.config import get_settings

_settings = get_settings()

# Same wording whether or not the address is registered.
RESEND_MESSAGE = "If an unconfirmed account exists for this email, a confirmation link has been sent."
RESET_MESSAGE = "If an account exists for this email, a password reset link has been sent."

router = APIRouter()


# ---------------------------------------------------------------------------
# Signup and confirmation (public)
# ---------------------------------------------------------------------------


@limiter.limit(_settings.signup_rate_limit)
@router.post("/auth/student/email/signup", response_model=SignUpResponse, status_code=201)
def student_email_signup(
    request: Request,
    body: SignUpRequest,
    service: AuthService = Depends(get_auth_service),
) -> SignUpResponse:
    """Sign up a student with email and password. A confirmation link is emailed."""
    user = service.sign_up(body.email, body.password, "student", is_course_instructor=False, username=body.username)
    return SignUpResponse(message="Signup successful. Check your email to confirm your account.", user=to_summary(user))


@limiter.limit(_settings.signup_rate_limit)
@router.post("/auth/resend-confirmation-link", response_model=MessageResponse)
def resend_confirmation_link(
    request: Request,
    body: EmailRequest,
    service: AuthService = Depends(get_auth_service),
) -> MessageResponse:
    service.resend_confirmation_link(body.email)
    return MessageResponse(message=RESEND_MESSAGE)


@router.post("/auth/email/confirm", response_model=MessageResponse)
def confirm_email(body: TokenRequest, service: AuthService = Depends(get_auth_service)) -> MessageResponse:
    """Consume a confirmation link. A second use returns 400 expired_or_consumed_token."""
    service.confirm_account(body.token)
    return MessageResponse(message="Email confirmed. You can now log in.")


# ---------------------------------------------------------------------------
# Sessions
# ---------------------------------------------------------------------------


@limiter.limit(_settings.login_rate_limit)  # [H2] must be ABOVE @router to preserve FastAPI introspection
@router.post("/auth/email/login", response_model=SignInResponse)
def email_login(
    request: Request,
    body: LoginRequest,
    service: AuthService = Depends(get_auth_service),
) -> JSONResponse:
    """Log in with email or username and password; returns a bearer session token.

    Unknown identifier and wrong password both produce 401 invalid_credentials.
    """
    result = service.login(body.identifier, body.password)
    resp = JSONResponse(
        status_code=200,
        content=SignInResponse(
            access_token=result.access_token,
            token_type="bearer",  # noqa: S106 # nosec B106 -- OAuth token type, not a password
            expires_at=result.expires_at,
            expires_in=result.expires_in,
            user=to_summary(result.user),
        ).model_dump(mode="json"),
    )
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


@router.post("/auth/signout", response_model=MessageResponse)
def sign_out(
    token: str = Depends(require_bearer_token),
    service: AuthService = Depends(get_auth_service),
) -> MessageResponse:
    """Revoke the bearer session.

    Only the presence of a bearer token is required, not a live session, so
    repeating the call with an already revoked token still returns 200.
    """
    service.sign_out(token)
    return MessageResponse(message="Sign out Successful")


@router.get("/auth/me", response_model=UserSummary)
def me(current: CurrentSession = Depends(require_session)) -> UserSummary:
    return to_summary(current.user)


# ---------------------------------------------------------------------------
# Passwords
# ---------------------------------------------------------------------------


@router.patch("/auth/email/change-password", response_model=MessageResponse)
def email_change_password(
    body: ChangePasswordRequest,
    current: CurrentSession = Depends(require_session),
    service: AuthService = Depends(get_auth_service),
) -> MessageResponse:
    """Change the password. Other sessions of the account are signed out."""
    service.change_password(current.token, body.old_password, body.new_password)
    return MessageResponse(message="Password Changed Successfully")


@limiter.limit(_settings.signup_rate_limit)
@router.post("/auth/email/reset-password", response_model=MessageResponse, status_code=201)
def email_reset_password(
    request: Request,
    body: EmailRequest,
    service: AuthService = Depends(get_auth_service),
) -> MessageResponse:
    """Request a password reset link. The response never reveals whether the email is registered."""
    service.reset_password(body.email)
    return MessageResponse(message=RESET_MESSAGE)


@router.post("/auth/email/reset-password/complete", response_model=MessageResponse)
def complete_reset_password(
    body: TokenPasswordRequest,
    service: AuthService = Depends(get_auth_service),
) -> MessageResponse:
    """Set a new password from a reset link. All sessions of the account are signed out."""
    service.complete_password_reset(body.token, body.password)
    return MessageResponse(message="Password has been reset. Please log in with your new password.")


# ---------------------------------------------------------------------------
# Admin
# ---------------------------------------------------------------------------


@router.post("/auth/admin/email/signup", response_model=SignUpResponse, status_code=201)
def admin_email_signup(
    body: SignUpRequest,
    current: CurrentSession = Depends(require_admin),
    service: AuthService = Depends(get_auth_service),
) -> SignUpResponse:
    """Create another admin account. Admin only."""
    user = service.sign_up(body.email, body.password, "admin", is_course_instructor=False, username=body.username)
    return SignUpResponse(message="Signup successful. Check your email to confirm your account.", user=to_summary(user))


@router.post("/auth/admin/instructor/email-invite", response_model=MessageResponse, status_code=201)
def instructor_send_email_invite(
    body: EmailRequest,
    current: CurrentSession = Depends(require_admin),
    service: AuthService = Depends(get_auth_service),
) -> MessageResponse:
    service.invite_instructor(body.email)
    return MessageResponse(message="Instructor Invite Sent Successfully")


@router.post("/auth/instructor/accept-invite", response_model=MessageResponse)
def accept_instructor_invite(
    body: TokenPasswordRequest,
    service: AuthService = Depends(get_auth_service),
) -> MessageResponse:
    service.accept_invite(body.token, body.password)
    return MessageResponse(message="Invite accepted. You can now log in.")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def to_summary(user: UserAccount) -> UserSummary:
    return UserSummary(
        id=user.id,
        email=user.email,
        username=user.username,
        role=user.role,
        is_course_instructor=user.is_course_instructor,
        confirmed=user.confirmed,
        created_at=user.created_at or "",
        last_login=user.last_login,
    )
