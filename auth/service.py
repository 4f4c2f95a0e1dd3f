"""
auth/service.py -- AuthService: signup, login, sessions, and emailed links.

Every public method is one self-contained operation. The service holds no
mutable state of its own: the store is the only shared resource and the
authority on uniqueness, so there is no in-process locking here.

Enumeration safety [C1]:
  - login() runs bcrypt whether or not the identifier exists and raises the
    same InvalidCredentials for "no such account" and "wrong password".
  - reset_password() always mints a token and sends exactly one email, then
    returns None -- the caller cannot tell a known address from an unknown one.
  - resend_confirmation_link() returns silently for unknown addresses.

Failures are raised as auth.errors.AuthError subclasses. Store and mailer I/O
errors propagate unchanged.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from urllib.parse import urlencode

from sqlalchemy.exc import IntegrityError

from auth.errors import (
    AccountNotConfirmed,
    AlreadyConfirmed,
    DuplicateIdentifier,
    ExpiredOrConsumedToken,
    InvalidCredentials,
    Unauthorized,
)
from auth.mailer import Mailer, confirmation_email, invite_email, reset_email, reset_unknown_email
from auth.models import LINK_CONFIRM, LINK_INVITE, LINK_RESET, ROLES, ActionLink, Session, UserAccount
from auth.store import AuthStore, to_iso
from auth.tokens import (
    DUMMY_HASH,
    create_session_token,
    decode_session_token,
    generate_link_token,
    hash_link_token,
    hash_password,
    new_session_id,
    verify_password,
)
from core.config import Settings, get_settings

logger = logging.getLogger("coursehub.auth")

# Frontend routes that receive each link kind.
_LINK_PATHS = {
    LINK_CONFIRM: "/auth/confirm",
    LINK_RESET: "/auth/reset-password",
    LINK_INVITE: "/auth/accept-invite",
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _pending_invite(user: UserAccount) -> bool:
    """An invited account that has not set a password yet."""
    return user.hashed_password is None and not user.confirmed


@dataclass
class SignIn:
    """Result of a successful login."""

    access_token: str
    expires_at: datetime
    expires_in: int
    user: UserAccount


class AuthService:
    """Authentication core. Construct once per app and share across requests.

    Args:
        store:    Persistence for accounts, sessions, and links.
        mailer:   Anything with send(to, subject, body).
        settings: Defaults to get_settings().
        clock:    Returns the current UTC datetime. Tests pass a fake.
    """

    def __init__(
        self,
        store: AuthStore,
        mailer: Mailer,
        settings: Settings | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.store = store
        self.mailer = mailer
        self.settings = settings or get_settings()
        self.clock = clock

    # ------------------------------------------------------------------
    # Signup and confirmation
    # ------------------------------------------------------------------

    def sign_up(
        self,
        email: str,
        password: str,
        role: str = "student",
        *,
        is_course_instructor: bool = False,
        username: str | None = None,
    ) -> UserAccount:
        """Create an unconfirmed account and email it a confirmation link.

        The account row and its link are written in one transaction. A
        duplicate email or username raises DuplicateIdentifier and writes
        nothing.
        """
        if role not in ROLES:
            raise ValueError(f"Unknown role: {role!r}")
        user = UserAccount(
            email=email.lower(),
            username=username.lower() if username else None,
            role=role,
            hashed_password=hash_password(password),
            is_course_instructor=is_course_instructor,
        )
        raw_token, link = self._new_link(LINK_CONFIRM, self.settings.confirmation_link_expire_seconds)
        try:
            user.id = self.store.create_user_with_link(user, link)
        except IntegrityError as exc:
            logger.info("Signup rejected: identifier already registered")
            raise DuplicateIdentifier() from exc

        logger.info("Account %d created (role=%s)", user.id, role)
        self.mailer.send(user.email, *confirmation_email(self._link_url(LINK_CONFIRM, raw_token)))
        return self.store.get_by_id(user.id) or user

    def confirm_account(self, token: str) -> UserAccount:
        """Consume a confirmation link. Unconfirmed -> Confirmed."""
        link = self.store.redeem_link(hash_link_token(token), LINK_CONFIRM, self.clock(), confirm=True)
        if link is None:
            raise ExpiredOrConsumedToken()
        logger.info("Account %d confirmed", link.user_id)
        return self.store.get_by_id(link.user_id)

    def resend_confirmation_link(self, email: str) -> None:
        """Issue a fresh confirmation link, invalidating earlier ones.

        Unknown addresses return silently (no email, no error) so this endpoint
        cannot be used to probe for registered accounts. Invited instructors who
        have not accepted are treated the same way; their invite link is the
        only way in. Confirmed accounts raise AlreadyConfirmed.
        """
        user = self.store.get_by_email(email)
        if user is None or _pending_invite(user):
            logger.info("Confirmation resend requested for unknown address or pending invite; ignoring")
            return
        if user.confirmed:
            raise AlreadyConfirmed()
        raw_token, link = self._new_link(LINK_CONFIRM, self.settings.confirmation_link_expire_seconds, user.id)
        self.store.issue_link(link)
        self.mailer.send(user.email, *confirmation_email(self._link_url(LINK_CONFIRM, raw_token)))

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def login(self, identifier: str, password: str) -> SignIn:
        """Verify credentials and open a new session.

        Always runs bcrypt, against DUMMY_HASH when the identifier is unknown
        or has no password yet, so timing does not reveal account existence.
        The confirmation check comes after the password check: only someone
        holding the right password learns that the account is unconfirmed.
        """
        user = self.store.get_by_login(identifier)
        if user is None or user.hashed_password is None:
            verify_password(password, DUMMY_HASH)
            logger.info("Login failed: unknown identifier")
            raise InvalidCredentials()
        if not verify_password(password, user.hashed_password):
            logger.info("Login failed for account %d: wrong password", user.id)
            raise InvalidCredentials()
        if not user.confirmed:
            raise AccountNotConfirmed()

        now = self.clock()
        ttl = self.settings.session_expire_seconds
        expires_at = now + timedelta(seconds=ttl)
        session = Session(
            id=new_session_id(),
            user_id=user.id,
            issued_at=to_iso(now),
            expires_at=to_iso(expires_at),
        )
        self.store.create_session(session)
        self.store.update_last_login(user.id, now)
        token = create_session_token(session.id, user.id, user.role, expires_at)
        logger.info("Account %d logged in", user.id)
        return SignIn(access_token=token, expires_at=expires_at, expires_in=ttl, user=user)

    def authenticate(self, token: str) -> tuple[UserAccount, Session]:
        """Resolve a bearer token to its live session and owner, or raise Unauthorized."""
        payload = decode_session_token(token)
        if payload is None:
            raise Unauthorized()
        session = self.store.get_session(payload["sid"])
        if session is None or session.revoked or session.expires_at <= to_iso(self.clock()):
            raise Unauthorized()
        user = self.store.get_by_id(session.user_id)
        if user is None:
            raise Unauthorized()
        return user, session

    def sign_out(self, token: str) -> bool:
        """Revoke the session behind token.

        Idempotent: malformed, unknown, expired, or already revoked tokens are
        a no-op. Returns True only if a live session was revoked.
        """
        payload = decode_session_token(token)
        if payload is None:
            return False
        revoked = self.store.revoke_session(payload["sid"])
        if revoked:
            logger.info("Session revoked for account %s", payload["user_id"])
        return revoked

    # ------------------------------------------------------------------
    # Passwords
    # ------------------------------------------------------------------

    def change_password(self, token: str, old_password: str, new_password: str) -> int:
        """Replace the password of the session's owner.

        Requires a live session and the current password. On success every
        other live session of the account is revoked; the calling session
        stays valid. Returns the number of sessions revoked.
        """
        user, session = self.authenticate(token)
        if user.hashed_password is None or not verify_password(old_password, user.hashed_password):
            logger.info("Password change rejected for account %d: wrong current password", user.id)
            raise InvalidCredentials()
        revoked = self.store.update_password(user.id, hash_password(new_password), keep_session_id=session.id)
        logger.info("Password changed for account %d (%d other session(s) revoked)", user.id, revoked)
        return revoked

    def reset_password(self, email: str) -> None:
        """Email a reset link, or a no-account notice, to email.

        One code path for both outcomes: a token is always minted and exactly
        one message is always sent. Returns None either way.
        A pending invitee gets the no-account notice, since it has no password
        to reset yet.
        """
        user = self.store.get_by_email(email)
        raw_token, link = self._new_link(LINK_RESET, self.settings.reset_link_expire_seconds)
        if user is not None and not _pending_invite(user):
            link.user_id = user.id
            self.store.issue_link(link)
            message = reset_email(self._link_url(LINK_RESET, raw_token))
        else:
            message = reset_unknown_email()
        self.mailer.send(email.lower(), *message)

    def complete_password_reset(self, token: str, new_password: str) -> None:
        """Consume a reset link and set a new password.

        Every live session of the account is revoked in the same transaction.
        The confirmation state is left as it was.
        """
        link = self.store.redeem_link(
            hash_link_token(token),
            LINK_RESET,
            self.clock(),
            hashed_password=hash_password(new_password),
            revoke_sessions=True,
        )
        if link is None:
            raise ExpiredOrConsumedToken()
        logger.info("Password reset completed for account %d", link.user_id)

    # ------------------------------------------------------------------
    # Instructor invites
    # ------------------------------------------------------------------

    def invite_instructor(self, email: str) -> UserAccount:
        """Pre-create an instructor account and email it an invite link.

        The caller's admin capability is checked by the route guard, not here.
        The account has no password and is unconfirmed until accept_invite().
        """
        user = UserAccount(email=email.lower(), role="instructor", is_course_instructor=True)
        raw_token, link = self._new_link(LINK_INVITE, self.settings.invite_link_expire_seconds)
        try:
            user.id = self.store.create_user_with_link(user, link)
        except IntegrityError as exc:
            raise DuplicateIdentifier() from exc

        logger.info("Instructor invite issued for account %d", user.id)
        self.mailer.send(user.email, *invite_email(self._link_url(LINK_INVITE, raw_token)))
        return self.store.get_by_id(user.id) or user

    def accept_invite(self, token: str, password: str) -> UserAccount:
        """Consume an invite link: set the password and confirm the account."""
        link = self.store.redeem_link(
            hash_link_token(token),
            LINK_INVITE,
            self.clock(),
            confirm=True,
            hashed_password=hash_password(password),
        )
        if link is None:
            raise ExpiredOrConsumedToken()
        logger.info("Instructor invite accepted by account %d", link.user_id)
        return self.store.get_by_id(link.user_id)

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    def bootstrap_admin(self, email: str, password: str, username: str | None = None) -> UserAccount:
        """Create a confirmed admin account directly, with no email round-trip.

        Operator-only (CLI). This is how the first admin comes to exist, since
        the admin signup route itself requires an admin session.
        """
        user = UserAccount(
            email=email.lower(),
            username=username.lower() if username else None,
            role="admin",
            hashed_password=hash_password(password),
            confirmed=True,
        )
        try:
            user.id = self.store.create_user(user)
        except IntegrityError as exc:
            raise DuplicateIdentifier() from exc
        logger.info("Admin account %d created from the command line", user.id)
        return self.store.get_by_id(user.id) or user

    def purge_expired(self) -> tuple[int, int]:
        """Expiry sweep. Returns (sessions_revoked, links_deleted)."""
        sessions, links = self.store.purge_expired(self.clock())
        if sessions or links:
            logger.info("Expiry sweep: %d session(s) revoked, %d link(s) deleted", sessions, links)
        return sessions, links

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _new_link(self, kind: str, ttl_seconds: int, user_id: int = 0) -> tuple[str, ActionLink]:
        raw_token = generate_link_token()
        link = ActionLink(
            user_id=user_id,
            kind=kind,
            token_hash=hash_link_token(raw_token),
            expires_at=to_iso(self.clock() + timedelta(seconds=ttl_seconds)),
        )
        return raw_token, link

    def _link_url(self, kind: str, raw_token: str) -> str:
        base = self.settings.frontend_url.rstrip("/")
        return f"{base}{_LINK_PATHS[kind]}?{urlencode({'token': raw_token})}"
