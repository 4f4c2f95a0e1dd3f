"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Dataclasses own domain
shape; the store and AuthService do the work.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from dataclasses import dataclass

ROLES = ("student", "instructor", "admin")

LINK_CONFIRM = "confirm"
LINK_RESET = "reset"
LINK_INVITE = "invite"
LINK_KINDS = (LINK_CONFIRM, LINK_RESET, LINK_INVITE)


@dataclass
class UserAccount:
    """A registered identity together with its credential.

    email is the primary identifier and is always stored lowercased so the
    store's UNIQUE index gives case-insensitive uniqueness. username is an
    optional second login identifier, also lowercased.

    hashed_password is None for invited instructors until they accept the
    invite and choose a password.
    """

    email: str
    role: str  # "student", "instructor", "admin"
    id: int | None = None
    username: str | None = None
    hashed_password: str | None = None
    confirmed: bool = False
    is_course_instructor: bool = False
    created_at: str | None = None
    last_login: str | None = None


@dataclass
class Session:
    """A login session. The JWT handed to the client carries the session id.

    The row, not the JWT, is the authority on revocation: a correctly signed,
    unexpired JWT whose session row is revoked is rejected.
    """

    id: str
    user_id: int
    issued_at: str
    expires_at: str
    revoked: bool = False


@dataclass
class ActionLink:
    """A single-use, time-bounded token emailed to a user.

    token_hash is HMAC-SHA256(SECRET_KEY, raw_token). The raw token only ever
    exists in the outgoing email.
    """

    user_id: int
    kind: str  # "confirm", "reset", "invite"
    token_hash: str
    expires_at: str
    id: int | None = None
    created_at: str | None = None
    consumed: bool = False
