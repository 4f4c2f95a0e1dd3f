"""
auth/tokens.py -- Session JWT, password hashing, and link token utilities.

Security design decisions:
  JWT: python-jose with HS256. Session tokens are signed with SECRET_KEY and
       carry the session id (sid), user_id, role, and expiry. Verification
       returns None on any failure -- AuthService turns that into Unauthorized.
       A valid signature is necessary but not sufficient: the session row must
       also be live.

  Passwords: bcrypt directly. Bcrypt is the right choice for low-entropy
       secrets because its cost factor makes brute-force expensive. The
       DUMMY_HASH constant enables timing equalization in AuthService.login()
       so response time does not reveal whether an identifier exists [C1].

  Link tokens: secrets.token_urlsafe(32) gives 256 bits of entropy. We store
       HMAC-SHA256(SECRET_KEY, raw_token) so lookup is O(1) and a leaked DB
       does not yield usable links.

Layer rule: no imports from api/. Import from core/ is allowed.
"""

from __future__ import annotations

import hashlib
import hmac
import secrets
from datetime import datetime

import bcrypt
from jose import JWTError, jwt

from core.config import get_settings

# ---------------------------------------------------------------------------
# Config -- read once at module load via the lru_cache singleton [M6]
# ---------------------------------------------------------------------------

_settings = get_settings()

_ALGORITHM = "HS256"

# ---------------------------------------------------------------------------
# Password hashing (bcrypt -- direct usage, no passlib wrapper)
# ---------------------------------------------------------------------------


def hash_password(plain: str) -> str:
    """Return a bcrypt hash of the given plaintext password.

    bcrypt refuses input longer than 72 bytes. The API layer rejects passwords
    whose UTF-8 encoding exceeds that before they get here.
    """
    return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash."""
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        # Malformed stored hash
        return False


# Timing equalization dummy hash [C1].
# Computed once at module load. Always verify against something, even when
# the identifier does not exist, so bcrypt's constant work factor equalizes
# response time.
DUMMY_HASH: str = hash_password("coursehub_timing_dummy")


# ---------------------------------------------------------------------------
# Session JWT encode / decode
# ---------------------------------------------------------------------------


def new_session_id() -> str:
    return secrets.token_hex(16)


def create_session_token(session_id: str, user_id: int, role: str, expires_at: datetime) -> str:
    """Encode a signed JWT for a stored session.

    Args:
        session_id: Primary key of the sessions row (sid claim).
        user_id:    Owner of the session.
        role:       Role at issue time; informational only, guards re-read
                    the account from the store.
        expires_at: Absolute expiry, identical to the session row's.
    """
    payload = {
        "sid": session_id,
        "user_id": user_id,
        "role": role,
        "exp": expires_at,
    }
    return jwt.encode(payload, _settings.secret_key, algorithm=_ALGORITHM)


def decode_session_token(token: str) -> dict | None:
    """Decode and verify a session JWT. Returns the payload dict or None on any failure."""
    try:
        payload = jwt.decode(token, _settings.secret_key, algorithms=[_ALGORITHM])
    except JWTError:
        return None
    if "sid" not in payload or "user_id" not in payload:
        return None
    return payload


# ---------------------------------------------------------------------------
# Single-use link tokens
# ---------------------------------------------------------------------------


def generate_link_token() -> str:
    return secrets.token_urlsafe(32)


def hash_link_token(raw_token: str) -> str:
    """Return HMAC-SHA256(SECRET_KEY, raw_token) as a hex string.

    Deterministic, so the store can look links up by hash through a UNIQUE
    index. Keyed with SECRET_KEY so a DB dump alone cannot forge a match.
    """
    return hmac.new(
        _settings.secret_key.encode(),
        raw_token.encode(),
        hashlib.sha256,
    ).hexdigest()
