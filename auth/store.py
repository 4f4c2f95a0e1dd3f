"""
auth/store.py -- SQLAlchemy Core persistence layer for auth entities.

Pattern: Repository + Data Mapper.
AuthStore is the repository; _row_to_user / _row_to_session / _row_to_link are
the mappers. AuthService never touches SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.

  Identifier uniqueness is the store's job: UNIQUE(email) and UNIQUE(username)
  turn a concurrent duplicate signup into sqlalchemy.exc.IntegrityError.
  Callers store identifiers lowercased so the constraint is case-insensitive.

Transactions:
  Multi-row writes (signup + confirmation link, new link + invalidation of
  older ones, password change + session revocation, link redemption + its
  effect) run inside one engine.begin() block so a failure never leaves a
  half-applied state.

Timestamps are ISO 8601 UTC strings with fixed microsecond precision, so
lexicographic comparison in SQL matches chronological order.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import Column, ForeignKey, Integer, MetaData, String, Table, Text, create_engine, event, func, select
from sqlalchemy.engine import Engine

from auth.models import LINK_KINDS, ActionLink, Session, UserAccount
from core.config import get_settings

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("email", String(255), nullable=False, unique=True),  # lowercased
    Column("username", String(30), unique=True),  # lowercased, optional
    Column("hashed_password", Text),  # NULL until an invited instructor accepts
    Column("role", String(20), nullable=False, server_default="student"),
    Column("is_course_instructor", Integer, nullable=False, server_default="0"),
    Column("confirmed", Integer, nullable=False, server_default="0"),
    Column("created_at", String(32), nullable=False),
    Column("last_login", String(32)),
)

_sessions = Table(
    "sessions",
    _metadata,
    Column("id", String(32), primary_key=True),  # sid claim of the JWT
    Column("user_id", Integer, ForeignKey("users.id"), nullable=False, index=True),
    Column("issued_at", String(32), nullable=False),
    Column("expires_at", String(32), nullable=False),
    Column("revoked", Integer, nullable=False, server_default="0"),
)

_links = Table(
    "action_links",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, ForeignKey("users.id"), nullable=False, index=True),
    Column("kind", String(10), nullable=False),  # "confirm", "reset", "invite"
    Column("token_hash", String(64), nullable=False, unique=True),  # HMAC-SHA256 hex
    Column("created_at", String(32), nullable=False),
    Column("expires_at", String(32), nullable=False),
    Column("consumed", Integer, nullable=False, server_default="0"),
)


# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def to_iso(dt: datetime) -> str:
    return dt.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _now_iso() -> str:
    return to_iso(datetime.now(timezone.utc))


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class AuthStore:
    """Repository for UserAccount, Session, and ActionLink entities.

    Usage:
        store = AuthStore()
        uid = store.create_user(UserAccount(email="a@x.com", role="admin", hashed_password=...))
        user = store.get_by_login("a@x.com")
        store.close()
    """

    def __init__(self, db_url: str | None = None) -> None:
        db_url = db_url or get_settings().database_url
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        _metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Accounts
    # ------------------------------------------------------------------

    def create_user(self, user: UserAccount) -> int:
        """Insert a new account and return its assigned database ID.

        Raises sqlalchemy.exc.IntegrityError if the email or username already
        exists. That is the only duplicate check -- there is no read-then-write
        window for two concurrent signups to slip through.
        """
        with self.engine.begin() as conn:
            return self._insert_user(conn, user)

    def create_user_with_link(self, user: UserAccount, link: ActionLink) -> int:
        """Insert an account and its first action link atomically.

        link.user_id is ignored and replaced with the new account's ID.
        Either both rows exist afterwards or neither does.
        """
        with self.engine.begin() as conn:
            user_id = self._insert_user(conn, user)
            conn.execute(_links.insert().values(**_link_values(link, user_id)))
        return user_id

    def _insert_user(self, conn, user: UserAccount) -> int:
        result = conn.execute(
            _users.insert().values(
                email=user.email,
                username=user.username,
                hashed_password=user.hashed_password,
                role=user.role,
                is_course_instructor=1 if user.is_course_instructor else 0,
                confirmed=1 if user.confirmed else 0,
                created_at=_now_iso(),
            )
        )
        return result.inserted_primary_key[0]

    def get_by_id(self, user_id: int) -> UserAccount | None:
        """Look up an account by primary key. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_email(self, email: str) -> UserAccount | None:
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.email == email.lower())).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_login(self, identifier: str) -> UserAccount | None:
        """Look up an account by email or username (case-insensitive)."""
        ident = identifier.lower()
        with self.engine.connect() as conn:
            row = conn.execute(
                _users.select().where((_users.c.email == ident) | (_users.c.username == ident))
            ).fetchone()
        return _row_to_user(row) if row is not None else None

    def count_admins(self) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(select(func.count()).select_from(_users).where(_users.c.role == "admin")).scalar()
        return result or 0

    def update_last_login(self, user_id: int, when: datetime) -> None:
        with self.engine.begin() as conn:
            conn.execute(_users.update().where(_users.c.id == user_id).values(last_login=to_iso(when)))

    def update_password(self, user_id: int, hashed_password: str, keep_session_id: str | None = None) -> int:
        """Store a new password hash and revoke the account's other live sessions.

        Both writes share one transaction, so a session issued concurrently
        either predates the commit (and is revoked) or follows it (and was
        issued against the new password).

        Returns the number of sessions revoked.
        """
        with self.engine.begin() as conn:
            conn.execute(_users.update().where(_users.c.id == user_id).values(hashed_password=hashed_password))
            return _revoke_user_sessions(conn, user_id, keep_session_id)

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def create_session(self, session: Session) -> None:
        with self.engine.begin() as conn:
            conn.execute(
                _sessions.insert().values(
                    id=session.id,
                    user_id=session.user_id,
                    issued_at=session.issued_at,
                    expires_at=session.expires_at,
                    revoked=1 if session.revoked else 0,
                )
            )

    def get_session(self, session_id: str) -> Session | None:
        with self.engine.connect() as conn:
            row = conn.execute(_sessions.select().where(_sessions.c.id == session_id)).fetchone()
        return _row_to_session(row) if row is not None else None

    def revoke_session(self, session_id: str) -> bool:
        """Mark one session revoked. Returns False if it was unknown or already revoked."""
        with self.engine.begin() as conn:
            result = conn.execute(
                _sessions.update()
                .where((_sessions.c.id == session_id) & (_sessions.c.revoked == 0))
                .values(revoked=1)
            )
        return result.rowcount > 0

    def list_live_sessions(self, user_id: int, now: datetime) -> list[Session]:
        """Read accessor for an account's unrevoked, unexpired sessions, oldest first."""
        with self.engine.connect() as conn:
            rows = conn.execute(
                _sessions.select()
                .where(
                    (_sessions.c.user_id == user_id)
                    & (_sessions.c.revoked == 0)
                    & (_sessions.c.expires_at > to_iso(now))
                )
                .order_by(_sessions.c.issued_at)
            ).fetchall()
        return [_row_to_session(r) for r in rows]

    # ------------------------------------------------------------------
    # Action links
    # ------------------------------------------------------------------

    def issue_link(self, link: ActionLink) -> int:
        """Insert a link and invalidate the owner's older unconsumed links of the same kind."""
        with self.engine.begin() as conn:
            conn.execute(
                _links.update()
                .where((_links.c.user_id == link.user_id) & (_links.c.kind == link.kind) & (_links.c.consumed == 0))
                .values(consumed=1)
            )
            result = conn.execute(_links.insert().values(**_link_values(link, link.user_id)))
        return result.inserted_primary_key[0]

    def get_link(self, token_hash: str) -> ActionLink | None:
        """Read accessor for a link by hash, consumed or not. Redemption goes through redeem_link()."""
        with self.engine.connect() as conn:
            row = conn.execute(_links.select().where(_links.c.token_hash == token_hash)).fetchone()
        return _row_to_link(row) if row is not None else None

    def redeem_link(
        self,
        token_hash: str,
        kind: str,
        now: datetime,
        *,
        confirm: bool = False,
        hashed_password: str | None = None,
        revoke_sessions: bool = False,
    ) -> ActionLink | None:
        """Consume a live link and apply its effect to the owner in one transaction.

        The consume is a conditional UPDATE (consumed = 0 AND expires_at > now),
        so of two concurrent redemptions exactly one sees rowcount == 1.

        Returns the consumed link, or None if the token is unknown, of another
        kind, expired, or already consumed. Nothing is written in that case.
        """
        with self.engine.begin() as conn:
            row = conn.execute(
                _links.select().where((_links.c.token_hash == token_hash) & (_links.c.kind == kind))
            ).fetchone()
            if row is None:
                return None
            result = conn.execute(
                _links.update()
                .where((_links.c.id == row.id) & (_links.c.consumed == 0) & (_links.c.expires_at > to_iso(now)))
                .values(consumed=1)
            )
            if result.rowcount == 0:
                return None

            updates: dict = {}
            if confirm:
                updates["confirmed"] = 1
            if hashed_password is not None:
                updates["hashed_password"] = hashed_password
            if updates:
                conn.execute(_users.update().where(_users.c.id == row.user_id).values(**updates))
            if revoke_sessions:
                _revoke_user_sessions(conn, row.user_id, None)

        link = _row_to_link(row)
        link.consumed = True
        return link

    # ------------------------------------------------------------------
    # Expiry sweep
    # ------------------------------------------------------------------

    def purge_expired(self, now: datetime) -> tuple[int, int]:
        """Revoke expired sessions and delete expired links.

        Returns (sessions_revoked, links_deleted).
        """
        cutoff = to_iso(now)
        with self.engine.begin() as conn:
            sessions = conn.execute(
                _sessions.update()
                .where((_sessions.c.revoked == 0) & (_sessions.c.expires_at <= cutoff))
                .values(revoked=1)
            )
            links = conn.execute(_links.delete().where(_links.c.expires_at <= cutoff))
        return sessions.rowcount, links.rowcount

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Shared statement helpers
# ---------------------------------------------------------------------------


def _revoke_user_sessions(conn, user_id: int, keep_session_id: str | None) -> int:
    condition = (_sessions.c.user_id == user_id) & (_sessions.c.revoked == 0)
    if keep_session_id is not None:
        condition = condition & (_sessions.c.id != keep_session_id)
    result = conn.execute(_sessions.update().where(condition).values(revoked=1))
    return result.rowcount


def _link_values(link: ActionLink, user_id: int) -> dict:
    if link.kind not in LINK_KINDS:
        raise ValueError(f"Unknown link kind: {link.kind!r}")
    return {
        "user_id": user_id,
        "kind": link.kind,
        "token_hash": link.token_hash,
        "created_at": _now_iso(),
        "expires_at": link.expires_at,
        "consumed": 1 if link.consumed else 0,
    }


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> UserAccount:
    return UserAccount(
        id=row.id,
        email=row.email,
        username=row.username,
        hashed_password=row.hashed_password,
        role=row.role,
        is_course_instructor=bool(row.is_course_instructor),
        confirmed=bool(row.confirmed),
        created_at=row.created_at,
        last_login=row.last_login,
    )


def _row_to_session(row) -> Session:
    return Session(
        id=row.id,
        user_id=row.user_id,
        issued_at=row.issued_at,
        expires_at=row.expires_at,
        revoked=bool(row.revoked),
    )


def _row_to_link(row) -> ActionLink:
    return ActionLink(
        id=row.id,
        user_id=row.user_id,
        kind=row.kind,
        token_hash=row.token_hash,
        created_at=row.created_at,
        expires_at=row.expires_at,
        consumed=bool(row.consumed),
    )
