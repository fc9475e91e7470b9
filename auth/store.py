"""
auth/store.py -- SQLAlchemy Core persistence layer for identities and roles.

Pattern: Repository + Data Mapper. IdentityStore is the repository;
_row_to_identity is the mapper. Services never touch SQL directly.

Schema:
  users        one row per identity; UNIQUE(phone_country_code, phone_number)
               and UNIQUE(session_token) back the store-level invariants.
               Email uniqueness is enforced by the services (lookup before
               write), not by a constraint.
  roles        fixed vocabulary, seeded on startup ("user", "admin").
  users_roles  many-to-many; UNIQUE(user_id, role_id) so re-assigning a role
               is a no-op instead of a duplicate row.

Failure model:
  Every SQLAlchemy error -- connect failure, pool timeout, constraint
  violation, query error -- is re-raised as auth.errors.StoreError. Callers
  see one exception type and decide what it means for the request. The one
  refinement: insert() raises DuplicateIdentity (a StoreError) when the row
  violates a UNIQUE constraint, so a lost lookup-then-insert race can be
  reported as a conflict rather than an outage.

Pooling:
  Server databases and file SQLite get a bounded QueuePool; acquisition waits
  at most pool_timeout seconds, so exhaustion surfaces as StoreError instead
  of blocking the worker thread indefinitely. In-memory SQLite (":memory:" or
  a mode=memory URI) uses StaticPool: one shared connection keeps the
  database alive and visible to every thread.

Column widths:
  NAME_MAX_LENGTH, EMAIL_MAX_LENGTH and PHONE_MAX_LENGTH size the String
  columns. The registration validators import them, so input that fits the
  rules always fits the schema.

Security:
  All queries use bound parameters. No f-strings in SQL.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from dataclasses import replace
from pathlib import Path

from sqlalchemy import (
    Boolean,
    Column,
    ForeignKey,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    UniqueConstraint,
    create_engine,
    event,
    make_url,
    select,
    text,
)
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.pool import QueuePool, StaticPool

from auth.errors import DuplicateIdentity, StoreError
from auth.models import Identity

logger = logging.getLogger("landinggate.store")

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).parent / 'landinggate.db'}"

NAME_MAX_LENGTH = 255
EMAIL_MAX_LENGTH = 255
PHONE_MAX_LENGTH = 32

DEFAULT_ROLES: dict[str, str] = {
    "user": "Default role granted at registration",
    "admin": "Administrative access",
}

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(NAME_MAX_LENGTH), nullable=False),
    Column("email", String(EMAIL_MAX_LENGTH)),
    Column("phone_country_code", Integer, nullable=False),
    Column("phone_number", String(PHONE_MAX_LENGTH), nullable=False),
    Column("password_hash", Text),  # NULL for unverified placeholders
    Column("session_token", Text, unique=True),  # NULL until a token is issued
    Column("verified", Boolean, nullable=False, default=False),
    UniqueConstraint("phone_country_code", "phone_number", name="uq_users_phone"),
)

_roles = Table(
    "roles",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("title", String(64), nullable=False, unique=True),
    Column("description", Text),
)

_users_roles = Table(
    "users_roles",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, ForeignKey("users.id"), nullable=False),
    Column("role_id", Integer, ForeignKey("roles.id"), nullable=False),
    UniqueConstraint("user_id", "role_id", name="uq_users_roles"),
)

# Columns update() accepts. Validated before any SQL is built.
_UPDATABLE = frozenset(
    {"name", "email", "phone_country_code", "phone_number", "password_hash", "session_token", "verified"}
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


def _is_memory_sqlite(db_url: str) -> bool:
    url = make_url(db_url)
    return url.database in (None, "", ":memory:") or url.query.get("mode") == "memory"


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class IdentityStore:
    """Repository for Identity rows and their role assignments.

    Usage:
        store = IdentityStore("sqlite:///:memory:")
        created = store.insert(Identity(name="John", phone_country_code=1, phone_number="5550100"))
        store.insert_role(created.id, store.role_id("user"))
        store.roles_for(created.id)   # ["user"]
        store.close()
    """

    def __init__(
        self,
        db_url: str = _DEFAULT_DB_URL,
        *,
        pool_size: int = 5,
        max_overflow: int = 10,
        pool_timeout: float = 5.0,
        roles: dict[str, str] | None = None,
    ) -> None:
        connect_args: dict = {}
        bounded = {"pool_size": pool_size, "max_overflow": max_overflow, "pool_timeout": pool_timeout}
        is_sqlite = db_url.startswith("sqlite")
        if not is_sqlite:
            engine_kwargs: dict = {**bounded, "pool_pre_ping": True}
        elif _is_memory_sqlite(db_url):
            connect_args["check_same_thread"] = False
            engine_kwargs = {"poolclass": StaticPool}
        else:
            connect_args["check_same_thread"] = False
            engine_kwargs = {"poolclass": QueuePool, **bounded}
        self.engine: Engine = create_engine(db_url, connect_args=connect_args, **engine_kwargs)
        if is_sqlite:
            event.listen(self.engine, "connect", _set_wal_mode)
        _metadata.create_all(self.engine)
        self._ensure_roles(DEFAULT_ROLES if roles is None else roles)

    @contextmanager
    def _connect(self) -> Iterator[Connection]:
        """Check a connection out of the pool, translating every DB error to StoreError."""
        try:
            with self.engine.connect() as conn:
                yield conn
        except SQLAlchemyError as exc:
            raise StoreError(str(exc)) from exc

    def _ensure_roles(self, roles: dict[str, str]) -> None:
        """Seed the role vocabulary. Idempotent -- safe to call on every startup."""
        with self.engine.connect() as conn:
            existing = {row.title for row in conn.execute(select(_roles.c.title))}
            for title, description in roles.items():
                if title not in existing:
                    conn.execute(_roles.insert().values(title=title, description=description))
            conn.commit()

    # ------------------------------------------------------------------
    # Identity queries
    # ------------------------------------------------------------------

    def find_by_phone(self, phone_country_code: int, phone_number: str) -> list[Identity]:
        """Return identities with this phone pair. At most one by the UNIQUE constraint."""
        with self._connect() as conn:
            rows = conn.execute(
                _users.select().where(
                    (_users.c.phone_country_code == phone_country_code) & (_users.c.phone_number == phone_number)
                )
            ).fetchall()
        return [_row_to_identity(r) for r in rows]

    def find_by_email(self, email: str) -> list[Identity]:
        """Return identities with this exact email, oldest first."""
        with self._connect() as conn:
            rows = conn.execute(_users.select().where(_users.c.email == email).order_by(_users.c.id)).fetchall()
        return [_row_to_identity(r) for r in rows]

    def find_by_token(self, token: str) -> list[Identity]:
        """Return identities whose stored session token equals token."""
        with self._connect() as conn:
            rows = conn.execute(_users.select().where(_users.c.session_token == token)).fetchall()
        return [_row_to_identity(r) for r in rows]

    def get_by_id(self, identity_id: int) -> Identity | None:
        with self._connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == identity_id)).fetchone()
        return _row_to_identity(row) if row is not None else None

    def insert(self, identity: Identity) -> Identity:
        """Insert identity and return a copy carrying the generated id.

        A duplicate phone pair (or session token) raises DuplicateIdentity.
        Services look up before inserting, so this only fires on a race.
        """
        with self._connect() as conn:
            try:
                result = conn.execute(
                    _users.insert().values(
                        name=identity.name,
                        email=identity.email,
                        phone_country_code=identity.phone_country_code,
                        phone_number=identity.phone_number,
                        password_hash=identity.password_hash,
                        session_token=identity.session_token,
                        verified=identity.verified,
                    )
                )
            except IntegrityError as exc:
                conn.rollback()
                raise DuplicateIdentity(str(exc)) from exc
            conn.commit()
            new_id = result.inserted_primary_key[0]
        return replace(identity, id=new_id)

    def update(self, identity_id: int, **fields) -> None:
        """Update columns on an existing identity.

        Only columns in _UPDATABLE are accepted; unknown keys raise ValueError
        before any SQL is built. A missing row raises StoreError.
        """
        unknown = set(fields) - _UPDATABLE
        if unknown:
            raise ValueError(f"Unknown identity fields: {unknown!r}")
        if not fields:
            return
        with self._connect() as conn:
            result = conn.execute(_users.update().where(_users.c.id == identity_id).values(**fields))
            conn.commit()
        if result.rowcount == 0:
            raise StoreError(f"identity {identity_id} not found")

    # ------------------------------------------------------------------
    # Roles
    # ------------------------------------------------------------------

    def role_id(self, title: str) -> int | None:
        """Return the id of the role with this title, or None if it is not seeded."""
        with self._connect() as conn:
            value = conn.execute(select(_roles.c.id).where(_roles.c.title == title)).scalar()
        return value

    def insert_role(self, identity_id: int, role_id: int) -> None:
        """Assign a role. Assigning a role the identity already holds is a no-op."""
        with self._connect() as conn:
            held = conn.execute(
                select(_users_roles.c.id).where(
                    (_users_roles.c.user_id == identity_id) & (_users_roles.c.role_id == role_id)
                )
            ).first()
            if held is not None:
                return
            try:
                conn.execute(_users_roles.insert().values(user_id=identity_id, role_id=role_id))
                conn.commit()
            except IntegrityError:
                # A concurrent request assigned the same role first.
                conn.rollback()
                logger.info("Role %s already assigned to identity %s", role_id, identity_id)

    def assign_roles(self, identity_id: int, titles: Iterable[str]) -> None:
        """Assign roles by title. Unknown titles raise StoreError."""
        for title in titles:
            rid = self.role_id(title)
            if rid is None:
                raise StoreError(f"unknown role {title!r}")
            self.insert_role(identity_id, rid)

    def roles_for(self, identity_id: int) -> list[str]:
        """Return the role titles held by an identity, sorted."""
        with self._connect() as conn:
            rows = conn.execute(
                select(_roles.c.title)
                .select_from(_users_roles.join(_roles, _users_roles.c.role_id == _roles.c.id))
                .where(_users_roles.c.user_id == identity_id)
                .order_by(_roles.c.title)
            ).fetchall()
        return [r.title for r in rows]

    # ------------------------------------------------------------------
    # Health
    # ------------------------------------------------------------------

    def ping(self) -> bool:
        """Return True if a pooled connection can run a trivial query."""
        try:
            with self._connect() as conn:
                conn.execute(text("SELECT 1"))
        except StoreError:
            logger.exception("Identity store health check failed")
            return False
        return True

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mapper (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_identity(row) -> Identity:
    return Identity(
        id=row.id,
        name=row.name,
        email=row.email,
        phone_country_code=row.phone_country_code,
        phone_number=row.phone_number,
        password_hash=row.password_hash,
        session_token=row.session_token,
        verified=bool(row.verified),
    )
