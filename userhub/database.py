"""Relational persistence for user records."""
from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, List, Mapping, Optional, Tuple

from sqlalchemy import (
    Column,
    DateTime,
    Integer,
    MetaData,
    String,
    Table,
    delete,
    func,
    insert,
    select,
    text,
    update,
)
from sqlalchemy.engine import Connection
from sqlalchemy.exc import SQLAlchemyError

from .config import DatabaseSettings
from .models import User
from .pool import ConnectionPool

logger = logging.getLogger("userhub.database")


metadata = MetaData()

users_table = Table(
    "users",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(255), nullable=False),
    Column("email", String(255), nullable=False),
    Column("created_at", DateTime, nullable=True, server_default=func.current_timestamp()),
)


class ValidationError(ValueError):
    """Raised when a required user field is missing."""


class UserNotFoundError(LookupError):
    """Raised when an update or delete matches no row."""

    def __init__(self, user_id: int) -> None:
        super().__init__(f"User {user_id} not found")
        self.user_id = user_id


class StoreError(RuntimeError):
    """Raised when the underlying database rejects an operation."""


def current_timestamp() -> datetime:
    """Naive UTC timestamp, which is what DATETIME columns hold."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _parse_datetime(value: object) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value))


def _require_fields(name: Optional[str], email: Optional[str]) -> Tuple[str, str]:
    normalized_name = (name or "").strip()
    normalized_email = (email or "").strip()
    if not normalized_name or not normalized_email:
        raise ValidationError("Name and email are required")
    return normalized_name, normalized_email


def _describe(exc: SQLAlchemyError) -> str:
    original = getattr(exc, "orig", None)
    return str(original if original is not None else exc)


@contextmanager
def _translate_errors(action: str) -> Iterator[None]:
    try:
        yield
    except SQLAlchemyError as exc:
        logger.exception("Database error while %s", action)
        raise StoreError(f"Error {action}: {_describe(exc)}") from exc


class Database:
    """Record access layer over the ``users`` table."""

    def __init__(self, pool: ConnectionPool) -> None:
        self._pool = pool

    @classmethod
    def from_url(cls, url: str) -> "Database":
        return cls(ConnectionPool(DatabaseSettings(url=url)))

    @property
    def pool(self) -> ConnectionPool:
        return self._pool

    def initialize(self) -> None:
        """Create the ``users`` table if it does not already exist."""

        with _translate_errors("creating the users table"):
            metadata.create_all(self._pool.engine)

    def close(self) -> None:
        self._pool.dispose()

    # ------------------------------------------------------------------
    # User records
    # ------------------------------------------------------------------
    def list_users(self) -> List[User]:
        with _translate_errors("fetching users"):
            with self._pool.connect() as conn:
                rows = conn.execute(select(users_table).order_by(users_table.c.id)).fetchall()
        return [self._row_to_user(row._mapping) for row in rows]

    def get_user(self, user_id: int) -> Optional[User]:
        with _translate_errors("fetching user"):
            with self._pool.connect() as conn:
                row = conn.execute(
                    select(users_table).where(users_table.c.id == user_id)
                ).fetchone()
        if row is None:
            return None
        return self._row_to_user(row._mapping)

    def create_user(self, name: Optional[str], email: Optional[str]) -> User:
        """Insert a new user and return the stored record."""

        normalized_name, normalized_email = _require_fields(name, email)

        with _translate_errors("creating user"):
            with self._pool.begin() as conn:
                result = conn.execute(
                    insert(users_table).values(name=normalized_name, email=normalized_email)
                )
                user_id = int(result.inserted_primary_key[0])
                row = conn.execute(
                    select(users_table).where(users_table.c.id == user_id)
                ).one()

        logger.info("Created user %s", user_id)
        return self._row_to_user(row._mapping)

    def update_user(self, user_id: int, name: Optional[str], email: Optional[str]) -> User:
        """Replace the name and email of an existing user."""

        normalized_name, normalized_email = _require_fields(name, email)

        with _translate_errors("updating user"):
            with self._pool.begin() as conn:
                result = conn.execute(
                    update(users_table)
                    .where(users_table.c.id == user_id)
                    .values(name=normalized_name, email=normalized_email)
                )
                if result.rowcount == 0:
                    raise UserNotFoundError(user_id)
                row = conn.execute(
                    select(users_table).where(users_table.c.id == user_id)
                ).one()

        return self._row_to_user(row._mapping)

    def delete_user(self, user_id: int) -> None:
        with _translate_errors("deleting user"):
            with self._pool.begin() as conn:
                result = conn.execute(delete(users_table).where(users_table.c.id == user_id))
        if result.rowcount == 0:
            raise UserNotFoundError(user_id)
        logger.info("Deleted user %s", user_id)

    def delete_all_users(self) -> int:
        """Remove every user and return how many rows were deleted."""

        with _translate_errors("deleting all users"):
            with self._pool.begin() as conn:
                result = conn.execute(delete(users_table))
        logger.info("Deleted all users (%s rows)", result.rowcount)
        return result.rowcount

    # ------------------------------------------------------------------
    # Lower level access
    # ------------------------------------------------------------------
    def query(self, sql: str, params: Optional[Mapping[str, Any]] = None) -> List[Dict[str, Any]]:
        """Run an arbitrary statement with named ``:param`` placeholders."""

        with _translate_errors("running query"):
            with self._pool.connect() as conn:
                result = conn.execute(text(sql), dict(params or {}))
                rows = [dict(row._mapping) for row in result] if result.returns_rows else []
                conn.commit()
        return rows

    @contextmanager
    def transaction(self) -> Iterator[Connection]:
        """Yield a connection inside a single transaction.

        The transaction commits when the block exits normally and rolls back
        otherwise. The connection goes back to the pool in every case.
        """

        try:
            with self._pool.begin() as conn:
                yield conn
        except SQLAlchemyError as exc:
            logger.exception("Transaction rolled back")
            raise StoreError(f"Database error during transaction: {_describe(exc)}") from exc

    @staticmethod
    def insert_user(
        conn: Connection,
        name: str,
        email: str,
        created_at: Optional[datetime] = None,
    ) -> int:
        values: Dict[str, object] = {"name": name, "email": email}
        if created_at is not None:
            values["created_at"] = created_at
        result = conn.execute(insert(users_table).values(**values))
        return int(result.inserted_primary_key[0])

    @staticmethod
    def _row_to_user(row: Mapping[str, Any]) -> User:
        return User(
            id=int(row["id"]),
            name=row["name"],
            email=row["email"],
            created_at=_parse_datetime(row["created_at"]),
        )


__all__ = [
    "Database",
    "StoreError",
    "UserNotFoundError",
    "ValidationError",
    "current_timestamp",
    "users_table",
]
