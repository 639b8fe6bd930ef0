"""SQLite-backed persistence for the account and tracked resources."""
from __future__ import annotations

import logging
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator, List, Optional, Sequence

from .errors import BackupImportError, ConflictError, NotFoundError, UnauthorizedError, ValidationError
from .models import BackupEntry, Resource, User
from .security import hash_password, verify_password

logger = logging.getLogger("tally.database")

PASSWORD_MIN_LENGTH = 6

# SQLite INTEGER PRIMARY KEY range; ids outside it can never match a row.
_MIN_ROW_ID = -(2**63)
_MAX_ROW_ID = 2**63 - 1

_RESOURCE_COLUMNS = {
    "name": "name",
    "group": "group_name",
    "expire_at": "expire_at",
}


def _is_row_id(value: int) -> bool:
    return _MIN_ROW_ID <= value <= _MAX_ROW_ID


def _ensure_directory(path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)


def _current_timestamp() -> datetime:
    return datetime.now(timezone.utc)


def _serialize_datetime(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).replace(microsecond=0).isoformat()


def _parse_datetime(value: str) -> datetime:
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class Database:
    """Simple wrapper around SQLite for persisting the user and its resources."""

    def __init__(self, path: Path) -> None:
        _ensure_directory(path)
        self._path = path

    @property
    def path(self) -> Path:
        return self._path

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._path, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        return conn

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        """Yield a connection that commits on success and rolls back on error."""

        conn = self._connect()
        try:
            with conn:
                yield conn
        finally:
            conn.close()

    def initialize(self) -> None:
        """Create the required tables if they do not already exist."""

        with self._transaction() as conn:
            conn.executescript(
                """
                CREATE TABLE IF NOT EXISTS users (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    username TEXT NOT NULL UNIQUE,
                    password_hash TEXT NOT NULL,
                    created_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS resources (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    name TEXT NOT NULL CHECK (name <> ''),
                    group_name TEXT NOT NULL DEFAULT '',
                    expire_at TEXT NOT NULL,
                    created_at TEXT NOT NULL
                );

                CREATE INDEX IF NOT EXISTS idx_resources_group_name ON resources(group_name);
                """
            )
        logger.debug("Schema ready at %s", self._path)

    # ------------------------------------------------------------------
    # User management
    # ------------------------------------------------------------------
    def count_users(self) -> int:
        with self._transaction() as conn:
            row = conn.execute("SELECT COUNT(*) AS total FROM users").fetchone()
        return int(row["total"])

    def bootstrap_default_user(self, username: str, password: str) -> Optional[User]:
        """Create the initial account when the users table is empty."""

        if self.count_users() > 0:
            return None
        user = self.create_user(username, password)
        logger.info("Created default user: %s", user.username)
        return user

    def create_user(self, username: str, password: str) -> User:
        normalized = username.strip()
        if not normalized:
            raise ValidationError("Username must not be empty")
        if not password:
            raise ValidationError("Password must not be empty")

        created_at = _current_timestamp()
        with self._transaction() as conn:
            try:
                cursor = conn.execute(
                    "INSERT INTO users (username, password_hash, created_at) VALUES (?, ?, ?)",
                    (normalized, hash_password(password), _serialize_datetime(created_at)),
                )
            except sqlite3.IntegrityError as exc:
                raise ConflictError("Username already exists") from exc
            user_id = cursor.lastrowid

        return User(id=int(user_id), username=normalized, created_at=created_at.replace(microsecond=0))

    def list_users(self) -> List[User]:
        with self._transaction() as conn:
            rows = conn.execute("SELECT * FROM users ORDER BY id").fetchall()
        return [self._row_to_user(row) for row in rows]

    def get_user(self, user_id: int) -> Optional[User]:
        with self._transaction() as conn:
            row = conn.execute("SELECT * FROM users WHERE id = ?", (user_id,)).fetchone()
        if row is None:
            return None
        return self._row_to_user(row)

    def get_user_by_username(self, username: str) -> Optional[User]:
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT * FROM users WHERE username = ?",
                (username.strip(),),
            ).fetchone()
        if row is None:
            return None
        return self._row_to_user(row)

    def authenticate_user(self, username: str, password: str) -> Optional[User]:
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT * FROM users WHERE username = ?",
                (username.strip(),),
            ).fetchone()
        if row is None:
            return None
        if not verify_password(password, str(row["password_hash"])):
            return None
        return self._row_to_user(row)

    def update_username(self, user_id: int, new_username: str) -> User:
        normalized = new_username.strip()
        if not normalized:
            raise ValidationError("Username must not be empty")

        with self._transaction() as conn:
            existing = conn.execute(
                "SELECT id FROM users WHERE username = ? AND id != ?",
                (normalized, user_id),
            ).fetchone()
            if existing is not None:
                raise ConflictError("Username already exists")
            try:
                cursor = conn.execute(
                    "UPDATE users SET username = ? WHERE id = ?",
                    (normalized, user_id),
                )
            except sqlite3.IntegrityError as exc:
                raise ConflictError("Username already exists") from exc
            if cursor.rowcount == 0:
                raise NotFoundError("User not found")

        refreshed = self.get_user(user_id)
        if refreshed is None:
            raise NotFoundError("User not found")
        logger.info("User %s renamed to %s", user_id, normalized)
        return refreshed

    def change_password(self, user_id: int, old_password: str, new_password: str) -> None:
        """Replace the password after checking the current one."""

        if len(new_password) < PASSWORD_MIN_LENGTH:
            raise ValidationError(
                f"Password must be at least {PASSWORD_MIN_LENGTH} characters"
            )

        with self._transaction() as conn:
            row = conn.execute(
                "SELECT password_hash FROM users WHERE id = ?",
                (user_id,),
            ).fetchone()
        if row is None:
            raise NotFoundError("User not found")
        if not verify_password(old_password, str(row["password_hash"])):
            raise UnauthorizedError("Invalid old password")

        self.set_user_password(user_id, new_password)
        logger.info("Password changed for user %s", user_id)

    def set_user_password(self, user_id: int, password: str) -> None:
        if len(password) < PASSWORD_MIN_LENGTH:
            raise ValidationError(
                f"Password must be at least {PASSWORD_MIN_LENGTH} characters"
            )
        with self._transaction() as conn:
            cursor = conn.execute(
                "UPDATE users SET password_hash = ? WHERE id = ?",
                (hash_password(password), user_id),
            )
            if cursor.rowcount == 0:
                raise NotFoundError("User not found")

    # ------------------------------------------------------------------
    # Resource management
    # ------------------------------------------------------------------
    def list_resources(self) -> List[Resource]:
        """Return every resource in insertion order."""

        with self._transaction() as conn:
            rows = conn.execute("SELECT * FROM resources ORDER BY id").fetchall()
        return [self._row_to_resource(row) for row in rows]

    def get_resource(self, resource_id: int) -> Optional[Resource]:
        if not _is_row_id(resource_id):
            return None
        with self._transaction() as conn:
            row = conn.execute("SELECT * FROM resources WHERE id = ?", (resource_id,)).fetchone()
        if row is None:
            return None
        return self._row_to_resource(row)

    def create_resource(
        self,
        *,
        name: str,
        group: str,
        expire_at: datetime,
        created_at: datetime,
    ) -> Resource:
        with self._transaction() as conn:
            cursor = conn.execute(
                """
                INSERT INTO resources (name, group_name, expire_at, created_at)
                VALUES (?, ?, ?, ?)
                """,
                (name, group, _serialize_datetime(expire_at), _serialize_datetime(created_at)),
            )
            resource_id = cursor.lastrowid

        resource = self.get_resource(int(resource_id))
        if resource is None:
            raise RuntimeError("Failed to load resource after creation")
        return resource

    def update_resource(self, resource_id: int, **fields: object) -> Optional[Resource]:
        """Write the supplied columns and return the refreshed row, or ``None`` if missing."""

        if not _is_row_id(resource_id):
            return None
        updates: List[str] = []
        values: List[object] = []
        for key, column in _RESOURCE_COLUMNS.items():
            if key not in fields:
                continue
            value = fields[key]
            if isinstance(value, datetime):
                value = _serialize_datetime(value)
            updates.append(f"{column} = ?")
            values.append(value)

        if not updates:
            return self.get_resource(resource_id)

        values.append(resource_id)
        query = f"UPDATE resources SET {', '.join(updates)} WHERE id = ?"

        with self._transaction() as conn:
            cursor = conn.execute(query, values)
            if cursor.rowcount == 0:
                return None

        return self.get_resource(resource_id)

    def delete_resource(self, resource_id: int) -> bool:
        if not _is_row_id(resource_id):
            return False
        with self._transaction() as conn:
            cursor = conn.execute("DELETE FROM resources WHERE id = ?", (resource_id,))
            return cursor.rowcount > 0

    def list_groups(self) -> List[str]:
        with self._transaction() as conn:
            rows = conn.execute(
                """
                SELECT DISTINCT group_name FROM resources
                 WHERE group_name IS NOT NULL AND group_name != ''
                 ORDER BY group_name
                """
            ).fetchall()
        return [str(row["group_name"]) for row in rows]

    def import_resources(
        self,
        entries: Sequence[BackupEntry],
        *,
        overwrite: bool,
        now: datetime,
    ) -> int:
        """Insert ``entries`` in one transaction, optionally clearing the table first.

        Either every entry is written or the table is left untouched.
        """

        with self._transaction() as conn:
            if overwrite:
                conn.execute("DELETE FROM resources")
            for index, entry in enumerate(entries):
                created_at = entry.created_at or now
                try:
                    conn.execute(
                        """
                        INSERT INTO resources (name, group_name, expire_at, created_at)
                        VALUES (?, ?, ?, ?)
                        """,
                        (
                            entry.name,
                            entry.group,
                            _serialize_datetime(entry.expire_at),
                            _serialize_datetime(created_at),
                        ),
                    )
                except sqlite3.DatabaseError as exc:
                    raise BackupImportError(
                        f"Failed to import resource #{index + 1}: {entry.name}",
                        imported=0,
                    ) from exc
        return len(entries)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _row_to_user(self, row: sqlite3.Row) -> User:
        return User(
            id=int(row["id"]),
            username=str(row["username"]),
            created_at=_parse_datetime(str(row["created_at"])),
        )

    def _row_to_resource(self, row: sqlite3.Row) -> Resource:
        return Resource(
            id=int(row["id"]),
            name=str(row["name"]),
            group=str(row["group_name"] or ""),
            expire_at=_parse_datetime(str(row["expire_at"])),
            created_at=_parse_datetime(str(row["created_at"])),
        )


__all__ = ["Database", "PASSWORD_MIN_LENGTH"]
