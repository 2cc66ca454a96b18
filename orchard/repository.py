"""SQL repository of fruits and events with per-thread transactions."""

from __future__ import annotations

import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Iterator, Optional

from orchard.database import SqliteDatabase
from orchard.domain import AlreadyExistsError, NotFoundError
from orchard.models import Event, Fruit

_FRUITS = Fruit.TABLE_NAME
_EVENTS = Event.TABLE_NAME
_FRUIT_COLUMNS = "id, name, created_at, updated_at, deleted_at"

_SCHEMA = f"""
CREATE TABLE IF NOT EXISTS {_FRUITS} (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    created_at TEXT,
    updated_at TEXT,
    deleted_at TEXT,
    name TEXT NOT NULL DEFAULT ''
);
CREATE INDEX IF NOT EXISTS idx_{_FRUITS}_deleted_at ON {_FRUITS} (deleted_at);
CREATE TABLE IF NOT EXISTS {_EVENTS} (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    created_at TEXT,
    data TEXT NOT NULL DEFAULT ''
);
"""


def create_schema(database: SqliteDatabase) -> None:
    """Create the fruit and event tables if they do not exist."""
    with database.lock:
        database.connection.executescript(_SCHEMA)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _stamp(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _parse(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


def _row_to_fruit(row: Any) -> Fruit:
    fruit_id, name, created_at, updated_at, deleted_at = row
    return Fruit(
        id=fruit_id,
        name=name,
        created_at=_parse(created_at),
        updated_at=_parse(updated_at),
        deleted_at=_parse(deleted_at),
    )


class FruitRepository:
    """Fruit and event storage; a transaction belongs to the thread that began it."""

    def __init__(self, database: SqliteDatabase) -> None:
        self._db = database
        self._local = threading.local()

    def _in_transaction(self) -> bool:
        return getattr(self._local, "active", False)

    @contextmanager
    def _session(self) -> Iterator[sqlite3.Connection]:
        if self._in_transaction():
            yield self._db.connection
        else:
            with self._db.lock:
                yield self._db.connection

    def begin(self) -> None:
        if self._in_transaction():
            raise RuntimeError("transaction already exists in context")
        self._db.lock.acquire()
        try:
            self._db.connection.execute("BEGIN")
        except BaseException:
            self._db.lock.release()
            raise
        self._local.active = True

    def _finish(self) -> None:
        self._local.active = False
        self._db.lock.release()

    def commit(self) -> None:
        if not self._in_transaction():
            raise RuntimeError("no transaction found in context")
        self._db.connection.execute("COMMIT")
        self._finish()

    def rollback(self) -> None:
        if not self._in_transaction():
            raise RuntimeError("no transaction found in context")
        try:
            self._db.connection.execute("ROLLBACK")
        finally:
            self._finish()

    def list_fruits(self, limit: int, offset: int) -> list[Fruit]:
        limit = limit if limit >= 0 else -1
        offset = max(offset, 0)
        with self._session() as conn:
            rows = conn.execute(
                f"SELECT {_FRUIT_COLUMNS} FROM {_FRUITS} WHERE deleted_at IS NULL "
                "ORDER BY id ASC LIMIT ? OFFSET ?",
                (limit, offset),
            ).fetchall()
        return [_row_to_fruit(row) for row in rows]

    def _first_fruit(self, fruit_id: int) -> Fruit:
        with self._session() as conn:
            row = conn.execute(
                f"SELECT {_FRUIT_COLUMNS} FROM {_FRUITS} WHERE id = ? AND deleted_at IS NULL "
                "ORDER BY id LIMIT 1",
                (fruit_id,),
            ).fetchone()
        if row is None:
            raise LookupError("record not found")
        return _row_to_fruit(row)

    def get_fruit_by_id(self, fruit_id: int) -> Fruit:
        try:
            return self._first_fruit(fruit_id)
        except Exception as err:
            if self._db.is_not_found_error(err):
                raise NotFoundError() from None
            raise

    def create_fruit(self, fruit: Fruit) -> None:
        now = _now()
        try:
            with self._session() as conn:
                cursor = conn.execute(
                    f"INSERT INTO {_FRUITS} (name, created_at, updated_at) VALUES (?, ?, ?)",
                    (fruit.name, _stamp(now), _stamp(now)),
                )
        except sqlite3.Error as err:
            if self._db.is_duplicate_key_error(err):
                raise AlreadyExistsError() from err
            raise
        fruit.id = cursor.lastrowid or 0
        fruit.created_at = now
        fruit.updated_at = now

    def update_fruit(self, fruit: Fruit) -> None:
        if not fruit.id:
            self.create_fruit(fruit)
            return
        now = _now()
        with self._session() as conn:
            cursor = conn.execute(
                f"UPDATE {_FRUITS} SET name = ?, updated_at = ? WHERE id = ? AND deleted_at IS NULL",
                (fruit.name, _stamp(now), fruit.id),
            )
            if cursor.rowcount == 0:
                conn.execute(
                    f"INSERT INTO {_FRUITS} (id, name, created_at, updated_at, deleted_at) "
                    "VALUES (?, ?, ?, ?, ?) ON CONFLICT(id) DO UPDATE SET "
                    "name = excluded.name, created_at = excluded.created_at, "
                    "updated_at = excluded.updated_at, deleted_at = excluded.deleted_at",
                    (
                        fruit.id,
                        fruit.name,
                        _stamp(fruit.created_at),
                        _stamp(now),
                        _stamp(fruit.deleted_at),
                    ),
                )
        fruit.updated_at = now

    def delete_fruit(self, fruit: Fruit) -> None:
        now = _now()
        with self._session() as conn:
            cursor = conn.execute(
                f"UPDATE {_FRUITS} SET deleted_at = ? WHERE id = ? AND deleted_at IS NULL",
                (_stamp(now), fruit.id),
            )
        if cursor.rowcount == 0:
            raise NotFoundError()
        fruit.deleted_at = now

    def save_event(self, event: Event) -> None:
        now = _now()
        with self._session() as conn:
            cursor = conn.execute(
                f"INSERT INTO {_EVENTS} (data, created_at) VALUES (?, ?)",
                (event.data, _stamp(now)),
            )
        event.id = cursor.lastrowid or 0
        event.created_at = now