"""SQLite connection wrapper and goose-style schema migrations."""

from __future__ import annotations

import logging
import re
import sqlite3
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Optional

MEMORY_DSN = "file::memory:"

_VERSION_TABLE = "goose_db_version"
_MIGRATION_NAME = re.compile(r"^(\d+)_.*\.sql$")
_GOOSE_MARKER = "-- +goose"

_logger = logging.getLogger(__name__)

# Closing an in-memory database destroys its data, so migrated ones stay open.
_kept_alive: list[sqlite3.Connection] = []


@dataclass(frozen=True)
class ConnectionOption:
    """One ``key=value`` query parameter of an SQLite connection string."""

    key: str
    value: str


def add_connection_options(db_path: str, conn_opts: Optional[Iterable[ConnectionOption]]) -> str:
    """Append connection options to a database path as a query string."""
    opts = list(conn_opts or ())
    if not opts:
        return db_path
    return db_path + "?" + "&".join(f"{opt.key}={opt.value}" for opt in opts)


def _connect(dsn: str) -> sqlite3.Connection:
    uri = dsn.startswith("file:")
    if not uri and "?" in dsn:
        dsn = "file:" + dsn
        uri = True
    return sqlite3.connect(dsn, uri=uri, check_same_thread=False, isolation_level=None)


@dataclass(frozen=True)
class DatabaseStats:
    """Connection pool statistics of a database."""

    max_open_connections: int = 0
    open_connections: int = 0
    in_use: int = 0
    idle: int = 0
    wait_count: int = 0
    wait_duration: float = 0.0
    max_idle_closed: int = 0
    max_idle_time_closed: int = 0
    max_lifetime_closed: int = 0


class _TrackedLock:
    """Re-entrant lock guarding the single connection, counting contention."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._depth = 0
        self.wait_count = 0
        self.wait_duration = 0.0

    def acquire(self) -> None:
        if not self._lock.acquire(blocking=False):
            started = time.monotonic()
            self._lock.acquire()
            self.wait_count += 1
            self.wait_duration += time.monotonic() - started
        self._depth += 1

    def release(self) -> None:
        self._depth -= 1
        self._lock.release()

    @property
    def held(self) -> bool:
        return self._depth > 0

    def __enter__(self) -> "_TrackedLock":
        self.acquire()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.release()


class SqliteDatabase:
    """A single shared SQLite connection, serialised by ``lock``."""

    MAX_OPEN_CONNECTIONS = 1

    def __init__(
        self,
        db_path: str,
        options: Optional[Iterable[ConnectionOption]] = None,
        query_logging: bool = False,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.logger = logger or _logger
        self.dsn = add_connection_options(db_path, options)
        self.connection = _connect(self.dsn)
        self.lock = _TrackedLock()
        self._closed = False
        if query_logging:
            self.connection.set_trace_callback(self._log_query)

    def _log_query(self, statement: str) -> None:
        self.logger.debug("query: %s", statement)

    def __enter__(self) -> "SqliteDatabase":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.shutdown()

    def shutdown(self) -> None:
        """Close the connection."""
        with self.lock:
            self.connection.close()
            self._closed = True

    def stats(self) -> DatabaseStats:
        open_connections = 0 if self._closed else 1
        in_use = 1 if open_connections and self.lock.held else 0
        return DatabaseStats(
            max_open_connections=self.MAX_OPEN_CONNECTIONS,
            open_connections=open_connections,
            in_use=in_use,
            idle=open_connections - in_use,
            wait_count=self.lock.wait_count,
            wait_duration=self.lock.wait_duration,
        )

    def ping(self) -> None:
        """Run a trivial query; raises if the database cannot be used."""
        with self.lock:
            self.connection.execute("SELECT 1").fetchone()

    def is_not_found_error(self, err: BaseException) -> bool:
        return isinstance(err, LookupError)

    def is_duplicate_key_error(self, err: BaseException) -> bool:
        if not isinstance(err, sqlite3.IntegrityError):
            return False
        name = getattr(err, "sqlite_errorname", None)
        if name is not None:
            return name == "SQLITE_CONSTRAINT_UNIQUE"
        return str(err).startswith("UNIQUE constraint failed")


def _parse_up_section(path: Path) -> str:
    up_lines: list[str] = []
    section: Optional[str] = None
    found_up = False
    for line in path.read_text(encoding="utf-8").splitlines():
        marker = line.strip()
        if marker.startswith(_GOOSE_MARKER):
            directive = marker[len(_GOOSE_MARKER):].strip().upper()
            if directive == "UP":
                section, found_up = "up", True
            elif directive == "DOWN":
                section = "down"
            continue
        if section == "up":
            up_lines.append(line)
    if not found_up:
        raise ValueError(f"{path.name}: missing '-- +goose Up' annotation")
    return "\n".join(up_lines)


def _load_migrations(directory: Path) -> list[tuple[int, Path]]:
    if not directory.is_dir():
        raise FileNotFoundError(f"migration directory not found: {directory}")
    found: dict[int, Path] = {}
    for path in directory.iterdir():
        match = _MIGRATION_NAME.match(path.name)
        if match is None or not path.is_file():
            continue
        version = int(match.group(1))
        if version in found:
            raise ValueError(
                f"duplicate migration version {version}: {found[version].name}, {path.name}"
            )
        found[version] = path
    return sorted(found.items())


def _applied_versions(conn: sqlite3.Connection) -> set[int]:
    conn.execute(
        f"CREATE TABLE IF NOT EXISTS {_VERSION_TABLE} ("
        "id INTEGER PRIMARY KEY AUTOINCREMENT, "
        "version_id INTEGER NOT NULL, "
        "is_applied INTEGER NOT NULL, "
        "tstamp TIMESTAMP DEFAULT (datetime('now')))"
    )
    rows = conn.execute(f"SELECT version_id, is_applied FROM {_VERSION_TABLE} ORDER BY id").fetchall()
    if not rows:
        conn.execute(f"INSERT INTO {_VERSION_TABLE} (version_id, is_applied) VALUES (0, 1)")
        rows = [(0, 1)]
    state = {version: bool(applied) for version, applied in rows}
    return {version for version, applied in state.items() if applied}


def _apply(conn: sqlite3.Connection, version: int, up_sql: str) -> None:
    script = (
        "BEGIN;\n"
        f"{up_sql}\n;\n"
        f"INSERT INTO {_VERSION_TABLE} (version_id, is_applied) VALUES ({int(version)}, 1);\n"
        "COMMIT;\n"
    )
    try:
        conn.executescript(script)
    except sqlite3.Error:
        if conn.in_transaction:
            conn.execute("ROLLBACK")
        raise


def migrate(db_path: str, schema_path: str, *conn_opts: ConnectionOption) -> list[int]:
    """Apply every pending migration in ``schema_path``; return the applied versions."""
    migrations = _load_migrations(Path(schema_path))
    conn = _connect(add_connection_options(db_path, conn_opts))
    done: list[int] = []
    try:
        applied = _applied_versions(conn)
        for version, path in migrations:
            if version in applied:
                continue
            _apply(conn, version, _parse_up_section(path))
            _logger.info("OK   %s", path.name)
            done.append(version)
        if not done:
            _logger.info("no migrations to run")
    except BaseException:
        conn.close()
        raise
    if db_path == MEMORY_DSN:
        _kept_alive.append(conn)
    else:
        conn.close()
    return done