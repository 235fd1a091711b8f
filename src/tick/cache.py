"""SQLite query cache derived from tasks.jsonl.

The cache is expendable: delete cache.db at any time and it is rebuilt on the
next operation. Freshness is a SHA-256 of the raw tasks.jsonl bytes stored in
the metadata table; any mismatch (or no stored hash) means stale, and a stale
cache is rebuilt wholesale inside one transaction.

Tables:
    tasks(id PK, title, status, priority, description, parent, created, updated, closed)
    dependencies(task_id, blocked_by, position)   # one row per blocked_by entry, in order
    metadata(key PK, value)                       # key 'jsonl_hash'
"""

from __future__ import annotations

import contextlib
import hashlib
import logging
import sqlite3
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, TypeVar

from tick.errors import CacheError, RebuildError
from tick.models import format_ts
from tick.verbose import VerboseLogger

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable

    from tick.models import Task

T = TypeVar("T")

logger = logging.getLogger("tick.cache")

HASH_KEY = "jsonl_hash"

_SCHEMA = """
    CREATE TABLE IF NOT EXISTS tasks (
        id TEXT PRIMARY KEY,
        title TEXT NOT NULL,
        status TEXT NOT NULL DEFAULT 'open',
        priority INTEGER NOT NULL DEFAULT 2,
        description TEXT,
        parent TEXT,
        created TEXT NOT NULL,
        updated TEXT NOT NULL,
        closed TEXT
    );

    CREATE TABLE IF NOT EXISTS dependencies (
        task_id TEXT NOT NULL,
        blocked_by TEXT NOT NULL,
        position INTEGER NOT NULL DEFAULT 0,
        PRIMARY KEY (task_id, blocked_by)
    );

    CREATE TABLE IF NOT EXISTS metadata (
        key TEXT PRIMARY KEY,
        value TEXT
    );

    CREATE INDEX IF NOT EXISTS idx_tasks_status ON tasks(status);
    CREATE INDEX IF NOT EXISTS idx_tasks_priority ON tasks(priority);
    CREATE INDEX IF NOT EXISTS idx_tasks_parent ON tasks(parent);
"""

_INSERT_TASK = (
    "INSERT INTO tasks(id, title, status, priority, description, parent, created, updated, closed) "
    "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)"
)
_INSERT_DEP = "INSERT INTO dependencies(task_id, blocked_by, position) VALUES (?, ?, ?)"


def fingerprint(data: bytes) -> str:
    """Hex SHA-256 of the exact tasks.jsonl bytes."""
    return hashlib.sha256(data).hexdigest()


def _connect(db_path: Path) -> sqlite3.Connection:
    db_path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(str(db_path))
    try:
        conn.executescript(_SCHEMA)
    except sqlite3.Error:
        conn.close()
        raise
    return conn


def _task_row(t: Task) -> tuple[object, ...]:
    return (
        t.id,
        t.title,
        str(t.status),
        t.priority,
        t.description or None,
        t.parent or None,
        format_ts(t.created),
        format_ts(t.updated),
        format_ts(t.closed) if t.closed is not None else None,
    )


def _dependency_rows(tasks: Iterable[Task]) -> list[tuple[str, str, int]]:
    return [
        (t.id, blocked_by, position)
        for t in tasks
        for position, blocked_by in enumerate(t.blocked_by)
    ]


def remove_cache_files(db_path: Path) -> None:
    """Delete cache.db and any journal side files."""
    for candidate in (db_path, *(db_path.with_name(db_path.name + s) for s in ("-journal", "-wal", "-shm"))):
        candidate.unlink(missing_ok=True)


class IndexStore:
    """An open handle on cache.db."""

    def __init__(self, conn: sqlite3.Connection, path: Path) -> None:
        self._conn = conn
        self.path = path
        self.closed = False

    @classmethod
    def open(cls, path: Path | str) -> IndexStore:
        """Open cache.db, creating the schema if absent. Idempotent."""
        db_path = Path(path)
        try:
            conn = _connect(db_path)
        except sqlite3.Error as exc:
            msg = f"failed to open cache {db_path}: {exc}"
            raise CacheError(msg) from exc
        return cls(conn, db_path)

    @property
    def connection(self) -> sqlite3.Connection:
        return self._conn

    def close(self) -> None:
        self.closed = True
        self._conn.close()

    def stored_fingerprint(self) -> str | None:
        try:
            row = self._conn.execute(
                "SELECT value FROM metadata WHERE key = ?", (HASH_KEY,)
            ).fetchone()
        except sqlite3.Error as exc:
            msg = f"failed to read {HASH_KEY} from cache metadata: {exc}"
            raise CacheError(msg) from exc
        return row[0] if row else None

    def is_fresh(self, data: bytes) -> bool:
        """True when the stored hash matches data. No stored hash means stale."""
        stored = self.stored_fingerprint()
        if stored is None:
            return False
        return stored == fingerprint(data)

    def rebuild(self, tasks: Iterable[Task], data: bytes) -> None:
        """Replace every row from tasks and store the hash of data, all-or-nothing."""
        tasks = list(tasks)
        conn = self._conn
        try:
            with conn:
                conn.execute("DELETE FROM dependencies")
                conn.execute("DELETE FROM tasks")
                conn.executemany(_INSERT_TASK, [_task_row(t) for t in tasks])
                conn.executemany(_INSERT_DEP, _dependency_rows(tasks))
                conn.execute(
                    "INSERT OR REPLACE INTO metadata(key, value) VALUES (?, ?)",
                    (HASH_KEY, fingerprint(data)),
                )
        except sqlite3.Error as exc:
            msg = f"failed to rebuild cache: {exc}"
            raise RebuildError(msg) from exc

    def query(self, fn: Callable[[sqlite3.Connection], T]) -> T:
        return fn(self._conn)


def _recreate(db_path: Path) -> IndexStore:
    remove_cache_files(db_path)
    return IndexStore.open(db_path)


def ensure_fresh(
    db_path: Path | str,
    tasks: list[Task],
    data: bytes,
    *,
    cache: IndexStore | None = None,
    verbose: VerboseLogger | None = None,
    log: logging.Logger | None = None,
) -> IndexStore:
    """Return an open, fresh cache for data, rebuilding or recreating as needed.

    A cache that cannot be opened or read is treated as corrupt: the file is
    deleted and recreated. A failing rebuild is not self-healed and raises
    RebuildError.
    """
    db_path = Path(db_path)
    verbose = verbose or VerboseLogger.disabled()
    log = log or logger
    owned = cache is None

    verbose.log("checking cache freshness via hash comparison")
    try:
        if cache is None:
            cache = IndexStore.open(db_path)
        fresh = cache.is_fresh(data)
    except CacheError as exc:
        log.warning("cache at %s appears corrupted, rebuilding from scratch: %s", db_path, exc)
        if cache is not None:
            with contextlib.suppress(sqlite3.Error):
                cache.close()
        cache = _recreate(db_path)
        owned = True
        fresh = False

    if fresh:
        verbose.log("cache is fresh")
        return cache

    verbose.log("cache is stale")
    verbose.logf("rebuilding cache with %d tasks", len(tasks))
    try:
        cache.rebuild(tasks, data)
    except RebuildError:
        if owned:
            cache.close()
        raise
    verbose.log("cache rebuild complete")
    return cache


@dataclass(frozen=True)
class CacheStatus:
    """Result of a read-only staleness check."""

    state: str                    # missing | stale | fresh
    current_hash: str
    stored_hash: str | None = None

    @property
    def fresh(self) -> bool:
        return self.state == "fresh"

    def describe(self) -> str:
        if self.state == "missing":
            return "cache.db not found - cache has not been built"
        if self.state == "stale":
            return "cache.db is stale - hash mismatch between tasks.jsonl and cache"
        return "cache.db is fresh"


def cache_status(db_path: Path | str, data: bytes) -> CacheStatus:
    """Compare data against cache.db without creating or modifying it."""
    db_path = Path(db_path)
    current = fingerprint(data)
    if not db_path.exists():
        return CacheStatus("missing", current)
    try:
        conn = sqlite3.connect(f"{db_path.resolve().as_uri()}?mode=ro", uri=True)
    except sqlite3.Error:
        return CacheStatus("stale", current)
    try:
        row = conn.execute("SELECT value FROM metadata WHERE key = ?", (HASH_KEY,)).fetchone()
    except sqlite3.Error:
        # corrupt file, missing table: treated as stale
        return CacheStatus("stale", current)
    finally:
        conn.close()
    stored = row[0] if row else None
    return CacheStatus("fresh" if stored == current else "stale", current, stored)
