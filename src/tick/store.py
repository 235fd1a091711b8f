"""Storage engine: tasks.jsonl + SQLite cache behind a file lock.

Layout of a tick directory:
    .tick/
        tasks.jsonl   # source of truth (git-tracked)
        lock          # zero-length flock target
        cache.db      # derived SQLite cache (safe to delete)

Every operation runs the same protocol:

    query(fn):  shared lock -> read tasks.jsonl -> ensure cache fresh -> fn(conn) -> unlock
    mutate(fn): exclusive lock -> read tasks.jsonl -> ensure cache fresh -> fn(tasks)
                -> atomic rewrite of tasks.jsonl -> refresh cache -> unlock

The post-write cache refresh in mutate() is best-effort: tasks.jsonl is already
written, so a refresh failure is logged as a warning and the next operation
sees a stale hash and rebuilds.
"""

from __future__ import annotations

import contextlib
import logging
from pathlib import Path
from typing import TYPE_CHECKING, TypeVar

from tick.cache import CacheStatus, IndexStore, cache_status, ensure_fresh, remove_cache_files
from tick.errors import TickError
from tick.jsonl import parse_tasks, write_tasks
from tick.lock import DEFAULT_TIMEOUT, acquire_exclusive, acquire_shared
from tick.verbose import VerboseLogger

if TYPE_CHECKING:
    import sqlite3
    from collections.abc import Callable, Iterator
    from types import TracebackType

    from tick.models import Task

T = TypeVar("T")

TASKS_FILENAME = "tasks.jsonl"
LOCK_FILENAME = "lock"
CACHE_FILENAME = "cache.db"


class Store:
    """Lock-coordinated access to one .tick directory."""

    def __init__(
        self,
        tick_dir: Path | str,
        *,
        lock_timeout: float = DEFAULT_TIMEOUT,
        verbose: VerboseLogger | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.tick_dir = Path(tick_dir)
        if not self.tick_dir.exists():
            msg = f"tick directory does not exist: {self.tick_dir}"
            raise TickError(msg)
        if not self.tick_dir.is_dir():
            msg = f"tick path is not a directory: {self.tick_dir}"
            raise TickError(msg)

        self.jsonl_path = self.tick_dir / TASKS_FILENAME
        if not self.jsonl_path.is_file():
            msg = f"{TASKS_FILENAME} not found in {self.tick_dir}"
            raise TickError(msg)

        self.lock_path = self.tick_dir / LOCK_FILENAME
        self.cache_path = self.tick_dir / CACHE_FILENAME
        self.lock_timeout = lock_timeout
        self.verbose = verbose or VerboseLogger.disabled()
        self.logger = logger or logging.getLogger("tick.store")
        self.cache: IndexStore | None = None

    def close(self) -> None:
        cache, self.cache = self.cache, None
        if cache is not None:
            cache.close()

    def __enter__(self) -> Store:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    def query(self, fn: Callable[[sqlite3.Connection], T]) -> T:
        """Run fn against a fresh cache under a shared lock. fn's result or error passes through."""
        with self._locked(shared=True):
            tasks, data = self._read()
            cache = self._ensure_fresh(tasks, data)
            return cache.query(fn)

    def mutate(self, fn: Callable[[list[Task]], list[Task]]) -> list[Task]:
        """Read-modify-write tasks.jsonl under an exclusive lock. Returns the new task list.

        If fn raises, nothing is written. If the rewrite succeeds but the cache
        refresh fails, a warning is logged and the mutation still succeeds.
        """
        with self._locked(shared=False):
            tasks, data = self._read()
            self._ensure_fresh(tasks, data)

            modified = list(fn(tasks))

            self.verbose.logf("atomic write to %s", self.jsonl_path)
            write_tasks(self.jsonl_path, modified)
            self.verbose.log("atomic write complete")

            self._refresh_after_write(modified)
            return modified

    def rebuild(self) -> int:
        """Force a full cache rebuild from tasks.jsonl, bypassing the freshness check.

        Returns the number of tasks written to the cache.
        """
        with self._locked(shared=False):
            self.close()
            self.verbose.logf("deleting existing cache at %s", self.cache_path)
            remove_cache_files(self.cache_path)
            tasks, data = self._read()
            self._ensure_fresh(tasks, data)
            return len(tasks)

    def cache_status(self) -> CacheStatus:
        """Read-only staleness check; never creates or modifies cache.db."""
        return self.snapshot()[1]

    def snapshot(self) -> tuple[bytes, CacheStatus]:
        """Raw tasks.jsonl bytes and the cache state, taken under one shared lock.

        Nothing is parsed, so this works on a file that query() would reject.
        """
        with self._locked(shared=True):
            data = self.jsonl_path.read_bytes()
            return data, cache_status(self.cache_path, data)

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    @contextlib.contextmanager
    def _locked(self, *, shared: bool) -> Iterator[None]:
        kind = "shared" if shared else "exclusive"
        acquire = acquire_shared if shared else acquire_exclusive
        self.verbose.logf("acquiring %s lock on %s", kind, self.lock_path)
        lock = acquire(self.lock_path, self.lock_timeout)
        self.verbose.logf("%s lock acquired", kind)
        try:
            yield
        finally:
            lock.release()
            self.verbose.logf("%s lock released", kind)

    def _read(self) -> tuple[list[Task], bytes]:
        """Read tasks.jsonl once and parse it from memory."""
        data = self.jsonl_path.read_bytes()
        tasks = parse_tasks(data)
        self.verbose.logf("parsed %d tasks from %s", len(tasks), TASKS_FILENAME)
        return tasks, data

    def _ensure_fresh(self, tasks: list[Task], data: bytes) -> IndexStore:
        try:
            self.cache = ensure_fresh(
                self.cache_path,
                tasks,
                data,
                cache=self.cache,
                verbose=self.verbose,
                log=self.logger,
            )
        except TickError:
            if self.cache is not None and self.cache.closed:
                self.cache = None
            raise
        return self.cache

    def _refresh_after_write(self, tasks: list[Task]) -> None:
        """Rebuild the cache from the bytes just written. Failures only warn."""
        cache = self.cache
        if cache is None:
            self.logger.warning("cache handle unavailable after write; will rebuild on next access")
            return
        try:
            data = self.jsonl_path.read_bytes()
        except OSError as exc:
            self.logger.warning("could not read %s after write for cache update: %s", TASKS_FILENAME, exc)
            return

        self.verbose.logf("rebuilding cache with %d tasks", len(tasks))
        try:
            cache.rebuild(tasks, data)
        except TickError as exc:
            self.logger.warning(
                "cache update failed after successful %s write (will self-heal on next read): %s",
                TASKS_FILENAME,
                exc,
            )
            return
        self.verbose.log("cache rebuild complete")
