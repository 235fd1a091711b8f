from __future__ import annotations

import io
import logging
import sqlite3
from datetime import UTC, datetime
from pathlib import Path

import pytest

from tick.cache import IndexStore, cache_status, ensure_fresh, fingerprint
from tick.errors import CacheError, RebuildError
from tick.jsonl import serialize_tasks
from tick.verbose import VerboseLogger


@pytest.fixture()
def db_path(tmp_path: Path) -> Path:
    return tmp_path / "cache.db"


def _count(cache: IndexStore, table: str = "tasks") -> int:
    return cache.query(lambda conn: conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0])  # noqa: S608


def test_fingerprint_matches_only_identical_bytes() -> None:
    data = b'{"id":"tick-aaa111"}\n'
    assert fingerprint(data) == fingerprint(bytes(data))
    assert fingerprint(data) != fingerprint(data.replace(b"1", b"2", 1))
    assert fingerprint(data) != fingerprint(data + b"\n")
    assert len(fingerprint(b"")) == 64


def test_open_creates_schema_and_is_idempotent(db_path: Path) -> None:
    IndexStore.open(db_path).close()
    cache = IndexStore.open(db_path)
    tables = {
        r[0]
        for r in cache.connection.execute("SELECT name FROM sqlite_master WHERE type IN ('table', 'index')")
    }
    assert {"tasks", "dependencies", "metadata", "idx_tasks_status", "idx_tasks_priority", "idx_tasks_parent"} <= tables
    cache.close()


def test_no_stored_hash_is_stale(db_path: Path) -> None:
    cache = IndexStore.open(db_path)
    assert cache.is_fresh(b"") is False
    cache.close()


def test_rebuild_projects_tasks(db_path: Path, task_factory) -> None:
    closed = datetime(2026, 1, 20, 8, 0, 0, tzinfo=UTC)
    tasks = [
        task_factory("tick-aaa111", "A"),
        task_factory(
            "tick-bbb222", "B", status="done", description="desc", parent="tick-aaa111",
            blocked_by=["tick-ccc333", "tick-aaa111"], closed=closed,
        ),
    ]
    data = serialize_tasks(tasks)
    cache = IndexStore.open(db_path)
    cache.rebuild(tasks, data)

    assert cache.is_fresh(data)
    rows = cache.connection.execute(
        "SELECT id, status, description, parent, created, closed FROM tasks ORDER BY id"
    ).fetchall()
    assert rows == [
        ("tick-aaa111", "open", None, None, "2026-01-19T10:00:00Z", None),
        ("tick-bbb222", "done", "desc", "tick-aaa111", "2026-01-19T10:00:00Z", "2026-01-20T08:00:00Z"),
    ]
    deps = cache.connection.execute(
        "SELECT blocked_by FROM dependencies WHERE task_id = 'tick-bbb222' ORDER BY position"
    ).fetchall()
    assert [d[0] for d in deps] == ["tick-ccc333", "tick-aaa111"]
    cache.close()


def test_rebuild_drops_previous_generation(db_path: Path, task_factory) -> None:
    cache = IndexStore.open(db_path)
    first = [task_factory("tick-aaa111", blocked_by=["tick-zzz999"]), task_factory("tick-bbb222")]
    cache.rebuild(first, serialize_tasks(first))
    second = [task_factory("tick-ccc333")]
    cache.rebuild(second, serialize_tasks(second))
    assert _count(cache) == 1
    assert _count(cache, "dependencies") == 0
    cache.close()


def test_rebuild_is_all_or_nothing(db_path: Path, task_factory, sample_tasks) -> None:
    cache = IndexStore.open(db_path)
    good = serialize_tasks(sample_tasks)
    cache.rebuild(sample_tasks, good)

    dupes = [task_factory("tick-ddd444"), task_factory("tick-eee555"), task_factory("tick-ddd444")]
    with pytest.raises(RebuildError, match="UNIQUE"):
        cache.rebuild(dupes, serialize_tasks(dupes))

    ids = [r[0] for r in cache.connection.execute("SELECT id FROM tasks ORDER BY id")]
    assert ids == ["tick-aaa111", "tick-bbb222"]
    assert _count(cache, "dependencies") == 1
    assert cache.stored_fingerprint() == fingerprint(good)
    cache.close()


def test_query_propagates_callback_error(db_path: Path) -> None:
    cache = IndexStore.open(db_path)

    def fail(conn: sqlite3.Connection) -> None:
        raise ValueError("nope")

    with pytest.raises(ValueError, match="nope"):
        cache.query(fail)
    cache.close()


def test_ensure_fresh_twice_rebuilds_once(db_path: Path, sample_tasks) -> None:
    data = serialize_tasks(sample_tasks)
    out = io.StringIO()
    verbose = VerboseLogger(out, enabled=True)

    cache = ensure_fresh(db_path, sample_tasks, data, verbose=verbose)
    first = out.getvalue()
    out.seek(0)
    out.truncate()
    cache = ensure_fresh(db_path, sample_tasks, data, cache=cache, verbose=verbose)
    second = out.getvalue()

    assert "verbose: cache is stale" in first
    assert "verbose: cache rebuild complete" in first
    assert "verbose: cache is fresh" in second
    assert "rebuild" not in second
    assert _count(cache) == 2
    cache.close()


def test_ensure_fresh_recovers_from_garbage(db_path: Path, sample_tasks, caplog: pytest.LogCaptureFixture) -> None:
    db_path.write_bytes(b"this is definitely not a sqlite database" * 100)
    data = serialize_tasks(sample_tasks)

    with caplog.at_level(logging.WARNING, logger="tick.cache"):
        cache = ensure_fresh(db_path, sample_tasks, data)

    assert "appears corrupted" in caplog.text
    assert cache.is_fresh(data)
    assert _count(cache) == 2
    cache.close()


def test_ensure_fresh_recovers_from_closed_handle(db_path: Path, sample_tasks) -> None:
    data = serialize_tasks(sample_tasks)
    cache = ensure_fresh(db_path, sample_tasks, data)
    cache.close()

    healed = ensure_fresh(db_path, sample_tasks, data, cache=cache)
    assert healed is not cache
    assert healed.is_fresh(data)
    healed.close()


def test_ensure_fresh_rebuild_failure_raises(db_path: Path, task_factory) -> None:
    dupes = [task_factory("tick-aaa111"), task_factory("tick-aaa111")]
    with pytest.raises(RebuildError):
        ensure_fresh(db_path, dupes, serialize_tasks(dupes))


def test_open_garbage_raises_cache_error(db_path: Path) -> None:
    db_path.write_bytes(b"garbage" * 200)
    with pytest.raises(CacheError):
        IndexStore.open(db_path)


def test_cache_status_is_read_only(db_path: Path, sample_tasks) -> None:
    data = serialize_tasks(sample_tasks)
    assert cache_status(db_path, data).state == "missing"
    assert not db_path.exists()

    cache = ensure_fresh(db_path, sample_tasks, data)
    cache.close()
    status = cache_status(db_path, data)
    assert status.fresh
    assert status.stored_hash == fingerprint(data)

    assert cache_status(db_path, data + b"\n").state == "stale"

    db_path.write_bytes(b"garbage" * 200)
    assert cache_status(db_path, data).state == "stale"
