from __future__ import annotations

from datetime import UTC, datetime, timedelta, timezone

import pytest

from tick.errors import ParseError, TickError
from tick.models import Status, Task, dedupe_ids, format_ts, new_task_id, parse_ts, resolve_id


def test_format_ts_normalizes_to_utc_seconds() -> None:
    ts = datetime(2026, 1, 19, 12, 30, 45, 987654, tzinfo=timezone(timedelta(hours=2)))
    assert format_ts(ts) == "2026-01-19T10:30:45Z"


def test_format_ts_treats_naive_as_utc() -> None:
    assert format_ts(datetime(2026, 1, 19, 10, 0, 0)) == "2026-01-19T10:00:00Z"


def test_parse_ts_rejects_non_canonical() -> None:
    with pytest.raises(ParseError):
        parse_ts("2026-01-19 10:00:00")


def test_to_dict_omits_empty_optionals(task_factory) -> None:
    d = task_factory("tick-abc123", description="", parent="").to_dict()
    assert list(d) == ["id", "title", "status", "priority", "created", "updated"]


def test_from_dict_maps_empty_strings_to_none() -> None:
    task = Task.from_dict({
        "id": "tick-abc123",
        "title": "t",
        "status": "open",
        "priority": 2,
        "description": "",
        "parent": "",
        "created": "2026-01-19T10:00:00Z",
        "updated": "2026-01-19T10:00:00Z",
    })
    assert task.description is None
    assert task.parent is None
    assert task.closed is None
    assert task.blocked_by == []


def test_from_dict_missing_field() -> None:
    with pytest.raises(ParseError, match="created"):
        Task.from_dict({"id": "x", "title": "t", "status": "open", "updated": "2026-01-19T10:00:00Z"})


def test_from_dict_bad_status() -> None:
    with pytest.raises(ParseError, match="status"):
        Task.from_dict({
            "id": "x", "title": "t", "status": "blocked",
            "created": "2026-01-19T10:00:00Z", "updated": "2026-01-19T10:00:00Z",
        })


def test_new_task_id_retries_on_collision() -> None:
    seen: list[str] = []

    def exists(task_id: str) -> bool:
        seen.append(task_id)
        return len(seen) < 3

    task_id = new_task_id(exists)
    assert task_id == seen[-1]
    assert len(seen) == 3
    assert task_id.startswith("tick-")
    assert len(task_id) == len("tick-") + 6


def test_new_task_id_gives_up() -> None:
    with pytest.raises(TickError, match="5 attempts"):
        new_task_id(lambda _: True)


def test_new_validates_title_and_priority() -> None:
    with pytest.raises(TickError, match="empty"):
        Task.new("   ", exists=lambda _: False)
    with pytest.raises(TickError, match="newlines"):
        Task.new("a\nb", exists=lambda _: False)
    with pytest.raises(TickError, match="priority"):
        Task.new("ok", exists=lambda _: False, priority=7)


def test_new_sets_defaults() -> None:
    task = Task.new("  Write docs  ", exists=lambda _: False)
    assert task.title == "Write docs"
    assert task.status is Status.OPEN
    assert task.priority == 2
    assert task.created == task.updated
    assert task.created.tzinfo is UTC
    assert task.created.microsecond == 0


def test_new_drops_repeated_blockers() -> None:
    task = Task.new("Blocked", exists=lambda _: False, blocked_by=["tick-bbb222", "tick-aaa111", "TICK-BBB222"])
    assert task.blocked_by == ["tick-bbb222", "tick-aaa111"]


def test_dedupe_ids_keeps_first_occurrence() -> None:
    assert dedupe_ids(["b", "a", "B", "b", "c"]) == ["b", "a", "c"]


IDS = ["tick-a3f1b2", "tick-a3f1b3", "tick-b12345"]


@pytest.mark.parametrize("partial", ["b12", "tick-b12", "B12", "TICK-B12", "b1234", "tick-b12345"])
def test_resolve_id_prefixes(partial: str) -> None:
    assert resolve_id(partial, IDS) == "tick-b12345"


def test_resolve_id_exact_match_wins() -> None:
    assert resolve_id("tick-a3f1b2", IDS) == "tick-a3f1b2"
    assert resolve_id("t-1", ["t-1", "t-10"]) == "t-1"


def test_resolve_id_ambiguous_lists_matches() -> None:
    with pytest.raises(TickError, match="ambiguous") as excinfo:
        resolve_id("a3f", IDS)
    assert "tick-a3f1b2" in str(excinfo.value)
    assert "tick-a3f1b3" in str(excinfo.value)


@pytest.mark.parametrize("partial", ["", "a", "ab", "tick-ab"])
def test_resolve_id_prefix_too_short(partial: str) -> None:
    with pytest.raises(TickError, match="at least 3 hex characters"):
        resolve_id(partial, IDS)


@pytest.mark.parametrize("partial", ["zzz", "TICK-ZZZ", "abcdef"])
def test_resolve_id_not_found(partial: str) -> None:
    with pytest.raises(TickError, match=f"Task '{partial}' not found"):
        resolve_id(partial, IDS)


@pytest.mark.parametrize(
    ("command", "start", "end", "closed"),
    [
        ("start", Status.OPEN, Status.IN_PROGRESS, False),
        ("done", Status.IN_PROGRESS, Status.DONE, True),
        ("cancel", Status.OPEN, Status.CANCELLED, True),
        ("reopen", Status.DONE, Status.OPEN, False),
    ],
)
def test_transition(task_factory, command: str, start: Status, end: Status, closed: bool) -> None:
    task = task_factory("tick-abc123", status=start)
    if start is Status.DONE:
        task.closed = task.updated
    old, new = task.transition(command)
    assert (old, new) == (start, end)
    assert task.status is end
    assert (task.closed is not None) is closed


def test_invalid_transition_leaves_task_untouched(task_factory) -> None:
    task = task_factory("tick-abc123", status=Status.DONE)
    before = task.to_dict()
    with pytest.raises(TickError, match="Cannot start"):
        task.transition("start")
    assert task.to_dict() == before
