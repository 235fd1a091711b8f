"""Shared test fixtures."""

from __future__ import annotations

from datetime import UTC, datetime
from pathlib import Path

import pytest

from tick.jsonl import serialize_tasks
from tick.models import Status, Task


def make_task(task_id: str, title: str | None = None, **kwargs) -> Task:
    ts = datetime(2026, 1, 19, 10, 0, 0, tzinfo=UTC)
    kwargs.setdefault("created", ts)
    kwargs.setdefault("updated", ts)
    return Task(id=task_id, title=title or f"Task {task_id}", **kwargs)


@pytest.fixture()
def sample_tasks() -> list[Task]:
    return [
        make_task("tick-aaa111", "First task", priority=1),
        make_task(
            "tick-bbb222",
            "Second task",
            status=Status.IN_PROGRESS,
            description="Needs the first one",
            blocked_by=["tick-aaa111"],
        ),
    ]


@pytest.fixture()
def tick_dir(tmp_path: Path) -> Path:
    """An initialized .tick directory with an empty tasks.jsonl."""
    d = tmp_path / ".tick"
    d.mkdir()
    (d / "tasks.jsonl").write_bytes(b"")
    return d


@pytest.fixture()
def populated_tick_dir(tick_dir: Path, sample_tasks: list[Task]) -> Path:
    (tick_dir / "tasks.jsonl").write_bytes(serialize_tasks(sample_tasks))
    return tick_dir


@pytest.fixture()
def task_factory():
    return make_task
