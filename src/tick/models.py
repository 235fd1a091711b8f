"""Task data model persisted in tasks.jsonl."""

from __future__ import annotations

import secrets
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import TYPE_CHECKING, Any

from tick.errors import ParseError, TickError

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable

TIME_FORMAT = "%Y-%m-%dT%H:%M:%SZ"

_ID_PREFIX = "tick-"
_ID_RANDOM_BYTES = 3
_MAX_ID_RETRIES = 5
_MIN_PREFIX_LENGTH = 3
_MAX_TITLE_LENGTH = 500
MIN_PRIORITY = 0
MAX_PRIORITY = 4
DEFAULT_PRIORITY = 2


class Status(StrEnum):
    OPEN = "open"
    IN_PROGRESS = "in_progress"
    DONE = "done"
    CANCELLED = "cancelled"


# command -> (allowed source statuses, target status)
_TRANSITIONS: dict[str, tuple[tuple[Status, ...], Status]] = {
    "start": ((Status.OPEN,), Status.IN_PROGRESS),
    "done": ((Status.OPEN, Status.IN_PROGRESS), Status.DONE),
    "cancel": ((Status.OPEN, Status.IN_PROGRESS), Status.CANCELLED),
    "reopen": ((Status.DONE, Status.CANCELLED), Status.OPEN),
}


def utcnow() -> datetime:
    """Current UTC time truncated to whole seconds."""
    return datetime.now(UTC).replace(microsecond=0)


def normalize_ts(value: datetime) -> datetime:
    """Coerce to an aware UTC datetime with second precision. Naive values are UTC."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(UTC).replace(microsecond=0)


def format_ts(value: datetime) -> str:
    return normalize_ts(value).strftime(TIME_FORMAT)


def parse_ts(text: str) -> datetime:
    """Parse the canonical YYYY-MM-DDTHH:MM:SSZ form. Anything else is rejected."""
    try:
        return datetime.strptime(text, TIME_FORMAT).replace(tzinfo=UTC)
    except (TypeError, ValueError) as exc:
        msg = f"invalid timestamp {text!r} (expected YYYY-MM-DDTHH:MM:SSZ)"
        raise ParseError(msg) from exc


def normalize_id(task_id: str) -> str:
    """IDs match case-insensitively."""
    return task_id.lower()


def resolve_id(partial: str, ids: Iterable[str]) -> str:
    """Resolve a full ID or a unique hex prefix, with or without "tick-", to a stored ID."""
    wanted = normalize_id(partial.strip())
    ids = list(ids)
    for task_id in ids:
        if normalize_id(task_id) == wanted:
            return task_id

    hex_part = wanted.removeprefix(_ID_PREFIX)
    if len(hex_part) < _MIN_PREFIX_LENGTH:
        msg = f"partial ID must be at least {_MIN_PREFIX_LENGTH} hex characters"
        raise TickError(msg)
    prefix = _ID_PREFIX + hex_part
    matches = [t for t in ids if normalize_id(t).startswith(prefix)]
    if not matches:
        msg = f"Task '{partial}' not found"
        raise TickError(msg)
    if len(matches) > 1:
        msg = f"ambiguous ID '{partial}' matches: {', '.join(sorted(matches))}"
        raise TickError(msg)
    return matches[0]


def dedupe_ids(ids: Iterable[str]) -> list[str]:
    """Drop case-insensitive repeats, keeping the first occurrence."""
    seen: dict[str, str] = {}
    for task_id in ids:
        seen.setdefault(normalize_id(task_id), task_id)
    return list(seen.values())


def new_task_id(exists: Callable[[str], bool]) -> str:
    """Generate a task ID: tick-<6 hex chars>, retrying on collision."""
    for _ in range(_MAX_ID_RETRIES):
        task_id = _ID_PREFIX + secrets.token_hex(_ID_RANDOM_BYTES)
        if not exists(task_id):
            return task_id
    msg = f"Failed to generate unique ID after {_MAX_ID_RETRIES} attempts - task list may be too large"
    raise TickError(msg)


def validate_title(title: str) -> str:
    cleaned = title.strip()
    if not cleaned:
        raise TickError("title is required and cannot be empty")
    if "\n" in cleaned or "\r" in cleaned:
        raise TickError("title cannot contain newlines")
    if len(cleaned) > _MAX_TITLE_LENGTH:
        msg = f"title exceeds maximum length of {_MAX_TITLE_LENGTH} characters"
        raise TickError(msg)
    return cleaned


def validate_priority(priority: int) -> None:
    if not MIN_PRIORITY <= priority <= MAX_PRIORITY:
        msg = f"priority must be between {MIN_PRIORITY} and {MAX_PRIORITY}, got {priority}"
        raise TickError(msg)


@dataclass
class Task:
    """A single line of tasks.jsonl."""

    id: str
    title: str
    status: Status = Status.OPEN
    priority: int = DEFAULT_PRIORITY
    description: str | None = None
    blocked_by: list[str] = field(default_factory=list)
    parent: str | None = None
    created: datetime = field(default_factory=utcnow)
    updated: datetime = field(default_factory=utcnow)
    closed: datetime | None = None

    def __post_init__(self) -> None:
        self.status = Status(self.status)
        self.description = self.description or None
        self.parent = self.parent or None
        self.blocked_by = list(self.blocked_by or [])
        self.created = normalize_ts(self.created)
        self.updated = normalize_ts(self.updated)
        if self.closed is not None:
            self.closed = normalize_ts(self.closed)

    @classmethod
    def new(
        cls,
        title: str,
        *,
        exists: Callable[[str], bool],
        priority: int = DEFAULT_PRIORITY,
        description: str | None = None,
        blocked_by: list[str] | None = None,
        parent: str | None = None,
    ) -> Task:
        """Create a validated open task with a fresh ID."""
        cleaned = validate_title(title)
        validate_priority(priority)
        task_id = new_task_id(exists)
        blocked_by = dedupe_ids(blocked_by or [])
        for dep in blocked_by:
            if normalize_id(dep) == normalize_id(task_id):
                msg = f"task {task_id} cannot block itself"
                raise TickError(msg)
        if parent and normalize_id(parent) == normalize_id(task_id):
            msg = f"task {task_id} cannot be its own parent"
            raise TickError(msg)
        now = utcnow()
        return cls(
            id=task_id,
            title=cleaned,
            priority=priority,
            description=description,
            blocked_by=blocked_by,
            parent=parent,
            created=now,
            updated=now,
        )

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> Task:
        for key in ("id", "title", "status", "created", "updated"):
            if key not in d:
                msg = f"missing required field {key!r}"
                raise ParseError(msg)
        try:
            status = Status(d["status"])
        except ValueError as exc:
            msg = f"invalid status {d['status']!r}"
            raise ParseError(msg) from exc
        priority = d.get("priority", DEFAULT_PRIORITY)
        if not isinstance(priority, int) or isinstance(priority, bool):
            msg = f"invalid priority {priority!r}"
            raise ParseError(msg)
        blocked_by = d.get("blocked_by") or []
        if not isinstance(blocked_by, list):
            msg = f"invalid blocked_by {blocked_by!r}"
            raise ParseError(msg)
        closed = d.get("closed")
        return cls(
            id=str(d["id"]),
            title=str(d["title"]),
            status=status,
            priority=priority,
            description=d.get("description") or None,
            blocked_by=[str(b) for b in blocked_by],
            parent=d.get("parent") or None,
            created=parse_ts(d["created"]),
            updated=parse_ts(d["updated"]),
            closed=parse_ts(closed) if closed else None,
        )

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {
            "id": self.id,
            "title": self.title,
            "status": str(self.status),
            "priority": self.priority,
        }
        if self.description:
            d["description"] = self.description
        if self.blocked_by:
            d["blocked_by"] = list(self.blocked_by)
        if self.parent:
            d["parent"] = self.parent
        d["created"] = format_ts(self.created)
        d["updated"] = format_ts(self.updated)
        if self.closed is not None:
            d["closed"] = format_ts(self.closed)
        return d

    def transition(self, command: str) -> tuple[Status, Status]:
        """Apply start/done/cancel/reopen. Returns (old, new) status."""
        if command not in _TRANSITIONS:
            msg = f"unknown command: {command}"
            raise TickError(msg)
        allowed, target = _TRANSITIONS[command]
        old = self.status
        if old not in allowed:
            msg = f"Cannot {command} task {self.id} - status is '{old}'"
            raise TickError(msg)

        now = utcnow()
        self.status = target
        self.updated = now
        if target in (Status.DONE, Status.CANCELLED):
            self.closed = now
        elif target is Status.OPEN:
            self.closed = None
        return old, target
