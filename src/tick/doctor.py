"""Read-only health checks behind `tick doctor`.

Each check takes the raw tasks.jsonl bytes (or the cache state) and returns
one passing CheckResult or one failing CheckResult per problem found. Nothing
here writes to .tick/.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import TYPE_CHECKING

from tick.errors import ParseError
from tick.jsonl import iter_lines, parse_tasks
from tick.models import normalize_id

if TYPE_CHECKING:
    from tick.cache import CacheStatus
    from tick.store import Store

_PREVIEW_LENGTH = 80
_MANUAL_FIX = "Manual fix required"


@dataclass(frozen=True)
class CheckResult:
    name: str
    ok: bool
    details: str = ""
    suggestion: str = ""


def _preview(line: str) -> str:
    if len(line) > _PREVIEW_LENGTH:
        return line[:_PREVIEW_LENGTH] + "..."
    return line


def check_jsonl_syntax(data: bytes) -> list[CheckResult]:
    """Every non-blank line must be valid JSON. Reports each bad line by number."""
    name = "JSONL syntax"
    failures: list[CheckResult] = []
    try:
        for lineno, line in iter_lines(data):
            try:
                json.loads(line)
            except json.JSONDecodeError:
                failures.append(
                    CheckResult(name, False, f"Line {lineno}: invalid JSON - {_preview(line)}", _MANUAL_FIX)
                )
    except ParseError as exc:
        return [CheckResult(name, False, str(exc), _MANUAL_FIX)]
    return failures or [CheckResult(name, True)]


def check_task_records(data: bytes) -> list[CheckResult]:
    """The file must parse into tasks (fields, status, timestamps)."""
    name = "Task records"
    try:
        parse_tasks(data)
    except ParseError as exc:
        return [CheckResult(name, False, str(exc), _MANUAL_FIX)]
    return [CheckResult(name, True)]


def check_duplicate_ids(data: bytes) -> list[CheckResult]:
    """No two lines may carry the same ID, compared case-insensitively."""
    name = "ID uniqueness"
    groups: dict[str, list[tuple[str, int]]] = {}
    try:
        for lineno, line in iter_lines(data):
            try:
                obj = json.loads(line)
            except json.JSONDecodeError:
                continue
            task_id = obj.get("id") if isinstance(obj, dict) else None
            if not isinstance(task_id, str) or not task_id:
                continue
            groups.setdefault(normalize_id(task_id), []).append((task_id, lineno))
    except ParseError:
        # undecodable file; reported by the syntax check
        return [CheckResult(name, True)]

    failures = []
    for key, occurrences in groups.items():
        if len(occurrences) < 2:
            continue
        where = ", ".join(f"{task_id} (line {lineno})" for task_id, lineno in occurrences)
        failures.append(CheckResult(name, False, f"Duplicate ID {key}: {where}", _MANUAL_FIX))
    return failures or [CheckResult(name, True)]


def check_cache(status: CacheStatus) -> list[CheckResult]:
    if status.fresh:
        return [CheckResult("Cache", True)]
    return [CheckResult("Cache", False, status.describe(), "Run `tick rebuild` to refresh cache")]


def run_checks(store: Store) -> list[CheckResult]:
    """Run every check against one consistent snapshot of the tick directory."""
    data, status = store.snapshot()
    results = check_jsonl_syntax(data)
    if all(r.ok for r in results):
        results += check_task_records(data)
    results += check_duplicate_ids(data)
    results += check_cache(status)
    return results
