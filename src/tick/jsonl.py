"""Read and write tasks.jsonl.

tasks.jsonl is the source of truth: one JSON object per line, one line per
task. Rewrites never touch the file in place; the new content goes to a temp
file in the same directory which is fsynced and renamed over the original, so
other processes see either the old or the new file, never a mix.

    {"id":"tick-a1b2c3","title":"...","status":"open","priority":2,"created":"...","updated":"..."}
"""

from __future__ import annotations

import contextlib
import json
import os
import tempfile
from pathlib import Path
from typing import TYPE_CHECKING

from tick.errors import ParseError
from tick.models import Task

if TYPE_CHECKING:
    from collections.abc import Iterable, Iterator

_TMP_PREFIX = ".tasks-"
_TMP_SUFFIX = ".jsonl.tmp"


def iter_lines(data: bytes) -> Iterator[tuple[int, str]]:
    """Yield (1-based line number, stripped text) for each non-blank line."""
    try:
        text = data.decode("utf-8")
    except UnicodeDecodeError as exc:
        msg = f"tasks.jsonl is not valid UTF-8: {exc}"
        raise ParseError(msg) from exc
    for lineno, line in enumerate(text.split("\n"), start=1):
        line = line.strip()
        if line:
            yield lineno, line


def parse_tasks(data: bytes) -> list[Task]:
    """Parse raw tasks.jsonl bytes. Blank lines are skipped; anything invalid raises ParseError."""
    tasks: list[Task] = []
    for lineno, line in iter_lines(data):
        try:
            obj = json.loads(line)
        except json.JSONDecodeError as exc:
            msg = f"invalid JSON: {exc.msg}"
            raise ParseError(msg, line=lineno) from exc
        if not isinstance(obj, dict):
            raise ParseError("expected a JSON object", line=lineno)
        try:
            tasks.append(Task.from_dict(obj))
        except ParseError as exc:
            raise ParseError(str(exc), line=lineno) from exc
    return tasks


def serialize_tasks(tasks: Iterable[Task]) -> bytes:
    """Serialize tasks to JSONL bytes, newline-terminated, optional fields omitted."""
    lines = [
        json.dumps(t.to_dict(), ensure_ascii=False, separators=(",", ":")) + "\n"
        for t in tasks
    ]
    return "".join(lines).encode("utf-8")


def read_tasks(path: Path | str) -> list[Task]:
    return parse_tasks(Path(path).read_bytes())


def write_atomic(path: Path | str, data: bytes) -> None:
    """Replace path with data via temp file + fsync + rename."""
    path = Path(path)
    fd, tmp_name = tempfile.mkstemp(prefix=_TMP_PREFIX, suffix=_TMP_SUFFIX, dir=path.parent)
    tmp = Path(tmp_name)
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        tmp.replace(path)
    except BaseException:
        with contextlib.suppress(OSError):
            tmp.unlink()
        raise


def write_tasks(path: Path | str, tasks: Iterable[Task]) -> bytes:
    """Atomically rewrite tasks.jsonl. Returns the bytes written."""
    data = serialize_tasks(tasks)
    write_atomic(path, data)
    return data
