"""Exception types raised by the tick storage engine."""

from __future__ import annotations


class TickError(Exception):
    """Base class for all tick errors."""


class LockError(TickError):
    """The lock file could not be acquired within the timeout."""


class ParseError(TickError):
    """tasks.jsonl does not contain a valid task sequence."""

    def __init__(self, message: str, line: int | None = None) -> None:
        self.line = line
        if line is not None:
            message = f"line {line}: {message}"
        super().__init__(message)


class CacheError(TickError):
    """The SQLite cache could not be opened or queried."""


class RebuildError(CacheError):
    """A cache rebuild transaction failed and was rolled back."""
