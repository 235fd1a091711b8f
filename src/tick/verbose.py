"""Verbose checkpoint output for --verbose.

Every line is prefixed with "verbose: " so it can be grepped out of stderr.
Disabled loggers are no-ops; a failing sink never fails the caller.
"""

from __future__ import annotations

import contextlib
from typing import IO, Any


class VerboseLogger:
    PREFIX = "verbose: "

    def __init__(self, stream: IO[str] | None = None, enabled: bool = False) -> None:
        self.stream = stream
        self.enabled = enabled and stream is not None

    @classmethod
    def disabled(cls) -> VerboseLogger:
        return cls(None, enabled=False)

    def log(self, message: str) -> None:
        if not self.enabled:
            return
        with contextlib.suppress(Exception):
            self.stream.write(f"{self.PREFIX}{message}\n")  # type: ignore[union-attr]
            self.stream.flush()  # type: ignore[union-attr]

    def logf(self, template: str, *args: Any) -> None:
        if not self.enabled:
            return
        try:
            message = template % args if args else template
        except (TypeError, ValueError):
            message = f"{template} {args!r}"
        self.log(message)
