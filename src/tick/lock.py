"""Advisory file locking on .tick/lock.

Locks are flock(2) locks on a zero-length file, held per open file
description: readers take LOCK_SH, writers take LOCK_EX. Acquisition polls
with LOCK_NB instead of blocking so the timeout is always honoured.

    with acquire_exclusive(lock_path, timeout=5.0):
        ...   # lock released on every exit path
"""

from __future__ import annotations

import fcntl
import time
from pathlib import Path
from typing import IO, TYPE_CHECKING

from tick.errors import LockError

if TYPE_CHECKING:
    from types import TracebackType

DEFAULT_TIMEOUT = 5.0
POLL_INTERVAL = 0.05

LOCK_TIMEOUT_MSG = "Could not acquire lock on .tick/lock - another process may be using tick"


class FileLock:
    """A shared or exclusive flock on path, usable as a context manager."""

    def __init__(
        self,
        path: Path | str,
        *,
        shared: bool = False,
        timeout: float = DEFAULT_TIMEOUT,
        poll_interval: float = POLL_INTERVAL,
    ) -> None:
        self.path = Path(path)
        self.shared = shared
        self.timeout = timeout
        self.poll_interval = poll_interval
        self._fh: IO[bytes] | None = None

    @property
    def kind(self) -> str:
        return "shared" if self.shared else "exclusive"

    @property
    def locked(self) -> bool:
        return self._fh is not None

    def acquire(self) -> FileLock:
        """Poll for the lock until timeout. Raises LockError on contention."""
        if self._fh is not None:
            return self
        op = (fcntl.LOCK_SH if self.shared else fcntl.LOCK_EX) | fcntl.LOCK_NB
        fh = self.path.open("ab")
        deadline = time.monotonic() + max(0.0, self.timeout)
        try:
            while True:
                try:
                    fcntl.flock(fh, op)
                    break
                except BlockingIOError:
                    remaining = deadline - time.monotonic()
                    if remaining <= 0:
                        raise LockError(LOCK_TIMEOUT_MSG) from None
                    time.sleep(min(self.poll_interval, remaining))
        except BaseException:
            fh.close()
            raise
        self._fh = fh
        return self

    def release(self) -> None:
        """Unlock and close. Safe to call more than once."""
        fh, self._fh = self._fh, None
        if fh is None:
            return
        try:
            fcntl.flock(fh, fcntl.LOCK_UN)
        finally:
            fh.close()

    def __enter__(self) -> FileLock:
        return self.acquire()

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.release()


def acquire_exclusive(path: Path | str, timeout: float = DEFAULT_TIMEOUT) -> FileLock:
    """Return a held exclusive lock. Fails while any other holder exists."""
    return FileLock(path, shared=False, timeout=timeout).acquire()


def acquire_shared(path: Path | str, timeout: float = DEFAULT_TIMEOUT) -> FileLock:
    """Return a held shared lock. Fails only while an exclusive holder exists."""
    return FileLock(path, shared=True, timeout=timeout).acquire()
