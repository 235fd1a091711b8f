"""tick: a task tracker with a JSONL file as source of truth and SQLite as derived cache.

Layout:
    .tick/
        tasks.jsonl   # one task per line (git-tracked, authoritative)
        lock          # zero-length file; flock(2) arbitrates readers and writers
        cache.db      # SQLite projection of tasks.jsonl (fully reconstructable)

tasks.jsonl line:
    {"id":"tick-a1b2c3", "title":..., "status":"open", "priority":2,
     "blocked_by":[...], "parent":..., "created":"2026-01-01T00:00:00Z", "updated":...}

Concurrency: readers take a shared lock, writers an exclusive one. Writes are
temp file + fsync + rename. The cache carries the SHA-256 of the tasks.jsonl
bytes it was built from and is rebuilt whenever that hash no longer matches.
"""

from tick.cache import IndexStore, fingerprint
from tick.config import TickConfig, discover_tick_dir, init_project, load_config
from tick.errors import CacheError, LockError, ParseError, RebuildError, TickError
from tick.models import Status, Task
from tick.store import Store
from tick.verbose import VerboseLogger

__all__ = [
    "CacheError",
    "IndexStore",
    "LockError",
    "ParseError",
    "RebuildError",
    "Status",
    "Store",
    "Task",
    "TickConfig",
    "TickError",
    "VerboseLogger",
    "discover_tick_dir",
    "fingerprint",
    "init_project",
    "load_config",
]
