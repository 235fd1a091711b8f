"""TickConfig: per-project settings for the task store.

Layout (relative to the project root):

    .tick/
        tasks.jsonl       # source of truth (git-tracked)
        config.toml       # optional settings (git-tracked)
        lock              # flock target
        cache.db          # SQLite derived cache (add to .gitignore)
        .gitignore        # auto-written: ignores cache.db and lock

config.toml example:

    [store]
    lock_timeout = 5.0    # seconds to wait for .tick/lock

    [output]
    verbose = false       # echo lock/cache/write checkpoints to stderr

TICK_LOCK_TIMEOUT in the environment overrides [store].lock_timeout.
"""

from __future__ import annotations

import os
import tomllib
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from tick.errors import TickError
from tick.lock import DEFAULT_TIMEOUT
from tick.store import TASKS_FILENAME

TICK_DIRNAME = ".tick"
_CONFIG_FILENAME = "config.toml"
_GITIGNORE_CONTENT = "cache.db\ncache.db-*\nlock\n"
_ENV_LOCK_TIMEOUT = "TICK_LOCK_TIMEOUT"


@dataclass
class TickConfig:
    """Resolved configuration for a tick project."""

    root: Path                      # directory that contains .tick/
    lock_timeout: float = DEFAULT_TIMEOUT
    verbose: bool = False

    @property
    def tick_dir(self) -> Path:
        return self.root / TICK_DIRNAME

    @property
    def config_path(self) -> Path:
        return self.tick_dir / _CONFIG_FILENAME


def discover_tick_dir(start: Path | str | None = None) -> Path:
    """Walk upward from start (default: cwd) looking for a .tick directory."""
    start_path = Path(start).resolve() if start else Path.cwd()
    for directory in (start_path, *start_path.parents):
        candidate = directory / TICK_DIRNAME
        if candidate.is_dir():
            return candidate
    raise TickError("Not a tick project (no .tick directory found)")


def _read_toml(path: Path) -> dict[str, Any]:
    if not path.exists():
        return {}
    try:
        with path.open("rb") as f:
            return tomllib.load(f)
    except tomllib.TOMLDecodeError as exc:
        msg = f"invalid {path}: {exc}"
        raise TickError(msg) from exc


def _parse_timeout(value: object, source: str) -> float:
    try:
        timeout = float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError) as exc:
        msg = f"invalid lock_timeout in {source}: {value!r}"
        raise TickError(msg) from exc
    if timeout < 0:
        msg = f"lock_timeout in {source} must not be negative: {timeout}"
        raise TickError(msg)
    return timeout


def load_config(start: Path | str | None = None) -> TickConfig:
    """Find .tick/ from start (or cwd) and load its config.toml."""
    tick_dir = discover_tick_dir(start)
    cfg = TickConfig(root=tick_dir.parent)
    raw = _read_toml(cfg.config_path)

    store_section = raw.get("store", {})
    output_section = raw.get("output", {})

    if "lock_timeout" in store_section:
        cfg.lock_timeout = _parse_timeout(store_section["lock_timeout"], str(cfg.config_path))
    env_timeout = os.environ.get(_ENV_LOCK_TIMEOUT)
    if env_timeout:
        cfg.lock_timeout = _parse_timeout(env_timeout, _ENV_LOCK_TIMEOUT)
    cfg.verbose = bool(output_section.get("verbose", False))
    return cfg


def init_project(root: Path | str) -> Path:
    """Create .tick/ with an empty tasks.jsonl. Raises if already initialized."""
    root_path = Path(root).resolve()
    tick_dir = root_path / TICK_DIRNAME
    if tick_dir.exists():
        msg = f"tick already initialized in {root_path}"
        raise TickError(msg)

    tick_dir.mkdir(parents=True)
    (tick_dir / TASKS_FILENAME).write_bytes(b"")
    (tick_dir / ".gitignore").write_text(_GITIGNORE_CONTENT)
    return tick_dir
