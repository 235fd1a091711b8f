"""tick CLI — task tracker backed by tasks.jsonl and a SQLite cache.

Commands:
    tick init                  create .tick/ with an empty tasks.jsonl
    tick create TITLE          add a task
    tick list [--status S]     list tasks (queried from the cache)
    tick show ID               show one task (full ID or unique prefix)
    tick start|done|cancel|reopen ID
                               status transitions
    tick rebuild               force a full cache rebuild
    tick doctor                check tasks.jsonl syntax, duplicate IDs and cache freshness
    tick status                task counts and cache state (rich table)
"""

from __future__ import annotations

import contextlib
import logging
import sys
from pathlib import Path
from typing import TYPE_CHECKING

import click

from tick.config import init_project, load_config
from tick.doctor import run_checks
from tick.errors import TickError
from tick.models import MAX_PRIORITY, MIN_PRIORITY, Status, Task, dedupe_ids, normalize_id, resolve_id
from tick.store import Store
from tick.verbose import VerboseLogger

if TYPE_CHECKING:
    import sqlite3
    from collections.abc import Iterator

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


@contextlib.contextmanager
def _errors() -> Iterator[None]:
    """Turn engine errors into a clean CLI failure (exit code 1)."""
    try:
        yield
    except (TickError, OSError) as exc:
        raise click.ClickException(str(exc)) from exc


def _open_store(ctx: click.Context) -> Store:
    opts = ctx.obj
    with _errors():
        cfg = load_config(opts["dir"])
        verbose = VerboseLogger(
            sys.stderr,
            enabled=opts["verbose"] or cfg.verbose,
        )
        return Store(cfg.tick_dir, lock_timeout=cfg.lock_timeout, verbose=verbose)


def _find(tasks: list[Task], task_id: str) -> Task:
    """Look up a task by full ID or unique prefix."""
    resolved = resolve_id(task_id, [t.id for t in tasks])
    return next(t for t in tasks if t.id == resolved)


# ---------------------------------------------------------------------------
# Root group
# ---------------------------------------------------------------------------


@click.group()
@click.version_option(package_name="tick")
@click.option("-v", "--verbose", is_flag=True, help="Echo lock/cache/write checkpoints to stderr")
@click.option("--dir", "work_dir", default=".", show_default=True, help="Directory to search for .tick/ from")
@click.pass_context
def cli(ctx: click.Context, verbose: bool, work_dir: str) -> None:
    """tick — minimal task tracker."""
    logging.basicConfig(level=logging.WARNING, format="tick: %(levelname)s: %(message)s")
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["dir"] = work_dir


# ---------------------------------------------------------------------------
# tick init
# ---------------------------------------------------------------------------


@cli.command()
@click.pass_context
def init(ctx: click.Context) -> None:
    """Create .tick/ in the current project."""
    with _errors():
        tick_dir = init_project(Path(ctx.obj["dir"]))
    click.echo(f"Initialized tick in {tick_dir}/")


# ---------------------------------------------------------------------------
# tick create
# ---------------------------------------------------------------------------


@cli.command()
@click.argument("title")
@click.option(
    "--priority", "-p", default=2, show_default=True,
    type=click.IntRange(MIN_PRIORITY, MAX_PRIORITY),
)
@click.option("--description", "-d", default=None)
@click.option("--parent", default=None, help="Parent task ID")
@click.option("--blocked-by", "blocked_by", multiple=True, help="ID of a task this one waits on (repeatable)")
@click.pass_context
def create(
    ctx: click.Context,
    title: str,
    priority: int,
    description: str | None,
    parent: str | None,
    blocked_by: tuple[str, ...],
) -> None:
    """Create a task and print its ID."""
    created: list[Task] = []

    def _add(tasks: list[Task]) -> list[Task]:
        ids = [t.id for t in tasks]
        refs = dedupe_ids(resolve_id(b, ids) for b in blocked_by)
        parent_id = resolve_id(parent, ids) if parent else None
        known = {normalize_id(i) for i in ids}
        task = Task.new(
            title,
            exists=lambda tid: normalize_id(tid) in known,
            priority=priority,
            description=description,
            blocked_by=refs,
            parent=parent_id,
        )
        created.append(task)
        return [*tasks, task]

    store = _open_store(ctx)
    with store, _errors():
        store.mutate(_add)
    click.echo(created[0].id)


# ---------------------------------------------------------------------------
# tick list / tick show
# ---------------------------------------------------------------------------


@cli.command(name="list")
@click.option("--status", default=None, type=click.Choice([s.value for s in Status]))
@click.pass_context
def list_tasks(ctx: click.Context, status: str | None) -> None:
    """List tasks ordered by priority, then creation time."""

    def _rows(conn: sqlite3.Connection) -> list[tuple]:
        sql = "SELECT id, status, priority, title FROM tasks"
        params: list[str] = []
        if status:
            sql += " WHERE status = ?"
            params.append(status)
        sql += " ORDER BY priority, created, id"
        return conn.execute(sql, params).fetchall()

    store = _open_store(ctx)
    with store, _errors():
        rows = store.query(_rows)
    if not rows:
        click.echo("No tasks found.")
        return
    click.echo(f"{'ID':<12} {'STATUS':<12} {'PRI':<3} TITLE")
    for task_id, task_status, pri, title in rows:
        click.echo(f"{task_id:<12} {task_status:<12} {pri:<3} {title}")


@cli.command()
@click.argument("task_id")
@click.pass_context
def show(ctx: click.Context, task_id: str) -> None:
    """Show a task with its blockers and children."""

    def _load(conn: sqlite3.Connection) -> tuple[tuple, list[str], list[str]]:
        ids = [r[0] for r in conn.execute("SELECT id FROM tasks")]
        resolved = resolve_id(task_id, ids)
        row = conn.execute(
            "SELECT id, title, status, priority, description, parent, created, updated, closed "
            "FROM tasks WHERE id = ?",
            (resolved,),
        ).fetchone()
        deps = conn.execute(
            "SELECT blocked_by FROM dependencies WHERE task_id = ? ORDER BY position",
            (row[0],),
        ).fetchall()
        children = conn.execute(
            "SELECT id FROM tasks WHERE parent = ? ORDER BY created, id", (row[0],)
        ).fetchall()
        return row, [d[0] for d in deps], [c[0] for c in children]

    store = _open_store(ctx)
    with store, _errors():
        row, deps, children = store.query(_load)

    tid, title, task_status, pri, description, parent, created, updated, closed = row
    click.echo(f"ID:       {tid}")
    click.echo(f"Title:    {title}")
    click.echo(f"Status:   {task_status}")
    click.echo(f"Priority: {pri}")
    if parent:
        click.echo(f"Parent:   {parent}")
    click.echo(f"Created:  {created}")
    click.echo(f"Updated:  {updated}")
    if closed:
        click.echo(f"Closed:   {closed}")
    if deps:
        click.echo(f"Blocked by: {', '.join(deps)}")
    if children:
        click.echo(f"Children:   {', '.join(children)}")
    if description:
        click.echo("")
        click.echo(description)


# ---------------------------------------------------------------------------
# tick start / done / cancel / reopen
# ---------------------------------------------------------------------------


def _transition_command(command: str) -> click.Command:
    @click.command(name=command, help=f"Transition a task with '{command}'.")
    @click.argument("task_id")
    @click.pass_context
    def _run(ctx: click.Context, task_id: str) -> None:
        result: list[tuple[str, Status, Status]] = []

        def _apply(tasks: list[Task]) -> list[Task]:
            task = _find(tasks, task_id)
            old, new = task.transition(command)
            result.append((task.id, old, new))
            return tasks

        store = _open_store(ctx)
        with store, _errors():
            store.mutate(_apply)
        tid, old, new = result[0]
        click.echo(f"{tid}: {old} → {new}")

    return _run


for _command in ("start", "done", "cancel", "reopen"):
    cli.add_command(_transition_command(_command))


# ---------------------------------------------------------------------------
# tick rebuild / tick doctor / tick status
# ---------------------------------------------------------------------------


@cli.command()
@click.pass_context
def rebuild(ctx: click.Context) -> None:
    """Delete cache.db and rebuild it from tasks.jsonl."""
    store = _open_store(ctx)
    with store, _errors():
        count = store.rebuild()
    click.echo(f"Rebuilt cache: {count} tasks")


@cli.command()
@click.pass_context
def doctor(ctx: click.Context) -> None:
    """Check tasks.jsonl and cache.db for problems (read-only)."""
    store = _open_store(ctx)
    with store, _errors():
        results = run_checks(store)
    for result in results:
        if result.ok:
            click.echo(f"✓ {result.name}: OK")
            continue
        click.echo(f"✗ {result.name}: {result.details}")
        if result.suggestion:
            click.echo(f"  {result.suggestion}")
    failed = sum(1 for r in results if not r.ok)
    if failed:
        click.echo(f"{failed} issue(s) found.")
        ctx.exit(1)


@cli.command()
@click.pass_context
def status(ctx: click.Context) -> None:
    """Show task counts and cache state."""
    from rich.console import Console
    from rich.table import Table

    def _counts(conn: sqlite3.Connection) -> list[tuple[str, int]]:
        return conn.execute("SELECT status, COUNT(*) FROM tasks GROUP BY status").fetchall()

    store = _open_store(ctx)
    with store, _errors():
        cache = store.cache_status()
        counts = dict(store.query(_counts))

    table = Table(title=f"tick — {store.tick_dir}", show_header=True, header_style="bold")
    table.add_column("Metric", style="dim", no_wrap=True)
    table.add_column("Value", justify="right")
    table.add_row("Tasks", str(sum(counts.values())))
    for s in Status:
        table.add_row(f"  {s.value}", str(counts.get(s.value, 0)))
    table.add_row("", "")
    if cache.fresh:
        table.add_row("Cache", "[green]fresh[/green]")
    else:
        table.add_row("Cache", f"[yellow]{cache.state} before this command, rebuilt[/yellow]")
    Console().print(table)


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def main() -> None:
    cli(standalone_mode=True)


if __name__ == "__main__":
    main()
