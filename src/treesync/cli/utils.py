"""
CLI utility helpers: output formatting and store wiring.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import typer
from rich.console import Console
from rich.table import Table
from rich.tree import Tree

from treesync.core.errors import SyncError
from treesync.core.settings import SyncSettings
from treesync.stores.memory import MemoryLiveStore
from treesync.sync.retry import ReplayReport

console = Console()
err_console = Console(stderr=True)


# ── Wiring helpers ───────────────────────────────────────────────────────


def open_live_store(path: Path, settings: SyncSettings) -> MemoryLiveStore:
    """Load the live snapshot, or start an empty store when it does not exist yet."""
    if path.exists():
        return MemoryLiveStore.load(path, default_language=settings.default_language)
    return MemoryLiveStore(default_language=settings.default_language)


def fail(message: str, *, code: int = 1) -> None:
    err_console.print(f"[bold red]Error[/bold red]: {message}")
    raise typer.Exit(code=code)


def fail_with(error: SyncError, *, code: int = 1) -> None:
    fail(f"({error.kind.value}) {error.message}", code=code)


# ── Output helpers ───────────────────────────────────────────────────────


def output_report(
    report: ReplayReport,
    *,
    roots: list[str],
    items_processed: int,
    as_json: bool = False,
) -> None:
    """Render the outcome of a sync run."""
    summary: dict[str, Any] = {
        "roots": roots,
        "items_processed": items_processed,
        "replayed": report.attempted,
        **report.to_dict(),
    }

    if as_json:
        console.print_json(json.dumps(summary, default=str))
        return

    table = Table(title="Sync", show_lines=False, pad_edge=False)
    table.add_column("roots", overflow="fold")
    table.add_column("items")
    table.add_column("replayed")
    table.add_column("succeeded")
    table.add_column("failed")
    table.add_row(
        "\n".join(roots),
        str(items_processed),
        str(report.attempted),
        str(len(report.succeeded)),
        str(len(report.failures)),
    )
    console.print(table)

    if report.failures:
        _print_table(
            [entry.to_dict() for entry in report.failures],
            title="Failures after replay",
        )


def output_violations(violations: list[dict[str, Any]], *, as_json: bool = False) -> None:
    if as_json:
        console.print_json(json.dumps({"violations": violations}, default=str))
        return
    if not violations:
        console.print("[green]No consistency problems found.[/green]")
        return
    _print_table(violations, title="Consistency violations")


def output_tree(store: MemoryLiveStore) -> None:
    """Render every partition of a live store as a Rich tree."""
    if not len(store):
        console.print("[dim]No items.[/dim]")
        return

    for database in store.databases:
        tree = Tree(f"[bold]{database}[/bold]")
        branches: dict[int, Tree] = {-1: tree}
        for depth, node in store.iter_nodes(database):
            versions = ", ".join(str(v) for v in node.version_keys) or "-"
            label = f"{node.name} [dim]{node.id} ({versions})[/dim]"
            branches[depth] = branches[depth - 1].add(label)
        console.print(tree)


# ── Private helpers ──────────────────────────────────────────────────────


def _print_table(items: list[dict[str, Any]], *, title: str = "") -> None:
    table = Table(title=title or None, show_lines=False, pad_edge=False)
    for col in items[0]:
        table.add_column(col, overflow="fold")
    for item in items:
        table.add_row(*(str(v) for v in item.values()))
    console.print(table)
