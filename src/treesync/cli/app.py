"""
Root Typer application for the treesync CLI.

Commands:
    treesync sync [SERIALIZATION_DIR] --live live.json --preset preset.yml
    treesync check [SERIALIZATION_DIR] --preset preset.yml
    treesync show LIVE_SNAPSHOT
"""

from __future__ import annotations

from pathlib import Path

import typer
from typer import Typer

from treesync.cli.utils import (
    console,
    fail,
    fail_with,
    open_live_store,
    output_report,
    output_tree,
    output_violations,
)
from treesync.core.config import PresetConfig
from treesync.core.errors import SyncError
from treesync.core.logging import configure_logging
from treesync.core.settings import SyncSettings

app = Typer(
    name="treesync",
    help="treesync — converge a live content tree to its serialized state.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)


# ── Version callback ─────────────────────────────────────────────────────


def _version_callback(value: bool) -> None:
    if value:
        from importlib.metadata import PackageNotFoundError
        from importlib.metadata import version as pkg_version

        try:
            v = pkg_version("treesync")
        except PackageNotFoundError:
            from treesync import __version__ as v
        typer.echo(f"treesync {v}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool | None = typer.Option(  # noqa: UP007
        None,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
) -> None:
    """treesync CLI — sync, check and inspect content trees."""


def _load_preset(preset: Path | None, settings: SyncSettings) -> PresetConfig:
    path = preset or settings.preset_file
    if path is None:
        fail("No preset given. Pass --preset or set TREESYNC_PRESET_FILE.", code=2)
    try:
        return PresetConfig.from_yaml_file(path)
    except FileNotFoundError:
        fail(f"Preset file not found: {path}", code=2)
    except SyncError as e:
        fail_with(e, code=2)


# ── Commands ─────────────────────────────────────────────────────────────


@app.command("sync")
def sync(
    serialization_dir: Path | None = typer.Argument(
        None, help="Root directory of the serialized tree [default: TREESYNC_SERIALIZATION_ROOT]"
    ),
    live: Path | None = typer.Option(None, "--live", "-l", help="Live store JSON snapshot"),
    preset: Path | None = typer.Option(None, "--preset", "-p", help="Preset YAML file"),
    allow_missing_fields: bool = typer.Option(
        False, "--allow-missing-fields", help="Skip fields the live template does not define"
    ),
    new_items_only: bool = typer.Option(False, "--new-items-only", help="Only create missing items"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Sync the serialized tree into the live store."""
    from treesync.evaluators import NewItemsOnlyEvaluator, SerializedAsMasterEvaluator
    from treesync.merge.engine import ItemMergeEngine
    from treesync.predicates import resolve_root_references
    from treesync.stores.filesystem import FileSystemSerializationStore
    from treesync.sync.consistency import DuplicateIdConsistencyChecker
    from treesync.sync.loader import TreeSyncEngine
    from treesync.sync.retry import RetryQueue

    settings = SyncSettings()
    configure_logging(level=settings.log_level, json_format=settings.json_logs)

    serialization_dir = serialization_dir or settings.serialization_root
    config = _load_preset(preset, settings)
    live_path = live or settings.live_snapshot
    allow_missing = allow_missing_fields or settings.allow_missing_fields

    try:
        live_store = open_live_store(live_path, settings)
        serialization_store = FileSystemSerializationStore(serialization_dir)
        predicate = config.to_predicate()

        merge_engine = ItemMergeEngine(live_store, config.to_field_predicate())
        if new_items_only:
            evaluator = NewItemsOnlyEvaluator(merge_engine, allow_missing)
        else:
            evaluator = SerializedAsMasterEvaluator(merge_engine, live_store, allow_missing)

        engine = TreeSyncEngine(serialization_store, live_store, predicate, evaluator, settings=settings)

        roots = resolve_root_references(predicate, serialization_store)
        if not roots:
            fail(f"None of the preset include roots exist under {serialization_dir}")

        processed: list[int] = []
        report = engine.load_all(
            roots,
            RetryQueue(max_attempts=settings.max_replay_attempts),
            DuplicateIdConsistencyChecker(),
            on_root_loaded=lambda root: processed.append(engine.items_processed),
        )
    except SyncError as e:
        fail_with(e)

    live_store.save(live_path)
    output_report(
        report,
        roots=[f"{r.database_name}:{r.item_path}" for r in roots],
        items_processed=sum(processed),
        as_json=json_out,
    )
    if not report.ok:
        raise typer.Exit(code=1)


@app.command("check")
def check(
    serialization_dir: Path | None = typer.Argument(
        None, help="Root directory of the serialized tree [default: TREESYNC_SERIALIZATION_ROOT]"
    ),
    preset: Path | None = typer.Option(None, "--preset", "-p", help="Preset YAML file"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Check the serialized tree for duplicate item ids and unreadable items."""
    from treesync.predicates import resolve_root_references
    from treesync.stores.filesystem import FileSystemSerializationStore
    from treesync.sync.consistency import DuplicateIdConsistencyChecker

    settings = SyncSettings()
    configure_logging(level=settings.log_level, json_format=settings.json_logs)

    serialization_dir = serialization_dir or settings.serialization_root
    config = _load_preset(preset, settings)
    store = FileSystemSerializationStore(serialization_dir)
    predicate = config.to_predicate()
    checker = DuplicateIdConsistencyChecker()

    violations = []
    for root in resolve_root_references(predicate, store):
        for reference in [root, *root.get_child_references(True)]:
            if not predicate.includes(reference).is_included:
                continue
            try:
                item = reference.get_item()
            except SyncError as e:
                violations.append({"path": reference.item_path, "problem": e.kind.value, "detail": e.message})
                continue
            if item is None:
                continue
            if not checker.is_consistent(item):
                violations.append({"path": item.item_path, "problem": "DUPLICATE_ID", "detail": item.id})
                continue
            checker.add_processed_item(item)

    output_violations(violations, as_json=json_out)
    if violations:
        raise typer.Exit(code=1)
    if not json_out:
        console.print(f"[dim]{checker.processed_count} items checked.[/dim]")


@app.command("show")
def show(
    live_snapshot: Path = typer.Argument(..., help="Live store JSON snapshot"),
) -> None:
    """Print the live tree stored in a snapshot."""
    settings = SyncSettings()
    if not live_snapshot.exists():
        fail(f"Snapshot not found: {live_snapshot}")
    try:
        store = open_live_store(live_snapshot, settings)
    except SyncError as e:
        fail_with(e)
    output_tree(store)
