"""Runtime settings for treesync.

``SyncSettings`` collects every knob the sync and merge engines expose so a
run can be configured from environment variables or a ``.env`` file instead
of code.

Manifesto:
    Configuration should be explicit, validated, and environment-driven.

    - **Pydantic validation:** Type-checked at startup, not mid-run
    - **Environment-driven:** Reads ``TREESYNC_*`` env vars and .env files
    - **Sensible defaults:** A strict, single-replay sync out of the box

Examples:
    >>> from treesync.core.settings import SyncSettings
    >>> settings = SyncSettings(allow_missing_fields=True)
    >>> settings.max_replay_attempts
    1

Tags:
    settings, configuration, pydantic, environment, treesync
"""

from __future__ import annotations

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class SyncSettings(BaseSettings):
    """Settings shared by the loader, merge engine and CLI.

    Fields
    ──────
    log_level            : Structlog log level
    json_logs            : Force JSON (True) / console (False) logs, None = auto
    allow_missing_fields : Skip serialized fields the live template lacks
    templates_segment    : Child path suffix loaded before its siblings
    max_replay_attempts  : Deferred replay passes over queued failures
    max_depth            : Recursion guard for the tree walk
    default_language     : Language of versions created by default on a new item
    serialization_root   : Directory holding the serialized tree
    live_snapshot        : JSON snapshot of the live store used by the CLI
    preset_file          : YAML preset declaring includes/excludes
    """

    model_config = SettingsConfigDict(
        env_prefix="TREESYNC_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Observability ────────────────────────────────────────────
    log_level: str = "INFO"
    json_logs: bool | None = None

    # ── Reconciliation policy ────────────────────────────────────
    allow_missing_fields: bool = False
    templates_segment: str = "templates"
    max_replay_attempts: int = Field(default=1, ge=1)
    max_depth: int = Field(default=512, ge=1)
    default_language: str = "en"

    # ── Storage ──────────────────────────────────────────────────
    serialization_root: Path = Field(
        default_factory=lambda: Path.cwd() / "serialization",
        description="Root directory of the serialized tree",
    )
    live_snapshot: Path = Field(
        default_factory=lambda: Path.cwd() / "live.json",
        description="JSON snapshot of the live store",
    )
    preset_file: Path | None = None
