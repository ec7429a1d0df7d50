"""
CLI layer for treesync.

Provides a Typer application that wires the filesystem serialization store,
the in-memory live store and the sync engines together. All reconciliation
logic lives in ``treesync.sync`` and ``treesync.merge``; this package handles
only terminal transport: argument parsing, coloured output, and tables.

Entry point::

    treesync --help
"""

from treesync.cli.app import app

__all__ = ["app"]
