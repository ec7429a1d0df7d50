"""
Preset configuration: which parts of the tree a sync run owns.

A preset is a small YAML document validated with pydantic::

    includes:
      - database: master
        path: /sitecore/content
        excludes:
          - /sitecore/content/legacy
      - database: master
        path: /sitecore/templates/project
    ignored_fields:
      - 8cdc337e-a112-42fb-bbb4-4143751e123f

``PresetConfig.to_predicate()`` and ``to_field_predicate()`` turn the
document into the inclusion and field oracles consumed by the engines.

Example:
    >>> config = PresetConfig.from_yaml("includes: [{database: master, path: /content}]")
    >>> config.includes[0].path
    '/content'
"""

from __future__ import annotations

from pathlib import Path

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from treesync.core.errors import ErrorKind, SyncError


class IncludeSpec(BaseModel):
    """One include root and the subtrees excluded below it."""

    model_config = ConfigDict(extra="forbid")

    database: str = Field(..., min_length=1, description="Partition the root lives in")
    path: str = Field(..., min_length=1, description="Logical path of the include root")
    excludes: list[str] = Field(default_factory=list, description="Paths excluded below the root")

    @field_validator("path")
    @classmethod
    def _absolute_path(cls, value: str) -> str:
        if not value.startswith("/"):
            raise ValueError(f"include path must be absolute: {value!r}")
        return value.rstrip("/") or "/"


class PresetConfig(BaseModel):
    """Preset document: include roots plus field ids never written by a sync."""

    model_config = ConfigDict(extra="forbid")

    includes: list[IncludeSpec] = Field(default_factory=list)
    ignored_fields: list[str] = Field(default_factory=list)

    @classmethod
    def from_yaml(cls, yaml_content: str) -> PresetConfig:
        """Parse and validate YAML content.

        Raises:
            SyncError: kind INVALID_SERIALIZATION if the YAML is malformed or
                does not match the schema.
        """
        try:
            data = yaml.safe_load(yaml_content) or {}
            return cls.model_validate(data)
        except (yaml.YAMLError, ValidationError) as e:
            raise SyncError(f"Invalid preset: {e}", kind=ErrorKind.INVALID_SERIALIZATION, cause=e) from e

    @classmethod
    def from_yaml_file(cls, path: str | Path) -> PresetConfig:
        """Load and validate from a YAML file."""
        content = Path(path).read_text(encoding="utf-8")
        return cls.from_yaml(content)

    def to_predicate(self):
        from treesync.predicates import IncludeEntry, PresetPredicate

        return PresetPredicate(
            IncludeEntry(database=include.database, path=include.path, excludes=tuple(include.excludes))
            for include in self.includes
        )

    def to_field_predicate(self):
        from treesync.predicates import AllowAllFieldPredicate, ConfigurationFieldPredicate

        if not self.ignored_fields:
            return AllowAllFieldPredicate()
        return ConfigurationFieldPredicate(self.ignored_fields)
