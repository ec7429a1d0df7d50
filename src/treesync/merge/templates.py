"""Structural delta between two template definitions.

When a live node changes template, values of fields the two templates have
in common are carried over untouched; values of fields the new template no
longer defines are dropped. ``template_change_list`` computes that delta and
``LiveStore.apply_template_changes`` applies it.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from treesync.core.models import TemplateDefinition


@dataclass(frozen=True)
class TemplateChangeList:
    """Field-level migration plan from ``source_id`` to ``target_id``."""

    source_id: str
    target_id: str
    removed_fields: frozenset[str] = field(default_factory=frozenset)
    added_fields: frozenset[str] = field(default_factory=frozenset)
    kept_fields: frozenset[str] = field(default_factory=frozenset)

    @property
    def is_identity(self) -> bool:
        """True when the source template is used as its own baseline."""
        return self.source_id == self.target_id

    def keeps(self, field_id: str) -> bool:
        return field_id not in self.removed_fields


def template_change_list(source: TemplateDefinition, target: TemplateDefinition) -> TemplateChangeList:
    """Compute the fields removed, added and kept when moving from ``source`` to ``target``."""
    source_fields = frozenset(source.fields)
    target_fields = frozenset(target.fields)
    return TemplateChangeList(
        source_id=source.id,
        target_id=target.id,
        removed_fields=source_fields - target_fields,
        added_fields=target_fields - source_fields,
        kept_fields=source_fields & target_fields,
    )


__all__ = ["TemplateChangeList", "template_change_list"]
