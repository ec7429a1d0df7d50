"""treesync merge -- reconcile one serialized item into one live node."""

from treesync.merge.engine import ItemMergeEngine
from treesync.merge.logger import StructlogMergeLogger
from treesync.merge.templates import TemplateChangeList, template_change_list

__all__ = [
    "ItemMergeEngine",
    "StructlogMergeLogger",
    "TemplateChangeList",
    "template_change_list",
]
