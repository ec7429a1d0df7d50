"""treesync stores -- concrete serialized and live store adapters."""

from treesync.stores.filesystem import FileSystemSerializationStore, ItemDocument
from treesync.stores.memory import (
    FIELD_SHARED_ID,
    FIELD_TYPE_ID,
    FOLDER_TEMPLATE_ID,
    TEMPLATE_FIELD_TEMPLATE_ID,
    TEMPLATE_SECTION_TEMPLATE_ID,
    TEMPLATE_TEMPLATE_ID,
    ChangeEvent,
    MemoryLiveStore,
)

__all__ = [
    "FileSystemSerializationStore",
    "ItemDocument",
    "FIELD_SHARED_ID",
    "FIELD_TYPE_ID",
    "FOLDER_TEMPLATE_ID",
    "TEMPLATE_FIELD_TEMPLATE_ID",
    "TEMPLATE_SECTION_TEMPLATE_ID",
    "TEMPLATE_TEMPLATE_ID",
    "ChangeEvent",
    "MemoryLiveStore",
]
