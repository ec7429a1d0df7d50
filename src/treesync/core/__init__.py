"""treesync core -- domain-agnostic primitives shared by the engines.

Architecture::

    errors.py      SyncError + ErrorKind tagged taxonomy
    result.py      Result[T] envelope (Ok / Err / try_result)
    logging.py     structlog configuration
    settings.py    SyncSettings (pydantic-settings)
    config.py      PresetConfig YAML preset
    models.py      serialized and live value records
    protocols.py   collaborator contracts
    feedback.py    scoped "sync feedback disabled" switch
    cache.py       ItemCache read-through node cache
"""

from treesync.core.errors import ErrorContext, ErrorKind, SyncError, is_fatal, is_retryable
from treesync.core.feedback import FeedbackSwitch
from treesync.core.models import (
    OWNER_FIELD_ID,
    STANDARD_VALUES_NAME,
    LiveNode,
    PredicateResult,
    SerializedField,
    SerializedItem,
    SerializedReference,
    SerializedVersion,
    TemplateDefinition,
    TemplateField,
    VersionKey,
)
from treesync.core.result import Err, Ok, Result, try_result

__all__ = [
    "ErrorContext",
    "ErrorKind",
    "SyncError",
    "is_fatal",
    "is_retryable",
    "FeedbackSwitch",
    "OWNER_FIELD_ID",
    "STANDARD_VALUES_NAME",
    "LiveNode",
    "PredicateResult",
    "SerializedField",
    "SerializedItem",
    "SerializedReference",
    "SerializedVersion",
    "TemplateDefinition",
    "TemplateField",
    "VersionKey",
    "Err",
    "Ok",
    "Result",
    "try_result",
]
