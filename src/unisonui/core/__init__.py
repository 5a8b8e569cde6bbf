"""Engine core: no I/O, no UI."""

from unisonui.core.engine import Engine, OperationNotAllowed, Phase, StaleAlert
from unisonui.core.model import (
    Action,
    Alert,
    AlertKind,
    Content,
    ContentStatus,
    ContentType,
    Importance,
    Item,
    Message,
    Operation,
    Update,
)

__all__ = [
    "Action",
    "Alert",
    "AlertKind",
    "Content",
    "ContentStatus",
    "ContentType",
    "Engine",
    "Importance",
    "Item",
    "Message",
    "Operation",
    "OperationNotAllowed",
    "Phase",
    "StaleAlert",
    "Update",
]
