"""
Query engine for kvorm.

- EntityEngine: generic per-entity CRUD operations
- Capability table, filters, relation attachment, ordering
- Scope analysis, default filling, write orchestration
- Change notifications
"""

from .events import ChangeEvent, ChangeKind, EventEmitter
from .model import EntityEngine
from .records import ResultRecord

__all__ = [
    "EntityEngine",
    "ResultRecord",
    "ChangeEvent",
    "ChangeKind",
    "EventEmitter",
]
