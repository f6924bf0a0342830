"""
Change notifications.

Each entity engine owns an EventEmitter. Subscribers register for one or
more change kinds and are called with a ChangeEvent once the transaction
holding the writes commits. Events of a rolled back transaction are dropped.

Invariants:
    - A failing callback is logged and never fails the write
    - Callbacks run in subscription order
"""

from __future__ import annotations

import inspect
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Union

logger = logging.getLogger(__name__)


class ChangeKind(Enum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"

    @classmethod
    def from_str(cls, value: str) -> ChangeKind:
        for kind in cls:
            if kind.value == value:
                return kind
        valid = [k.value for k in cls]
        raise ValueError(f"Invalid change kind '{value}'. Valid kinds: {valid}")


@dataclass(frozen=True)
class ChangeEvent:
    """Notification payload.

    Attributes:
        entity: Name of the entity that changed
        kind: What happened
    """

    entity: str
    kind: ChangeKind


Callback = Callable[[ChangeEvent], Any]
KindSpec = Union[str, ChangeKind, Iterable[Union[str, ChangeKind]]]


def _kinds(spec: KindSpec) -> List[ChangeKind]:
    if isinstance(spec, (str, ChangeKind)):
        spec = [spec]
    return [k if isinstance(k, ChangeKind) else ChangeKind.from_str(k) for k in spec]


class EventEmitter:
    """Per-entity subscriber registry.

    Example:
        >>> def on_change(event):
        ...     print(event.entity, event.kind.value)
        >>> client.user.subscribe(["create", "delete"], on_change)
    """

    def __init__(self, entity: str) -> None:
        self.entity = entity
        self._subscribers: Dict[ChangeKind, List[Callback]] = {kind: [] for kind in ChangeKind}

    def subscribe(self, kinds: KindSpec, callback: Callback) -> None:
        for kind in _kinds(kinds):
            self._subscribers[kind].append(callback)

    def unsubscribe(self, kinds: KindSpec, callback: Callback) -> None:
        for kind in _kinds(kinds):
            if callback in self._subscribers[kind]:
                self._subscribers[kind].remove(callback)

    def subscriber_count(self, kind: Union[str, ChangeKind]) -> int:
        return len(self._subscribers[_kinds(kind)[0]])

    async def emit(self, kind: Union[str, ChangeKind]) -> None:
        """Call every subscriber of kind; coroutine callbacks are awaited."""
        (kind,) = _kinds(kind)
        event = ChangeEvent(entity=self.entity, kind=kind)
        for callback in list(self._subscribers[kind]):
            try:
                result = callback(event)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception(
                    "Change subscriber failed",
                    extra={"entity": self.entity, "kind": kind.value},
                )
