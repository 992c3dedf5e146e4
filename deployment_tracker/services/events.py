"""Work items passed from the pod event handlers to the workers."""
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional


class EventKind(str, Enum):
    CREATED = "CREATED"
    DELETED = "DELETED"


@dataclass(frozen=True)
class WorkItem:
    """A pod event to be processed.

    Identity (and therefore queue coalescing) is (key, kind) only.
    terminal_snapshot holds the pod captured at deletion time, because the
    informer store no longer has it once the item is processed.
    """
    key: str
    kind: EventKind
    terminal_snapshot: Optional[Any] = field(default=None, compare=False, hash=False, repr=False)

    @property
    def event_type(self) -> str:
        return self.kind.value


__all__ = [
    "EventKind",
    "WorkItem",
]
