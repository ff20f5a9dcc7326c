"""
Per-field change markers for bulk task mutations.

Each field of TaskChanges is one of:
- UNCHANGED: leave the column alone
- SetTo(value): write the value
- CLEAR: write NULL (only for nullable columns)
"""

from dataclasses import dataclass, field
from datetime import date
from typing import Generic, TypeVar, Union

T = TypeVar("T")


@dataclass(frozen=True)
class Unchanged:
    def __repr__(self) -> str:
        return "UNCHANGED"


@dataclass(frozen=True)
class Clear:
    def __repr__(self) -> str:
        return "CLEAR"


@dataclass(frozen=True)
class SetTo(Generic[T]):
    value: T


UNCHANGED = Unchanged()
CLEAR = Clear()

Change = Union[Unchanged, SetTo[T]]
NullableChange = Union[Unchanged, SetTo[T], Clear]


@dataclass(frozen=True)
class TaskChanges:
    """Fields a bulk update may touch."""
    status: Change[str] = field(default=UNCHANGED)
    priority: Change[str] = field(default=UNCHANGED)
    description: Change[str] = field(default=UNCHANGED)
    project_id: NullableChange[int] = field(default=UNCHANGED)
    due_date: NullableChange[date] = field(default=UNCHANGED)

    def is_empty(self) -> bool:
        return all(
            isinstance(getattr(self, name), Unchanged)
            for name in ("status", "priority", "description", "project_id", "due_date")
        )
