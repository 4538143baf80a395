"""Store interface shared by every backend.

The live quiz core only ever talks to collections through this contract:
equality-filtered reads, inserts, filtered updates and push subscriptions.
Backends translate their native errors into ``StoreError`` and their native
subscription states into ``FeedStatus``.
"""

from __future__ import annotations

import enum
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, Mapping, Optional, Sequence, Union

from ..domain.model import ANSWERS, PARTICIPANTS, SESSIONS

Filters = Mapping[str, Any]
OrderBy = Union[str, Sequence[str], None]

# Columns whose combined value must be unique per collection
UNIQUE_KEYS: dict[str, tuple[str, ...]] = {
    SESSIONS: ("session_code",),
    PARTICIPANTS: ("session_id", "name"),
    ANSWERS: ("session_id", "participant_id", "question_index"),
}


class FeedStatus(str, enum.Enum):
    CONNECTING = "connecting"
    LIVE = "live"
    DEGRADED = "degraded"
    FAILED = "failed"


@dataclass(frozen=True)
class ChangeEvent:
    type: str  # INSERT | UPDATE | DELETE
    new: Optional[dict] = None
    old: Optional[dict] = None

    @property
    def row(self) -> Optional[dict]:
        return self.new if self.new is not None else self.old


EventCallback = Callable[[ChangeEvent], None]
StatusCallback = Callable[[FeedStatus], None]


class Subscription(ABC):
    @abstractmethod
    async def close(self) -> None:
        """Release the subscription. Safe to call more than once."""


def matches(row: Optional[Mapping[str, Any]], filters: Optional[Filters]) -> bool:
    if row is None:
        return False
    for key, expected in (filters or {}).items():
        actual = row.get(key)
        if actual != expected and str(actual) != str(expected):
            return False
    return True


def unique_key(collection: str, row: Mapping[str, Any]) -> Optional[tuple]:
    cols = UNIQUE_KEYS.get(collection)
    if not cols:
        return None
    return tuple(row.get(c) for c in cols)


def order_columns(order_by: OrderBy) -> list[str]:
    if order_by is None:
        return []
    if isinstance(order_by, str):
        return [order_by]
    return list(order_by)


class Store(ABC):
    @abstractmethod
    async def get(
        self,
        collection: str,
        filters: Optional[Filters] = None,
        *,
        order_by: OrderBy = None,
        desc: bool = False,
        limit: Optional[int] = None,
    ) -> list[dict]:
        ...

    @abstractmethod
    async def insert(self, collection: str, fields: Mapping[str, Any]) -> dict:
        """Insert one row and return it. Raises DuplicateRowError on a unique key clash."""

    @abstractmethod
    async def update(self, collection: str, filters: Filters, fields: Mapping[str, Any]) -> list[dict]:
        """Apply ``fields`` to every row matching ``filters`` and return the updated rows."""

    @abstractmethod
    async def subscribe(
        self,
        collection: str,
        filters: Optional[Filters],
        on_event: EventCallback,
        on_status: StatusCallback,
    ) -> Subscription:
        ...

    async def unsubscribe(self, subscription: Subscription) -> None:
        await subscription.close()

    async def get_one(self, collection: str, filters: Filters) -> Optional[dict]:
        rows = await self.get(collection, filters, limit=1)
        return rows[0] if rows else None
