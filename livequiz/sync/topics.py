from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Mapping, Optional

from ..domain.model import (
    ANSWERS,
    PARTICIPANTS,
    SESSIONS,
    Answer,
    Participant,
    RecordError,
    Session,
    normalize_session_code,
)
from ..repositories.base import Store

logger = logging.getLogger(__name__)


class TopicShape(str, enum.Enum):
    ENTITY = "entity"
    COLLECTION = "collection"


@dataclass(frozen=True)
class Topic:
    """A filtered view of one collection, narrowed to domain records."""

    name: str
    collection: str
    filters: Mapping[str, Any]
    shape: TopicShape
    parse: Callable[[Mapping[str, Any]], Any] = field(compare=False)
    poll_interval: float = 1.0
    order_by: tuple[str, ...] = ()
    desc: bool = False

    @property
    def is_collection(self) -> bool:
        return self.shape is TopicShape.COLLECTION

    def narrow(self, row: Mapping[str, Any]) -> Optional[Any]:
        try:
            return self.parse(row)
        except RecordError as e:
            logger.warning("dropping malformed %s row %s: %s", self.collection, row.get("id"), e)
            return None

    def narrow_rows(self, rows: list[Mapping[str, Any]]) -> list[Any]:
        return [r for r in (self.narrow(row) for row in rows) if r is not None]

    async def fetch(self, store: Store) -> Any:
        """Direct query of the whole topic: one record (or None) or the full list."""
        if self.is_collection:
            rows = await store.get(self.collection, self.filters, order_by=self.order_by or None, desc=self.desc)
            return self.narrow_rows(rows)
        rows = await store.get(self.collection, self.filters, limit=1)
        return self.narrow(rows[0]) if rows else None


def session_topic(code: str, poll_interval: float = 1.0) -> Topic:
    code = normalize_session_code(code)
    return Topic(
        name=f"session:{code}",
        collection=SESSIONS,
        filters={"session_code": code},
        shape=TopicShape.ENTITY,
        parse=Session.from_row,
        poll_interval=poll_interval,
    )


def participants_topic(session_id: str, poll_interval: float = 2.0) -> Topic:
    return Topic(
        name=f"participants:{session_id}",
        collection=PARTICIPANTS,
        filters={"session_id": session_id},
        shape=TopicShape.COLLECTION,
        parse=Participant.from_row,
        poll_interval=poll_interval,
        order_by=("total_score",),
        desc=True,
    )


def answers_topic(
    session_id: str,
    question_index: int,
    participant_id: Optional[str] = None,
    poll_interval: float = 1.0,
) -> Topic:
    filters: dict[str, Any] = {"session_id": session_id, "question_index": question_index}
    name = f"answers:{session_id}:q{question_index}"
    if participant_id is not None:
        filters["participant_id"] = participant_id
        name += f":{participant_id}"
    return Topic(
        name=name,
        collection=ANSWERS,
        filters=filters,
        shape=TopicShape.COLLECTION,
        parse=Answer.from_row,
        poll_interval=poll_interval,
        order_by=("response_time_ms",),
    )
