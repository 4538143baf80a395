import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Iterable, List

from ..domain.model import ANSWERS, PARTICIPANTS, Answer, Participant
from ..repositories.base import Store

logger = logging.getLogger(__name__)

# 1st, 2nd, 3rd fastest correct answer
POINTS = (10, 7, 5)

_FAR_FUTURE = datetime.max.replace(tzinfo=timezone.utc)


@dataclass(frozen=True)
class Award:
    answer_id: str
    participant_id: str
    position: int
    points: int
    # amount actually added to the participant total by this run
    added: int


def rank_correct_answers(answers: Iterable[Answer]) -> List[Answer]:
    """Correct answers, fastest first; ties go to the earlier submission, then the lower id."""
    correct = [a for a in answers if a.is_correct and not a.is_timeout]
    return sorted(
        correct,
        key=lambda a: (a.response_time_ms, a.submitted_at or _FAR_FUTURE, a.id),
    )


def compute_awards(answers: Iterable[Answer]) -> List[tuple[Answer, int]]:
    ranked = rank_correct_answers(answers)
    return list(zip(ranked, POINTS))


class ScoringEngine:
    """
    Folds one question's podium into participant totals.

    Idempotent per (session, question): an answer keeps the larger of its
    stored and computed award, and a participant's total is re-derived from
    the awards on all of their answers. Scoring the same question again
    (reveal, then advance) adds nothing, and a run that failed between the
    two writes is completed by the next one.
    """

    def __init__(self, store: Store) -> None:
        self.store = store

    async def score_question(self, session_id: str, question_index: int) -> List[Award]:
        rows = await self.store.get(
            ANSWERS,
            {"session_id": session_id, "question_index": question_index, "is_correct": True},
            order_by="response_time_ms",
        )
        answers = [Answer.from_row(r) for r in rows]
        awards: List[Award] = []

        for position, (answer, points) in enumerate(compute_awards(answers), start=1):
            if points > answer.points_awarded:
                claimed = await self.store.update(
                    ANSWERS,
                    {"id": answer.id, "points_awarded": answer.points_awarded},
                    {"points_awarded": points},
                )
                if not claimed:
                    logger.info("answer %s was scored concurrently", answer.id)
            added = await self._credit(answer.participant_id)
            awards.append(
                Award(answer.id, answer.participant_id, position, max(points, answer.points_awarded), added)
            )

        logger.info(
            "scored session %s question %d: %s",
            session_id,
            question_index,
            ", ".join(f"#{a.position} {a.participant_id}+{a.added}" for a in awards) or "no correct answers",
        )
        return awards

    async def _credit(self, participant_id: str) -> int:
        """Bring the participant total in line with their awarded answers; returns the change."""
        row = await self.store.get_one(PARTICIPANTS, {"id": participant_id})
        if row is None:
            logger.warning("awarded answer belongs to unknown participant %s", participant_id)
            return 0
        participant = Participant.from_row(row)
        earned = sum(
            Answer.from_row(r).points_awarded
            for r in await self.store.get(ANSWERS, {"participant_id": participant_id})
        )
        if earned == participant.total_score:
            return 0
        # conditional on the total we read, so two runs never both apply it
        updated = await self.store.update(
            PARTICIPANTS,
            {"id": participant.id, "total_score": participant.total_score},
            {"total_score": earned},
        )
        if not updated:
            logger.info("total for %s was credited concurrently", participant_id)
            return 0
        return earned - participant.total_score
