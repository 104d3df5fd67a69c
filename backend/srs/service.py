"""Enrollment and grading against stored review state.

Grading is the one write path for scheduling state. It runs as a single
read-modify-write under a per-item lock, a row lock where the database
supports one, and the ``version_id`` check on ``review_states``.
"""

import dataclasses
import logging
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload
from sqlalchemy.orm.exc import StaleDataError

from backend.cards.answers import AnswerCheck, adjust_outcome, check_answer
from backend.config import utcnow
from backend.errors import ErrorKind, SchedulingError
from backend.models.flashcard import Flashcard
from backend.models.review_log import ReviewLog
from backend.models.review_state import ReviewState
from backend.srs.locks import KeyedLocks, grading_locks
from backend.srs.scheduler import (
    ReviewStatus,
    Scheduler,
    SchedulingState,
    Transition,
    parse_outcome,
)

logger = logging.getLogger(__name__)


@dataclass
class GradeResult:
    """The outcome of one grading call: a transition or an error."""

    transition: Transition | None = None
    error: SchedulingError | None = None
    answer_check: AnswerCheck | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


def state_of(record: ReviewState) -> SchedulingState:
    return SchedulingState(
        interval_days=record.interval_days,
        ease_factor=record.ease_factor,
        repetition_count=record.repetition_count,
        due_at=record.due_at,
        status=ReviewStatus(record.status),
    )


async def enroll(
    db: AsyncSession,
    child_id: int,
    flashcard_ids: Iterable[int],
    now: datetime | None = None,
    scheduler: Scheduler | None = None,
) -> list[ReviewState]:
    """Put flashcards into a child's rotation, due immediately.

    Cards already enrolled, soft-deleted or missing are skipped, so calling
    this twice is harmless.
    """
    scheduler = scheduler or Scheduler()
    now = now or utcnow()
    wanted = list(dict.fromkeys(flashcard_ids))
    if not wanted:
        return []

    existing = await db.execute(
        select(ReviewState.flashcard_id).where(
            ReviewState.child_id == child_id,
            ReviewState.flashcard_id.in_(wanted),
        )
    )
    enrolled = set(existing.scalars().all())

    cards = await db.execute(
        select(Flashcard.id).where(Flashcard.id.in_(wanted), Flashcard.deleted_at.is_(None))
    )
    available = set(cards.scalars().all())

    created = []
    for flashcard_id in wanted:
        if flashcard_id in enrolled or flashcard_id not in available:
            continue
        initial = scheduler.initial_state(now)
        created.append(
            ReviewState(
                child_id=child_id,
                flashcard_id=flashcard_id,
                interval_days=initial.interval_days,
                ease_factor=initial.ease_factor,
                repetition_count=initial.repetition_count,
                status=initial.status.value,
                due_at=initial.due_at,
            )
        )
    db.add_all(created)
    await db.commit()

    logger.info("Enrolled %d of %d cards for child %d", len(created), len(wanted), child_id)
    return created


def _error(kind: ErrorKind, message: str, child_id: int, flashcard_id: int) -> GradeResult:
    return GradeResult(
        error=SchedulingError(kind=kind, message=message, child_id=child_id, flashcard_id=flashcard_id)
    )


async def grade(
    db: AsyncSession,
    child_id: int,
    flashcard_id: int,
    outcome: Any,
    now: datetime | None = None,
    response: Any = None,
    scheduler: Scheduler | None = None,
    locks: KeyedLocks = grading_locks,
) -> GradeResult:
    """Apply a graded outcome to a due item.

    Args:
        db: Database session.
        child_id: The child who reviewed the card.
        flashcard_id: The reviewed card.
        outcome: again/hard/good/easy, as an ``Outcome`` or a string.
        now: Review time (defaults to utcnow).
        response: The child's answer, if the card type can be checked.
            A wrong answer graded good or easy is recorded as again.
        scheduler: Scheduler to use (defaults to one built from settings).
        locks: Lock registry guarding each (child, flashcard) pair.

    Returns:
        A GradeResult holding either the transition or the error. Unknown,
        inactive or not-yet-due items give ``not_found``; a concurrent write
        gives ``concurrency_conflict`` and leaves the stored state untouched.
    """
    parsed = parse_outcome(outcome)
    if isinstance(parsed, SchedulingError):
        logger.warning("Rejected grade for child %d card %d: %s", child_id, flashcard_id, parsed.message)
        return GradeResult(error=dataclasses.replace(parsed, child_id=child_id, flashcard_id=flashcard_id))

    scheduler = scheduler or Scheduler()
    now = now or utcnow()

    async with locks.hold((child_id, flashcard_id)):
        stmt = (
            select(ReviewState)
            .where(ReviewState.child_id == child_id, ReviewState.flashcard_id == flashcard_id)
            .options(selectinload(ReviewState.flashcard))
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        record = (await db.execute(stmt)).scalar_one_or_none()

        if record is None or record.flashcard.is_deleted or not record.flashcard.is_active:
            await db.commit()
            logger.warning("Grade for child %d card %d: not in rotation", child_id, flashcard_id)
            return _error(ErrorKind.NOT_FOUND, "This card is not in the review rotation.", child_id, flashcard_id)
        if record.due_at > now:
            await db.commit()
            logger.warning("Grade for child %d card %d: not due until %s", child_id, flashcard_id, record.due_at)
            return _error(ErrorKind.NOT_FOUND, "This card is no longer due.", child_id, flashcard_id)

        answer_check = None
        if response is not None:
            answer_check = check_answer(record.flashcard, response)
            parsed = adjust_outcome(parsed, answer_check)

        transition = scheduler.apply(state_of(record), parsed, now)
        new_state = transition.new_state

        record.interval_days = new_state.interval_days
        record.ease_factor = new_state.ease_factor
        record.repetition_count = new_state.repetition_count
        record.status = new_state.status.value
        record.due_at = new_state.due_at
        record.last_reviewed_at = now
        db.add(
            ReviewLog(
                review_state_id=record.id,
                child_id=child_id,
                flashcard_id=flashcard_id,
                outcome=parsed.value,
                interval_before=transition.old_interval,
                interval_after=transition.new_interval,
                ease_before=transition.old_ease,
                ease_after=transition.new_ease,
                reviewed_at=now,
            )
        )

        try:
            await db.commit()
        except StaleDataError:
            await db.rollback()
            logger.warning("Concurrent update to child %d card %d, grade not applied", child_id, flashcard_id)
            return _error(
                ErrorKind.CONCURRENCY_CONFLICT,
                "This card was graded elsewhere at the same time. Please try again.",
                child_id,
                flashcard_id,
            )

    logger.info(
        "Child %d graded card %d %s: %s",
        child_id,
        flashcard_id,
        parsed.value,
        "; ".join(transition.describe()),
    )
    return GradeResult(transition=transition, answer_check=answer_check)

