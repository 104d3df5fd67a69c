"""Queue management for review sessions.

Handles due-item ordering, mixing new cards in with reviews, and session
caps so a child is never handed more than one sitting's worth of cards.
"""

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime

from sqlalchemy import and_, select
from sqlalchemy.ext.asyncio import AsyncSession

from backend.config import settings, utcnow
from backend.models.flashcard import Flashcard
from backend.models.review_state import ReviewState
from backend.srs.scheduler import ReviewStatus

logger = logging.getLogger(__name__)

# Three due reviews, then one new card
DUE_PER_NEW = 3


@dataclass(frozen=True)
class QueueItem:
    """One reviewable (child, flashcard) item."""

    review_state_id: int
    flashcard_id: int
    due_at: datetime
    status: ReviewStatus = ReviewStatus.REVIEWING

    @property
    def is_new(self) -> bool:
        return self.status is ReviewStatus.NEW


def order_due(
    items: Iterable[QueueItem],
    now: datetime,
    capacity: int = settings.max_reviews_per_session,
) -> list[QueueItem]:
    """Due items, earliest first, ties broken by insertion id, capped."""
    if capacity < 0:
        raise ValueError(f"capacity must not be negative, got {capacity}")
    due = [item for item in items if item.due_at <= now]
    due.sort(key=lambda item: (item.due_at, item.review_state_id))
    return due[:capacity]


@dataclass
class ReviewQueue:
    """A prepared queue of items for a review session."""

    due_items: list[QueueItem] = field(default_factory=list)
    new_items: list[QueueItem] = field(default_factory=list)
    capacity: int = settings.max_reviews_per_session

    @property
    def total(self) -> int:
        return len(self.interleaved())

    def interleaved(self) -> list[QueueItem]:
        """Return items interleaved: three reviews, then one new card.

        Leftovers from either list follow once the other runs out, and the
        result is cut to the session capacity.
        """
        result: list[QueueItem] = []
        due = list(self.due_items)
        new = list(self.new_items)

        while due or new:
            result.extend(due[:DUE_PER_NEW])
            del due[:DUE_PER_NEW]
            if new:
                result.append(new.pop(0))

        return result[: self.capacity]


def _item(state: ReviewState) -> QueueItem:
    return QueueItem(
        review_state_id=state.id,
        flashcard_id=state.flashcard_id,
        due_at=state.due_at,
        status=ReviewStatus(state.status),
    )


def _reviewable(child_id: int):
    """Filter for a child's states whose flashcard is active and not deleted."""
    return and_(
        ReviewState.child_id == child_id,
        Flashcard.is_active.is_(True),
        Flashcard.deleted_at.is_(None),
    )


async def build_due_queue(
    db: AsyncSession,
    child_id: int,
    capacity: int | None = None,
    now: datetime | None = None,
    include_new: bool = True,
) -> list[QueueItem]:
    """Due items for a child, earliest first, truncated to ``capacity``.

    Args:
        db: Database session.
        child_id: The child to build the queue for.
        capacity: Maximum items (defaults to the session cap).
        now: Current time (defaults to utcnow).
        include_new: Whether never-reviewed items count as due.

    Returns:
        The same ordering ``order_due`` gives, computed in SQL.
    """
    capacity = settings.max_reviews_per_session if capacity is None else capacity
    if capacity < 0:
        raise ValueError(f"capacity must not be negative, got {capacity}")
    now = now or utcnow()

    conditions = [_reviewable(child_id), ReviewState.due_at <= now]
    if not include_new:
        conditions.append(ReviewState.status != ReviewStatus.NEW.value)

    stmt = (
        select(ReviewState)
        .join(Flashcard, Flashcard.id == ReviewState.flashcard_id)
        .where(*conditions)
        .order_by(ReviewState.due_at.asc(), ReviewState.id.asc())
        .limit(capacity)
    )
    result = await db.execute(stmt)
    return [_item(state) for state in result.scalars().all()]


async def build_session_queue(
    db: AsyncSession,
    child_id: int,
    capacity: int | None = None,
    now: datetime | None = None,
    max_new: int | None = None,
) -> ReviewQueue:
    """Build a session queue: due reviews with a few new cards mixed in.

    Args:
        db: Database session.
        child_id: The child to build the queue for.
        capacity: Session cap (defaults to max_reviews_per_session).
        now: Current time (defaults to utcnow).
        max_new: Cap on new cards (defaults to max_new_cards_per_session).
    """
    capacity = settings.max_reviews_per_session if capacity is None else capacity
    max_new = settings.max_new_cards_per_session if max_new is None else max_new
    now = now or utcnow()

    due_items = await build_due_queue(db, child_id, capacity=capacity, now=now, include_new=False)

    new_stmt = (
        select(ReviewState)
        .join(Flashcard, Flashcard.id == ReviewState.flashcard_id)
        .where(
            _reviewable(child_id),
            ReviewState.status == ReviewStatus.NEW.value,
            ReviewState.due_at <= now,
        )
        .order_by(ReviewState.id.asc())  # Oldest enrollment first
        .limit(min(max_new, capacity))
    )
    new_result = await db.execute(new_stmt)
    new_items = [_item(state) for state in new_result.scalars().all()]

    queue = ReviewQueue(due_items=due_items, new_items=new_items, capacity=capacity)
    logger.info(
        "Built queue for child %d: %d due + %d new, %d queued",
        child_id,
        len(due_items),
        len(new_items),
        queue.total,
    )
    return queue
