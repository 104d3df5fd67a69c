"""Review statistics for a child's dashboard."""

import logging
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta

from sqlalchemy import and_, distinct, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from backend.config import utcnow
from backend.models.flashcard import Flashcard
from backend.models.review_log import ReviewLog
from backend.models.review_state import ReviewState
from backend.srs.scheduler import Outcome, ReviewStatus

logger = logging.getLogger(__name__)

RETENTION_WINDOW_DAYS = 30


@dataclass
class ChildStats:
    cards_enrolled: int
    cards_due: int
    cards_new: int
    cards_mastered: int
    total_reviews: int
    retention: float | None  # Share of good/easy over the retention window
    streak_days: int

    def as_dict(self) -> dict:
        return asdict(self)


async def child_stats(db: AsyncSession, child_id: int, now: datetime | None = None) -> ChildStats:
    """Get overall review statistics for a child."""
    now = now or utcnow()

    def count_states(*conditions):
        return (
            select(func.count(ReviewState.id))
            .join(Flashcard, Flashcard.id == ReviewState.flashcard_id)
            .where(
                ReviewState.child_id == child_id,
                Flashcard.deleted_at.is_(None),
                Flashcard.is_active.is_(True),
                *conditions,
            )
        )

    cards_enrolled = (await db.execute(count_states())).scalar() or 0
    cards_due = (await db.execute(count_states(ReviewState.due_at <= now))).scalar() or 0
    cards_new = (
        await db.execute(count_states(ReviewState.status == ReviewStatus.NEW.value))
    ).scalar() or 0
    cards_mastered = (
        await db.execute(count_states(ReviewState.status == ReviewStatus.MASTERED.value))
    ).scalar() or 0

    # Total reviews
    reviews_stmt = select(func.count(ReviewLog.id)).where(ReviewLog.child_id == child_id)
    total_reviews = (await db.execute(reviews_stmt)).scalar() or 0

    # Retention over recent reviews: % graded good or easy
    recent_cutoff = now - timedelta(days=RETENTION_WINDOW_DAYS)
    recent = and_(ReviewLog.child_id == child_id, ReviewLog.reviewed_at >= recent_cutoff)
    retention_total = (await db.execute(select(func.count(ReviewLog.id)).where(recent))).scalar() or 0
    retention_pass = (
        await db.execute(
            select(func.count(ReviewLog.id)).where(
                recent,
                ReviewLog.outcome.in_([Outcome.GOOD.value, Outcome.EASY.value]),
            )
        )
    ).scalar() or 0
    retention = retention_pass / retention_total if retention_total > 0 else None

    streak_days = await _calculate_streak(db, child_id, now)

    return ChildStats(
        cards_enrolled=cards_enrolled,
        cards_due=cards_due,
        cards_new=cards_new,
        cards_mastered=cards_mastered,
        total_reviews=total_reviews,
        retention=round(retention, 3) if retention is not None else None,
        streak_days=streak_days,
    )


async def _calculate_streak(db: AsyncSession, child_id: int, now: datetime) -> int:
    """Calculate the number of consecutive days, ending today, with a review."""
    stmt = (
        select(distinct(func.date(ReviewLog.reviewed_at)))
        .where(ReviewLog.child_id == child_id)
        .order_by(func.date(ReviewLog.reviewed_at).desc())
    )
    result = await db.execute(stmt)
    dates = [row[0] for row in result.all()]

    today = now.date()
    streak = 0
    for i, review_date in enumerate(dates):
        expected = today - timedelta(days=i)
        if str(review_date) == str(expected):
            streak += 1
        else:
            break
    return streak
