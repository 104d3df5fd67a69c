"""Flashcard persistence: every write goes through the validator first."""

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from backend.cards.importer import ImportReport, import_records
from backend.cards.validator import check
from backend.config import utcnow
from backend.errors import ErrorKind, ErrorMap, add_error, error_messages
from backend.models.curriculum import Topic
from backend.models.flashcard import Flashcard
from backend.models.review_state import ReviewState

logger = logging.getLogger(__name__)


@dataclass
class SaveResult:
    """A saved flashcard, or the reasons it was not saved."""

    flashcard: Flashcard | None = None
    errors: ErrorMap = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.errors

    def messages(self) -> dict[str, list[str]]:
        return error_messages(self.errors)


def _not_found(field_name: str, message: str) -> SaveResult:
    errors: ErrorMap = {}
    add_error(errors, field_name, ErrorKind.NOT_FOUND, message)
    return SaveResult(errors=errors)


async def get_flashcard(
    db: AsyncSession, flashcard_id: int, include_deleted: bool = False
) -> Flashcard | None:
    card = await db.get(Flashcard, flashcard_id)
    if card is None or (card.is_deleted and not include_deleted):
        return None
    return card


async def list_flashcards(
    db: AsyncSession, topic_id: int, include_deleted: bool = False, active_only: bool = False
) -> list[Flashcard]:
    stmt = select(Flashcard).where(Flashcard.topic_id == topic_id)
    if not include_deleted:
        stmt = stmt.where(Flashcard.deleted_at.is_(None))
    if active_only:
        stmt = stmt.where(Flashcard.is_active.is_(True))
    result = await db.execute(stmt.order_by(Flashcard.id))
    return list(result.scalars().all())


async def create_flashcard(db: AsyncSession, topic_id: int, raw: Mapping[str, Any]) -> SaveResult:
    """Validate submitted fields and store a new card under a topic."""
    if await db.get(Topic, topic_id) is None:
        return _not_found("topic_id", "The selected topic is invalid.")

    result = check(raw)
    if not result.is_valid:
        return SaveResult(errors=result.errors)

    card = Flashcard(topic_id=topic_id, **result.draft.to_record())
    db.add(card)
    await db.commit()
    logger.info("Created %s flashcard %d in topic %d", card.card_type, card.id, topic_id)
    return SaveResult(flashcard=card)


async def update_flashcard(db: AsyncSession, flashcard_id: int, raw: Mapping[str, Any]) -> SaveResult:
    """Replace a card's content with a full resubmission.

    The card type defaults to the stored one. Columns belonging to other
    card types are cleared, so switching type leaves no stale data.
    """
    card = await get_flashcard(db, flashcard_id)
    if card is None:
        return _not_found("id", "Flashcard not found.")

    fields = dict(raw)
    fields.setdefault("card_type", card.card_type)
    result = check(fields)
    if not result.is_valid:
        return SaveResult(errors=result.errors)

    for column, value in result.draft.to_record().items():
        setattr(card, column, value)
    await db.commit()
    logger.info("Updated flashcard %d", card.id)
    return SaveResult(flashcard=card)


async def set_active(db: AsyncSession, flashcard_ids: Iterable[int], is_active: bool) -> int:
    """Bulk activate/deactivate cards. Returns how many rows changed."""
    ids = list(flashcard_ids)
    if not ids:
        return 0
    stmt = (
        update(Flashcard)
        .where(Flashcard.id.in_(ids), Flashcard.deleted_at.is_(None))
        .values(is_active=is_active, updated_at=utcnow())
    )
    result = await db.execute(stmt)
    await db.commit()
    logger.info("Set is_active=%s on %d flashcards", is_active, result.rowcount)
    return result.rowcount


async def soft_delete(db: AsyncSession, flashcard_id: int) -> bool:
    """Hide a card from queues and listings; review history is kept."""
    card = await get_flashcard(db, flashcard_id)
    if card is None:
        return False
    card.deleted_at = utcnow()
    await db.commit()
    return True


async def restore(db: AsyncSession, flashcard_id: int) -> bool:
    card = await get_flashcard(db, flashcard_id, include_deleted=True)
    if card is None or not card.is_deleted:
        return False
    card.deleted_at = None
    await db.commit()
    return True


async def force_delete(db: AsyncSession, flashcard_id: int) -> bool:
    """Remove a card with its review states and logs."""
    stmt = (
        select(Flashcard)
        .where(Flashcard.id == flashcard_id)
        .options(selectinload(Flashcard.review_states).selectinload(ReviewState.review_logs))
    )
    card = (await db.execute(stmt)).scalar_one_or_none()
    if card is None:
        return False
    await db.delete(card)
    await db.commit()
    logger.info("Permanently deleted flashcard %d", flashcard_id)
    return True


async def import_into_topic(
    db: AsyncSession,
    topic_id: int,
    records: Iterable[Mapping[str, Any]],
    source: str = "import",
) -> tuple[ImportReport, list[Flashcard]]:
    """Validate an import batch and store the rows that pass.

    Invalid rows and cards already in the topic are reported and skipped;
    they never block valid ones.
    """
    topic = await db.get(Topic, topic_id)
    existing = await list_flashcards(db, topic_id) if topic is not None else []
    report = import_records(records, source=source, existing=existing)
    if report.batch_error or not report.drafts:
        return report, []
    if topic is None:
        report.batch_error = f"Topic {topic_id} does not exist"
        return report, []

    cards = [Flashcard(topic_id=topic_id, **draft.to_record()) for draft in report.drafts]
    db.add_all(cards)
    await db.commit()
    logger.info("Imported %d flashcards into topic %d from %s", len(cards), topic_id, source)
    return report, cards
