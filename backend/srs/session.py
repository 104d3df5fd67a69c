"""Review session orchestrator.

Coordinates slot gating, queue building and grading into a session flow.
Sessions live in memory only: each grade is committed as it happens, so
ending early keeps what was graded and leaves the rest due.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from backend.config import local_now, utcnow
from backend.errors import ErrorKind, SchedulingError
from backend.models.flashcard import Flashcard
from backend.srs.locks import KeyedLocks, grading_locks
from backend.srs.queue import QueueItem, ReviewQueue, build_session_queue
from backend.srs.scheduler import Outcome, Scheduler
from backend.srs.service import GradeResult, grade
from backend.srs.slots import SlotGate, gate, load_windows

logger = logging.getLogger(__name__)


@dataclass
class SessionStats:
    """Running totals for one session."""

    cards_reviewed: int = 0
    new_cards_seen: int = 0
    skipped: int = 0
    incorrect_answers: int = 0
    outcomes: dict[str, int] = field(default_factory=lambda: {o.value: 0 for o in Outcome})
    ended_early: bool = False


@dataclass
class ReviewSession:
    """An active review session for one child."""

    child_id: int
    queue: ReviewQueue
    scheduler: Scheduler = field(default_factory=Scheduler)
    locks: KeyedLocks = grading_locks
    stats: SessionStats = field(default_factory=SessionStats)
    _items: list[QueueItem] = field(default_factory=list)
    _index: int = 0
    _ended: bool = False

    def __post_init__(self) -> None:
        self._items = self.queue.interleaved()

    @property
    def total(self) -> int:
        return len(self._items)

    @property
    def remaining(self) -> int:
        """Return the number of items left to review."""
        if self._ended:
            return 0
        return max(0, len(self._items) - self._index)

    @property
    def is_complete(self) -> bool:
        return self._ended or self._index >= len(self._items)

    @property
    def current(self) -> QueueItem | None:
        """Return the current item or None if the session is over."""
        if self.is_complete:
            return None
        return self._items[self._index]

    async def current_card(self, db: AsyncSession) -> Flashcard | None:
        item = self.current
        if item is None:
            return None
        return await db.get(Flashcard, item.flashcard_id)

    async def grade(
        self,
        db: AsyncSession,
        outcome: Any,
        response: Any = None,
        now: datetime | None = None,
    ) -> GradeResult:
        """Grade the current item and advance.

        An item that is no longer gradable (deleted, deactivated, already
        graded elsewhere) is skipped. An invalid outcome or a concurrent
        write leaves the cursor in place so the caller can try again.
        """
        item = self.current
        if item is None:
            return GradeResult(
                error=SchedulingError(
                    kind=ErrorKind.NOT_FOUND, message="This session is complete.", child_id=self.child_id
                )
            )

        result = await grade(
            db,
            self.child_id,
            item.flashcard_id,
            outcome,
            now=now or utcnow(),
            response=response,
            scheduler=self.scheduler,
            locks=self.locks,
        )

        if result.ok:
            self.stats.cards_reviewed += 1
            self.stats.outcomes[result.transition.outcome.value] += 1
            if item.is_new:
                self.stats.new_cards_seen += 1
            if result.answer_check is not None and result.answer_check.is_correct is False:
                self.stats.incorrect_answers += 1
            self._index += 1
        elif result.error.kind is ErrorKind.NOT_FOUND:
            logger.warning("Skipping card %d: %s", item.flashcard_id, result.error.message)
            self.stats.skipped += 1
            self._index += 1

        return result

    def end(self) -> SessionStats:
        """Stop early. Ungraded items stay due for the next session."""
        if not self.is_complete:
            self.stats.ended_early = True
            logger.info(
                "Child %d ended session with %d of %d cards left",
                self.child_id,
                self.remaining,
                len(self._items),
            )
        self._ended = True
        return self.stats


@dataclass
class SessionStart:
    """Result of asking to start a session."""

    gate: SlotGate
    session: ReviewSession | None = None

    @property
    def allowed(self) -> bool:
        return self.session is not None


async def start_session(
    db: AsyncSession,
    child_id: int,
    now: datetime | None = None,
    local_time: datetime | None = None,
    scheduler: Scheduler | None = None,
) -> SessionStart:
    """Start a review session if the child's review slots allow it.

    Args:
        db: Database session.
        child_id: The child starting the session.
        now: UTC time used for due checks (defaults to utcnow).
        local_time: Wall-clock time used for slot gating (defaults to
            the configured timezone's current time).
        scheduler: Scheduler for grading (defaults to one built from settings).

    Returns:
        A SessionStart; its session is None when outside every slot.
    """
    slot_gate = gate(await load_windows(db, child_id), local_time or local_now())
    if not slot_gate.allowed:
        logger.info("Child %d is outside their review slots", child_id)
        return SessionStart(gate=slot_gate)

    queue = await build_session_queue(db, child_id, capacity=slot_gate.capacity, now=now)
    session = ReviewSession(child_id=child_id, queue=queue, scheduler=scheduler or Scheduler())

    logger.info(
        "Started session for child %d: %d cards queued (capacity %d)",
        child_id,
        session.total,
        slot_gate.capacity,
    )
    return SessionStart(gate=slot_gate, session=session)
