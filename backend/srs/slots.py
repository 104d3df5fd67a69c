"""Weekly review slots: the windows in which a child may start a review session.

A slot is a day of the week (ISO, 1=Monday) plus a start and end time.
Micro slots are short check-ins with a smaller session cap. A child with no
active slots may review at any time.
"""

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from datetime import datetime, time
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, ValidationError, model_validator
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from backend.config import Settings, settings
from backend.errors import ErrorKind, ErrorMap, add_error
from backend.models.review_slot import ReviewSlot

logger = logging.getLogger(__name__)


class SlotType(Enum):
    MICRO = "micro"
    STANDARD = "standard"


DAY_NAMES = {1: "Monday", 2: "Tuesday", 3: "Wednesday", 4: "Thursday", 5: "Friday", 6: "Saturday", 7: "Sunday"}


@dataclass(frozen=True)
class SlotWindow:
    """One weekly window, independent of storage."""

    day_of_week: int
    start_time: time
    end_time: time
    slot_type: SlotType = SlotType.MICRO
    is_active: bool = True
    id: int | None = None

    def contains(self, now: datetime) -> bool:
        """True if ``now`` falls on this slot's day between its bounds, inclusive."""
        if now.isoweekday() != self.day_of_week:
            return False
        current = now.time().replace(microsecond=0)
        return self.start_time <= current <= self.end_time

    @property
    def duration_minutes(self) -> int:
        start = self.start_time.hour * 60 + self.start_time.minute
        end = self.end_time.hour * 60 + self.end_time.minute
        return end - start

    @property
    def day_name(self) -> str:
        return DAY_NAMES[self.day_of_week]

    def overlaps(self, other: "SlotWindow") -> bool:
        return (
            self.day_of_week == other.day_of_week
            and self.start_time < other.end_time
            and other.start_time < self.end_time
        )

    def label(self) -> str:
        return (
            f"{self.day_name} {self.start_time:%H:%M}-{self.end_time:%H:%M} "
            f"({self.slot_type.value}{'' if self.is_active else ', inactive'})"
        )


@dataclass
class SlotGate:
    """Whether a session may start now, and how large it may be."""

    allowed: bool
    active_slot: SlotWindow | None
    next_slot: SlotWindow | None
    capacity: int


def _active(slots: Iterable[SlotWindow]) -> list[SlotWindow]:
    return [s for s in slots if s.is_active]


def is_session_allowed(slots: Iterable[SlotWindow], now: datetime) -> bool:
    """Allowed if no active slots are configured, or one contains ``now``."""
    active = _active(slots)
    if not active:
        return True
    return any(s.contains(now) for s in active)


def current_slot(slots: Iterable[SlotWindow], now: datetime) -> SlotWindow | None:
    for slot in _active(slots):
        if slot.contains(now):
            return slot
    return None


def next_slot_today(slots: Iterable[SlotWindow], now: datetime) -> SlotWindow | None:
    """The earliest active slot on today's weekday that has not started yet."""
    current = now.time().replace(microsecond=0)
    later = [
        s for s in _active(slots) if s.day_of_week == now.isoweekday() and s.start_time > current
    ]
    return min(later, key=lambda s: s.start_time, default=None)


def gate(slots: Iterable[SlotWindow], now: datetime, config: Settings = settings) -> SlotGate:
    """Decide whether a session may start at local time ``now``."""
    slots = list(slots)
    allowed = is_session_allowed(slots, now)
    active_slot = current_slot(slots, now)
    if active_slot is not None and active_slot.slot_type is SlotType.MICRO:
        capacity = config.micro_session_capacity
    else:
        capacity = config.max_reviews_per_session
    return SlotGate(
        allowed=allowed,
        active_slot=active_slot,
        next_slot=None if allowed else next_slot_today(slots, now),
        capacity=capacity,
    )


def default_slots() -> list[SlotWindow]:
    """A morning and an evening five-minute micro slot on every day."""
    windows = []
    for day in range(1, 8):
        windows.append(SlotWindow(day, time(8, 0), time(8, 5), SlotType.MICRO))
        windows.append(SlotWindow(day, time(19, 30), time(19, 35), SlotType.MICRO))
    return windows


# --- Input validation ---


class SlotInput(BaseModel):
    """A submitted review slot."""

    day_of_week: int = Field(ge=1, le=7)
    start_time: time
    end_time: time
    slot_type: SlotType = SlotType.MICRO
    is_active: bool = True

    @model_validator(mode="after")
    def check_order(self) -> "SlotInput":
        if self.end_time <= self.start_time:
            raise ValueError("End time must be after start time.")
        return self

    def to_window(self) -> SlotWindow:
        return SlotWindow(
            day_of_week=self.day_of_week,
            start_time=self.start_time,
            end_time=self.end_time,
            slot_type=self.slot_type,
            is_active=self.is_active,
        )


PYDANTIC_ERROR_KINDS = {
    "missing": ErrorKind.MISSING_FIELD,
    "enum": ErrorKind.INVALID_VALUE,
    "greater_than_equal": ErrorKind.INVALID_VALUE,
    "less_than_equal": ErrorKind.INVALID_VALUE,
    "value_error": ErrorKind.INVALID_VALUE,
}


def _error_map(exc: ValidationError) -> ErrorMap:
    errors: ErrorMap = {}
    for err in exc.errors():
        field_name = ".".join(str(part) for part in err["loc"]) or "end_time"
        kind = PYDANTIC_ERROR_KINDS.get(err["type"], ErrorKind.TYPE_MISMATCH)
        add_error(errors, field_name, kind, err["msg"].removeprefix("Value error, "))
    return errors


def parse_slot_input(
    raw: Mapping[str, Any], existing: Iterable[SlotWindow] = ()
) -> SlotInput | ErrorMap:
    """Validate a submitted slot, including overlap with ``existing`` slots."""
    try:
        slot = SlotInput.model_validate(dict(raw))
    except ValidationError as exc:
        return _error_map(exc)

    window = slot.to_window()
    if window.is_active:
        for other in _active(existing):
            if window.overlaps(other):
                errors: ErrorMap = {}
                add_error(
                    errors,
                    "start_time",
                    ErrorKind.SLOT_OVERLAP,
                    f"This slot overlaps with {other.label()}.",
                )
                return errors
    return slot


# --- Persistence ---


def window_from_record(slot: ReviewSlot) -> SlotWindow:
    return SlotWindow(
        day_of_week=slot.day_of_week,
        start_time=slot.start_time,
        end_time=slot.end_time,
        slot_type=SlotType(slot.slot_type),
        is_active=slot.is_active,
        id=slot.id,
    )


async def list_slots(db: AsyncSession, child_id: int) -> list[ReviewSlot]:
    stmt = (
        select(ReviewSlot)
        .where(ReviewSlot.child_id == child_id)
        .order_by(ReviewSlot.day_of_week, ReviewSlot.start_time)
    )
    result = await db.execute(stmt)
    return list(result.scalars().all())


async def load_windows(db: AsyncSession, child_id: int) -> list[SlotWindow]:
    return [window_from_record(s) for s in await list_slots(db, child_id)]


async def add_slot(db: AsyncSession, child_id: int, raw: Mapping[str, Any]) -> ReviewSlot | ErrorMap:
    """Validate and store a new slot, or return the field errors."""
    parsed = parse_slot_input(raw, await load_windows(db, child_id))
    if not isinstance(parsed, SlotInput):
        return parsed

    slot = ReviewSlot(
        child_id=child_id,
        day_of_week=parsed.day_of_week,
        start_time=parsed.start_time,
        end_time=parsed.end_time,
        slot_type=parsed.slot_type.value,
        is_active=parsed.is_active,
    )
    db.add(slot)
    await db.commit()
    logger.info("Added review slot %s for child %d", parsed.to_window().label(), child_id)
    return slot


async def _get_slot(db: AsyncSession, child_id: int, slot_id: int) -> ReviewSlot | None:
    slot = await db.get(ReviewSlot, slot_id)
    if slot is None or slot.child_id != child_id:
        return None
    return slot


async def delete_slot(db: AsyncSession, child_id: int, slot_id: int) -> bool:
    slot = await _get_slot(db, child_id, slot_id)
    if slot is None:
        return False
    await db.delete(slot)
    await db.commit()
    return True


async def toggle_slot(db: AsyncSession, child_id: int, slot_id: int) -> ReviewSlot | ErrorMap | None:
    """Flip a slot's active flag.

    Re-activating a slot that would overlap another active slot is refused
    with a ``slot_overlap`` error.
    """
    slot = await _get_slot(db, child_id, slot_id)
    if slot is None:
        return None

    if not slot.is_active:
        window = window_from_record(slot)
        others = [w for w in await load_windows(db, child_id) if w.id != slot.id]
        for other in _active(others):
            if window.overlaps(other):
                errors: ErrorMap = {}
                add_error(
                    errors, "start_time", ErrorKind.SLOT_OVERLAP, f"This slot overlaps with {other.label()}."
                )
                return errors

    slot.is_active = not slot.is_active
    await db.commit()
    return slot


async def create_default_slots(db: AsyncSession, child_id: int) -> list[ReviewSlot]:
    """Create the default schedule for a child who has no slots yet."""
    if await list_slots(db, child_id):
        return []

    created = [
        ReviewSlot(
            child_id=child_id,
            day_of_week=w.day_of_week,
            start_time=w.start_time,
            end_time=w.end_time,
            slot_type=w.slot_type.value,
            is_active=w.is_active,
        )
        for w in default_slots()
    ]
    db.add_all(created)
    await db.commit()
    logger.info("Created %d default review slots for child %d", len(created), child_id)
    return created
