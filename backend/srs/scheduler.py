"""SM-2 family spaced repetition scheduler.

Each review item carries an interval (days until it is due again), an ease
factor (how fast the interval grows) and a repetition count. A graded
outcome moves the item to its next state:

- Again: forgotten. Repetitions reset, interval drops to the minimum,
  ease takes the large penalty.
- Hard: recalled with effort. Interval grows by a small fixed multiplier
  (always below the ease floor, so always shorter than Good), ease takes
  the small penalty.
- Good: interval grows by the ease factor, with the first two successes
  graduating to fixed steps (3 then 7 days). Ease is unchanged.
- Easy: Good's interval times a bonus multiplier, ease gets a bonus.

The ease factor never falls below its floor, and every transition schedules
``due_at = now + interval``.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum

from backend.config import Settings, settings, utcnow
from backend.errors import ErrorKind, SchedulingError

logger = logging.getLogger(__name__)


class Outcome(Enum):
    AGAIN = "again"
    HARD = "hard"
    GOOD = "good"
    EASY = "easy"


SUCCESS_OUTCOMES = (Outcome.HARD, Outcome.GOOD, Outcome.EASY)


class ReviewStatus(Enum):
    NEW = "new"
    LEARNING = "learning"
    REVIEWING = "reviewing"
    MASTERED = "mastered"


def parse_outcome(value: object) -> Outcome | SchedulingError:
    """Accept an ``Outcome`` or its name, case-insensitively."""
    if isinstance(value, Outcome):
        return value
    if isinstance(value, str):
        try:
            return Outcome(value.strip().lower())
        except ValueError:
            pass
    return SchedulingError(
        kind=ErrorKind.INVALID_OUTCOME,
        message=f"Invalid review outcome {value!r}; expected one of again, hard, good, easy.",
    )


@dataclass(frozen=True)
class SchedulerConfig:
    """Scheduling constants. Defaults are the standard SM-2 values."""

    initial_ease_factor: float = 2.5
    min_ease_factor: float = 1.3
    again_ease_penalty: float = 0.2
    hard_ease_penalty: float = 0.15
    easy_ease_bonus: float = 0.15
    hard_interval_multiplier: float = 1.2
    easy_interval_multiplier: float = 1.3
    min_interval_days: float = 1.0
    graduating_intervals: tuple[float, ...] = (3.0, 7.0)
    mastered_interval_days: float = 120.0
    mastered_repetitions: int = 4

    def __post_init__(self) -> None:
        if self.min_ease_factor <= 1:
            raise ValueError("min_ease_factor must be greater than 1 for intervals to grow")
        if self.hard_interval_multiplier >= self.min_ease_factor:
            raise ValueError("hard_interval_multiplier must stay below min_ease_factor")
        if self.easy_interval_multiplier <= 1:
            raise ValueError("easy_interval_multiplier must be greater than 1")
        if self.min_interval_days <= 0:
            raise ValueError("min_interval_days must be positive")
        if self.initial_ease_factor < self.min_ease_factor:
            raise ValueError("initial_ease_factor must not be below min_ease_factor")

    @classmethod
    def from_settings(cls, config: Settings = settings) -> "SchedulerConfig":
        return cls(
            initial_ease_factor=config.initial_ease_factor,
            min_ease_factor=config.min_ease_factor,
            again_ease_penalty=config.again_ease_penalty,
            hard_ease_penalty=config.hard_ease_penalty,
            easy_ease_bonus=config.easy_ease_bonus,
            hard_interval_multiplier=config.hard_interval_multiplier,
            easy_interval_multiplier=config.easy_interval_multiplier,
            min_interval_days=config.min_interval_days,
            graduating_intervals=tuple(config.graduating_intervals),
            mastered_interval_days=config.mastered_interval_days,
            mastered_repetitions=config.mastered_repetitions,
        )


@dataclass
class SchedulingState:
    """The scheduling state of one (child, flashcard) item."""

    interval_days: float
    ease_factor: float
    repetition_count: int
    due_at: datetime
    status: ReviewStatus = ReviewStatus.NEW

    def __post_init__(self) -> None:
        if self.interval_days <= 0:
            raise ValueError(f"interval_days must be positive, got {self.interval_days}")
        if self.repetition_count < 0:
            raise ValueError(f"repetition_count must not be negative, got {self.repetition_count}")


def format_interval(days: float) -> str:
    """Human-friendly interval: days under a week, then weeks, then months."""
    if days < 7:
        return f"{int(days)}d"
    if days < 30:
        return f"{days / 7:.1f}w"
    return f"{days / 30:.1f}mo"


def _days(value: float) -> str:
    return f"{round(value, 1):g}d"


@dataclass
class Transition:
    """The before/after of one graded review."""

    outcome: Outcome
    old_state: SchedulingState
    new_state: SchedulingState
    reviewed_at: datetime = field(default_factory=utcnow)

    @property
    def old_interval(self) -> float:
        return self.old_state.interval_days

    @property
    def new_interval(self) -> float:
        return self.new_state.interval_days

    @property
    def old_ease(self) -> float:
        return self.old_state.ease_factor

    @property
    def new_ease(self) -> float:
        return self.new_state.ease_factor

    @property
    def old_repetitions(self) -> int:
        return self.old_state.repetition_count

    @property
    def new_repetitions(self) -> int:
        return self.new_state.repetition_count

    def describe(self) -> list[str]:
        """The feedback lines shown after grading."""
        return [
            f"Interval: {_days(self.old_interval)} → {_days(self.new_interval)}",
            f"Ease factor: {self.old_ease:.2f} → {self.new_ease:.2f}",
        ]

    def as_dict(self) -> dict:
        return {
            "outcome": self.outcome.value,
            "old_interval": round(self.old_interval, 2),
            "new_interval": round(self.new_interval, 2),
            "old_ease": round(self.old_ease, 2),
            "new_ease": round(self.new_ease, 2),
            "repetition_count": self.new_repetitions,
            "next_due": self.new_state.due_at.isoformat(),
            "next_due_in": format_interval(self.new_interval),
            "status": self.new_state.status.value,
        }


class Scheduler:
    """SM-2 scheduler over plain ``SchedulingState`` values."""

    def __init__(self, config: SchedulerConfig | None = None) -> None:
        self.config = config or SchedulerConfig.from_settings()

    def initial_state(self, now: datetime | None = None) -> SchedulingState:
        """State of a freshly enrolled card: due immediately."""
        return SchedulingState(
            interval_days=self.config.min_interval_days,
            ease_factor=self.config.initial_ease_factor,
            repetition_count=0,
            due_at=now or utcnow(),
            status=ReviewStatus.NEW,
        )

    def apply(
        self,
        state: SchedulingState,
        outcome: Outcome,
        now: datetime | None = None,
    ) -> Transition:
        """Compute the next state for a graded outcome.

        Args:
            state: Current scheduling state.
            outcome: The graded outcome.
            now: Review time (defaults to now).

        Returns:
            Transition holding the old and new states.
        """
        if not isinstance(outcome, Outcome):
            raise TypeError(f"outcome must be an Outcome, got {type(outcome).__name__}")
        now = now or utcnow()
        cfg = self.config
        ease = max(cfg.min_ease_factor, state.ease_factor)

        if outcome is Outcome.AGAIN:
            reps = 0
            interval = cfg.min_interval_days
            ease = max(cfg.min_ease_factor, ease - cfg.again_ease_penalty)
            status = ReviewStatus.LEARNING
        else:
            reps = state.repetition_count + 1
            if outcome is Outcome.HARD:
                interval = state.interval_days * cfg.hard_interval_multiplier
                ease = max(cfg.min_ease_factor, ease - cfg.hard_ease_penalty)
            elif outcome is Outcome.GOOD:
                interval = self._good_interval(state.interval_days, ease, reps)
            else:
                interval = self._good_interval(state.interval_days, ease, reps) * cfg.easy_interval_multiplier
                ease = ease + cfg.easy_ease_bonus
            status = self._status_after_success(outcome, interval, reps)

        new_state = SchedulingState(
            interval_days=interval,
            ease_factor=ease,
            repetition_count=reps,
            due_at=now + timedelta(days=interval),
            status=status,
        )
        logger.debug(
            "%s: interval %.2f -> %.2f, ease %.2f -> %.2f, reps %d -> %d",
            outcome.value,
            state.interval_days,
            interval,
            state.ease_factor,
            ease,
            state.repetition_count,
            reps,
        )
        return Transition(outcome=outcome, old_state=state, new_state=new_state, reviewed_at=now)

    def _good_interval(self, interval: float, ease: float, reps: int) -> float:
        """Grow by the ease factor, but never below the graduating step."""
        grown = interval * ease
        steps = self.config.graduating_intervals
        if reps <= len(steps):
            return max(steps[reps - 1], grown)
        return grown

    def _status_after_success(self, outcome: Outcome, interval: float, reps: int) -> ReviewStatus:
        cfg = self.config
        if (
            outcome is Outcome.EASY
            and interval >= cfg.mastered_interval_days
            and reps >= cfg.mastered_repetitions
        ):
            return ReviewStatus.MASTERED
        if reps >= 2:
            return ReviewStatus.REVIEWING
        return ReviewStatus.LEARNING
