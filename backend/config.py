from datetime import UTC, datetime
from pathlib import Path
from zoneinfo import ZoneInfo

from pydantic_settings import BaseSettings


def utcnow() -> datetime:
    """Return the current UTC time as a naive datetime.

    Replaces the deprecated ``datetime.utcnow()`` while keeping datetimes
    naive so they stay compatible with SQLite (which doesn't store tz info).
    """
    return datetime.now(UTC).replace(tzinfo=None)


class Settings(BaseSettings):
    app_name: str = "Homeschool Review"
    database_url: str = f"sqlite+aiosqlite:///{Path(__file__).resolve().parent.parent / 'data' / 'homeschool_review.db'}"
    timezone: str = "UTC"  # Wall clock used for review slot gating

    # Session sizing
    max_reviews_per_session: int = 20
    micro_session_capacity: int = 10
    max_new_cards_per_session: int = 5

    # SM-2 scheduling constants
    initial_ease_factor: float = 2.5
    min_ease_factor: float = 1.3
    again_ease_penalty: float = 0.2
    hard_ease_penalty: float = 0.15
    easy_ease_bonus: float = 0.15
    hard_interval_multiplier: float = 1.2
    easy_interval_multiplier: float = 1.3
    min_interval_days: float = 1.0
    graduating_intervals: list[float] = [3.0, 7.0]
    mastered_interval_days: float = 120.0
    mastered_repetitions: int = 4

    max_import_size: int = 500
    debug: bool = False

    model_config = {"env_prefix": "HOMESCHOOL_REVIEW_", "env_file": ".env"}


settings = Settings()


def local_now() -> datetime:
    """Return the naive wall-clock time in the configured timezone."""
    return datetime.now(ZoneInfo(settings.timezone)).replace(tzinfo=None)
