"""SQLAlchemy ORM models for the homeschool review database."""

from backend.models.base import Base
from backend.models.child import Child
from backend.models.curriculum import Subject, Topic, Unit
from backend.models.flashcard import Flashcard
from backend.models.review_log import ReviewLog
from backend.models.review_slot import ReviewSlot
from backend.models.review_state import ReviewState

__all__ = [
    "Base",
    "Child",
    "Flashcard",
    "ReviewLog",
    "ReviewSlot",
    "ReviewState",
    "Subject",
    "Topic",
    "Unit",
]
