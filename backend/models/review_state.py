"""Per child x flashcard scheduling state."""

from datetime import datetime

from sqlalchemy import DateTime, Float, ForeignKey, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from backend.config import utcnow
from backend.models.base import Base, TimestampMixin


class ReviewState(Base, TimestampMixin):
    """SM-2 scheduling metadata for one card in one child's rotation."""

    __tablename__ = "review_states"
    __table_args__ = (
        UniqueConstraint("child_id", "flashcard_id", name="uq_review_state_child_card"),
        Index("ix_review_states_child_due", "child_id", "due_at"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    child_id: Mapped[int] = mapped_column(ForeignKey("children.id"), nullable=False)
    flashcard_id: Mapped[int] = mapped_column(ForeignKey("flashcards.id"), nullable=False)
    interval_days: Mapped[float] = mapped_column(Float, nullable=False, default=1.0)
    ease_factor: Mapped[float] = mapped_column(Float, nullable=False, default=2.5)
    repetition_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default="new"
    )  # new, learning, reviewing, mastered
    due_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    last_reviewed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    version_id: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version_id}

    child: Mapped["Child"] = relationship(back_populates="review_states")  # type: ignore[name-defined] # noqa: F821
    flashcard: Mapped["Flashcard"] = relationship(back_populates="review_states")  # type: ignore[name-defined] # noqa: F821
    review_logs: Mapped[list["ReviewLog"]] = relationship(  # type: ignore[name-defined] # noqa: F821
        back_populates="review_state", cascade="all, delete-orphan"
    )
