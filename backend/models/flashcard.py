"""Flashcard rows. Variant-specific columns are null for other card types."""

from datetime import datetime

from sqlalchemy import JSON, Boolean, DateTime, ForeignKey, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from backend.models.base import Base, TimestampMixin


class Flashcard(Base, TimestampMixin):
    __tablename__ = "flashcards"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    topic_id: Mapped[int] = mapped_column(ForeignKey("topics.id"), nullable=False, index=True)
    card_type: Mapped[str] = mapped_column(String(30), nullable=False, default="basic", index=True)
    question: Mapped[str] = mapped_column(Text, nullable=False)
    answer: Mapped[str] = mapped_column(Text, nullable=False)
    hint: Mapped[str | None] = mapped_column(Text, nullable=True)

    # multiple_choice / true_false
    choices: Mapped[list | None] = mapped_column(JSON, nullable=True)
    correct_choices: Mapped[list | None] = mapped_column(JSON, nullable=True)

    # cloze
    cloze_text: Mapped[str | None] = mapped_column(Text, nullable=True)
    cloze_answers: Mapped[list | None] = mapped_column(JSON, nullable=True)

    # image_occlusion
    question_image_url: Mapped[str | None] = mapped_column(String(255), nullable=True)
    answer_image_url: Mapped[str | None] = mapped_column(String(255), nullable=True)
    occlusion_data: Mapped[list | None] = mapped_column(JSON, nullable=True)

    difficulty_level: Mapped[str] = mapped_column(String(10), nullable=False, default="medium")
    tags: Mapped[list | None] = mapped_column(JSON, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, index=True)
    import_source: Mapped[str | None] = mapped_column(String(50), nullable=True)
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True, index=True)

    topic: Mapped["Topic"] = relationship(back_populates="flashcards")  # type: ignore[name-defined] # noqa: F821
    review_states: Mapped[list["ReviewState"]] = relationship(  # type: ignore[name-defined] # noqa: F821
        back_populates="flashcard", cascade="all, delete-orphan"
    )

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None
