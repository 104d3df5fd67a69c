from datetime import time

from sqlalchemy import Boolean, ForeignKey, Integer, String, Time
from sqlalchemy.orm import Mapped, mapped_column, relationship

from backend.models.base import Base, TimestampMixin


class ReviewSlot(Base, TimestampMixin):
    __tablename__ = "review_slots"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    child_id: Mapped[int] = mapped_column(ForeignKey("children.id"), nullable=False, index=True)
    day_of_week: Mapped[int] = mapped_column(Integer, nullable=False)  # ISO: 1=Monday, 7=Sunday
    start_time: Mapped[time] = mapped_column(Time, nullable=False)
    end_time: Mapped[time] = mapped_column(Time, nullable=False)
    slot_type: Mapped[str] = mapped_column(String(20), nullable=False, default="micro")  # micro, standard
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    child: Mapped["Child"] = relationship(back_populates="review_slots")  # type: ignore[name-defined] # noqa: F821
