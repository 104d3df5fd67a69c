from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from backend.models.base import Base, TimestampMixin


class Child(Base, TimestampMixin):
    __tablename__ = "children"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    grade: Mapped[str | None] = mapped_column(String(20), nullable=True)

    review_states: Mapped[list["ReviewState"]] = relationship(back_populates="child")  # type: ignore[name-defined] # noqa: F821
    review_slots: Mapped[list["ReviewSlot"]] = relationship(back_populates="child")  # type: ignore[name-defined] # noqa: F821
