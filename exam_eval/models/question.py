"""Creative question catalog model."""

from sqlalchemy import String, Text
from sqlalchemy.orm import Mapped, mapped_column

from exam_eval.core.database import Base
from exam_eval.models.base import IDMixin, TimestampMixin


class CreativeQuestion(Base, IDMixin, TimestampMixin):
    """Canonical text and model answers of a CQ (read-only for grading)."""

    __tablename__ = "creative_questions"

    stem: Mapped[str] = mapped_column(Text, nullable=False)

    part_a: Mapped[str] = mapped_column(Text, nullable=False)
    answer_a: Mapped[str] = mapped_column(Text, nullable=False)
    part_b: Mapped[str] = mapped_column(Text, nullable=False)
    answer_b: Mapped[str] = mapped_column(Text, nullable=False)
    part_c: Mapped[str] = mapped_column(Text, nullable=False)
    answer_c: Mapped[str] = mapped_column(Text, nullable=False)
    part_d: Mapped[str | None] = mapped_column(Text, nullable=True)
    answer_d: Mapped[str | None] = mapped_column(Text, nullable=True)

    subject: Mapped[str | None] = mapped_column(String(100), nullable=True)
    chapter_name: Mapped[str | None] = mapped_column(String(255), nullable=True)

    def __repr__(self) -> str:
        return f"<CreativeQuestion(id={self.id})>"
