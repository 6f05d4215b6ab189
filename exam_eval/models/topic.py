"""Topic catalog models."""

from sqlalchemy import BigInteger, ForeignKey, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from exam_eval.core.database import Base, JSONType
from exam_eval.models.base import IDMixin, TimestampMixin


class Topic(Base, IDMixin, TimestampMixin):
    """Study topic that can be recommended to a student."""

    __tablename__ = "topics"

    name: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    subject: Mapped[str | None] = mapped_column(String(100), nullable=True)
    chapter_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    tags: Mapped[list[str]] = mapped_column(JSONType, default=list, nullable=False)
    english_aliases: Mapped[list[str]] = mapped_column(JSONType, default=list, nullable=False)
    banglish_aliases: Mapped[list[str]] = mapped_column(JSONType, default=list, nullable=False)

    segments: Mapped[list["TopicSegment"]] = relationship(
        "TopicSegment",
        back_populates="topic",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return f"<Topic(id={self.id}, name={self.name})>"


class TopicSegment(Base, IDMixin):
    """Section of a topic with its own title and description."""

    __tablename__ = "topic_segments"

    topic_id: Mapped[int] = mapped_column(
        BigInteger,
        ForeignKey("topics.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)

    topic: Mapped["Topic"] = relationship("Topic", back_populates="segments")

    def __repr__(self) -> str:
        return f"<TopicSegment(topic_id={self.topic_id}, title={self.title})>"
