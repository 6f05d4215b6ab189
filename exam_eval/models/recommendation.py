"""Per-user topic recommendation model."""

from sqlalchemy import BigInteger, Column, ForeignKey, Table
from sqlalchemy.orm import Mapped, mapped_column, relationship

from exam_eval.core.database import Base
from exam_eval.models.base import IDMixin, TimestampMixin

# Composite primary key gives set semantics: a topic appears at most once
recommendation_topics = Table(
    "recommendation_topics",
    Base.metadata,
    Column(
        "recommendation_id",
        BigInteger,
        ForeignKey("recommendations.id", ondelete="CASCADE"),
        primary_key=True,
    ),
    Column(
        "topic_id",
        BigInteger,
        ForeignKey("topics.id", ondelete="CASCADE"),
        primary_key=True,
    ),
)


class Recommendation(Base, IDMixin, TimestampMixin):
    """Topics flagged for a user to review."""

    __tablename__ = "recommendations"

    user_id: Mapped[int] = mapped_column(
        BigInteger,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
        index=True,
    )

    topics: Mapped[list["Topic"]] = relationship(
        "Topic",
        secondary=recommendation_topics,
        lazy="selectin",
    )

    @property
    def topic_ids(self) -> set[int]:
        return {topic.id for topic in self.topics}

    def __repr__(self) -> str:
        return f"<Recommendation(user_id={self.user_id}, topics={len(self.topics)})>"


from exam_eval.models.topic import Topic  # noqa: E402
