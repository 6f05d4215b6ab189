"""User activity feed model."""

import enum

from sqlalchemy import BigInteger, Enum, ForeignKey
from sqlalchemy.orm import Mapped, mapped_column

from exam_eval.core.database import Base, JSONType
from exam_eval.models.base import CreatedAtMixin, IDMixin


class ActivityType(str, enum.Enum):
    """Activity type enumeration."""

    LOGIN = "login"
    EXAM_SUBMITTED = "exam_submitted"


class UserActivity(Base, IDMixin, CreatedAtMixin):
    """Append-only user activity record."""

    __tablename__ = "user_activities"

    user_id: Mapped[int] = mapped_column(
        BigInteger,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    activity_type: Mapped[ActivityType] = mapped_column(Enum(ActivityType), nullable=False)
    details: Mapped[dict | None] = mapped_column(JSONType, nullable=True)

    def __repr__(self) -> str:
        return f"<UserActivity(user_id={self.user_id}, type={self.activity_type})>"
