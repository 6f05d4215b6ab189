"""User model."""

from sqlalchemy import BigInteger, Boolean, String
from sqlalchemy.orm import Mapped, mapped_column

from exam_eval.core.database import Base
from exam_eval.models.base import IDMixin, TimestampMixin


class User(Base, IDMixin, TimestampMixin):
    """Platform user. Only the aura balance is owned by this service."""

    __tablename__ = "users"

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    # Fast read path; every change has a matching AuraLedgerEntry
    aura: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)

    def __repr__(self) -> str:
        return f"<User(id={self.id}, aura={self.aura})>"
