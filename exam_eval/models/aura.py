"""Aura ledger model for gamification."""

import enum

from sqlalchemy import BigInteger, Enum, ForeignKey, Integer, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from exam_eval.core.database import Base, JSONType
from exam_eval.models.base import CreatedAtMixin, IDMixin


class AuraSourceType(str, enum.Enum):
    """What produced an aura change."""

    CQ_RESULT = "cq_result"      # Points from an evaluated CQ exam
    MCQ_RESULT = "mcq_result"    # Points from an MCQ exam


class AuraLedgerEntry(Base, IDMixin, CreatedAtMixin):
    """Ledger-style record of aura changes (append-only)."""

    __tablename__ = "aura_ledger_entries"

    user_id: Mapped[int] = mapped_column(
        BigInteger,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    points: Mapped[int] = mapped_column(Integer, nullable=False)  # Signed delta
    balance_after: Mapped[int] = mapped_column(BigInteger, nullable=False)  # Running balance snapshot
    reason: Mapped[str] = mapped_column(Text, nullable=False)

    # Source entity, e.g. the exam result that produced the change
    source_type: Mapped[AuraSourceType] = mapped_column(
        Enum(AuraSourceType),
        nullable=False,
        index=True,
    )
    source_id: Mapped[int] = mapped_column(BigInteger, nullable=False, index=True)

    # Formula breakdown (marks, zero-mark parts, ...)
    extra_data: Mapped[dict | None] = mapped_column(JSONType, nullable=True)

    user: Mapped["User"] = relationship("User", lazy="selectin")

    def __repr__(self) -> str:
        return f"<AuraLedgerEntry(id={self.id}, user_id={self.user_id}, points={self.points})>"


from exam_eval.models.user import User  # noqa: E402
