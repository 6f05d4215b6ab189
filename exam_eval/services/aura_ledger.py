"""Aura ledger service for gamification."""

import logging
from collections.abc import Iterable
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from exam_eval.core.config import settings
from exam_eval.core.exceptions import LedgerInconsistencyError
from exam_eval.core.grading import CQ_PARTS
from exam_eval.models.aura import AuraLedgerEntry, AuraSourceType
from exam_eval.models.exam_result import ExamResult
from exam_eval.models.user import User

logger = logging.getLogger(__name__)

AURA_NOT_CREDITED_MESSAGE = "Aura change of {change} could not be credited to the balance"


def count_zero_mark_parts(answers: Iterable[Any]) -> int:
    """Count every individual A-D part that scored exactly zero."""
    return sum(
        1
        for answer in answers
        for part in CQ_PARTS
        if Decimal(str(getattr(answer, part.marks_field) or 0)) == 0
    )


def compute_aura_change(
    total_marks: Decimal,
    zero_mark_parts: int,
    points_per_mark: int | None = None,
    zero_part_penalty: int | None = None,
) -> int:
    """auraChange = total_marks * points_per_mark + zero_mark_parts * zero_part_penalty."""
    if points_per_mark is None:
        points_per_mark = settings.AURA_POINTS_PER_MARK
    if zero_part_penalty is None:
        zero_part_penalty = settings.AURA_ZERO_PART_PENALTY
    from_marks = (Decimal(str(total_marks)) * points_per_mark).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
    return int(from_marks) + zero_mark_parts * zero_part_penalty


class AuraLedgerService:
    """Applies aura changes: atomic balance increment plus one ledger entry."""

    def __init__(
        self,
        db: Session,
        points_per_mark: int | None = None,
        zero_part_penalty: int | None = None,
    ):
        self.db = db
        self.points_per_mark = settings.AURA_POINTS_PER_MARK if points_per_mark is None else points_per_mark
        self.zero_part_penalty = (
            settings.AURA_ZERO_PART_PENALTY if zero_part_penalty is None else zero_part_penalty
        )

    def apply(self, user_id: int, exam_result: ExamResult) -> int:
        """
        Credit or debit aura for an evaluated CQ exam.

        Args:
            user_id: User whose balance changes
            exam_result: Aggregated exam result (must already have an id)

        Returns:
            The computed aura change. Zero writes nothing. If the balance
            increment cannot be confirmed the ledger entry is rolled back, the
            inconsistency is logged and noted on the result's error_message;
            the exam flow is never interrupted.
        """
        zero_parts = count_zero_mark_parts(exam_result.answers)
        total_marks = exam_result.total_marks_obtained or Decimal("0")
        aura_change = compute_aura_change(
            total_marks,
            zero_parts,
            points_per_mark=self.points_per_mark,
            zero_part_penalty=self.zero_part_penalty,
        )
        from_marks = aura_change - zero_parts * self.zero_part_penalty

        if aura_change == 0:
            logger.info(f"No aura change for user {user_id} from exam result {exam_result.id}")
            return 0

        try:
            with self.db.begin_nested():
                new_balance = self.db.execute(
                    update(User)
                    .where(User.id == user_id)
                    .values(aura=User.aura + aura_change)
                    .returning(User.aura)
                ).scalar_one_or_none()
                if new_balance is None:
                    raise LedgerInconsistencyError(
                        f"Balance increment of {aura_change} for user {user_id} was not applied"
                    )

                entry = AuraLedgerEntry(
                    user_id=user_id,
                    points=aura_change,
                    balance_after=new_balance,
                    reason=(
                        f"CQ Exam: {total_marks} marks gained (+{from_marks}), "
                        f"{zero_parts} zero-mark parts ({zero_parts * self.zero_part_penalty})."
                    ),
                    source_type=AuraSourceType.CQ_RESULT,
                    source_id=exam_result.id,
                    extra_data={
                        "exam_id": exam_result.exam_id,
                        "total_marks": str(total_marks),
                        "zero_mark_parts": zero_parts,
                        "points_per_mark": self.points_per_mark,
                        "zero_part_penalty": self.zero_part_penalty,
                    },
                )
                self.db.add(entry)
                self.db.flush()
        except (LedgerInconsistencyError, SQLAlchemyError) as e:
            logger.critical(
                f"Aura ledger inconsistency for user {user_id}, exam result {exam_result.id}: "
                f"change of {aura_change} not recorded ({e})"
            )
            exam_result.error_message = AURA_NOT_CREDITED_MESSAGE.format(change=aura_change)
            return aura_change

        logger.info(f"Aura updated for user {user_id} by {aura_change} (balance {new_balance})")
        return aura_change

    def get_user_balance(self, user_id: int) -> int:
        """Current aura balance, read straight from the database."""
        balance = self.db.execute(select(User.aura).where(User.id == user_id)).scalar_one_or_none()
        return balance or 0

    def list_entries(self, user_id: int, limit: int = 50) -> list[AuraLedgerEntry]:
        """Most recent ledger entries for a user."""
        result = self.db.execute(
            select(AuraLedgerEntry)
            .where(AuraLedgerEntry.user_id == user_id)
            .order_by(AuraLedgerEntry.created_at.desc(), AuraLedgerEntry.id.desc())
            .limit(limit)
        )
        return list(result.scalars().all())
