"""CQ exam result and per-question answer evaluation models."""

import enum
from datetime import datetime
from decimal import Decimal

from sqlalchemy import (
    BigInteger,
    CheckConstraint,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    event,
)
from sqlalchemy.orm import Mapped, Session, mapped_column, relationship, validates

from exam_eval.core.database import Base, JSONType
from exam_eval.core.exceptions import InvalidStatusTransitionError
from exam_eval.core.grading import CQ_PARTS, CQ_PARTS_BY_MARKS_FIELD, CQ_TOTAL_MARKS
from exam_eval.models.base import IDMixin, TimestampMixin
from exam_eval.services.score_aggregator import aggregate_scores


class ExamResultStatus(str, enum.Enum):
    """Lifecycle of an exam attempt."""

    SUBMITTED = "submitted"
    EVALUATING = "evaluating"
    EVALUATED = "evaluated"
    REVIEW_REQUIRED = "review_required"
    ERROR = "error"


TERMINAL_STATUSES = frozenset(
    {ExamResultStatus.EVALUATED, ExamResultStatus.REVIEW_REQUIRED, ExamResultStatus.ERROR}
)

# ERROR -> EVALUATING is a retried attempt reusing the errored row
STATUS_TRANSITIONS: dict[ExamResultStatus, frozenset[ExamResultStatus]] = {
    ExamResultStatus.SUBMITTED: frozenset({ExamResultStatus.EVALUATING, ExamResultStatus.ERROR}),
    ExamResultStatus.EVALUATING: frozenset(
        {ExamResultStatus.EVALUATED, ExamResultStatus.REVIEW_REQUIRED, ExamResultStatus.ERROR}
    ),
    ExamResultStatus.EVALUATED: frozenset(),
    ExamResultStatus.REVIEW_REQUIRED: frozenset(),
    ExamResultStatus.ERROR: frozenset({ExamResultStatus.EVALUATING}),
}


class HandwritingQuality(str, enum.Enum):
    """Handwriting clarity as judged by the grader."""

    EXCELLENT = "Excellent"
    GOOD = "Good"
    AVERAGE = "Average"
    POOR = "Poor"


class EvaluatedBy(str, enum.Enum):
    """Who produced the marks."""

    AI = "ai"
    HUMAN = "human"


def _part_bound_constraints() -> list[CheckConstraint]:
    return [
        CheckConstraint(
            f"{part.marks_field} >= 0 AND {part.marks_field} <= {part.max_marks}",
            name=f"ck_answer_{part.marks_field}_range",
        )
        for part in CQ_PARTS
    ]


class AnswerEvaluation(Base, IDMixin):
    """Evaluation of one question inside an exam result."""

    __tablename__ = "answer_evaluations"

    exam_result_id: Mapped[int] = mapped_column(
        BigInteger,
        ForeignKey("exam_results.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    question_id: Mapped[int] = mapped_column(BigInteger, nullable=False, index=True)
    original_images: Mapped[list[str]] = mapped_column(JSONType, nullable=False)

    # Per-part marks; bounds come from CQ_PARTS
    marks_a: Mapped[Decimal] = mapped_column(Numeric(4, 2), default=Decimal("0"), nullable=False)
    marks_b: Mapped[Decimal] = mapped_column(Numeric(4, 2), default=Decimal("0"), nullable=False)
    marks_c: Mapped[Decimal] = mapped_column(Numeric(4, 2), default=Decimal("0"), nullable=False)
    marks_d: Mapped[Decimal] = mapped_column(Numeric(4, 2), default=Decimal("0"), nullable=False)

    feedback_a: Mapped[str | None] = mapped_column(Text, nullable=True)
    feedback_b: Mapped[str | None] = mapped_column(Text, nullable=True)
    feedback_c: Mapped[str | None] = mapped_column(Text, nullable=True)
    feedback_d: Mapped[str | None] = mapped_column(Text, nullable=True)
    feedback: Mapped[str | None] = mapped_column(Text, nullable=True)

    hand_writing: Mapped[HandwritingQuality | None] = mapped_column(
        Enum(HandwritingQuality),
        nullable=True,
    )
    marks_obtained: Mapped[Decimal] = mapped_column(Numeric(5, 2), default=Decimal("0"), nullable=False)
    total_marks: Mapped[Decimal] = mapped_column(Numeric(5, 2), default=CQ_TOTAL_MARKS, nullable=False)
    evaluation_confidence: Mapped[float | None] = mapped_column(Float, nullable=True)

    result: Mapped["ExamResult"] = relationship("ExamResult", back_populates="answers")

    __table_args__ = (
        *_part_bound_constraints(),
        CheckConstraint(
            "evaluation_confidence IS NULL OR (evaluation_confidence >= 0 AND evaluation_confidence <= 1)",
            name="ck_answer_confidence_range",
        ),
    )

    @validates("marks_a", "marks_b", "marks_c", "marks_d")
    def validate_part_marks(self, key: str, value) -> Decimal:
        part = CQ_PARTS_BY_MARKS_FIELD[key]
        marks = Decimal(str(value)) if value is not None else Decimal("0")
        if marks < 0 or marks > part.max_marks:
            raise ValueError(f"Part {part.label} marks {marks} outside [0, {part.max_marks}]")
        return marks

    @validates("original_images")
    def validate_original_images(self, key: str, value: list[str]) -> list[str]:
        if not value:
            raise ValueError("At least one answer image is required")
        return list(value)

    @validates("evaluation_confidence")
    def validate_confidence(self, key: str, value: float | None) -> float | None:
        if value is not None and not 0 <= value <= 1:
            raise ValueError(f"Evaluation confidence {value} outside [0, 1]")
        return value

    def __repr__(self) -> str:
        return f"<AnswerEvaluation(question_id={self.question_id}, marks={self.marks_obtained})>"


class ExamResult(Base, IDMixin, TimestampMixin):
    """One CQ exam attempt per (exam, user)."""

    __tablename__ = "exam_results"

    exam_id: Mapped[int] = mapped_column(BigInteger, nullable=False, index=True)
    user_id: Mapped[int] = mapped_column(
        BigInteger,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    status: Mapped[ExamResultStatus] = mapped_column(
        Enum(ExamResultStatus),
        default=ExamResultStatus.SUBMITTED,
        nullable=False,
        index=True,
    )

    # Derived, see services.score_aggregator
    total_marks_obtained: Mapped[Decimal] = mapped_column(
        Numeric(6, 2), default=Decimal("0"), nullable=False
    )
    aura_change: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    evaluated_by: Mapped[EvaluatedBy] = mapped_column(
        Enum(EvaluatedBy),
        default=EvaluatedBy.AI,
        nullable=False,
    )
    ai_model_version: Mapped[str | None] = mapped_column(String(100), nullable=True)
    feedback: Mapped[str | None] = mapped_column(Text, nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    evaluated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    answers: Mapped[list[AnswerEvaluation]] = relationship(
        AnswerEvaluation,
        back_populates="result",
        cascade="all, delete-orphan",
        order_by=AnswerEvaluation.question_id,
        lazy="selectin",
    )

    __table_args__ = (
        UniqueConstraint("exam_id", "user_id", name="uq_exam_result_exam_user"),
    )

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def can_transition_to(self, target: ExamResultStatus) -> bool:
        current = self.status or ExamResultStatus.SUBMITTED
        return target in STATUS_TRANSITIONS[current]

    def transition_to(self, target: ExamResultStatus) -> None:
        """Move to ``target`` or raise InvalidStatusTransitionError."""
        current = self.status or ExamResultStatus.SUBMITTED
        if target not in STATUS_TRANSITIONS[current]:
            raise InvalidStatusTransitionError(current.value, target.value)
        self.status = target

    def __repr__(self) -> str:
        return f"<ExamResult(id={self.id}, exam_id={self.exam_id}, status={self.status})>"


@event.listens_for(Session, "before_flush")
def _recompute_exam_totals(session: Session, flush_context, instances) -> None:
    """Keep derived totals in sync with the answer list on every flush."""
    results: dict[int, ExamResult] = {}
    for obj in [*session.new, *session.dirty]:
        if isinstance(obj, ExamResult):
            results[id(obj)] = obj
        elif isinstance(obj, AnswerEvaluation) and obj.result is not None:
            results[id(obj.result)] = obj.result
    for result in results.values():
        aggregate_scores(result)
