"""Evaluation schemas: oracle scorecards and exam result responses."""

from datetime import datetime
from decimal import Decimal
from typing import Any

from pydantic import AliasChoices, Field, field_validator

from exam_eval.core.grading import CQ_PARTS
from exam_eval.models.exam_result import EvaluatedBy, ExamResultStatus, HandwritingQuality
from exam_eval.schemas.common import BaseSchema

_MAX = {part.key: part.max_marks for part in CQ_PARTS}


def _alias(*names: str) -> AliasChoices:
    return AliasChoices(*names)


class Scorecard(BaseSchema):
    """Structured grading returned by the assessment oracle for one question.

    Accepts both the oracle's camelCase keys (``marksA``) and snake_case.
    Part marks are bounded by the CQ part schema, confidence by [0, 1].
    """

    marks_a: Decimal = Field(..., ge=0, le=_MAX["a"], validation_alias=_alias("marks_a", "marksA"))
    marks_b: Decimal = Field(..., ge=0, le=_MAX["b"], validation_alias=_alias("marks_b", "marksB"))
    marks_c: Decimal = Field(..., ge=0, le=_MAX["c"], validation_alias=_alias("marks_c", "marksC"))
    marks_d: Decimal = Field(..., ge=0, le=_MAX["d"], validation_alias=_alias("marks_d", "marksD"))

    feedback_a: str = Field("", validation_alias=_alias("feedback_a", "feedbackA"))
    feedback_b: str = Field("", validation_alias=_alias("feedback_b", "feedbackB"))
    feedback_c: str = Field("", validation_alias=_alias("feedback_c", "feedbackC"))
    feedback_d: str = Field("", validation_alias=_alias("feedback_d", "feedbackD"))

    hand_writing: HandwritingQuality = Field(
        ..., validation_alias=_alias("hand_writing", "handWriting", "handwriting")
    )
    confidence: float | None = Field(
        None,
        ge=0,
        le=1,
        validation_alias=_alias("confidence", "evaluationConfidence", "evaluation_confidence"),
    )
    overall_feedback: str | None = Field(
        None, validation_alias=_alias("overall_feedback", "overallFeedback", "feedback")
    )

    @field_validator("hand_writing", mode="before")
    @classmethod
    def normalize_hand_writing(cls, v: Any) -> Any:
        if isinstance(v, str):
            return v.strip().capitalize()
        return v


class AnswerEvaluationResponse(BaseSchema):
    """Evaluated answer for one question."""

    id: int
    question_id: int
    original_images: list[str]
    marks_a: Decimal
    marks_b: Decimal
    marks_c: Decimal
    marks_d: Decimal
    feedback_a: str | None = None
    feedback_b: str | None = None
    feedback_c: str | None = None
    feedback_d: str | None = None
    feedback: str | None = None
    hand_writing: HandwritingQuality | None = None
    marks_obtained: Decimal
    total_marks: Decimal
    evaluation_confidence: float | None = None


class ExamResultResponse(BaseSchema):
    """Persisted exam attempt."""

    id: int
    exam_id: int
    user_id: int
    status: ExamResultStatus
    answers: list[AnswerEvaluationResponse] = []
    total_marks_obtained: Decimal
    aura_change: int
    evaluated_by: EvaluatedBy
    ai_model_version: str | None = None
    feedback: str | None = None
    error_message: str | None = None
    evaluated_at: datetime | None = None
    created_at: datetime
