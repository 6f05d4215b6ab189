"""Evaluation of a single CQ answer.

The worker archives the answer images, loads the canonical question, asks the
assessment oracle for a scorecard, validates it and builds an
``AnswerEvaluation``. It never raises: every failure comes back as an
``EvaluationFailure`` so sibling questions are unaffected.
"""

import logging
from dataclasses import dataclass

from pydantic import ValidationError as PydanticValidationError

from exam_eval.core.config import settings
from exam_eval.core.exceptions import (
    ArchiveError,
    EvaluationError,
    QuestionNotFoundError,
    ScorecardValidationError,
)
from exam_eval.core.grading import CQ_TOTAL_MARKS
from exam_eval.models.exam_result import AnswerEvaluation
from exam_eval.schemas.evaluation import Scorecard
from exam_eval.services.answer_grouper import SubmissionImage
from exam_eval.services.archiver import ArchivedImage, ImageArchiver
from exam_eval.services.oracle import AssessmentOracle, GradingRequest, ImagePayload
from exam_eval.services.questions import QuestionSource

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EvaluationFailure:
    """Typed per-question failure."""

    question_id: int
    reason: str
    error_type: str = EvaluationError.error_type

    def describe(self) -> str:
        return f"question {self.question_id} ({self.error_type}): {self.reason}"


def parse_scorecard(raw: object) -> Scorecard:
    """Validate a raw oracle response against the CQ part bounds."""
    if not isinstance(raw, dict):
        raise ScorecardValidationError(f"Scorecard must be an object, got {type(raw).__name__}")
    try:
        return Scorecard.model_validate(raw)
    except PydanticValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(loc) for loc in err['loc'])}: {err['msg']}" for err in e.errors()
        )
        raise ScorecardValidationError(f"Invalid scorecard: {problems}") from e


class EvaluationWorker:
    """Grades one question of one exam submission."""

    def __init__(
        self,
        archiver: ImageArchiver,
        questions: QuestionSource,
        oracle: AssessmentOracle,
        folder_prefix: str | None = None,
    ):
        self.archiver = archiver
        self.questions = questions
        self.oracle = oracle
        self.folder_prefix = folder_prefix or settings.ARCHIVE_FOLDER_PREFIX

    def evaluate(
        self,
        exam_id: int,
        question_id: int,
        images: list[SubmissionImage],
    ) -> AnswerEvaluation | EvaluationFailure:
        """Evaluate one question. Temporary image copies are released on every path."""
        try:
            if not images:
                raise EvaluationError("No answer images were provided")

            payloads = [ImagePayload(mime_type=image.mime_type, data=image.read_bytes()) for image in images]
            archived = self._archive_all(exam_id, question_id, payloads)

            question = self.questions.get_question(question_id)
            if question is None:
                raise QuestionNotFoundError(question_id)

            raw = self.oracle.grade(GradingRequest(question=question, images=tuple(payloads)))
            scorecard = parse_scorecard(raw)

            evaluation = AnswerEvaluation(
                question_id=question_id,
                original_images=[image.url for image in archived],
                marks_a=scorecard.marks_a,
                marks_b=scorecard.marks_b,
                marks_c=scorecard.marks_c,
                marks_d=scorecard.marks_d,
                feedback_a=scorecard.feedback_a,
                feedback_b=scorecard.feedback_b,
                feedback_c=scorecard.feedback_c,
                feedback_d=scorecard.feedback_d,
                feedback=scorecard.overall_feedback,
                hand_writing=scorecard.hand_writing,
                total_marks=CQ_TOTAL_MARKS,
                evaluation_confidence=scorecard.confidence,
            )
            logger.info(f"Evaluated question {question_id} for exam {exam_id}")
            return evaluation

        except EvaluationError as e:
            logger.warning(f"Evaluation failed for question {question_id} of exam {exam_id}: {e.message}")
            return EvaluationFailure(question_id=question_id, reason=e.message, error_type=e.error_type)
        except Exception as e:
            logger.exception(f"Unexpected error evaluating question {question_id} of exam {exam_id}")
            return EvaluationFailure(
                question_id=question_id,
                reason=f"{type(e).__name__}: {e}",
                error_type="UNEXPECTED_ERROR",
            )
        finally:
            for image in images:
                image.release()

    def _archive_all(
        self,
        exam_id: int,
        question_id: int,
        payloads: list[ImagePayload],
    ) -> list[ArchivedImage]:
        """Archive every image or none of them."""
        folder = f"{self.folder_prefix}/{exam_id}"
        archived: list[ArchivedImage] = []
        try:
            for payload in payloads:
                archived.append(self.archiver.store(payload.data, folder, payload.mime_type))
        except Exception as e:
            for image in archived:
                try:
                    self.archiver.delete(image)
                except Exception as cleanup_error:
                    logger.warning(f"Could not remove archived image {image.url}: {cleanup_error}")
            if isinstance(e, ArchiveError):
                raise
            raise ArchiveError(f"Failed to archive images for question {question_id}: {e}") from e
        return archived
