"""CQ exam evaluation orchestration.

Drives one exam attempt through its lifecycle: open (or retry) the result
row, fan the answer images out to one worker per question, wait for all of
them, then aggregate, credit aura, recommend topics and write the report.
"""

import asyncio
import logging
from collections.abc import Sequence
from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from exam_eval.core.config import settings
from exam_eval.core.exceptions import DuplicateSubmissionError
from exam_eval.models.activity import ActivityType, UserActivity
from exam_eval.models.exam_result import AnswerEvaluation, ExamResult, ExamResultStatus
from exam_eval.services.answer_grouper import ExamSubmission, SubmissionImage, group_images_by_question
from exam_eval.services.aura_ledger import AuraLedgerService
from exam_eval.services.evaluation_worker import EvaluationFailure, EvaluationWorker
from exam_eval.services.oracle import ExamReportWriter
from exam_eval.services.recommendation import RecommendationEngine, RecommendationOutcome
from exam_eval.services.score_aggregator import replace_answers

logger = logging.getLogger(__name__)

NO_EVALUATIONS_FEEDBACK = "No questions could be successfully evaluated. Please review the submission."
NO_IMAGES_MESSAGE = "No answer images were submitted"

WorkerOutcome = AnswerEvaluation | EvaluationFailure


class EvaluationOrchestrator:
    """Evaluates a whole CQ exam submission."""

    def __init__(
        self,
        db: Session,
        worker: EvaluationWorker,
        ledger: AuraLedgerService,
        recommendations: RecommendationEngine | None = None,
        report_writer: ExamReportWriter | None = None,
        worker_timeout: float | None = None,
        model_version: str | None = None,
    ):
        self.db = db
        self.worker = worker
        self.ledger = ledger
        self.recommendations = recommendations
        self.report_writer = report_writer
        self.worker_timeout = worker_timeout or settings.WORKER_TIMEOUT_SECONDS
        self.model_version = model_version or settings.ORACLE_MODEL

    async def evaluate_exam(self, submission: ExamSubmission) -> ExamResult:
        """
        Evaluate every question of a submission.

        Returns the persisted ExamResult in a terminal status. Per-question
        failures never raise: they end in ``review_required``. Anything else
        marks the attempt ``error`` and is re-raised.

        Database work and the recommendation and report calls block, so each
        phase runs in a thread. Only one thread touches the session at a time.

        Raises:
            DuplicateSubmissionError: The pair already has a non-error attempt
        """
        try:
            result = await asyncio.to_thread(self.open_attempt, submission.user_id, submission.exam_id)
        except Exception:
            self._release_images(submission.images)
            raise

        logger.info(
            f"Starting evaluation of exam {submission.exam_id} for user {submission.user_id} "
            f"({len(submission.images)} image(s))"
        )

        try:
            outcomes = await self._run_workers(submission)
            await asyncio.to_thread(self._finalize_and_commit, result, outcomes)
        except Exception as e:
            logger.exception(f"Evaluation of exam {submission.exam_id} for user {submission.user_id} failed")
            await asyncio.to_thread(self._rollback_and_mark_error, result, e)
            raise
        finally:
            self._release_images(submission.images)

        logger.info(
            f"Exam {submission.exam_id} for user {submission.user_id} finished as {result.status.value} "
            f"with {result.total_marks_obtained} marks"
        )
        return result

    def open_attempt(self, user_id: int, exam_id: int) -> ExamResult:
        """Create (or reopen an errored) result in ``evaluating`` and commit it."""
        existing = self.db.execute(
            select(ExamResult).where(ExamResult.exam_id == exam_id, ExamResult.user_id == user_id)
        ).scalar_one_or_none()

        if existing is not None:
            if existing.status != ExamResultStatus.ERROR:
                raise DuplicateSubmissionError(exam_id, user_id, existing.status.value)
            logger.info(f"Retrying errored exam result {existing.id} for exam {exam_id}, user {user_id}")
            result = existing
            replace_answers(result, [])
            result.aura_change = 0
            result.feedback = None
            result.error_message = None
            result.evaluated_at = None
        else:
            result = ExamResult(
                exam_id=exam_id,
                user_id=user_id,
                status=ExamResultStatus.SUBMITTED,
                answers=[],
            )
            self.db.add(result)

        result.transition_to(ExamResultStatus.EVALUATING)
        self.db.add(
            UserActivity(
                user_id=user_id,
                activity_type=ActivityType.EXAM_SUBMITTED,
                details={
                    "exam_id": exam_id,
                    "exam_type": "cq",
                    "message": "Submitted CQ Exam for evaluation.",
                },
            )
        )

        try:
            self.db.commit()
        except IntegrityError as e:
            self.db.rollback()
            raise DuplicateSubmissionError(exam_id, user_id) from e
        return result

    async def _run_workers(self, submission: ExamSubmission) -> list[WorkerOutcome]:
        grouped = group_images_by_question(submission.images)
        tasks = [
            self._run_worker(submission.exam_id, question_id, images)
            for question_id, images in grouped.items()
        ]
        return list(await asyncio.gather(*tasks))

    async def _run_worker(
        self,
        exam_id: int,
        question_id: int,
        images: list[SubmissionImage],
    ) -> WorkerOutcome:
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(self.worker.evaluate, exam_id, question_id, images),
                timeout=self.worker_timeout,
            )
        except asyncio.TimeoutError:
            logger.warning(f"Worker for question {question_id} of exam {exam_id} timed out")
            return EvaluationFailure(
                question_id=question_id,
                reason=f"Evaluation did not finish within {self.worker_timeout}s",
                error_type="WORKER_TIMEOUT",
            )

    def _finalize_and_commit(self, result: ExamResult, outcomes: Sequence[WorkerOutcome]) -> None:
        self._finalize(result, outcomes)
        self.db.commit()

    def _finalize(self, result: ExamResult, outcomes: Sequence[WorkerOutcome]) -> None:
        successes = sorted(
            (outcome for outcome in outcomes if isinstance(outcome, AnswerEvaluation)),
            key=lambda answer: answer.question_id,
        )
        failures = sorted(
            (outcome for outcome in outcomes if isinstance(outcome, EvaluationFailure)),
            key=lambda failure: failure.question_id,
        )

        replace_answers(result, successes)
        self.db.flush()

        if successes and not failures:
            result.aura_change = self.ledger.apply(result.user_id, result)

        if successes:
            result.feedback = self._write_feedback(result.user_id, successes)
        else:
            result.feedback = NO_EVALUATIONS_FEEDBACK

        if failures or not successes:
            result.transition_to(ExamResultStatus.REVIEW_REQUIRED)
            result.error_message = self._describe_failures(failures)
            logger.warning(f"Exam result {result.id} needs review: {result.error_message}")
        else:
            result.transition_to(ExamResultStatus.EVALUATED)

        result.ai_model_version = self.model_version
        result.evaluated_at = datetime.now(timezone.utc)

    def _write_feedback(self, user_id: int, answers: Sequence[AnswerEvaluation]) -> str | None:
        outcome = RecommendationOutcome()
        if self.recommendations is not None:
            outcome = self.recommendations.recommend(user_id, answers)

        if self.report_writer is None or not outcome.performance_summary:
            return None
        try:
            return self.report_writer.write_report(outcome.performance_summary, outcome.topics_summary)
        except Exception:
            logger.exception(f"Exam report generation failed for user {user_id}")
            return None

    @staticmethod
    def _describe_failures(failures: Sequence[EvaluationFailure]) -> str:
        if not failures:
            return NO_IMAGES_MESSAGE
        details = "; ".join(failure.describe() for failure in failures)
        return f"Failed to evaluate {len(failures)} question(s): {details}"

    def _rollback_and_mark_error(self, result: ExamResult, error: Exception) -> None:
        """Best-effort move to ``error`` after a catastrophic failure."""
        self.db.rollback()
        try:
            if result.can_transition_to(ExamResultStatus.ERROR):
                result.transition_to(ExamResultStatus.ERROR)
            result.error_message = f"{type(error).__name__}: {error}"
            self.db.commit()
        except Exception:
            self.db.rollback()
            logger.exception(f"Could not record error status for exam result {result.id}")

    @staticmethod
    def _release_images(images: Sequence[SubmissionImage]) -> None:
        for image in images:
            image.release()
