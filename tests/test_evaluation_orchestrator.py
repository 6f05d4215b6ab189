import asyncio
import time
from decimal import Decimal

import pytest
from sqlalchemy import func, select

from conftest import (
    FakeArchiver,
    FakeOracle,
    FakeQuestionSource,
    FakeReportWriter,
    FakeTopicExtractor,
    make_image,
    make_scorecard,
)
from exam_eval.core.exceptions import DuplicateSubmissionError, OracleError
from exam_eval.models.activity import ActivityType, UserActivity
from exam_eval.models.aura import AuraLedgerEntry
from exam_eval.models.exam_result import ExamResult, ExamResultStatus
from exam_eval.models.recommendation import Recommendation
from exam_eval.services.answer_grouper import ExamSubmission
from exam_eval.services.aura_ledger import AuraLedgerService
from exam_eval.services.evaluation import NO_EVALUATIONS_FEEDBACK, EvaluationOrchestrator
from exam_eval.services.evaluation_worker import EvaluationWorker
from exam_eval.services.recommendation import NO_TOPICS_SUMMARY, RecommendationEngine, SqlTopicCatalog


class BrokenLedger(AuraLedgerService):
    def apply(self, user_id, exam_result):
        raise RuntimeError("ledger unavailable")


def _orchestrator(
    db,
    oracle=None,
    question_ids=(1, 2, 3),
    extractor=None,
    report_writer=None,
    ledger=None,
    worker_timeout=30,
):
    questions = FakeQuestionSource(question_ids)
    worker = EvaluationWorker(FakeArchiver(), questions, oracle or FakeOracle(), folder_prefix="originals")
    return EvaluationOrchestrator(
        db=db,
        worker=worker,
        ledger=ledger or AuraLedgerService(db),
        recommendations=RecommendationEngine(
            db=db,
            extractor=extractor or FakeTopicExtractor(),
            catalog=SqlTopicCatalog(db),
            questions=questions,
        ),
        report_writer=report_writer if report_writer is not None else FakeReportWriter(),
        worker_timeout=worker_timeout,
        model_version="gemini-test",
    )


def _submission(tmp_path, user, exam_id=100, question_ids=(1, 2)):
    images = [make_image(tmp_path, question_id) for question_id in question_ids]
    return ExamSubmission(user_id=user.id, exam_id=exam_id, images=images)


def _ledger_entries(db):
    return db.execute(select(func.count()).select_from(AuraLedgerEntry)).scalar()


def test_full_exam_is_evaluated_and_credits_aura(db, user, topics, tmp_path):
    oracle = FakeOracle({1: make_scorecard(1, 2, 3, 4), 2: make_scorecard(1, 0, 3, 0)})
    report_writer = FakeReportWriter("Key Issues Identified\n- Part D incomplete")
    submission = _submission(tmp_path, user)

    result = asyncio.run(_orchestrator(db, oracle, report_writer=report_writer).evaluate_exam(submission))

    assert result.status == ExamResultStatus.EVALUATED
    assert result.total_marks_obtained == Decimal("14")
    assert result.aura_change == 130
    assert [answer.question_id for answer in result.answers] == [1, 2]
    assert [answer.marks_obtained for answer in result.answers] == [Decimal("10"), Decimal("4")]
    assert result.feedback == "Key Issues Identified\n- Part D incomplete"
    assert result.error_message is None
    assert result.ai_model_version == "gemini-test"
    assert result.evaluated_at is not None

    assert AuraLedgerService(db).get_user_balance(user.id) == 230
    assert _ledger_entries(db) == 1
    activity = db.execute(select(UserActivity).where(UserActivity.user_id == user.id)).scalar_one()
    assert activity.activity_type == ActivityType.EXAM_SUBMITTED
    assert activity.details["exam_id"] == 100
    assert db.execute(select(Recommendation).where(Recommendation.user_id == user.id)).scalar_one()
    assert not any(image.temp_path for image in submission.images)
    assert list(tmp_path.iterdir()) == []


def test_partial_failure_requires_review_and_skips_aura(db, user, topics, tmp_path):
    oracle = FakeOracle({2: OracleError("quota exceeded")})
    report_writer = FakeReportWriter()
    submission = _submission(tmp_path, user, question_ids=(3, 2, 1))

    result = asyncio.run(_orchestrator(db, oracle, report_writer=report_writer).evaluate_exam(submission))

    assert result.status == ExamResultStatus.REVIEW_REQUIRED
    assert [answer.question_id for answer in result.answers] == [1, 3]
    assert result.total_marks_obtained == Decimal("20")
    assert "Failed to evaluate 1 question(s)" in result.error_message
    assert "question 2 (ORACLE_ERROR): quota exceeded" in result.error_message
    assert result.aura_change == 0
    assert _ledger_entries(db) == 0
    assert AuraLedgerService(db).get_user_balance(user.id) == 100
    # Recommendations and the report still run for the evaluated answers
    assert result.feedback == report_writer.report
    assert len(report_writer.calls) == 1


def test_all_failures_leave_empty_result_for_review(db, user, tmp_path):
    oracle = FakeOracle({1: OracleError("quota exceeded"), 2: OracleError("quota exceeded")})
    report_writer = FakeReportWriter()

    result = asyncio.run(
        _orchestrator(db, oracle, report_writer=report_writer).evaluate_exam(_submission(tmp_path, user))
    )

    assert result.status == ExamResultStatus.REVIEW_REQUIRED
    assert result.answers == []
    assert result.total_marks_obtained == Decimal("0")
    assert result.feedback == NO_EVALUATIONS_FEEDBACK
    assert "question 1" in result.error_message and "question 2" in result.error_message
    assert _ledger_entries(db) == 0
    assert report_writer.calls == []


def test_unknown_question_is_a_per_question_failure(db, user, tmp_path):
    submission = _submission(tmp_path, user, question_ids=(1, 99))

    result = asyncio.run(_orchestrator(db).evaluate_exam(submission))

    assert result.status == ExamResultStatus.REVIEW_REQUIRED
    assert [answer.question_id for answer in result.answers] == [1]
    assert "QUESTION_NOT_FOUND" in result.error_message


def test_second_submission_is_rejected(db, user, tmp_path):
    orchestrator = _orchestrator(db)
    first = asyncio.run(orchestrator.evaluate_exam(_submission(tmp_path, user)))
    retry = _submission(tmp_path, user)

    with pytest.raises(DuplicateSubmissionError):
        asyncio.run(orchestrator.evaluate_exam(retry))

    assert not any(image.temp_path for image in retry.images)
    results = db.execute(select(ExamResult).where(ExamResult.user_id == user.id)).scalars().all()
    assert [result.id for result in results] == [first.id]
    assert results[0].status == ExamResultStatus.EVALUATED


def test_submission_rejected_while_first_attempt_is_evaluating(db, user, tmp_path):
    db.add(ExamResult(exam_id=100, user_id=user.id, status=ExamResultStatus.EVALUATING))
    db.commit()

    with pytest.raises(DuplicateSubmissionError) as exc_info:
        asyncio.run(_orchestrator(db).evaluate_exam(_submission(tmp_path, user)))

    assert exc_info.value.status_code == 409
    assert exc_info.value.details["status"] == "evaluating"


def test_errored_attempt_can_be_retried_in_place(db, user, tmp_path):
    errored = ExamResult(
        exam_id=100,
        user_id=user.id,
        status=ExamResultStatus.ERROR,
        error_message="RuntimeError: ledger unavailable",
    )
    db.add(errored)
    db.commit()

    result = asyncio.run(_orchestrator(db).evaluate_exam(_submission(tmp_path, user)))

    assert result.id == errored.id
    assert result.status == ExamResultStatus.EVALUATED
    assert result.error_message is None
    assert len(result.answers) == 2


def test_slow_worker_times_out_as_typed_failure(db, user, tmp_path):
    oracle = FakeOracle(delays={2: 1.0})

    result = asyncio.run(_orchestrator(db, oracle, worker_timeout=0.2).evaluate_exam(_submission(tmp_path, user)))

    assert result.status == ExamResultStatus.REVIEW_REQUIRED
    assert [answer.question_id for answer in result.answers] == [1]
    assert "question 2 (WORKER_TIMEOUT)" in result.error_message


def test_workers_run_concurrently_and_all_finish_before_finalizing(db, user, tmp_path):
    oracle = FakeOracle(delays={1: 0.5, 2: 0.5, 3: 0.7})
    submission = _submission(tmp_path, user, question_ids=(1, 2, 3))

    started = time.perf_counter()
    result = asyncio.run(_orchestrator(db, oracle).evaluate_exam(submission))
    elapsed = time.perf_counter() - started

    # Sequential grading would take 1.7s
    assert 0.7 <= elapsed < 1.2
    assert result.status == ExamResultStatus.EVALUATED
    assert [answer.question_id for answer in result.answers] == [1, 2, 3]


def test_blocking_recommendation_call_does_not_stall_event_loop(db, user, topics, tmp_path):
    orchestrator = _orchestrator(db, extractor=FakeTopicExtractor(delay=1.0))
    submission = _submission(tmp_path, user)

    async def evaluate_with_heartbeat():
        loop = asyncio.get_running_loop()
        ticks = []
        done = asyncio.Event()

        async def heartbeat():
            while not done.is_set():
                ticks.append(loop.time())
                await asyncio.sleep(0.01)

        beat = asyncio.create_task(heartbeat())
        try:
            result = await orchestrator.evaluate_exam(submission)
        finally:
            done.set()
            await beat
        return result, ticks

    result, ticks = asyncio.run(evaluate_with_heartbeat())

    assert result.status == ExamResultStatus.EVALUATED
    assert len(ticks) > 20
    assert max(later - earlier for earlier, later in zip(ticks, ticks[1:])) < 0.5


def test_unexpected_error_marks_result_error_and_reraises(db, user, tmp_path):
    orchestrator = _orchestrator(db, ledger=BrokenLedger(db))
    submission = _submission(tmp_path, user)

    with pytest.raises(RuntimeError, match="ledger unavailable"):
        asyncio.run(orchestrator.evaluate_exam(submission))

    result = db.execute(
        select(ExamResult).where(ExamResult.exam_id == 100, ExamResult.user_id == user.id)
    ).scalar_one()
    assert result.status == ExamResultStatus.ERROR
    assert "ledger unavailable" in result.error_message
    assert result.answers == []
    assert not any(image.temp_path for image in submission.images)


def test_report_and_recommendation_failures_do_not_change_status(db, user, topics, tmp_path):
    report_writer = FakeReportWriter(error=OracleError("report failed"))
    extractor = FakeTopicExtractor(error=OracleError("topics failed"))

    result = asyncio.run(
        _orchestrator(db, extractor=extractor, report_writer=report_writer).evaluate_exam(
            _submission(tmp_path, user)
        )
    )

    assert result.status == ExamResultStatus.EVALUATED
    assert result.feedback is None
    assert report_writer.calls[0][1] == NO_TOPICS_SUMMARY
    assert db.execute(select(Recommendation)).first() is None
