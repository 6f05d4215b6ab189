from decimal import Decimal

import pytest

from exam_eval.core.grading import CQ_PARTS, CQ_TOTAL_MARKS
from exam_eval.models.exam_result import AnswerEvaluation, ExamResult, ExamResultStatus
from exam_eval.services.score_aggregator import aggregate_scores, compute_totals, replace_answers, sum_part_marks


def _answer(question_id, a, b, c, d):
    return AnswerEvaluation(
        question_id=question_id,
        original_images=[f"https://cdn.test/{question_id}.png"],
        marks_a=Decimal(a),
        marks_b=Decimal(b),
        marks_c=Decimal(c),
        marks_d=Decimal(d),
    )


def test_part_schema_totals_ten_marks():
    assert [part.max_marks for part in CQ_PARTS] == [1, 2, 3, 4]
    assert CQ_TOTAL_MARKS == Decimal("10")


def test_sum_part_marks_handles_half_marks():
    assert sum_part_marks(_answer(1, "1", "1.5", "2.5", "3")) == Decimal("8.0")


def test_aggregate_scores_sets_answer_and_exam_totals():
    result = ExamResult(exam_id=1, user_id=1, answers=[_answer(1, "1", "2", "2.5", "3.5"), _answer(2, "0", "1", "1", "0")])

    total = aggregate_scores(result)

    assert total == Decimal("11")
    assert [answer.marks_obtained for answer in result.answers] == [Decimal("9"), Decimal("2")]
    assert result.total_marks_obtained == Decimal("11")


def test_aggregate_scores_is_idempotent():
    result = ExamResult(exam_id=1, user_id=1, answers=[_answer(1, "1", "2", "3", "4")])

    first = aggregate_scores(result)
    second = aggregate_scores(result)

    assert first == second == Decimal("10")
    assert result.answers[0].marks_obtained == Decimal("10")


def test_empty_answer_list_totals_zero():
    per_answer, total = compute_totals([])
    assert per_answer == []
    assert total == Decimal("0")


def test_replace_answers_drops_previous_answers():
    result = ExamResult(exam_id=1, user_id=1, answers=[_answer(1, "1", "2", "3", "4")])

    total = replace_answers(result, [_answer(2, "0", "1", "0", "0")])

    assert [answer.question_id for answer in result.answers] == [2]
    assert total == Decimal("1")


def test_flush_recomputes_stale_totals(db, user):
    result = ExamResult(exam_id=7, user_id=user.id, status=ExamResultStatus.SUBMITTED)
    result.answers.append(_answer(1, "1", "2", "3", "4"))
    result.total_marks_obtained = Decimal("99")
    db.add(result)
    db.flush()

    assert result.total_marks_obtained == Decimal("10")

    result.answers[0].marks_d = Decimal("1")
    db.flush()

    assert result.answers[0].marks_obtained == Decimal("7")
    assert result.total_marks_obtained == Decimal("7")


@pytest.mark.parametrize("field,value", [("marks_a", "1.5"), ("marks_b", "-0.5"), ("marks_d", "4.5")])
def test_out_of_range_part_marks_are_rejected(field, value):
    answer = _answer(1, "0", "0", "0", "0")
    with pytest.raises(ValueError):
        setattr(answer, field, Decimal(value))
