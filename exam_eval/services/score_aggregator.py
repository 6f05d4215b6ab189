"""Score aggregation for CQ exam results.

Totals on ``ExamResult`` and ``AnswerEvaluation`` are derived values and are
never authored directly: every path that changes the answer list goes through
``replace_answers`` and every flush re-runs ``aggregate_scores``.
"""

from collections.abc import Iterable, Sequence
from decimal import Decimal
from typing import Any

from exam_eval.core.grading import CQ_PARTS

ZERO = Decimal("0")


def _as_decimal(value: Any) -> Decimal:
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def sum_part_marks(answer: Any) -> Decimal:
    """Sum of the A-D part marks of a single answer."""
    return sum((_as_decimal(getattr(answer, part.marks_field)) for part in CQ_PARTS), ZERO)


def compute_totals(answers: Iterable[Any]) -> tuple[list[Decimal], Decimal]:
    """Per-answer totals and the exam total, without touching the answers."""
    per_answer = [sum_part_marks(answer) for answer in answers]
    return per_answer, sum(per_answer, ZERO)


def aggregate_scores(result: Any) -> Decimal:
    """Recompute ``marks_obtained`` on each answer and the exam total.

    Idempotent: running it twice on an unchanged answer list yields the same
    totals.
    """
    answers = list(result.answers)
    per_answer, total = compute_totals(answers)
    for answer, marks in zip(answers, per_answer):
        answer.marks_obtained = marks
    result.total_marks_obtained = total
    return total


def replace_answers(result: Any, answers: Sequence[Any]) -> Decimal:
    """Replace the answer list of a result and re-aggregate."""
    result.answers = list(answers)
    return aggregate_scores(result)
