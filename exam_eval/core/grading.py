"""Creative Question (CQ) part schema.

A CQ always has four parts, A to D, each with a fixed maximum. Everything that
needs per-part bounds or field names reads them from ``CQ_PARTS`` instead of
inferring the shape of a question at runtime.
"""

from dataclasses import dataclass
from decimal import Decimal


@dataclass(frozen=True)
class QuestionPart:
    """One gradable part of a CQ."""

    key: str
    max_marks: Decimal

    @property
    def label(self) -> str:
        return self.key.upper()

    @property
    def marks_field(self) -> str:
        return f"marks_{self.key}"

    @property
    def feedback_field(self) -> str:
        return f"feedback_{self.key}"

    @property
    def question_field(self) -> str:
        return f"part_{self.key}"

    @property
    def answer_field(self) -> str:
        return f"answer_{self.key}"


CQ_PARTS: tuple[QuestionPart, ...] = (
    QuestionPart("a", Decimal("1")),
    QuestionPart("b", Decimal("2")),
    QuestionPart("c", Decimal("3")),
    QuestionPart("d", Decimal("4")),
)

CQ_PARTS_BY_MARKS_FIELD: dict[str, QuestionPart] = {part.marks_field: part for part in CQ_PARTS}

CQ_TOTAL_MARKS: Decimal = sum((part.max_marks for part in CQ_PARTS), Decimal("0"))
