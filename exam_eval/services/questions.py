"""Canonical question content lookup."""

from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass
from decimal import Decimal

from sqlalchemy.orm import Session

from exam_eval.core.grading import CQ_PARTS
from exam_eval.models.question import CreativeQuestion


@dataclass(frozen=True)
class QuestionPartContent:
    label: str
    prompt: str
    model_answer: str
    max_marks: Decimal


@dataclass(frozen=True)
class QuestionContent:
    """Detached snapshot of a CQ, safe to hand to worker threads."""

    question_id: int
    stem: str
    parts: tuple[QuestionPartContent, ...]

    @classmethod
    def from_model(cls, question: CreativeQuestion) -> "QuestionContent":
        return cls(
            question_id=question.id,
            stem=question.stem,
            parts=tuple(
                QuestionPartContent(
                    label=part.label,
                    prompt=getattr(question, part.question_field) or "",
                    model_answer=getattr(question, part.answer_field) or "",
                    max_marks=part.max_marks,
                )
                for part in CQ_PARTS
            ),
        )


class QuestionSource(ABC):
    """Read-only access to canonical question text and model answers."""

    @abstractmethod
    def get_question(self, question_id: int) -> QuestionContent | None:
        ...


class SqlQuestionSource(QuestionSource):
    """QuestionSource reading ``creative_questions``.

    Opens a short-lived session per lookup so it can be called from worker
    threads.
    """

    def __init__(self, session_factory: Callable[[], Session]):
        self.session_factory = session_factory

    def get_question(self, question_id: int) -> QuestionContent | None:
        with self.session_factory() as session:
            question = session.get(CreativeQuestion, question_id)
            if question is None:
                return None
            return QuestionContent.from_model(question)
