"""Weak-topic recommendations from evaluated CQ answers.

Two stages: the external topic extractor turns a performance summary into
search phrases, then a local deterministic keyword match picks topics from
the catalog and upserts them into the user's recommendation set.
"""

import logging
import string
from abc import ABC, abstractmethod
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field

from sqlalchemy import String, cast, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from exam_eval.core.config import settings
from exam_eval.core.grading import CQ_PARTS, CQ_TOTAL_MARKS
from exam_eval.models.exam_result import AnswerEvaluation
from exam_eval.models.recommendation import Recommendation
from exam_eval.models.topic import Topic, TopicSegment
from exam_eval.services.oracle import TopicExtractor
from exam_eval.services.questions import QuestionContent, QuestionSource

logger = logging.getLogger(__name__)

STOPWORDS = frozenset({"and", "vs", "the", "of", "from", "a", "in", "is"})
MIN_KEYWORD_LENGTH = 3
NO_TOPICS_SUMMARY = "No specific topics could be recommended at this time. Please review your results carefully."


@dataclass(frozen=True)
class TopicMatch:
    id: int
    name: str


@dataclass
class RecommendationOutcome:
    """What the recommendation step produced (possibly nothing)."""

    performance_summary: str | None = None
    search_terms: list[str] = field(default_factory=list)
    keywords: list[str] = field(default_factory=list)
    topics: list[TopicMatch] = field(default_factory=list)

    @property
    def topics_summary(self) -> str:
        if not self.topics:
            return NO_TOPICS_SUMMARY
        return "\n".join(f"Topic: {topic.name}, ID: {{{{{topic.id}}}}}" for topic in self.topics)


def extract_keywords(phrases: Iterable[str]) -> list[str]:
    """Split phrases into words, drop stopwords and short tokens, dedupe case-insensitively."""
    seen: set[str] = set()
    keywords: list[str] = []
    for phrase in phrases:
        for token in str(phrase).split():
            word = token.strip(string.punctuation)
            key = word.lower()
            if len(word) < MIN_KEYWORD_LENGTH or key in STOPWORDS or key in seen:
                continue
            seen.add(key)
            keywords.append(word)
    return keywords


def build_performance_summary(
    answers: Sequence[AnswerEvaluation],
    questions: Mapping[int, QuestionContent | None],
) -> str:
    """Per question: stem, marks, and every part that scored below its maximum."""
    blocks = []
    for index, answer in enumerate(answers, start=1):
        question = questions.get(answer.question_id)
        stem = question.stem if question else "Unknown Topic"
        errors = []
        for part in CQ_PARTS:
            marks = getattr(answer, part.marks_field)
            if marks < part.max_marks:
                feedback = getattr(answer, part.feedback_field) or "No feedback provided."
                errors.append(f"- Part {part.label} (Score: {marks}/{part.max_marks}): {feedback}")
        blocks.append(
            "\n".join(
                [
                    "-----------------------------------",
                    f"Question {index}",
                    f'- Topic/Stem: "{stem}"',
                    f"- Marks Obtained: {answer.marks_obtained} out of {answer.total_marks or CQ_TOTAL_MARKS}",
                    "- Error Breakdown:",
                    *(errors or ["- No marks lost."]),
                ]
            )
        )
    return "\n".join(blocks)


class TopicCatalog(ABC):
    """Read-only topic catalog searchable by keyword."""

    @abstractmethod
    def search(self, keywords: Sequence[str], limit: int) -> list[TopicMatch]:
        ...


class SqlTopicCatalog(TopicCatalog):
    """Case-insensitive any-keyword match over names, tags, aliases and segments."""

    def __init__(self, db: Session):
        self.db = db

    def search(self, keywords: Sequence[str], limit: int) -> list[TopicMatch]:
        if not keywords:
            return []

        topic_conditions = []
        segment_conditions = []
        for keyword in keywords:
            topic_conditions.extend(
                [
                    Topic.name.icontains(keyword, autoescape=True),
                    cast(Topic.tags, String).icontains(keyword, autoescape=True),
                    cast(Topic.english_aliases, String).icontains(keyword, autoescape=True),
                    cast(Topic.banglish_aliases, String).icontains(keyword, autoescape=True),
                ]
            )
            segment_conditions.extend(
                [
                    TopicSegment.title.icontains(keyword, autoescape=True),
                    TopicSegment.description.icontains(keyword, autoescape=True),
                ]
            )

        query = (
            select(Topic.id, Topic.name)
            .where(or_(*topic_conditions, Topic.segments.any(or_(*segment_conditions))))
            .order_by(Topic.id)
            .limit(limit)
        )
        rows = self.db.execute(query).all()
        return [TopicMatch(id=row.id, name=row.name) for row in rows]


class RecommendationEngine:
    """Builds and persists topic recommendations for weak answers."""

    def __init__(
        self,
        db: Session,
        extractor: TopicExtractor,
        catalog: TopicCatalog,
        questions: QuestionSource,
        limit: int | None = None,
    ):
        self.db = db
        self.extractor = extractor
        self.catalog = catalog
        self.questions = questions
        self.limit = limit or settings.RECOMMENDATION_TOPIC_LIMIT

    def recommend(self, user_id: int, answers: Sequence[AnswerEvaluation]) -> RecommendationOutcome:
        """Best-effort: any failure is logged and yields an outcome without topics."""
        outcome = RecommendationOutcome()
        if not answers:
            return outcome

        try:
            questions = {answer.question_id: self.questions.get_question(answer.question_id) for answer in answers}
            outcome.performance_summary = build_performance_summary(answers, questions)

            outcome.search_terms = self.extractor.extract_topics(outcome.performance_summary)
            outcome.keywords = extract_keywords(outcome.search_terms)
            logger.debug(f"Recommendation keywords for user {user_id}: {outcome.keywords}")
            if not outcome.keywords:
                logger.info(f"No search keywords for user {user_id}, skipping topic search")
                return outcome

            # A failed query must not abort the exam result's transaction
            with self.db.begin_nested():
                topics = self.catalog.search(outcome.keywords, self.limit)
            if not topics:
                logger.info(f"No topics matched keywords {outcome.keywords} for user {user_id}")
                return outcome

            self.upsert(user_id, [topic.id for topic in topics])
            outcome.topics = topics
            logger.info(f"Recommended {len(topics)} topic(s) to user {user_id}")
        except Exception:
            logger.exception(f"Recommendation generation failed for user {user_id}")
            outcome.topics = []
        return outcome

    def upsert(self, user_id: int, topic_ids: Sequence[int]) -> Recommendation:
        """Add topics to the user's recommendation set, creating it if absent."""
        try:
            with self.db.begin_nested():
                recommendation = self._get_or_create(user_id)
                self._add_topics(recommendation, topic_ids)
        except IntegrityError:
            # Another submission created the row first
            with self.db.begin_nested():
                recommendation = self._get_or_create(user_id)
                self._add_topics(recommendation, topic_ids)
        return recommendation

    def _get_or_create(self, user_id: int) -> Recommendation:
        recommendation = self.db.execute(
            select(Recommendation).where(Recommendation.user_id == user_id)
        ).scalar_one_or_none()
        if recommendation is None:
            recommendation = Recommendation(user_id=user_id, topics=[])
            self.db.add(recommendation)
            self.db.flush()
        return recommendation

    def _add_topics(self, recommendation: Recommendation, topic_ids: Sequence[int]) -> None:
        existing = recommendation.topic_ids
        for topic_id in dict.fromkeys(topic_ids):
            if topic_id in existing:
                continue
            topic = self.db.get(Topic, topic_id)
            if topic is not None:
                recommendation.topics.append(topic)
                existing.add(topic_id)
        self.db.flush()
