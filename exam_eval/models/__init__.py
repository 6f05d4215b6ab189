"""Database models package."""

from exam_eval.models.activity import ActivityType, UserActivity
from exam_eval.models.aura import AuraLedgerEntry, AuraSourceType
from exam_eval.models.exam_result import (
    AnswerEvaluation,
    EvaluatedBy,
    ExamResult,
    ExamResultStatus,
    HandwritingQuality,
)
from exam_eval.models.question import CreativeQuestion
from exam_eval.models.recommendation import Recommendation, recommendation_topics
from exam_eval.models.topic import Topic, TopicSegment
from exam_eval.models.user import User

__all__ = [
    # User
    "User",
    # Activity
    "UserActivity",
    "ActivityType",
    # Aura
    "AuraLedgerEntry",
    "AuraSourceType",
    # Exam results
    "ExamResult",
    "ExamResultStatus",
    "AnswerEvaluation",
    "HandwritingQuality",
    "EvaluatedBy",
    # Catalog
    "CreativeQuestion",
    "Topic",
    "TopicSegment",
    # Recommendations
    "Recommendation",
    "recommendation_topics",
]
