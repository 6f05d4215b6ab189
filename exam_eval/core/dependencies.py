"""FastAPI dependency injection utilities."""

from typing import Annotated

from fastapi import Depends, Header
from sqlalchemy import select
from sqlalchemy.orm import Session

from exam_eval.core.config import settings
from exam_eval.core.database import SessionLocal, get_db
from exam_eval.core.exceptions import AuthenticationError
from exam_eval.core.security import resolve_user_id
from exam_eval.models.user import User
from exam_eval.services.archiver import S3ImageArchiver
from exam_eval.services.aura_ledger import AuraLedgerService
from exam_eval.services.evaluation import EvaluationOrchestrator
from exam_eval.services.evaluation_worker import EvaluationWorker
from exam_eval.services.oracle import GeminiAssessmentClient
from exam_eval.services.questions import SqlQuestionSource
from exam_eval.services.recommendation import RecommendationEngine, SqlTopicCatalog


def get_current_user(
    db: Annotated[Session, Depends(get_db)],
    authorization: str = Header(..., description="Bearer token"),
) -> User:
    """Extract and validate the current user from JWT token."""
    if not authorization.startswith("Bearer "):
        raise AuthenticationError("Invalid authorization header format")

    user_id = resolve_user_id(authorization[7:])  # Strip "Bearer "
    user = db.execute(select(User).where(User.id == user_id)).scalar_one_or_none()

    if not user:
        raise AuthenticationError("User not found")

    if not user.is_active:
        raise AuthenticationError("User account is deactivated")

    return user


def build_evaluation_orchestrator(db: Session) -> EvaluationOrchestrator:
    """Production wiring: S3 archive, Gemini oracle, SQL question and topic stores."""
    oracle = GeminiAssessmentClient()
    questions = SqlQuestionSource(SessionLocal)
    worker = EvaluationWorker(
        archiver=S3ImageArchiver(),
        questions=questions,
        oracle=oracle,
    )
    return EvaluationOrchestrator(
        db=db,
        worker=worker,
        ledger=AuraLedgerService(db),
        recommendations=RecommendationEngine(
            db=db,
            extractor=oracle,
            catalog=SqlTopicCatalog(db),
            questions=questions,
        ),
        report_writer=oracle,
        worker_timeout=settings.WORKER_TIMEOUT_SECONDS,
        model_version=settings.ORACLE_MODEL,
    )


def get_evaluation_orchestrator(
    db: Annotated[Session, Depends(get_db)],
) -> EvaluationOrchestrator:
    return build_evaluation_orchestrator(db)


# Type aliases for common dependencies
CurrentUser = Annotated[User, Depends(get_current_user)]
Orchestrator = Annotated[EvaluationOrchestrator, Depends(get_evaluation_orchestrator)]
