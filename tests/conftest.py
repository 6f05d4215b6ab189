"""Shared fixtures: in-memory database and fake collaborators."""

import threading
from decimal import Decimal
from pathlib import Path

import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

import exam_eval.models  # noqa: F401  (registers every table)
from exam_eval.core.database import Base
from exam_eval.core.exceptions import ArchiveError
from exam_eval.core.grading import CQ_PARTS
from exam_eval.models.topic import Topic, TopicSegment
from exam_eval.models.user import User
from exam_eval.services.answer_grouper import SubmissionImage
from exam_eval.services.archiver import ArchivedImage, ImageArchiver
from exam_eval.services.oracle import AssessmentOracle, ExamReportWriter, GradingRequest, TopicExtractor
from exam_eval.services.questions import QuestionContent, QuestionPartContent, QuestionSource

PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 32


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    # pysqlite needs explicit BEGIN for SAVEPOINT to behave
    @event.listens_for(engine, "connect")
    def _disable_pysqlite_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql("BEGIN")

    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, class_=Session, expire_on_commit=False, autoflush=False)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.rollback()
    session.close()


@pytest.fixture
def user(db) -> User:
    user = User(name="Nadia Rahman", aura=100)
    db.add(user)
    db.commit()
    return user


@pytest.fixture
def topics(db) -> list[Topic]:
    catalog = [
        Topic(
            name="Torque and Angular Momentum",
            subject="Physics",
            tags=["rotation", "moment of force"],
            english_aliases=["turning effect"],
            banglish_aliases=["torque"],
        ),
        Topic(
            name="Simple Harmonic Motion",
            subject="Physics",
            tags=["oscillation", "pendulum"],
            english_aliases=["SHM"],
            banglish_aliases=["sorol dolon gati"],
        ),
        Topic(
            name="Chemical Bonding",
            subject="Chemistry",
            tags=["ionic", "covalent"],
            english_aliases=[],
            banglish_aliases=[],
            segments=[
                TopicSegment(title="Hybridization", description="sp, sp2 and sp3 orbitals"),
            ],
        ),
        Topic(
            name="100% Yield Reactions",
            subject="Chemistry",
            tags=[],
            english_aliases=[],
            banglish_aliases=[],
        ),
    ]
    db.add_all(catalog)
    db.commit()
    return catalog


def make_question(question_id: int, stem: str = "A wheel of radius 0.5 m rotates about its axis.") -> QuestionContent:
    return QuestionContent(
        question_id=question_id,
        stem=stem,
        parts=tuple(
            QuestionPartContent(
                label=part.label,
                prompt=f"Part {part.label} of question {question_id}",
                model_answer=f"Model answer {part.label}",
                max_marks=part.max_marks,
            )
            for part in CQ_PARTS
        ),
    )


def make_scorecard(a="1", b="2", c="3", d="4", hand_writing="Good", confidence=0.9, **extra) -> dict:
    card = {
        "marksA": a,
        "marksB": b,
        "marksC": c,
        "marksD": d,
        "feedbackA": "Correct definition." if Decimal(str(a)) == 1 else "Definition missing.",
        "feedbackB": "Clear explanation.",
        "feedbackC": "Unit missing (-0.5)." if Decimal(str(c)) < 3 else "Correct calculation.",
        "feedbackD": "Conclusion missing (-0.5)." if Decimal(str(d)) < 4 else "Well reasoned.",
        "handWriting": hand_writing,
        "confidence": confidence,
    }
    card.update(extra)
    return card


def make_image(tmp_path: Path, question_id: int, name: str | None = None) -> SubmissionImage:
    path = tmp_path / (name or f"q{question_id}-{len(list(tmp_path.iterdir()))}.png")
    path.write_bytes(PNG_BYTES)
    return SubmissionImage(question_id=question_id, mime_type="image/png", temp_path=path, filename=path.name)


class FakeArchiver(ImageArchiver):
    def __init__(self, fail_on_call: int | None = None):
        self.fail_on_call = fail_on_call
        self.stored: list[ArchivedImage] = []
        self.deleted: list[ArchivedImage] = []
        self.calls = 0
        self._lock = threading.Lock()

    def store(self, data: bytes, folder: str, mime_type: str) -> ArchivedImage:
        with self._lock:
            self.calls += 1
            call = self.calls
        if call == self.fail_on_call:
            raise ArchiveError("Bucket unavailable")
        key = f"{folder}/{call}.png"
        image = ArchivedImage(url=f"https://cdn.test/{key}", key=key)
        with self._lock:
            self.stored.append(image)
        return image

    def delete(self, image: ArchivedImage) -> None:
        with self._lock:
            self.deleted.append(image)


class FakeQuestionSource(QuestionSource):
    def __init__(self, question_ids=()):
        self.questions = {question_id: make_question(question_id) for question_id in question_ids}

    def get_question(self, question_id: int) -> QuestionContent | None:
        return self.questions.get(question_id)


class FakeOracle(AssessmentOracle):
    """Returns the configured scorecard (or raises the configured error) per question."""

    def __init__(self, responses: dict | None = None, delays: dict | None = None):
        self.responses = responses or {}
        self.delays = delays or {}
        self.requests: list[GradingRequest] = []
        self._lock = threading.Lock()

    def grade(self, request: GradingRequest) -> dict:
        question_id = request.question.question_id
        with self._lock:
            self.requests.append(request)
        delay = self.delays.get(question_id)
        if delay:
            threading.Event().wait(delay)
        response = self.responses.get(question_id, make_scorecard())
        if isinstance(response, Exception):
            raise response
        return response


class FakeTopicExtractor(TopicExtractor):
    def __init__(self, phrases=None, error: Exception | None = None, delay: float = 0):
        self.phrases = phrases if phrases is not None else ["Torque and Angular Momentum"]
        self.error = error
        self.delay = delay
        self.summaries: list[str] = []

    def extract_topics(self, performance_summary: str) -> list[str]:
        self.summaries.append(performance_summary)
        if self.delay:
            # Blocks the calling thread like a real HTTP call
            threading.Event().wait(self.delay)
        if self.error:
            raise self.error
        return list(self.phrases)


class FakeReportWriter(ExamReportWriter):
    def __init__(self, report: str = "Key Issues Identified\n- Units missing", error: Exception | None = None):
        self.report = report
        self.error = error
        self.calls: list[tuple[str, str]] = []

    def write_report(self, performance_summary: str, recommended_topics_summary: str) -> str:
        self.calls.append((performance_summary, recommended_topics_summary))
        if self.error:
            raise self.error
        return self.report
