"""Assessment oracle: grading, topic extraction and exam reports.

The engine only depends on the three abstract ports below. The concrete
``GeminiAssessmentClient`` talks to a Gemini ``generateContent`` endpoint over
HTTP; any other provider can be plugged in by implementing the ports.
"""

import base64
import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

import requests

from exam_eval.core.config import settings
from exam_eval.core.exceptions import OracleError, OracleTimeoutError
from exam_eval.services.questions import QuestionContent

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ImagePayload:
    mime_type: str
    data: bytes


@dataclass(frozen=True)
class GradingRequest:
    """Everything the oracle needs to grade one question."""

    question: QuestionContent
    images: tuple[ImagePayload, ...] = field(default_factory=tuple)


class AssessmentOracle(ABC):
    """Scores one question's submission."""

    @abstractmethod
    def grade(self, request: GradingRequest) -> dict[str, Any]:
        """Return a raw scorecard: marksA..D, feedbackA..D, handWriting, confidence.

        Raises OracleError (or OracleTimeoutError) on failure. The caller
        validates bounds before trusting the values.
        """
        ...


class TopicExtractor(ABC):
    """Turns a performance summary into study-topic search phrases."""

    @abstractmethod
    def extract_topics(self, performance_summary: str) -> list[str]:
        ...


class ExamReportWriter(ABC):
    """Writes the overall exam report shown to the student."""

    @abstractmethod
    def write_report(self, performance_summary: str, recommended_topics_summary: str) -> str:
        ...


GRADING_PROMPT = """You are an exam grader for the SSC/HSC Creative Question format.
Grade the student's handwritten answer in the attached images against the model answers.

Marking rules:
- Part A (1 mark): 1 for a correct answer, otherwise 0.
- Part B (2 marks): deduct 0.5 for a missing second paragraph and 0.5 for missing key information.
- Part C (3 marks): deduct 0.5 for a missing unit, 0.5 for a missing conclusion, 2 for a wrong final value with a correct method.
- Part D (4 marks): deduct 0.5 for a missing unit, 0.5 for a missing conclusion, 3 for a wrong final value with a correct method.
A different but correct approach earns full marks. In every feedback string list each deduction and how many marks it cost.

Stem: {stem}
{parts}

The student submitted {image_count} image(s).
Respond with a single JSON object and nothing else, using exactly these keys:
marksA, marksB, marksC, marksD (numbers), feedbackA, feedbackB, feedbackC, feedbackD (strings),
handWriting (one of Excellent, Good, Average, Poor), confidence (number from 0 to 1),
overallFeedback (string).
"""

TOPIC_PROMPT = """You are a topic analyst. Read the performance summary below, find the academic
concepts where the student lost marks, and return 3 to 5 short textbook-style search phrases
for those concepts (for example "Torque and Angular Momentum").

Respond with a single JSON object and nothing else: {{"search_terms": ["...", "..."]}}

Performance summary:
{summary}
"""

REPORT_PROMPT = """You are an academic tutor. Write an overall exam report for the student with three
sections: "Key Issues Identified" (2-3 bullet points), "Performance Breakdown by Topic", and
"Actionable Recommendations" (a numbered list). Use "- " for bullet points and real newlines.
Respond with the report text only.

Performance summary:
{summary}

Recommended study topics:
{topics}
"""


def extract_json(text: str) -> Any:
    """Parse the first JSON object or array found in ``text``, or None."""
    if not text:
        return None
    text = text.strip()
    if text.startswith("```"):
        text = text.strip("`")
        if text.lower().startswith("json"):
            text = text[4:]
        text = text.strip()
    if text.startswith("{") or text.startswith("["):
        try:
            return json.loads(text)
        except ValueError:
            pass

    starts = [idx for idx in (text.find("{"), text.find("[")) if idx != -1]
    if not starts:
        return None
    first = min(starts)
    closing = "}" if text[first] == "{" else "]"
    last = text.rfind(closing)
    if last <= first:
        return None
    try:
        return json.loads(text[first:last + 1])
    except ValueError:
        return None


def _format_parts(question: QuestionContent) -> str:
    lines = []
    for part in question.parts:
        lines.append(f"Part {part.label} ({part.max_marks} marks): {part.prompt}")
        lines.append(f"Model answer {part.label}: {part.model_answer}")
    return "\n".join(lines)


class GeminiAssessmentClient(AssessmentOracle, TopicExtractor, ExamReportWriter):
    """Gemini ``generateContent`` client implementing all oracle ports."""

    def __init__(
        self,
        api_key: str | None = None,
        model: str | None = None,
        base_url: str | None = None,
        timeout: float | None = None,
        http: Any = None,
    ):
        self.api_key = api_key or settings.ORACLE_API_KEY
        self.model = model or settings.ORACLE_MODEL
        self.base_url = (base_url or settings.ORACLE_API_URL).rstrip("/")
        self.timeout = timeout or settings.ORACLE_TIMEOUT_SECONDS
        self.http = http or requests

    @property
    def endpoint(self) -> str:
        return f"{self.base_url}/{self.model}:generateContent"

    def _generate(self, parts: list[dict[str, Any]], json_output: bool) -> str:
        if not self.api_key:
            raise OracleError("ORACLE_API_KEY is not configured")

        generation_config: dict[str, Any] = {"temperature": 0.2}
        if json_output:
            generation_config["responseMimeType"] = "application/json"
        body = {
            "contents": [{"role": "user", "parts": parts}],
            "generationConfig": generation_config,
        }

        try:
            response = self.http.post(
                self.endpoint,
                params={"key": self.api_key},
                json=body,
                timeout=self.timeout,
            )
            response.raise_for_status()
            payload = response.json()
        except requests.Timeout as e:
            raise OracleTimeoutError(f"Oracle did not respond within {self.timeout}s") from e
        except requests.RequestException as e:
            raise OracleError(f"Oracle request failed: {e}") from e
        except ValueError as e:
            raise OracleError(f"Oracle returned a non-JSON body: {e}") from e

        try:
            candidate_parts = payload["candidates"][0]["content"]["parts"]
        except (KeyError, IndexError, TypeError) as e:
            raise OracleError(f"Unexpected oracle response shape: {str(payload)[:200]}") from e
        return "".join(part.get("text", "") for part in candidate_parts)

    def grade(self, request: GradingRequest) -> dict[str, Any]:
        prompt = GRADING_PROMPT.format(
            stem=request.question.stem,
            parts=_format_parts(request.question),
            image_count=len(request.images),
        )
        parts: list[dict[str, Any]] = [{"text": prompt}]
        for image in request.images:
            parts.append(
                {
                    "inline_data": {
                        "mime_type": image.mime_type,
                        "data": base64.b64encode(image.data).decode("ascii"),
                    }
                }
            )

        text = self._generate(parts, json_output=True)
        scorecard = extract_json(text)
        if not isinstance(scorecard, dict):
            raise OracleError(f"Oracle returned no scorecard for question {request.question.question_id}")
        return scorecard

    def extract_topics(self, performance_summary: str) -> list[str]:
        text = self._generate([{"text": TOPIC_PROMPT.format(summary=performance_summary)}], json_output=True)
        parsed = extract_json(text)
        if isinstance(parsed, dict):
            parsed = parsed.get("search_terms")
        if not isinstance(parsed, list):
            raise OracleError("Oracle returned no search terms")
        return [str(term) for term in parsed if str(term).strip()]

    def write_report(self, performance_summary: str, recommended_topics_summary: str) -> str:
        prompt = REPORT_PROMPT.format(summary=performance_summary, topics=recommended_topics_summary)
        return self._generate([{"text": prompt}], json_output=False).strip()
