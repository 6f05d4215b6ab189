"""Grouping of uploaded answer images by question."""

import logging
import os
from collections.abc import Iterable
from dataclasses import dataclass, field
from pathlib import Path

logger = logging.getLogger(__name__)


@dataclass
class SubmissionImage:
    """One uploaded answer image tagged with its question.

    The payload is either held in memory (``image_bytes``) or spooled to a
    temporary file (``temp_path``) that is removed by ``release``.
    """

    question_id: int
    mime_type: str
    image_bytes: bytes | None = None
    temp_path: Path | None = None
    filename: str | None = None

    def read_bytes(self) -> bytes:
        if self.image_bytes is not None:
            return self.image_bytes
        if self.temp_path is not None:
            return self.temp_path.read_bytes()
        raise ValueError(f"Image for question {self.question_id} has no content")

    def release(self) -> None:
        """Delete the temporary copy, if any. Safe to call more than once."""
        if self.temp_path is None:
            return
        try:
            os.unlink(self.temp_path)
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"Failed to delete temp file {self.temp_path}: {e}")
        self.temp_path = None


@dataclass
class ExamSubmission:
    """Orchestrator input."""

    user_id: int
    exam_id: int
    images: list[SubmissionImage] = field(default_factory=list)


def group_images_by_question(images: Iterable[SubmissionImage]) -> dict[int, list[SubmissionImage]]:
    """Partition images into per-question groups, keeping upload order inside a group."""
    grouped: dict[int, list[SubmissionImage]] = {}
    for image in images:
        grouped.setdefault(image.question_id, []).append(image)
    return grouped
