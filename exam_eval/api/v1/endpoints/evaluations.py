"""CQ exam evaluation endpoints."""

import logging
import os
import tempfile
from pathlib import Path

from fastapi import APIRouter, Path as PathParam, Request
from sqlalchemy import select
from starlette.datastructures import UploadFile

from exam_eval.core.config import settings
from exam_eval.core.database import DbSession
from exam_eval.core.dependencies import CurrentUser, Orchestrator
from exam_eval.core.exceptions import NotFoundError, UploadError
from exam_eval.models.exam_result import ExamResult
from exam_eval.schemas.common import ErrorResponse
from exam_eval.schemas.evaluation import ExamResultResponse
from exam_eval.services.answer_grouper import ExamSubmission, SubmissionImage

logger = logging.getLogger(__name__)

router = APIRouter()


def _spool_to_temp_file(content: bytes, filename: str | None) -> Path:
    suffix = Path(filename).suffix if filename else ""
    fd, path = tempfile.mkstemp(prefix="cq-answer-", suffix=suffix)
    with os.fdopen(fd, "wb") as handle:
        handle.write(content)
    return Path(path)


async def _read_submission_images(request: Request) -> list[SubmissionImage]:
    """
    Collect answer images from a multipart form.

    Every file field is named after the question it answers; one question
    may carry several images.
    """
    form = await request.form()
    images: list[SubmissionImage] = []
    try:
        for field_name, value in form.multi_items():
            if not isinstance(value, UploadFile):
                continue

            try:
                question_id = int(field_name)
            except ValueError:
                raise UploadError(
                    "Image field names must be question ids",
                    details={"field": field_name},
                )

            if value.content_type not in settings.ALLOWED_IMAGE_TYPES:
                raise UploadError(
                    f"Unsupported image type: {value.content_type}",
                    details={"field": field_name, "allowed": settings.ALLOWED_IMAGE_TYPES},
                )

            content = await value.read()
            if not content:
                raise UploadError("Empty image file", details={"field": field_name})
            if len(content) > settings.max_upload_size_bytes:
                raise UploadError(f"File size exceeds {settings.MAX_UPLOAD_SIZE_MB}MB limit")

            images.append(
                SubmissionImage(
                    question_id=question_id,
                    mime_type=value.content_type,
                    temp_path=_spool_to_temp_file(content, value.filename),
                    filename=value.filename,
                )
            )
    except Exception:
        for image in images:
            image.release()
        raise
    finally:
        await form.close()

    if not images:
        raise UploadError("No answer images provided")
    return images


@router.post(
    "/exams/{exam_id}",
    response_model=ExamResultResponse,
    responses={
        400: {"model": ErrorResponse},
        401: {"model": ErrorResponse},
        409: {"model": ErrorResponse},
    },
)
async def submit_exam(
    request: Request,
    current_user: CurrentUser,
    orchestrator: Orchestrator,
    exam_id: int = PathParam(..., ge=1),
):
    """
    Submit a CQ exam for evaluation.

    - Multipart form; each file field name is the question id it answers
    - Questions are graded concurrently; failed questions leave the result in review_required
    - A second submission for the same exam is rejected unless the previous attempt errored
    """
    images = await _read_submission_images(request)
    logger.info(f"User {current_user.id} submitted exam {exam_id} with {len(images)} image(s)")
    submission = ExamSubmission(user_id=current_user.id, exam_id=exam_id, images=images)
    result = await orchestrator.evaluate_exam(submission)
    return result


@router.get(
    "/exams/{exam_id}",
    response_model=ExamResultResponse,
    responses={404: {"model": ErrorResponse}},
)
def get_exam_result(
    current_user: CurrentUser,
    db: DbSession,
    exam_id: int = PathParam(..., ge=1),
):
    """Get the caller's result for an exam."""
    result = db.execute(
        select(ExamResult).where(
            ExamResult.exam_id == exam_id,
            ExamResult.user_id == current_user.id,
        )
    ).scalar_one_or_none()

    if not result:
        raise NotFoundError("Exam result", str(exam_id))

    return result
