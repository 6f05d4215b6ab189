"""Custom exception classes and error handling."""

from typing import Any

from fastapi import HTTPException, status

from exam_eval.schemas.common import ErrorResponse


class AppException(HTTPException):
    """Base application exception."""

    def __init__(
        self,
        status_code: int,
        code: str,
        message: str,
        details: dict[str, Any] | None = None,
    ):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(
            status_code=status_code,
            detail=ErrorResponse.build(code, message, self.details),
        )


class AuthenticationError(AppException):
    """Authentication failed."""

    def __init__(self, message: str = "Authentication failed"):
        super().__init__(
            status_code=status.HTTP_401_UNAUTHORIZED,
            code="AUTH_FAILED",
            message=message,
        )


class UploadError(AppException):
    """File upload failed."""

    def __init__(
        self,
        message: str = "Upload failed",
        details: dict[str, Any] | None = None,
    ):
        super().__init__(
            status_code=status.HTTP_400_BAD_REQUEST,
            code="UPLOAD_FAILED",
            message=message,
            details=details,
        )


class NotFoundError(AppException):
    """Resource not found."""

    def __init__(
        self,
        resource: str = "Resource",
        identifier: str | None = None,
    ):
        details = {}
        if identifier:
            details["identifier"] = identifier
        super().__init__(
            status_code=status.HTTP_404_NOT_FOUND,
            code="NOT_FOUND",
            message=f"{resource} not found",
            details=details,
        )


class ConflictError(AppException):
    """Request conflicts with the current state of a resource."""

    def __init__(
        self,
        message: str = "Conflict",
        details: dict[str, Any] | None = None,
    ):
        super().__init__(
            status_code=status.HTTP_409_CONFLICT,
            code="CONFLICT",
            message=message,
            details=details,
        )


class DuplicateSubmissionError(ConflictError):
    """An attempt for this exam already exists for the user."""

    def __init__(self, exam_id: int, user_id: int, current_status: str | None = None):
        details: dict[str, Any] = {"exam_id": exam_id, "user_id": user_id}
        if current_status:
            details["status"] = current_status
        super().__init__(
            message=f"Exam {exam_id} has already been submitted by user {user_id}",
            details=details,
        )


# Evaluation engine errors.
# These never reach HTTP directly: the evaluation worker turns them into
# per-question failures.


class EvaluationError(Exception):
    """Recoverable failure while evaluating a single question."""

    error_type = "EVALUATION_ERROR"

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class ArchiveError(EvaluationError):
    """Answer images could not be archived."""

    error_type = "ARCHIVE_ERROR"


class QuestionNotFoundError(EvaluationError):
    """Canonical question content is missing."""

    error_type = "QUESTION_NOT_FOUND"

    def __init__(self, question_id: int):
        self.question_id = question_id
        super().__init__(f"Question with id {question_id} not found")


class OracleError(EvaluationError):
    """The assessment oracle failed or returned an unusable response."""

    error_type = "ORACLE_ERROR"


class OracleTimeoutError(OracleError):
    """The assessment oracle did not answer in time."""

    error_type = "ORACLE_TIMEOUT"


class ScorecardValidationError(EvaluationError):
    """The returned scorecard is malformed or out of bounds."""

    error_type = "INVALID_SCORECARD"


class LedgerInconsistencyError(Exception):
    """An aura balance increment could not be confirmed."""


class InvalidStatusTransitionError(ValueError):
    """Exam result status change not allowed by the state machine."""

    def __init__(self, current: str, target: str):
        self.current = current
        self.target = target
        super().__init__(f"Cannot move exam result from '{current}' to '{target}'")
