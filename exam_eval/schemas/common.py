"""Shared schema base and the error envelope returned by every endpoint."""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class BaseSchema(BaseModel):
    """ORM-readable schema that accepts field names or aliases."""

    model_config = ConfigDict(
        from_attributes=True,
        populate_by_name=True,
        str_strip_whitespace=True,
    )


class ErrorDetail(BaseSchema):
    code: str = Field(..., examples=["CONFLICT", "UPLOAD_FAILED", "AUTH_FAILED"])
    message: str
    details: dict[str, Any] = Field(default_factory=dict)


class ErrorResponse(BaseSchema):
    """``{"success": false, "error": {...}}``"""

    success: bool = False
    error: ErrorDetail

    @classmethod
    def build(cls, code: str, message: str, details: dict[str, Any] | None = None) -> dict[str, Any]:
        """JSON-ready error envelope."""
        return cls(error=ErrorDetail(code=code, message=message, details=details or {})).model_dump(mode="json")
