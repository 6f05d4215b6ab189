"""Durable storage of raw answer images."""

import logging
import mimetypes
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any
from uuid import uuid4

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from exam_eval.core.config import settings
from exam_eval.core.exceptions import ArchiveError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ArchivedImage:
    """Stable location of an archived image."""

    url: str
    key: str


class ImageArchiver(ABC):
    """Object storage port for answer images."""

    @abstractmethod
    def store(self, data: bytes, folder: str, mime_type: str) -> ArchivedImage:
        """Persist ``data`` under ``folder`` and return its URL. Raises ArchiveError."""
        ...

    @abstractmethod
    def delete(self, image: ArchivedImage) -> None:
        """Remove a previously stored image."""
        ...


def _get_s3_client() -> Any:
    """S3 compatible client built from settings."""
    return boto3.client(
        "s3",
        endpoint_url=settings.ARCHIVE_ENDPOINT_URL,
        aws_access_key_id=settings.ARCHIVE_ACCESS_KEY,
        aws_secret_access_key=settings.ARCHIVE_SECRET_KEY,
        region_name=settings.ARCHIVE_REGION,
    )


class S3ImageArchiver(ImageArchiver):
    """ImageArchiver backed by an S3 compatible bucket (S3, R2, MinIO)."""

    def __init__(
        self,
        bucket: str | None = None,
        public_base_url: str | None = None,
        client: Any = None,
    ):
        self.bucket = bucket or settings.ARCHIVE_BUCKET
        self.public_base_url = (public_base_url or settings.ARCHIVE_PUBLIC_BASE_URL).rstrip("/")
        self._client = client

    @property
    def client(self) -> Any:
        if self._client is None:
            self._client = _get_s3_client()
        return self._client

    def _build_key(self, folder: str, mime_type: str) -> str:
        extension = mimetypes.guess_extension(mime_type) or ""
        return f"{folder.strip('/')}/{uuid4().hex}{extension}"

    def store(self, data: bytes, folder: str, mime_type: str) -> ArchivedImage:
        key = self._build_key(folder, mime_type)
        try:
            self.client.put_object(
                Bucket=self.bucket,
                Key=key,
                Body=data,
                ContentType=mime_type,
            )
        except (BotoCoreError, ClientError) as e:
            raise ArchiveError(f"Failed to archive image to {self.bucket}/{key}: {e}") from e

        url = f"{self.public_base_url}/{key}"
        logger.debug(f"Archived image {key} ({len(data)} bytes)")
        return ArchivedImage(url=url, key=key)

    def delete(self, image: ArchivedImage) -> None:
        self.client.delete_object(Bucket=self.bucket, Key=image.key)
