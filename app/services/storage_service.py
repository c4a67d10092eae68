"""
File storage for generated documents
S3 in production, local filesystem for development
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from app.config import Settings, settings as default_settings
from app.core.exceptions import StorageError
from app.utils.helpers import sanitize_filename, utcnow

logger = logging.getLogger(__name__)


@dataclass
class UploadResult:
    url: str
    key: str
    provider: str


def build_storage_key(filename: str) -> str:
    """Key format: ``{YYYY-MM-DD}/{uuid}-{filename}``."""
    return f"{utcnow():%Y-%m-%d}/{uuid.uuid4()}-{sanitize_filename(filename)}"


class LocalStorageBackend:
    """Writes files under a local directory served at ``base_url``."""

    provider = "local"

    def __init__(self, root: str, base_url: str):
        self.root = Path(root)
        self.base_url = base_url.rstrip("/")

    def _write(self, key: str, data: bytes) -> None:
        path = self.root / key
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)

    async def put(self, key: str, data: bytes, content_type: str) -> str:
        try:
            await asyncio.to_thread(self._write, key, data)
        except OSError as e:
            raise StorageError(f"Failed to write {key} to local storage: {e}") from e
        return f"{self.base_url}/{key}"


class S3StorageBackend:
    """Uploads to an S3 bucket with boto3 (run in a worker thread)."""

    provider = "s3"

    def __init__(self, settings: Settings):
        self.bucket = settings.S3_BUCKET_NAME
        self.region = settings.AWS_REGION
        self.client = boto3.client(
            "s3",
            aws_access_key_id=settings.AWS_ACCESS_KEY_ID or None,
            aws_secret_access_key=settings.AWS_SECRET_ACCESS_KEY or None,
            region_name=settings.AWS_REGION,
        )

    async def put(self, key: str, data: bytes, content_type: str) -> str:
        try:
            await asyncio.to_thread(
                self.client.put_object,
                Bucket=self.bucket,
                Key=key,
                Body=data,
                ContentType=content_type,
            )
        except (BotoCoreError, ClientError) as e:
            raise StorageError(f"Failed to upload {key} to S3: {e}") from e
        return f"https://{self.bucket}.s3.{self.region}.amazonaws.com/{key}"


class StorageService:
    """Uploads generated files and returns their public URL."""

    def __init__(self, backend):
        self.backend = backend

    @classmethod
    def from_settings(cls, settings: Settings = default_settings) -> "StorageService":
        if settings.STORAGE_TYPE == "s3" and settings.S3_BUCKET_NAME:
            logger.info(f"📦 Using S3 storage (bucket: {settings.S3_BUCKET_NAME})")
            return cls(S3StorageBackend(settings))
        logger.info(f"💾 Using local file storage ({settings.LOCAL_STORAGE_DIR})")
        return cls(LocalStorageBackend(settings.LOCAL_STORAGE_DIR, settings.LOCAL_STORAGE_BASE_URL))

    async def upload_file(
        self,
        data: bytes,
        filename: str,
        content_type: str = "application/octet-stream",
        key: Optional[str] = None,
    ) -> UploadResult:
        """
        Upload bytes under a generated (or explicit) key.

        Raises:
            StorageError: When the backend rejects the upload
        """
        key = key or build_storage_key(filename)
        url = await self.backend.put(key, data, content_type)
        logger.info(f"Uploaded {key} ({len(data)} bytes) via {self.backend.provider}")
        return UploadResult(url=url, key=key, provider=self.backend.provider)
