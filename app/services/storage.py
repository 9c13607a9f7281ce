"""
Result Storage
Persists generated images - supports Google Cloud Storage, S3, and local filesystem.
"""

import asyncio
import base64
import binascii
import logging
from pathlib import Path
from typing import Optional

from app.core.config import settings
from app.core.errors import StorageError
from app.workers.base import RetryableError, with_retry

logger = logging.getLogger(__name__)


class ResultStorage:
    """Stores result payloads and returns a durable reference URL."""

    def __init__(self, base_path: Optional[str] = None):
        # Priority: GCS > Local > S3
        self.use_gcs = settings.USE_GCS
        self.use_local = settings.USE_LOCAL_STORAGE and not self.use_gcs

        if self.use_gcs:
            # Google Cloud Storage
            from google.cloud import storage
            self.gcs_client = storage.Client(project=settings.GCP_PROJECT_ID)
            self.bucket_outputs = self.gcs_client.bucket(settings.GCS_BUCKET_OUTPUTS)
            logger.info(f"[Storage] Using Google Cloud Storage: {settings.GCS_BUCKET_OUTPUTS}")

        elif self.use_local:
            self.base_path = Path(base_path or settings.LOCAL_STORAGE_PATH)
            self.base_path.mkdir(parents=True, exist_ok=True)
            logger.info(f"[Storage] Using local storage: {self.base_path}")

        else:
            # S3 fallback
            import boto3
            from botocore.config import Config
            self.s3 = boto3.client(
                "s3",
                endpoint_url=settings.S3_ENDPOINT or None,
                aws_access_key_id=settings.S3_ACCESS_KEY,
                aws_secret_access_key=settings.S3_SECRET_KEY,
                region_name=settings.S3_REGION,
                config=Config(signature_version="s3v4")
            )
            self.bucket = settings.S3_BUCKET
            logger.info(f"[Storage] Using S3: {self.bucket}")

    @staticmethod
    def result_path(job_id: str) -> str:
        return f"outputs/jobs/{job_id}/result.png"

    async def store(self, job_id: str, payload_b64: str) -> str:
        """
        Store a base64 result payload for a job.

        Raises:
            StorageError: payload is not valid base64 or every upload attempt failed
        """
        try:
            data = base64.b64decode(payload_b64, validate=True)
        except (binascii.Error, ValueError) as e:
            raise StorageError(f"Result payload is not valid base64: {e}")

        try:
            return await self.upload_bytes(data, self.result_path(job_id), "image/png")
        except RetryableError as e:
            raise StorageError(f"Result upload failed: {e}")

    @with_retry(max_retries=2, retry_delay=0.5)
    async def upload_bytes(self, data: bytes, path: str, content_type: str = "image/png") -> str:
        """Upload bytes and return URL."""
        try:
            if self.use_gcs:
                return await self._upload_gcs(data, path, content_type)
            elif self.use_local:
                return await self._upload_local(data, path)
            else:
                return await self._upload_s3(data, path, content_type)
        except StorageError:
            raise
        except Exception as e:
            raise RetryableError(f"{path}: {e.__class__.__name__}: {e}")

    async def _upload_gcs(self, data: bytes, path: str, content_type: str) -> str:
        """Upload to Google Cloud Storage."""
        blob = self.bucket_outputs.blob(path)
        await asyncio.to_thread(blob.upload_from_string, data, content_type=content_type)

        # Return API URL that proxies the file
        return f"/files/{path}"

    async def _upload_local(self, data: bytes, path: str) -> str:
        """Save file to local filesystem."""
        file_path = self.base_path / path
        await asyncio.to_thread(_write_file, file_path, data)
        return f"/files/{path}"

    async def _upload_s3(self, data: bytes, path: str, content_type: str) -> str:
        """Upload to S3."""
        await asyncio.to_thread(
            self.s3.put_object,
            Bucket=self.bucket,
            Key=path,
            Body=data,
            ContentType=content_type
        )
        return f"s3://{self.bucket}/{path}"

    async def get_file(self, path: str) -> bytes:
        """Get file contents."""
        if self.use_gcs:
            blob = self.bucket_outputs.blob(path)
            return await asyncio.to_thread(blob.download_as_bytes)
        elif self.use_local:
            file_path = (self.base_path / path).resolve()
            if self.base_path.resolve() not in file_path.parents:
                raise FileNotFoundError(path)
            return await asyncio.to_thread(file_path.read_bytes)
        else:
            response = await asyncio.to_thread(self.s3.get_object, Bucket=self.bucket, Key=path)
            return await asyncio.to_thread(response["Body"].read)


def _write_file(file_path: Path, data: bytes):
    file_path.parent.mkdir(parents=True, exist_ok=True)
    with open(file_path, "wb") as f:
        f.write(data)
