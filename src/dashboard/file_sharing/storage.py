"""S3-compatible object storage for shared meeting files.

Objects are keyed "{session_id}/{file_id}"; the original file name and type
are kept as object metadata so downloads can restore them.

boto3 is synchronous, so every call is wrapped in asyncio.to_thread() to
avoid blocking the event loop. Storage failures are logged and reported as
False / None rather than raised; the routes turn them into 500s.
"""

from __future__ import annotations

import asyncio
import re
from typing import Any

import boto3
import structlog
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from src.dashboard.config import Settings
from src.dashboard.file_sharing.schemas import FileMetadata, PresignedDownload

logger = structlog.get_logger(__name__)

DEFAULT_CONTENT_TYPE = "application/octet-stream"
_LINODE_RE = re.compile(r"(?:https?://)?([a-z0-9-]+)\.linodeobjects\.com")
_AWS_RE = re.compile(r"\.([a-z0-9-]+)\.amazonaws\.com")


def extract_region_from_endpoint(endpoint: str) -> str:
    """Guess the region from an S3-compatible endpoint URL.

    "https://in-maa-1.linodeobjects.com" -> "in-maa-1"
    "https://s3.eu-west-1.amazonaws.com" -> "eu-west-1"
    Anything else -> "us-east-1".
    """
    match = _LINODE_RE.search(endpoint) or _AWS_RE.search(endpoint)
    return match.group(1) if match else "us-east-1"


def object_key(session_id: str, file_id: str) -> str:
    return f"{session_id}/{file_id}"


def _error_details(exc: Exception) -> dict[str, Any]:
    details: dict[str, Any] = {"error_name": type(exc).__name__, "error_message": str(exc)}
    if isinstance(exc, ClientError):
        meta = exc.response.get("ResponseMetadata", {})
        details["http_status_code"] = meta.get("HTTPStatusCode")
        details["request_id"] = meta.get("RequestId")
        details["error_code"] = exc.response.get("Error", {}).get("Code")
    return details


class ObjectStorage:
    """Upload, presign, inspect and delete shared files in one bucket.

    Args:
        client: A boto3 S3 client.
        bucket: Bucket holding all shared files.
    """

    def __init__(self, client: Any, bucket: str) -> None:
        self._client = client
        self._bucket = bucket

    async def upload_file(
        self,
        session_id: str,
        file_id: str,
        data: bytes,
        metadata: FileMetadata,
        content_type: str | None = None,
    ) -> bool:
        key = object_key(session_id, file_id)
        object_metadata: dict[str, str] = {}
        if metadata.file_name:
            object_metadata["original-filename"] = metadata.file_name
        if metadata.file_type:
            object_metadata["original-filetype"] = metadata.file_type

        def _put() -> None:
            self._client.put_object(
                Bucket=self._bucket,
                Key=key,
                Body=data,
                ContentLength=len(data),
                ContentType=content_type or metadata.file_type or DEFAULT_CONTENT_TYPE,
                Metadata=object_metadata,
            )

        logger.info("storage.uploading", key=key, size=len(data), file_name=metadata.file_name)
        try:
            await asyncio.to_thread(_put)
        except (BotoCoreError, ClientError) as exc:
            logger.error(
                "storage.upload_failed",
                key=key,
                size=len(data),
                file_name=metadata.file_name,
                **_error_details(exc),
            )
            return False
        logger.info("storage.uploaded", key=key)
        return True

    async def head_file(self, session_id: str, file_id: str) -> dict[str, Any] | None:
        """Object metadata, or None if the object does not exist."""
        key = object_key(session_id, file_id)
        try:
            return await asyncio.to_thread(
                self._client.head_object, Bucket=self._bucket, Key=key
            )
        except (BotoCoreError, ClientError) as exc:
            logger.debug("storage.head_missed", key=key, **_error_details(exc))
            return None

    async def file_exists(self, session_id: str, file_id: str) -> bool:
        return await self.head_file(session_id, file_id) is not None

    async def generate_presigned_url(
        self, session_id: str, file_id: str, expires_in_hours: int = 24
    ) -> PresignedDownload | None:
        """Presigned GET URL plus the stored original file name.

        Returns None if the object is missing or signing fails.
        """
        key = object_key(session_id, file_id)
        head = await self.head_file(session_id, file_id)
        if head is None:
            logger.warning("storage.presign_missing", key=key)
            return None
        file_name = (head.get("Metadata") or {}).get("original-filename")

        try:
            url = await asyncio.to_thread(
                self._client.generate_presigned_url,
                "get_object",
                Params={"Bucket": self._bucket, "Key": key},
                ExpiresIn=expires_in_hours * 60 * 60,
            )
        except (BotoCoreError, ClientError) as exc:
            logger.error("storage.presign_failed", key=key, **_error_details(exc))
            return None

        logger.info("storage.presigned", key=key, file_name=file_name, expires_in_hours=expires_in_hours)
        return PresignedDownload(url=url, file_name=file_name)

    async def delete_file(self, session_id: str, file_id: str) -> bool:
        key = object_key(session_id, file_id)
        try:
            await asyncio.to_thread(
                self._client.delete_object, Bucket=self._bucket, Key=key
            )
        except (BotoCoreError, ClientError) as exc:
            logger.error("storage.delete_failed", key=key, **_error_details(exc))
            return False
        logger.info("storage.deleted", key=key)
        return True


def create_object_storage(settings: Settings) -> ObjectStorage:
    """Build ObjectStorage from S3_* settings (path-style addressing)."""
    region = settings.S3_REGION or extract_region_from_endpoint(settings.S3_ENDPOINT)
    logger.info(
        "storage.client_created",
        bucket=settings.S3_BUCKET,
        endpoint=settings.S3_ENDPOINT,
        region=region,
        has_credentials=bool(settings.S3_ACCESS_KEY_ID and settings.S3_SECRET_ACCESS_KEY),
    )
    client = boto3.client(
        "s3",
        region_name=region,
        endpoint_url=settings.S3_ENDPOINT or None,
        aws_access_key_id=settings.S3_ACCESS_KEY_ID or None,
        aws_secret_access_key=settings.S3_SECRET_ACCESS_KEY or None,
        config=Config(signature_version="s3v4", s3={"addressing_style": "path"}),
    )
    return ObjectStorage(client, settings.S3_BUCKET)
