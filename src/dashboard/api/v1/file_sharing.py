"""File sharing endpoints for in-meeting uploads.

Provides upload, presigned download and delete for files shared inside a
meeting. Every request carries a conferencing-server token whose meeting_id
must match the session in the path. Files live in object storage under
"{session_id}/{file_id}".

CORS headers are only sent in the staging environment, where the meeting
client is served from a different origin.
"""

from __future__ import annotations

import json
from typing import Any

import structlog
from fastapi import APIRouter, Depends, Request, Response, status
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from starlette.datastructures import UploadFile

from src.dashboard.api.deps import get_object_storage
from src.dashboard.config import Environment, Settings, get_settings
from src.dashboard.core.errors import ApiError, error_response
from src.dashboard.core.monitoring import file_sharing_operations_total
from src.dashboard.file_sharing.auth import authorize_session
from src.dashboard.file_sharing.schemas import FileMetadata

logger = structlog.get_logger(__name__)

router = APIRouter(
    prefix="/api/file-sharing/sessions/{session_id}/files",
    tags=["file-sharing"],
)


def cors_headers(settings: Settings) -> dict[str, str]:
    """CORS headers for file sharing responses (staging only)."""
    if settings.ENVIRONMENT != Environment.staging:
        return {}
    return {
        "Access-Control-Allow-Origin": "*",
        "Access-Control-Allow-Methods": "GET, POST, DELETE, OPTIONS",
        "Access-Control-Allow-Headers": "Content-Type, Authorization",
        "Access-Control-Max-Age": "86400",
    }


def _authorize(request: Request, session_id: str, settings: Settings):
    return authorize_session(
        request.headers.get("Authorization"),
        session_id,
        settings.FILE_SHARING_JWT_PUBLIC_KEY,
        audience=settings.FILE_SHARING_JWT_AUDIENCE,
        issuer=settings.FILE_SHARING_JWT_ISSUER,
    )


async def _read_upload(
    request: Request, max_size: int
) -> tuple[dict[str, Any], bytes, str | None]:
    """Pull and validate the multipart metadata / file pair.

    At most max_size + 1 bytes of the file are read, enough to tell an
    oversize upload apart without holding all of it in memory.

    Returns:
        (raw metadata dict, file bytes, file content type)

    Raises:
        ApiError(400): Unparseable form, missing fields, or bad metadata JSON.
    """
    try:
        form = await request.form()
    except Exception:
        logger.error("file_sharing.invalid_form", exc_info=True)
        raise ApiError("Invalid form data")

    metadata_json = form.get("metadata")
    upload = form.get("file")
    if not isinstance(metadata_json, str) or not metadata_json or not isinstance(upload, UploadFile):
        logger.error(
            "file_sharing.missing_form_fields",
            has_metadata=bool(metadata_json),
            has_file=upload is not None,
        )
        raise ApiError("Missing metadata or file")

    try:
        raw_metadata = json.loads(metadata_json)
    except json.JSONDecodeError:
        logger.error("file_sharing.invalid_metadata_json")
        raise ApiError("Invalid metadata JSON")
    if not isinstance(raw_metadata, dict):
        raise ApiError("Invalid metadata JSON")

    # The form parser spools the part to disk; only the bounded prefix is loaded
    data = await upload.read(max_size + 1)
    return raw_metadata, data, upload.content_type


@router.options("")
async def upload_preflight(settings: Settings = Depends(get_settings)) -> Response:
    return Response(status_code=status.HTTP_204_NO_CONTENT, headers=cors_headers(settings))


@router.post("")
async def upload_file(
    session_id: str,
    request: Request,
    storage: Any = Depends(get_object_storage),
    settings: Settings = Depends(get_settings),
) -> Response:
    """Upload a file (multipart "metadata" JSON + "file") to a meeting session."""
    headers = cors_headers(settings)
    try:
        claims = _authorize(request, session_id, settings)
        max_size = settings.FILE_SHARING_MAX_FILE_SIZE
        raw_metadata, data, content_type = await _read_upload(request, max_size)

        missing = FileMetadata.missing_required(raw_metadata)
        if missing:
            logger.error("file_sharing.missing_metadata_fields", missing=missing)
            raise ApiError("Missing required metadata fields")
        try:
            metadata = FileMetadata.model_validate(raw_metadata)
        except ValidationError:
            logger.error("file_sharing.invalid_metadata", metadata=raw_metadata)
            raise ApiError("Invalid metadata JSON")

        if not 0 < len(data) <= max_size:
            logger.error("file_sharing.file_too_large", size=len(data), max_size=max_size)
            raise ApiError(
                f"File too large. Maximum size is {max_size} bytes",
                status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            )
        if metadata.file_size != len(data):
            logger.error(
                "file_sharing.size_mismatch",
                metadata_size=metadata.file_size,
                actual_size=len(data),
            )
            raise ApiError("File size mismatch")

        uploaded = await storage.upload_file(
            session_id, metadata.file_id, data, metadata, content_type=content_type
        )
        if not uploaded:
            file_sharing_operations_total.labels(operation="upload", outcome="error").inc()
            raise ApiError(
                "Failed to upload file",
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            )
    except ApiError as exc:
        return error_response(exc.message, exc.status_code, headers)
    except Exception:
        logger.error("file_sharing.upload_error", session_id=session_id, exc_info=True)
        return error_response(
            "Internal server error", status.HTTP_500_INTERNAL_SERVER_ERROR, headers
        )

    file_sharing_operations_total.labels(operation="upload", outcome="success").inc()
    logger.info(
        "file_sharing.uploaded",
        session_id=session_id,
        file_id=metadata.file_id,
        file_name=metadata.file_name,
        file_size=len(data),
        user_id=claims.user_id,
    )
    return JSONResponse(content={"fileId": metadata.file_id}, headers=headers)


@router.get("/{file_id}")
async def download_file(
    session_id: str,
    file_id: str,
    request: Request,
    storage: Any = Depends(get_object_storage),
    settings: Settings = Depends(get_settings),
) -> Response:
    """Return a 24h presigned download URL for a shared file."""
    try:
        claims = _authorize(request, session_id, settings)

        if not await storage.file_exists(session_id, file_id):
            logger.warning("file_sharing.not_found", session_id=session_id, file_id=file_id)
            raise ApiError("File not found", status_code=status.HTTP_404_NOT_FOUND)

        download = await storage.generate_presigned_url(
            session_id, file_id, settings.FILE_SHARING_URL_EXPIRY_HOURS
        )
        if download is None:
            file_sharing_operations_total.labels(operation="download", outcome="error").inc()
            raise ApiError(
                "Failed to generate download URL",
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            )
    except ApiError as exc:
        return error_response(exc.message, exc.status_code)
    except Exception:
        logger.error("file_sharing.download_error", session_id=session_id, exc_info=True)
        return error_response("Internal server error", status.HTTP_500_INTERNAL_SERVER_ERROR)

    file_sharing_operations_total.labels(operation="download", outcome="success").inc()
    logger.info(
        "file_sharing.presigned",
        session_id=session_id,
        file_id=file_id,
        user_id=claims.user_id,
    )
    return JSONResponse(
        content={"fileName": download.file_name or file_id, "presignedUrl": download.url}
    )


@router.delete("/{file_id}")
async def delete_file(
    session_id: str,
    file_id: str,
    request: Request,
    storage: Any = Depends(get_object_storage),
    settings: Settings = Depends(get_settings),
) -> Response:
    """Remove a shared file from storage."""
    try:
        claims = _authorize(request, session_id, settings)

        if not await storage.file_exists(session_id, file_id):
            logger.warning("file_sharing.delete_not_found", session_id=session_id, file_id=file_id)
            raise ApiError("File not found", status_code=status.HTTP_404_NOT_FOUND)

        if not await storage.delete_file(session_id, file_id):
            file_sharing_operations_total.labels(operation="delete", outcome="error").inc()
            raise ApiError(
                "Failed to delete file",
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            )
    except ApiError as exc:
        return error_response(exc.message, exc.status_code)
    except Exception:
        logger.error("file_sharing.delete_error", session_id=session_id, exc_info=True)
        return error_response("Internal server error", status.HTTP_500_INTERNAL_SERVER_ERROR)

    file_sharing_operations_total.labels(operation="delete", outcome="success").inc()
    logger.info(
        "file_sharing.deleted",
        session_id=session_id,
        file_id=file_id,
        user_id=claims.user_id,
    )
    return Response(status_code=status.HTTP_200_OK)
