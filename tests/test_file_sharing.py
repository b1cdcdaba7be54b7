"""Tests for in-meeting file sharing.

Covers conferencing-server token validation (RS256, audience, issuer,
required claims, session match) and the upload / download / delete routes
with an InMemoryObjectStorage test double and a settings override.
"""

from __future__ import annotations

import json
import time
from typing import Any
from unittest.mock import patch

import pytest
import pytest_asyncio
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from httpx import ASGITransport, AsyncClient
from jose import jwt

from src.dashboard.config import Environment, Settings, get_settings
from src.dashboard.core.errors import ApiError, AuthError
from src.dashboard.file_sharing.auth import authorize_session, validate_file_sharing_token
from src.dashboard.file_sharing.schemas import FileMetadata, PresignedDownload


# ── Keys and Tokens ──────────────────────────────────────────────────────────


def _generate_keypair() -> tuple[str, str]:
    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    private_pem = key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode()
    public_pem = key.public_key().public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    ).decode()
    return private_pem, public_pem


PRIVATE_KEY, PUBLIC_KEY = _generate_keypair()
OTHER_PRIVATE_KEY, _ = _generate_keypair()

SESSION_ID = "4242"
BASE_URL = f"/api/file-sharing/sessions/{SESSION_ID}/files"


def _claims(**overrides: Any) -> dict[str, Any]:
    now = int(time.time())
    claims: dict[str, Any] = {
        "iss": "prosody",
        "aud": "file-sharing",
        "exp": now + 3600,
        "nbf": now - 10,
        "sub": "meet.example.com",
        "context": {"user": {"id": "user-1", "name": "Alice"}, "features": ["file-upload"]},
        "room": "standup",
        "meeting_id": 4242,
        "customer_id": "cust-1",
    }
    claims.update(overrides)
    return claims


def _token(private_key: str = PRIVATE_KEY, **overrides: Any) -> str:
    return jwt.encode(_claims(**overrides), private_key, algorithm="RS256")


def _auth(token: str | None = None) -> dict[str, str]:
    return {"Authorization": f"Bearer {token or _token()}"}


# ── Token Validation ─────────────────────────────────────────────────────────


class TestFileSharingToken:
    def test_valid_token(self):
        claims = validate_file_sharing_token(_token(), PUBLIC_KEY)
        assert claims.meeting_id == "4242"
        assert claims.room == "standup"
        assert claims.customer_id == "cust-1"
        assert claims.user_id == "user-1"

    def test_wrong_signing_key(self):
        with pytest.raises(AuthError, match="Invalid token"):
            validate_file_sharing_token(_token(OTHER_PRIVATE_KEY), PUBLIC_KEY)

    @pytest.mark.parametrize(
        "overrides",
        [{"aud": "something-else"}, {"iss": "elsewhere"}, {"exp": int(time.time()) - 60}],
    )
    def test_wrong_audience_issuer_or_expired(self, overrides):
        with pytest.raises(AuthError):
            validate_file_sharing_token(_token(**overrides), PUBLIC_KEY)

    @pytest.mark.parametrize("claim", ["meeting_id", "room", "customer_id"])
    def test_missing_required_claim(self, claim):
        token = _token(**{claim: None})
        with pytest.raises(AuthError, match="Invalid token"):
            validate_file_sharing_token(token, PUBLIC_KEY)

    def test_authorize_session_mismatch(self):
        with pytest.raises(ApiError) as exc_info:
            authorize_session(f"Bearer {_token()}", "9999", PUBLIC_KEY)
        assert exc_info.value.status_code == 403
        assert exc_info.value.message == "SessionId mismatch"

    def test_authorize_session_missing_header(self):
        with pytest.raises(AuthError, match="Missing Authorization header"):
            authorize_session(None, SESSION_ID, PUBLIC_KEY)


class TestFileMetadata:
    def test_missing_required(self):
        assert FileMetadata.missing_required({"fileId": "f1", "fileSize": 3}) == [
            "conferenceFullName",
            "timestamp",
        ]

    def test_camel_case_aliases(self):
        metadata = FileMetadata.model_validate(
            {
                "fileId": "f1",
                "conferenceFullName": "standup@conference.meet.example.com",
                "timestamp": 1714557600000,
                "fileSize": 5,
                "fileName": "notes.txt",
            }
        )
        assert metadata.file_id == "f1"
        assert metadata.file_name == "notes.txt"
        assert metadata.file_type is None


# ── In-Memory Storage ────────────────────────────────────────────────────────


class InMemoryObjectStorage:
    """In-memory ObjectStorage for testing without S3."""

    def __init__(self) -> None:
        self.objects: dict[str, dict[str, Any]] = {}
        self.fail_uploads = False
        self.fail_presign = False
        self.fail_deletes = False

    async def upload_file(
        self,
        session_id: str,
        file_id: str,
        data: bytes,
        metadata: FileMetadata,
        content_type: str | None = None,
    ) -> bool:
        if self.fail_uploads:
            return False
        self.objects[f"{session_id}/{file_id}"] = {
            "data": data,
            "file_name": metadata.file_name,
            "content_type": content_type,
        }
        return True

    async def file_exists(self, session_id: str, file_id: str) -> bool:
        return f"{session_id}/{file_id}" in self.objects

    async def generate_presigned_url(
        self, session_id: str, file_id: str, expires_in_hours: int = 24
    ) -> PresignedDownload | None:
        key = f"{session_id}/{file_id}"
        if self.fail_presign or key not in self.objects:
            return None
        return PresignedDownload(
            url=f"https://files.example.com/{key}?expires={expires_in_hours}h",
            file_name=self.objects[key]["file_name"],
        )

    async def delete_file(self, session_id: str, file_id: str) -> bool:
        if self.fail_deletes:
            return False
        self.objects.pop(f"{session_id}/{file_id}", None)
        return True


# ── Route Fixtures ───────────────────────────────────────────────────────────


def _settings(**overrides: Any) -> Settings:
    values: dict[str, Any] = {
        "FILE_SHARING_JWT_PUBLIC_KEY": PUBLIC_KEY,
        "ENVIRONMENT": Environment.development,
    }
    values.update(overrides)
    return Settings(**values)


def _make_app(storage: InMemoryObjectStorage, settings: Settings):
    from fastapi import FastAPI

    from src.dashboard.api.v1.file_sharing import router
    from src.dashboard.core.errors import register_error_handlers

    app = FastAPI()
    register_error_handlers(app)
    app.include_router(router)
    app.state.object_storage = storage
    app.dependency_overrides[get_settings] = lambda: settings
    return app


@pytest_asyncio.fixture
async def files_client():
    storage = InMemoryObjectStorage()
    app = _make_app(storage, _settings())

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client, storage, app


def _metadata(file_size: int, **overrides: Any) -> str:
    metadata = {
        "fileId": "file-1",
        "conferenceFullName": "standup@conference.meet.example.com",
        "timestamp": 1714557600000,
        "fileSize": file_size,
        "fileName": "notes.txt",
        "fileType": "text/plain",
        "authorParticipantName": "Alice",
    }
    metadata.update(overrides)
    return json.dumps(metadata)


async def _upload(client, data: bytes = b"hello", metadata: str | None = None, headers=None):
    return await client.post(
        BASE_URL,
        data={"metadata": metadata if metadata is not None else _metadata(len(data))},
        files={"file": ("notes.txt", data, "text/plain")},
        headers=headers if headers is not None else _auth(),
    )


# ── Upload ───────────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_upload_stores_file(files_client):
    client, storage, _ = files_client

    response = await _upload(client)

    assert response.status_code == 200
    assert response.json() == {"fileId": "file-1"}
    stored = storage.objects[f"{SESSION_ID}/file-1"]
    assert stored["data"] == b"hello"
    assert stored["file_name"] == "notes.txt"
    assert stored["content_type"] == "text/plain"


@pytest.mark.asyncio
async def test_upload_session_mismatch(files_client):
    client, storage, _ = files_client

    response = await _upload(client, headers=_auth(_token(meeting_id="9999")))

    assert response.status_code == 403
    assert response.json() == {"error": "SessionId mismatch"}
    assert storage.objects == {}


@pytest.mark.asyncio
async def test_upload_missing_bearer(files_client):
    client, _, _ = files_client

    response = await _upload(client, headers={})

    assert response.status_code == 401
    assert response.json() == {"error": "Missing Authorization header"}


@pytest.mark.asyncio
async def test_upload_invalid_token(files_client):
    client, _, _ = files_client

    response = await _upload(client, headers=_auth(_token(OTHER_PRIVATE_KEY)))

    assert response.status_code == 401
    assert response.json() == {"error": "Invalid token"}


@pytest.mark.asyncio
async def test_upload_too_large():
    storage = InMemoryObjectStorage()
    app = _make_app(storage, _settings(FILE_SHARING_MAX_FILE_SIZE=10))

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        response = await _upload(client, data=b"x" * 11)

    assert response.status_code == 413
    assert response.json() == {"error": "File too large. Maximum size is 10 bytes"}
    assert storage.objects == {}


@pytest.mark.asyncio
async def test_upload_oversize_body_is_read_bounded():
    from starlette.datastructures import UploadFile

    storage = InMemoryObjectStorage()
    app = _make_app(storage, _settings(FILE_SHARING_MAX_FILE_SIZE=10))
    loaded: list[int] = []
    original_read = UploadFile.read

    async def recording_read(self, size: int = -1) -> bytes:
        chunk = await original_read(self, size)
        loaded.append(len(chunk))
        return chunk

    transport = ASGITransport(app=app)
    with patch.object(UploadFile, "read", recording_read):
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            response = await _upload(
                client, data=b"x" * 5_000_000, metadata=_metadata(5_000_000)
            )

    assert response.status_code == 413
    assert response.json() == {"error": "File too large. Maximum size is 10 bytes"}
    assert loaded and max(loaded) <= 11
    assert storage.objects == {}


@pytest.mark.asyncio
async def test_upload_empty_file(files_client):
    client, _, _ = files_client

    response = await _upload(client, data=b"", metadata=_metadata(5))

    assert response.status_code == 413


@pytest.mark.asyncio
async def test_upload_size_mismatch(files_client):
    client, _, _ = files_client

    response = await _upload(client, data=b"hello", metadata=_metadata(6))

    assert response.status_code == 400
    assert response.json() == {"error": "File size mismatch"}


@pytest.mark.asyncio
async def test_upload_missing_required_metadata(files_client):
    client, _, _ = files_client

    metadata = json.dumps({"fileId": "file-1", "fileSize": 5})
    response = await _upload(client, metadata=metadata)

    assert response.status_code == 400
    assert response.json() == {"error": "Missing required metadata fields"}


@pytest.mark.asyncio
async def test_upload_invalid_metadata_json(files_client):
    client, _, _ = files_client

    response = await _upload(client, metadata="{oops")

    assert response.status_code == 400
    assert response.json() == {"error": "Invalid metadata JSON"}


@pytest.mark.asyncio
async def test_upload_missing_file(files_client):
    client, _, _ = files_client

    response = await client.post(BASE_URL, data={"metadata": _metadata(5)}, headers=_auth())

    assert response.status_code == 400
    assert response.json() == {"error": "Missing metadata or file"}


@pytest.mark.asyncio
async def test_upload_storage_failure(files_client):
    client, storage, _ = files_client
    storage.fail_uploads = True

    response = await _upload(client)

    assert response.status_code == 500
    assert response.json() == {"error": "Failed to upload file"}


# ── Download ─────────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_download_returns_original_name(files_client):
    client, _, _ = files_client
    await _upload(client)

    response = await client.get(f"{BASE_URL}/file-1", headers=_auth())

    assert response.status_code == 200
    body = response.json()
    assert body["fileName"] == "notes.txt"
    assert body["presignedUrl"] == f"https://files.example.com/{SESSION_ID}/file-1?expires=24h"


@pytest.mark.asyncio
async def test_download_falls_back_to_file_id(files_client):
    client, storage, _ = files_client
    storage.objects[f"{SESSION_ID}/file-2"] = {"data": b"x", "file_name": None, "content_type": None}

    response = await client.get(f"{BASE_URL}/file-2", headers=_auth())

    assert response.json()["fileName"] == "file-2"


@pytest.mark.asyncio
async def test_download_not_found(files_client):
    client, _, _ = files_client

    response = await client.get(f"{BASE_URL}/missing", headers=_auth())

    assert response.status_code == 404
    assert response.json() == {"error": "File not found"}


@pytest.mark.asyncio
async def test_download_presign_failure(files_client):
    client, storage, _ = files_client
    await _upload(client)
    storage.fail_presign = True

    response = await client.get(f"{BASE_URL}/file-1", headers=_auth())

    assert response.status_code == 500
    assert response.json() == {"error": "Failed to generate download URL"}


@pytest.mark.asyncio
async def test_download_session_mismatch(files_client):
    client, _, _ = files_client

    response = await client.get(f"{BASE_URL}/file-1", headers=_auth(_token(meeting_id="1")))

    assert response.status_code == 403


# ── Delete ───────────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_delete_removes_file(files_client):
    client, storage, _ = files_client
    await _upload(client)

    response = await client.delete(f"{BASE_URL}/file-1", headers=_auth())

    assert response.status_code == 200
    assert response.content == b""
    assert storage.objects == {}


@pytest.mark.asyncio
async def test_delete_not_found(files_client):
    client, _, _ = files_client

    response = await client.delete(f"{BASE_URL}/missing", headers=_auth())

    assert response.status_code == 404
    assert response.json() == {"error": "File not found"}


@pytest.mark.asyncio
async def test_delete_failure(files_client):
    client, storage, _ = files_client
    await _upload(client)
    storage.fail_deletes = True

    response = await client.delete(f"{BASE_URL}/file-1", headers=_auth())

    assert response.status_code == 500
    assert response.json() == {"error": "Failed to delete file"}


# ── CORS ─────────────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_preflight_in_staging():
    app = _make_app(InMemoryObjectStorage(), _settings(ENVIRONMENT=Environment.staging))

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        response = await client.options(BASE_URL)
        error = await _upload(client, headers={})

    assert response.status_code == 204
    assert response.headers["Access-Control-Allow-Origin"] == "*"
    assert "POST" in response.headers["Access-Control-Allow-Methods"]
    assert error.status_code == 401
    assert error.headers["Access-Control-Allow-Origin"] == "*"


@pytest.mark.asyncio
async def test_no_cors_headers_outside_staging(files_client):
    client, _, _ = files_client

    response = await client.options(BASE_URL)

    assert response.status_code == 204
    assert "Access-Control-Allow-Origin" not in response.headers


@pytest.mark.asyncio
async def test_503_when_storage_not_configured():
    app = _make_app(InMemoryObjectStorage(), _settings())
    app.state.object_storage = None

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        response = await client.get(f"{BASE_URL}/file-1", headers=_auth())

    assert response.status_code == 503
    assert response.json() == {
        "error": "Object storage (S3 settings may not be configured) not initialized"
    }
