"""Pydantic schemas for file sharing: token claims and upload metadata."""

from __future__ import annotations

from typing import Any, ClassVar

from pydantic import BaseModel, ConfigDict, Field


class FileSharingUser(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: str
    name: str | None = None
    email: str | None = None
    nick: str | None = None


class FileSharingContext(BaseModel):
    model_config = ConfigDict(extra="allow")

    group: str | None = None
    user: FileSharingUser
    features: list[str] = Field(default_factory=list)


class FileSharingClaims(BaseModel):
    """Verified payload of a conferencing-server file-sharing token."""

    model_config = ConfigDict(extra="allow")

    iss: str
    aud: str | list[str]
    exp: int
    nbf: int | None = None
    sub: str | None = None
    context: FileSharingContext
    room: str
    meeting_id: str
    customer_id: str
    granted_from: str | None = None
    backend_region: str | None = None
    user_region: str | None = None

    @property
    def user_id(self) -> str:
        return self.context.user.id


class FileMetadata(BaseModel):
    """Client-supplied description of an uploaded file (camelCase on the wire)."""

    model_config = ConfigDict(populate_by_name=True)

    file_id: str = Field(alias="fileId")
    conference_full_name: str = Field(alias="conferenceFullName")
    timestamp: int
    file_size: int = Field(alias="fileSize")
    file_name: str | None = Field(None, alias="fileName")
    file_type: str | None = Field(None, alias="fileType")
    author_participant_id: str | None = Field(None, alias="authorParticipantId")
    author_participant_jid: str | None = Field(None, alias="authorParticipantJid")
    author_participant_name: str | None = Field(None, alias="authorParticipantName")

    REQUIRED_FIELDS: ClassVar[tuple[str, ...]] = ("fileId", "conferenceFullName", "timestamp", "fileSize")

    @classmethod
    def missing_required(cls, raw: dict[str, Any]) -> list[str]:
        """Required keys that are absent or empty in a raw metadata dict."""
        return [key for key in cls.REQUIRED_FIELDS if not raw.get(key)]


class PresignedDownload(BaseModel):
    url: str
    file_name: str | None = None
