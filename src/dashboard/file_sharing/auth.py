"""Validation of conferencing-server tokens for file sharing.

Tokens are RS256 JWTs minted by the conferencing server (issuer "prosody",
audience "file-sharing") and must name the meeting, room and customer they
were granted for.
"""

from __future__ import annotations

import structlog
from fastapi import status
from jose import JWTError, jwt
from jose.exceptions import JWKError
from pydantic import ValidationError

from src.dashboard.core.errors import ApiError, AuthError
from src.dashboard.core.security import extract_bearer_token
from src.dashboard.file_sharing.schemas import FileSharingClaims

logger = structlog.get_logger(__name__)

REQUIRED_CLAIMS = ("meeting_id", "room", "customer_id")


def validate_file_sharing_token(
    token: str,
    public_key: str,
    audience: str = "file-sharing",
    issuer: str = "prosody",
) -> FileSharingClaims:
    """Verify signature, audience, issuer and expiry, then required claims.

    Raises:
        AuthError(401): On any verification failure.
    """
    try:
        payload = jwt.decode(
            token,
            public_key,
            algorithms=["RS256"],
            audience=audience,
            issuer=issuer,
        )
    except (JWTError, JWKError) as exc:
        logger.warning("file_sharing.token_invalid", error=str(exc))
        raise AuthError("Invalid token")

    missing = [claim for claim in REQUIRED_CLAIMS if not payload.get(claim)]
    if missing:
        logger.warning("file_sharing.token_missing_fields", missing=missing)
        raise AuthError("Invalid token")

    payload["meeting_id"] = str(payload["meeting_id"])
    try:
        claims = FileSharingClaims.model_validate(payload)
    except ValidationError as exc:
        logger.warning("file_sharing.token_malformed", errors=exc.error_count())
        raise AuthError("Invalid token")

    logger.info(
        "file_sharing.token_validated",
        meeting_id=claims.meeting_id,
        room=claims.room,
        customer_id=claims.customer_id,
        user_id=claims.user_id,
    )
    return claims


def authorize_session(
    auth_header: str | None,
    session_id: str,
    public_key: str,
    audience: str = "file-sharing",
    issuer: str = "prosody",
) -> FileSharingClaims:
    """Authenticate a request and check it targets the token's meeting.

    Raises:
        AuthError(401): Missing or invalid token.
        ApiError(403): Token was issued for a different meeting.
    """
    token = extract_bearer_token(auth_header)
    if not token:
        raise AuthError("Missing Authorization header")

    claims = validate_file_sharing_token(token, public_key, audience=audience, issuer=issuer)
    if claims.meeting_id != session_id:
        logger.warning(
            "file_sharing.session_mismatch",
            session_id=session_id,
            meeting_id=claims.meeting_id,
        )
        raise ApiError("SessionId mismatch", status_code=status.HTTP_403_FORBIDDEN)
    return claims
