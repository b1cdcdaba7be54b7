"""Bearer token helpers and dashboard authentication.

validate_auth() is the authentication step in front of the dashboard API:
it reads the caller's email from the bearer token, asks the identity
provider whether the token is still valid and resolves the caller's
identity-provider user id from the userinfo answer.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any

import httpx
import structlog
from fastapi import Request, status
from jose import JWTError, jwt

from src.dashboard.core.errors import ApiError, AuthError

logger = structlog.get_logger(__name__)

_BEARER_RE = re.compile(r"^Bearer\s+(.+)$", re.IGNORECASE)


def extract_bearer_token(auth_header: str | None) -> str | None:
    """Return the token from an "Authorization: Bearer <token>" header value."""
    if not auth_header:
        return None
    match = _BEARER_RE.match(auth_header.strip())
    return match.group(1).strip() if match else None


def get_unverified_claims(token: str) -> dict[str, Any] | None:
    """Decode a JWT payload without checking its signature."""
    try:
        return jwt.get_unverified_claims(token)
    except JWTError:
        logger.warning("auth.token_decode_failed")
        return None


def get_email_from_token(token: str) -> str | None:
    claims = get_unverified_claims(token)
    if not claims:
        return None
    email = claims.get("email")
    return email if isinstance(email, str) and email else None


@dataclass(frozen=True)
class AuthResult:
    """The authenticated caller."""

    email: str
    user_id: str
    claims: dict[str, Any] = field(default_factory=dict)


async def validate_auth(request: Request, identity_client: Any) -> AuthResult:
    """Authenticate a dashboard request.

    Raises:
        AuthError(401): Missing header, token without email, or token
            rejected by the identity provider.
        ApiError(404): The identity provider has no user behind the token.
        ApiError(503): The identity provider could not be reached.
    """
    token = extract_bearer_token(request.headers.get("Authorization"))
    if not token:
        raise AuthError("Missing Authorization header")

    claims = get_unverified_claims(token) or {}
    email = get_email_from_token(token)
    if not email:
        raise AuthError("Invalid token - no email found")

    try:
        userinfo = await identity_client.get_userinfo(token)
    except httpx.HTTPError:
        logger.error("auth.identity_provider_unreachable", email=email, exc_info=True)
        raise ApiError(
            "Identity provider unavailable",
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        )
    if userinfo is None:
        raise AuthError("Invalid token")

    user_id = userinfo.get("sub") or userinfo.get("id")
    if not isinstance(user_id, str) or not user_id:
        logger.warning("auth.identity_user_not_found", email=email)
        raise ApiError("Keycloak user not found", status_code=status.HTTP_404_NOT_FOUND)

    return AuthResult(email=email, user_id=user_id, claims=claims)
