"""Async clients for the identity provider (Keycloak realm).

IdentityProviderClient validates dashboard bearer tokens by presenting them
to the realm's userinfo endpoint; a non-200 answer means the token is not
valid.

KeycloakAdminClient talks to the realm's admin REST API with a service
account (client credentials grant) for user lookup and organization
membership. Non-2xx answers are logged and reported as None / False so
callers can map them to their own error responses.

Both use httpx.AsyncClient with tenacity retries on transport failures.
"""

from __future__ import annotations

import time
from typing import Any

import httpx
import structlog
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

logger = structlog.get_logger(__name__)

_idp_retry = retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=1, max=10),
    retry=retry_if_exception_type((httpx.ConnectError, httpx.TimeoutException)),
    reraise=True,
)


class IdentityProviderClient:
    """Token validation against a Keycloak realm.

    Args:
        userinfo_url: The realm's OIDC userinfo endpoint.
        timeout: Per-request timeout in seconds.
    """

    def __init__(self, userinfo_url: str, timeout: float = 10.0) -> None:
        self._userinfo_url = userinfo_url
        self._timeout = timeout

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self._timeout)

    @_idp_retry
    async def get_userinfo(self, token: str) -> dict[str, Any] | None:
        """Return the userinfo claims for a token, or None if it is rejected."""
        async with self._client() as client:
            response = await client.get(
                self._userinfo_url,
                headers={"Authorization": f"Bearer {token}"},
            )
        if response.status_code != httpx.codes.OK:
            logger.info(
                "identity.token_rejected",
                status_code=response.status_code,
            )
            return None
        return response.json()


class KeycloakAdminClient:
    """Admin REST calls for users and organizations in one realm.

    Args:
        base_url: Keycloak server URL, e.g. "https://auth.example.com".
        realm: Realm holding the dashboard users and organizations.
        client_id: Service-account client with realm-management roles.
        client_secret: That client's secret.
        default_domain: Domain attached to newly created organizations.
        timeout: Per-request timeout in seconds.
    """

    # Refresh the service-account token this many seconds before it expires
    TOKEN_LEEWAY = 30.0

    def __init__(
        self,
        base_url: str,
        realm: str,
        client_id: str,
        client_secret: str,
        default_domain: str = "sonacove.com",
        timeout: float = 10.0,
    ) -> None:
        base = base_url.rstrip("/")
        self._token_url = f"{base}/realms/{realm}/protocol/openid-connect/token"
        self._admin_url = f"{base}/admin/realms/{realm}"
        self._client_id = client_id
        self._client_secret = client_secret
        self._default_domain = default_domain
        self._timeout = timeout
        self._access_token: str | None = None
        self._token_expires_at = 0.0

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self._timeout)

    async def _get_access_token(self) -> str:
        if self._access_token and time.monotonic() < self._token_expires_at:
            return self._access_token

        async with self._client() as client:
            response = await client.post(
                self._token_url,
                data={
                    "grant_type": "client_credentials",
                    "client_id": self._client_id,
                    "client_secret": self._client_secret,
                },
            )
        response.raise_for_status()
        data = response.json()
        self._access_token = data["access_token"]
        self._token_expires_at = (
            time.monotonic() + float(data.get("expires_in", 60)) - self.TOKEN_LEEWAY
        )
        return self._access_token

    async def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        token = await self._get_access_token()
        async with self._client() as client:
            return await client.request(
                method,
                f"{self._admin_url}{path}",
                headers={"Authorization": f"Bearer {token}"},
                **kwargs,
            )

    @_idp_retry
    async def get_user(self, email: str) -> dict[str, Any] | None:
        """Find a realm user by exact email."""
        response = await self._request(
            "GET", "/users", params={"email": email, "exact": "true"}
        )
        if not response.is_success:
            logger.warning("keycloak.user_lookup_failed", status_code=response.status_code)
            return None
        users = response.json()
        return users[0] if users else None

    @_idp_retry
    async def create_organization(
        self,
        name: str,
        alias: str | None = None,
        description: str | None = None,
    ) -> dict[str, Any] | None:
        """Create an organization; returns {"id", "alias"} or None.

        Keycloak answers 201 with the new id only in the Location header.
        """
        payload: dict[str, Any] = {
            "name": name,
            "enabled": True,
            "domains": [{"name": self._default_domain}],
        }
        if alias:
            payload["alias"] = alias
        if description:
            payload["description"] = description

        response = await self._request("POST", "/organizations", json=payload)
        if response.status_code != httpx.codes.CREATED:
            logger.error(
                "keycloak.organization_create_failed",
                name=name,
                status_code=response.status_code,
                body=response.text,
            )
            return None
        location = response.headers.get("Location", "")
        org_id = location.rstrip("/").rsplit("/", 1)[-1] if location else None
        if not org_id:
            return None
        logger.info("keycloak.organization_created", org_id=org_id, name=name)
        return {"id": org_id, "alias": alias}

    @_idp_retry
    async def add_member_to_organization(self, org_id: str, user_id: str) -> bool:
        # The body is the bare user id as a JSON string
        response = await self._request(
            "POST", f"/organizations/{org_id}/members", json=user_id
        )
        if not response.is_success:
            logger.error(
                "keycloak.member_add_failed",
                org_id=org_id,
                user_id=user_id,
                status_code=response.status_code,
            )
        return response.is_success

    @_idp_retry
    async def remove_member_from_organization(self, org_id: str, user_id: str) -> bool:
        response = await self._request(
            "DELETE", f"/organizations/{org_id}/members/{user_id}"
        )
        if not response.is_success:
            logger.error(
                "keycloak.member_remove_failed",
                org_id=org_id,
                user_id=user_id,
                status_code=response.status_code,
            )
        return response.is_success

    @_idp_retry
    async def get_user_organizations(self, user_id: str) -> list[dict[str, Any]]:
        response = await self._request(
            "GET", f"/organizations/members/{user_id}/organizations"
        )
        if not response.is_success:
            logger.warning(
                "keycloak.user_organizations_failed",
                user_id=user_id,
                status_code=response.status_code,
            )
            return []
        return response.json()

    @_idp_retry
    async def invite_user_to_organization(
        self,
        org_id: str,
        email: str,
        first_name: str | None = None,
        last_name: str | None = None,
    ) -> bool:
        """Send Keycloak's organization invitation email."""
        form = {"email": email}
        if first_name:
            form["firstName"] = first_name
        if last_name:
            form["lastName"] = last_name
        response = await self._request(
            "POST", f"/organizations/{org_id}/members/invite-user", data=form
        )
        if not response.is_success:
            logger.error(
                "keycloak.invite_failed",
                org_id=org_id,
                status_code=response.status_code,
            )
        return response.is_success
