"""Keycloak OAuth2/OIDC client.

authlib's AsyncOAuth2Client does the protocol work (authorization URL and
state, code exchange, bearer requests); this class only knows Keycloak's
endpoint layout and how to turn the userinfo response into a RemoteIdentity.

When an encryption algorithm and key are configured, Keycloak is expected to
return the userinfo response as a signed JWT, which is verified and decoded
with PyJWT.

Usage::

    async with KeycloakProvider(SETTINGS.keycloak, SETTINGS.redirect_uri) as kc:
        url = kc.get_authorization_url()
        session.put("oauth2state", kc.get_state())
"""

from __future__ import annotations

import logging
from typing import Any

import httpx
import jwt
from authlib.common.errors import AuthlibBaseError
from authlib.integrations.httpx_client import AsyncOAuth2Client

from keycloak_bridge.core.config import KeycloakSettings
from keycloak_bridge.core.errors import ProviderError
from keycloak_bridge.core.metrics import PROVIDER_FAILURES
from keycloak_bridge.models.identity import RemoteIdentity

logger = logging.getLogger(__name__)

SCOPE = "openid profile email"


class KeycloakProvider:
    def __init__(
        self,
        settings: KeycloakSettings,
        redirect_uri: str,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        base = f"{settings.server_url}/realms/{settings.realm}/protocol/openid-connect"
        self.authorization_endpoint = f"{base}/auth"
        self.token_endpoint = f"{base}/token"
        self.userinfo_endpoint = f"{base}/userinfo"

        self._settings = settings
        self._state: str | None = None

        client_kwargs: dict[str, Any] = {}
        if transport is not None:
            client_kwargs["transport"] = transport
        self._client = AsyncOAuth2Client(
            client_id=settings.client_id,
            client_secret=settings.client_secret,
            redirect_uri=redirect_uri,
            scope=SCOPE,
            **client_kwargs,
        )

    async def __aenter__(self) -> KeycloakProvider:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    @property
    def uses_encryption(self) -> bool:
        return bool(self._settings.encryption_algorithm and self._settings.encryption_key)

    def get_authorization_url(self) -> str:
        """Authorization URL with a freshly generated state."""
        url, state = self._client.create_authorization_url(self.authorization_endpoint)
        self._state = state
        return url

    def get_state(self) -> str:
        if self._state is None:
            raise RuntimeError("get_authorization_url() must be called first")
        return self._state

    async def get_access_token(self, code: str) -> dict[str, Any]:
        """Exchange an authorization code for a token (authorization_code grant)."""
        try:
            token = await self._client.fetch_token(
                self.token_endpoint,
                grant_type="authorization_code",
                code=code,
            )
        except (AuthlibBaseError, httpx.HTTPError, ValueError) as e:
            PROVIDER_FAILURES.labels(operation="access_token").inc()
            logger.warning("Token exchange with Keycloak failed: %s", e)
            raise ProviderError("Failed to get access token") from e
        return dict(token)

    async def get_resource_owner(self, token: dict[str, Any]) -> RemoteIdentity:
        try:
            self._client.token = token
            resp = await self._client.get(self.userinfo_endpoint)
            resp.raise_for_status()
            claims = self._decode_userinfo(resp)
        except (AuthlibBaseError, httpx.HTTPError, jwt.InvalidTokenError, ValueError) as e:
            PROVIDER_FAILURES.labels(operation="resource_owner").inc()
            logger.warning("Userinfo request to Keycloak failed: %s", e)
            raise ProviderError("Failed to get resource owner") from e

        if not isinstance(claims, dict) or not claims.get("sub"):
            PROVIDER_FAILURES.labels(operation="resource_owner").inc()
            logger.warning("Userinfo response from Keycloak has no subject")
            raise ProviderError("Failed to get resource owner")
        return RemoteIdentity.from_claims(claims)

    def _decode_userinfo(self, resp: httpx.Response) -> Any:
        if not self.uses_encryption:
            return resp.json()
        # Only signature and expiry are checked; aud varies with client setup.
        return jwt.decode(
            resp.text,
            self._settings.encryption_key,
            algorithms=[self._settings.encryption_algorithm],
            options={"verify_aud": False},
        )
