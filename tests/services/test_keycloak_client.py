from __future__ import annotations

import asyncio
from dataclasses import replace
from urllib.parse import parse_qs, urlsplit

import httpx
import jwt
import pytest

from keycloak_bridge.core.config import KeycloakSettings
from keycloak_bridge.core.errors import ProviderError
from keycloak_bridge.services.keycloak_client import KeycloakProvider

SETTINGS = KeycloakSettings(
    server_url="https://sso.example.com",
    realm="community",
    client_id="forum",
    client_secret="s3cret",
    encryption_algorithm=None,
    encryption_key=None,
    role_mapping="",
    admin_group_id=1,
)
REDIRECT_URI = "https://forum.example.com/auth/keycloak"
BEARER = {"access_token": "at-1", "token_type": "Bearer"}
SIGNING_KEY = "shared-signing-key-0123456789abcdef"


def _provider(handler, settings: KeycloakSettings = SETTINGS) -> KeycloakProvider:
    return KeycloakProvider(settings, REDIRECT_URI, transport=httpx.MockTransport(handler))


def _run(provider: KeycloakProvider, coro_fn):
    async def scenario():
        async with provider:
            return await coro_fn(provider)

    return asyncio.run(scenario())


def test_endpoints_follow_realm_layout() -> None:
    provider = _provider(lambda r: httpx.Response(404))
    base = "https://sso.example.com/realms/community/protocol/openid-connect"
    assert provider.authorization_endpoint == f"{base}/auth"
    assert provider.token_endpoint == f"{base}/token"
    assert provider.userinfo_endpoint == f"{base}/userinfo"


def test_authorization_url_carries_state_and_scope() -> None:
    provider = _provider(lambda r: httpx.Response(404))

    url = provider.get_authorization_url()

    query = parse_qs(urlsplit(url).query)
    assert url.startswith(provider.authorization_endpoint)
    assert query["response_type"] == ["code"]
    assert query["client_id"] == ["forum"]
    assert query["redirect_uri"] == [REDIRECT_URI]
    assert query["scope"] == ["openid profile email"]
    assert query["state"] == [provider.get_state()]


def test_state_requires_authorization_url() -> None:
    provider = _provider(lambda r: httpx.Response(404))
    with pytest.raises(RuntimeError):
        provider.get_state()


def test_get_access_token_exchanges_code() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={**BEARER, "expires_in": 300})

    provider = _provider(handler)
    token = _run(provider, lambda p: p.get_access_token("the-code"))

    assert token["access_token"] == "at-1"
    assert str(seen[0].url) == provider.token_endpoint
    body = parse_qs(seen[0].content.decode())
    assert body["grant_type"] == ["authorization_code"]
    assert body["code"] == ["the-code"]


def test_get_access_token_error_becomes_provider_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(400, json={"error": "invalid_grant"})

    with pytest.raises(ProviderError, match="Failed to get access token"):
        _run(_provider(handler), lambda p: p.get_access_token("stale"))


def test_get_resource_owner_sends_bearer() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(
            200,
            json={
                "sub": "kc-1",
                "email": "a@b.com",
                "preferred_username": "alice",
                "picture": "https://img/a.png",
                "roles": ["admin"],
            },
        )

    identity = _run(_provider(handler), lambda p: p.get_resource_owner(dict(BEARER)))

    assert seen[0].headers["authorization"] == "Bearer at-1"
    assert identity.subject_id == "kc-1"
    assert identity.email == "a@b.com"
    assert identity.preferred_username == "alice"
    assert identity.avatar_url == "https://img/a.png"
    assert identity.roles == frozenset({"admin"})
    assert identity.provider == "keycloak"


@pytest.mark.parametrize(
    "response",
    [
        httpx.Response(401, json={"error": "invalid_token"}),
        httpx.Response(200, text="not json"),
        httpx.Response(200, json={"email": "a@b.com"}),
    ],
)
def test_get_resource_owner_failures(response: httpx.Response) -> None:
    with pytest.raises(ProviderError, match="Failed to get resource owner"):
        _run(_provider(lambda r: response), lambda p: p.get_resource_owner(dict(BEARER)))


def test_signed_userinfo_is_verified() -> None:
    settings = replace(SETTINGS, encryption_algorithm="HS256", encryption_key=SIGNING_KEY)
    signed = jwt.encode({"sub": "kc-2", "email": "c@d.com"}, SIGNING_KEY, algorithm="HS256")

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, text=signed, headers={"content-type": "application/jwt"})

    provider = _provider(handler, settings)
    assert provider.uses_encryption
    identity = _run(provider, lambda p: p.get_resource_owner(dict(BEARER)))
    assert identity.subject_id == "kc-2"
    assert identity.email == "c@d.com"


def test_signed_userinfo_with_wrong_key_is_rejected() -> None:
    settings = replace(SETTINGS, encryption_algorithm="HS256", encryption_key=SIGNING_KEY)
    forged = jwt.encode({"sub": "kc-2"}, "other-signing-key-0123456789abcdef", algorithm="HS256")

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, text=forged)

    with pytest.raises(ProviderError):
        _run(_provider(handler, settings), lambda p: p.get_resource_owner(dict(BEARER)))
