from __future__ import annotations

import sys
from collections.abc import Callable, Iterator
from dataclasses import replace
from pathlib import Path
from typing import Any

import httpx
import pytest
from fastapi.testclient import TestClient

# Ensure repo root is on sys.path so `import keycloak_bridge` works under pytest.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from keycloak_bridge.api import keycloak_auth  # noqa: E402
from keycloak_bridge.core.config import SETTINGS  # noqa: E402
from keycloak_bridge.main import app  # noqa: E402
from keycloak_bridge.repos.registration_token_repo import registration_tokens  # noqa: E402
from keycloak_bridge.services.keycloak_client import KeycloakProvider  # noqa: E402

CLIENT_SECRET = "kc-client-s3cret"
ACCESS_TOKEN = "kc-access-token-xyz"


@pytest.fixture(autouse=True)
def reset_forum_state() -> None:
    """Fresh directories between tests: default groups plus the admin account."""
    keycloak_auth.user_repo._by_id.clear()
    keycloak_auth.group_repo._by_id.clear()
    keycloak_auth.login_provider_repo._store.clear()
    keycloak_auth.seed_forum()


@pytest.fixture(autouse=True)
def reset_registration_tokens() -> None:
    if hasattr(registration_tokens, "_store"):
        registration_tokens._store.clear()  # type: ignore[union-attr]


@pytest.fixture
def client() -> TestClient:
    return TestClient(app)


# ---------------------------------------------------------------------------
# Fake Keycloak server
# ---------------------------------------------------------------------------


class FakeKeycloak:
    """Answers the token and userinfo endpoints from in-test state."""

    def __init__(self) -> None:
        self.claims: dict[str, Any] = {
            "sub": "kc-sub-1",
            "email": "new@example.com",
            "preferred_username": "newbie",
        }
        self.token_status = 200
        self.token_body: dict[str, Any] = {
            "access_token": ACCESS_TOKEN,
            "token_type": "Bearer",
            "expires_in": 300,
        }
        self.userinfo_status = 200
        self.requests: list[httpx.Request] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.url.path.endswith("/token"):
            return httpx.Response(self.token_status, json=self.token_body)
        if request.url.path.endswith("/userinfo"):
            return httpx.Response(self.userinfo_status, json=self.claims)
        return httpx.Response(404)

    def provider(self) -> KeycloakProvider:
        settings = replace(SETTINGS.keycloak, client_secret=CLIENT_SECRET)
        return KeycloakProvider(
            settings,
            SETTINGS.redirect_uri,
            transport=httpx.MockTransport(self.handler),
        )


@pytest.fixture
def keycloak() -> Iterator[FakeKeycloak]:
    """Route the callback's provider dependency to a FakeKeycloak."""
    fake = FakeKeycloak()

    async def _provider():
        async with fake.provider() as provider:
            yield provider

    app.dependency_overrides[keycloak_auth.get_keycloak_provider] = _provider
    yield fake
    app.dependency_overrides.pop(keycloak_auth.get_keycloak_provider, None)


@pytest.fixture
def set_role_mapping(monkeypatch: pytest.MonkeyPatch) -> Callable[[str], None]:
    """Swap the role mapping the callback reads from settings."""

    def _set(raw: str) -> None:
        patched = replace(SETTINGS, keycloak=replace(SETTINGS.keycloak, role_mapping=raw))
        monkeypatch.setattr(keycloak_auth, "SETTINGS", patched)

    return _set
