from __future__ import annotations

import asyncio
from dataclasses import replace
from datetime import UTC, datetime, timedelta

from keycloak_bridge.models.registration import RegistrationToken
from keycloak_bridge.repos.registration_token_repo import (
    InMemoryRegistrationTokenRepo,
    RedisRegistrationTokenRepo,
    _dump,
    _load,
)


class _FakeRedis:
    """Just enough of redis.asyncio.Redis for the token repo."""

    def __init__(self) -> None:
        self.values: dict[str, str] = {}
        self.ttls: dict[str, int] = {}

    async def setex(self, key: str, ttl: int, value: str) -> None:
        self.values[key] = value
        self.ttls[key] = ttl

    async def get(self, key: str) -> str | None:
        return self.values.get(key)

    async def delete(self, key: str) -> None:
        self.values.pop(key, None)


def _token() -> RegistrationToken:
    return RegistrationToken.generate(
        "keycloak",
        "kc-sub-1",
        {"email": "a@b.com"},
        {"sub": "kc-sub-1", "email": "a@b.com"},
    )


def test_generate_binds_provider_and_subject() -> None:
    token = _token()
    assert token.token
    assert token.provider == "keycloak"
    assert token.identifier == "kc-sub-1"
    assert token.user_attributes == {"email": "a@b.com"}


def test_generated_tokens_are_unique() -> None:
    assert len({_token().token for _ in range(50)}) == 50


def test_expiry_after_one_day() -> None:
    token = _token()
    assert not token.is_expired()
    assert token.is_expired(token.created_at + timedelta(days=1, seconds=1))


def test_in_memory_save_get_delete() -> None:
    repo = InMemoryRegistrationTokenRepo()
    token = _token()

    async def scenario() -> None:
        await repo.save(token)
        assert await repo.get(token.token) == token
        await repo.delete(token.token)
        assert await repo.get(token.token) is None

    asyncio.run(scenario())


def test_in_memory_drops_expired_tokens() -> None:
    repo = InMemoryRegistrationTokenRepo()
    stale = replace(_token(), created_at=datetime.now(UTC) - timedelta(days=2))

    async def scenario() -> None:
        await repo.save(stale)
        assert await repo.get(stale.token) is None

    asyncio.run(scenario())
    assert stale.token not in repo._store


def test_redis_repo_uses_day_ttl() -> None:
    fake = _FakeRedis()
    repo = RedisRegistrationTokenRepo(fake)
    token = _token()

    async def scenario() -> RegistrationToken | None:
        await repo.save(token)
        return await repo.get(token.token)

    loaded = asyncio.run(scenario())
    key = f"registration_token:{token.token}"
    assert fake.ttls[key] == 86400
    assert loaded == token


def test_serialized_token_keeps_timezone() -> None:
    token = _token()
    assert _load(_dump(token)).created_at == token.created_at
