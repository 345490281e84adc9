"""Pending registration tokens.

A token binds (provider, identifier, provided attributes, raw payload) until
the registration step consumes it or it expires after a day. Redis stores it
with a matching TTL, so expired tokens vanish without a cleanup job; the
in-memory store checks created_at on read instead.
"""

from __future__ import annotations

import json
from datetime import datetime
from typing import Protocol, runtime_checkable

from keycloak_bridge.db.redis import redis_pool
from keycloak_bridge.models.registration import (
    REGISTRATION_TOKEN_TTL,
    RegistrationToken,
)


@runtime_checkable
class RegistrationTokenRepo(Protocol):
    async def save(self, token: RegistrationToken) -> None: ...

    async def get(self, token: str) -> RegistrationToken | None:
        """Return the token if it exists and has not expired."""
        ...

    async def delete(self, token: str) -> None: ...


class InMemoryRegistrationTokenRepo:
    def __init__(self) -> None:
        self._store: dict[str, RegistrationToken] = {}

    async def save(self, token: RegistrationToken) -> None:
        self._store[token.token] = token

    async def get(self, token: str) -> RegistrationToken | None:
        record = self._store.get(token)
        if record is None:
            return None
        if record.is_expired():
            del self._store[token]
            return None
        return record

    async def delete(self, token: str) -> None:
        self._store.pop(token, None)


class RedisRegistrationTokenRepo:
    _PREFIX = "registration_token:"

    def __init__(self, redis_client) -> None:
        self._redis = redis_client

    async def save(self, token: RegistrationToken) -> None:
        ttl_seconds = int(REGISTRATION_TOKEN_TTL.total_seconds())
        await self._redis.setex(
            f"{self._PREFIX}{token.token}", ttl_seconds, _dump(token)
        )

    async def get(self, token: str) -> RegistrationToken | None:
        raw = await self._redis.get(f"{self._PREFIX}{token}")
        if raw is None:
            return None
        return _load(raw)

    async def delete(self, token: str) -> None:
        await self._redis.delete(f"{self._PREFIX}{token}")


def _dump(token: RegistrationToken) -> str:
    return json.dumps(
        {
            "token": token.token,
            "provider": token.provider,
            "identifier": token.identifier,
            "user_attributes": token.user_attributes,
            "payload": token.payload,
            "created_at": token.created_at.isoformat(),
        },
        default=str,
    )


def _load(raw: str) -> RegistrationToken:
    data = json.loads(raw)
    return RegistrationToken(
        token=data["token"],
        provider=data["provider"],
        identifier=data["identifier"],
        user_attributes=data["user_attributes"],
        payload=data["payload"],
        created_at=datetime.fromisoformat(data["created_at"]),
    )


if redis_pool is not None:
    registration_tokens: RegistrationTokenRepo = RedisRegistrationTokenRepo(redis_pool)
else:
    registration_tokens = InMemoryRegistrationTokenRepo()
