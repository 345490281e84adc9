from __future__ import annotations

import secrets
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Any

REGISTRATION_TOKEN_TTL = timedelta(days=1)


class Registration:
    """Attributes gathered from the provider for a (possible) new account.

    provided: trusted values the user cannot change (email, avatar).
    suggested: pre-fills the user may override (username).
    payload: the raw provider payload, stored with the registration token.

    Setters return self so calls chain.
    """

    def __init__(self) -> None:
        self._provided: dict[str, Any] = {}
        self._suggested: dict[str, Any] = {}
        self._payload: dict[str, Any] = {}

    def provide_trusted_email(self, email: str | None) -> Registration:
        if email:
            self._provided["email"] = email
        return self

    def provide_avatar(self, url: str) -> Registration:
        self._provided["avatar_url"] = url
        return self

    def suggest_username(self, username: str | None) -> Registration:
        if username:
            self._suggested["username"] = username
        return self

    def set_payload(self, payload: Mapping[str, Any]) -> Registration:
        self._payload = dict(payload)
        return self

    @property
    def provided(self) -> dict[str, Any]:
        return dict(self._provided)

    @property
    def suggested(self) -> dict[str, Any]:
        return dict(self._suggested)

    @property
    def payload(self) -> dict[str, Any]:
        return dict(self._payload)


@dataclass(frozen=True, slots=True)
class RegistrationToken:
    token: str
    provider: str
    identifier: str
    user_attributes: dict[str, Any]
    payload: dict[str, Any]
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    @staticmethod
    def generate(
        provider: str,
        identifier: str,
        user_attributes: Mapping[str, Any],
        payload: Mapping[str, Any],
    ) -> RegistrationToken:
        return RegistrationToken(
            token=secrets.token_urlsafe(30),
            provider=provider,
            identifier=identifier,
            user_attributes=dict(user_attributes),
            payload=dict(payload),
        )

    def is_expired(self, now: datetime | None = None) -> bool:
        now = now or datetime.now(UTC)
        return now - self.created_at > REGISTRATION_TOKEN_TTL
