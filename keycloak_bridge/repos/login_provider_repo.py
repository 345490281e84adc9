from __future__ import annotations

from typing import Protocol

from keycloak_bridge.models.user import LoginProvider


class LoginProviderRepo(Protocol):
    def get(self, provider: str, identifier: str) -> LoginProvider | None: ...
    def add(self, link: LoginProvider) -> None: ...
    def list_by_user(self, user_id: int) -> list[LoginProvider]: ...
    def delete_for_user(self, user_id: int, provider: str | None = None) -> int: ...


class InMemoryLoginProviderRepo:
    def __init__(self) -> None:
        self._store: dict[tuple[str, str], LoginProvider] = {}

    def get(self, provider: str, identifier: str) -> LoginProvider | None:
        return self._store.get((provider, identifier))

    def add(self, link: LoginProvider) -> None:
        key = (link.provider, link.identifier)
        if key in self._store:
            raise ValueError("login provider already linked")
        self._store[key] = link

    def list_by_user(self, user_id: int) -> list[LoginProvider]:
        return [lp for lp in self._store.values() if lp.user_id == user_id]

    def delete_for_user(self, user_id: int, provider: str | None = None) -> int:
        """Remove a user's links, optionally only those of one provider."""
        doomed = [
            key
            for key, lp in self._store.items()
            if lp.user_id == user_id and (provider is None or lp.provider == provider)
        ]
        for key in doomed:
            del self._store[key]
        return len(doomed)
