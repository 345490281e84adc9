from __future__ import annotations

from typing import Protocol

from keycloak_bridge.models.user import User


class UserRepo(Protocol):
    def get_by_id(self, user_id: int) -> User | None: ...
    def get_by_email(self, email: str) -> User | None: ...
    def get_by_username(self, username: str) -> User | None: ...
    def list_all(self) -> list[User]: ...
    def next_id(self) -> int: ...
    def add(self, user: User) -> None: ...
    def save(self, user: User) -> None: ...


class InMemoryUserRepo:
    def __init__(self) -> None:
        self._by_id: dict[int, User] = {}

    def get_by_id(self, user_id: int) -> User | None:
        return self._by_id.get(user_id)

    def get_by_email(self, email: str) -> User | None:
        # Exact match, as the forum does it.
        return next((u for u in self._by_id.values() if u.email == email), None)

    def get_by_username(self, username: str) -> User | None:
        wanted = username.lower()
        return next(
            (u for u in self._by_id.values() if u.username.lower() == wanted), None
        )

    def list_all(self) -> list[User]:
        return sorted(self._by_id.values(), key=lambda u: u.id)

    def next_id(self) -> int:
        return max(self._by_id, default=0) + 1

    def add(self, user: User) -> None:
        if user.id in self._by_id:
            raise ValueError("user id already exists")
        self._by_id[user.id] = user

    def save(self, user: User) -> None:
        if user.id not in self._by_id:
            raise KeyError("user not found")
        self._by_id[user.id] = user
