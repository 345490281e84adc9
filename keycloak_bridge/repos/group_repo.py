from __future__ import annotations

from typing import Protocol

from keycloak_bridge.core.errors import NotFoundError
from keycloak_bridge.models.user import Group, User
from keycloak_bridge.repos.user_repo import UserRepo


class GroupRepo(Protocol):
    def find_by_name(self, name: str) -> Group | None: ...
    def find_or_fail(self, group_id: int) -> Group: ...
    def list_users(self, group: Group) -> list[User]: ...
    def add(self, group: Group) -> None: ...


class InMemoryGroupRepo:
    """Groups by id; membership is read off the users themselves."""

    def __init__(self, user_repo: UserRepo) -> None:
        self._by_id: dict[int, Group] = {}
        self._users = user_repo

    def find_by_name(self, name: str) -> Group | None:
        return next((g for g in self._by_id.values() if g.name == name), None)

    def find_or_fail(self, group_id: int) -> Group:
        group = self._by_id.get(group_id)
        if group is None:
            raise NotFoundError(f"group {group_id} not found")
        return group

    def list_users(self, group: Group) -> list[User]:
        """Members in listing order (oldest account first)."""
        return [u for u in self._users.list_all() if group.id in u.group_ids]

    def add(self, group: Group) -> None:
        if group.id in self._by_id:
            raise ValueError("group id already exists")
        self._by_id[group.id] = group
