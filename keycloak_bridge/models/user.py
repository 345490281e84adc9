from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime


@dataclass(frozen=True, slots=True)
class Group:
    id: int
    name: str


@dataclass(frozen=True, slots=True)
class User:
    id: int
    username: str
    email: str
    is_email_confirmed: bool = False
    avatar_url: str | None = None
    group_ids: frozenset[int] = frozenset()  # immutable
    joined_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    def is_admin(self, admin_group_id: int) -> bool:
        return admin_group_id in self.group_ids


@dataclass(frozen=True, slots=True)
class LoginProvider:
    """Link between a local account and an external identity."""

    provider: str
    identifier: str
    user_id: int
