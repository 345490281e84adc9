"""In-process user command bus.

The forum applies every account mutation through two commands:

  EditUser(user_id, actor, data): attribute changes and group sync
  RegisterUser(actor, data): account creation, optionally token-backed

`data` uses the forum's JSON:API-ish document shape:

  {
    "attributes": {"username": ..., "email": ..., "avatar_url": ...,
                   "token": ..., "provided": [...]},
    "relationships": {"groups": {"data": [{"id": 2}, ...]}},
  }

Rules enforced here are the ones the reconciliation flow can trip over:
uniqueness, username shape, group edits needing an admin actor, and
registration tokens that must exist and be unexpired. Anything rejected
raises CommandError.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, replace
from typing import Any, Protocol

from keycloak_bridge.core.errors import CommandError
from keycloak_bridge.models.user import LoginProvider, User
from keycloak_bridge.repos.login_provider_repo import LoginProviderRepo
from keycloak_bridge.repos.registration_token_repo import RegistrationTokenRepo
from keycloak_bridge.repos.user_repo import UserRepo

logger = logging.getLogger(__name__)

_USERNAME_RE = re.compile(r"^[a-zA-Z0-9_-]{3,30}$")


@dataclass(frozen=True, slots=True)
class EditUser:
    user_id: int
    actor: User
    data: dict[str, Any]


@dataclass(frozen=True, slots=True)
class RegisterUser:
    actor: User | None  # None: guest
    data: dict[str, Any]


class CommandBus(Protocol):
    async def dispatch(self, command: EditUser | RegisterUser) -> User: ...


def group_ids_from(data: dict[str, Any]) -> frozenset[int] | None:
    """Group ids in a command document, or None when groups are absent.

    An empty list is not the same as absent: it removes every group.
    """
    groups = data.get("relationships", {}).get("groups")
    if groups is None or "data" not in groups:
        return None
    return frozenset(int(g["id"]) for g in groups["data"])


class UserCommandBus:
    def __init__(
        self,
        users: UserRepo,
        login_providers: LoginProviderRepo,
        registration_tokens: RegistrationTokenRepo,
        *,
        admin_group_id: int,
    ) -> None:
        self._users = users
        self._login_providers = login_providers
        self._tokens = registration_tokens
        self._admin_group_id = admin_group_id

    async def dispatch(self, command: EditUser | RegisterUser) -> User:
        if isinstance(command, EditUser):
            return self._edit(command)
        if isinstance(command, RegisterUser):
            return await self._register(command)
        raise TypeError(f"unsupported command {type(command).__name__}")

    # ------------------------------------------------------------------ edit

    def _edit(self, command: EditUser) -> User:
        user = self._users.get_by_id(command.user_id)
        if user is None:
            raise CommandError(f"user {command.user_id} not found")

        actor = command.actor
        is_admin = actor.is_admin(self._admin_group_id)
        if not is_admin and actor.id != user.id:
            raise CommandError("actor may not edit this user")

        attributes = command.data.get("attributes", {})
        updated = user

        username = attributes.get("username")
        if username and username != user.username:
            self._check_username(username, exclude_id=user.id)
            updated = replace(updated, username=username)

        email = attributes.get("email")
        if email and email != user.email:
            self._check_email(email, exclude_id=user.id)
            updated = replace(updated, email=email)

        if "avatar_url" in attributes:
            updated = replace(updated, avatar_url=attributes["avatar_url"] or None)

        group_ids = group_ids_from(command.data)
        if group_ids is not None and group_ids != user.group_ids:
            if not is_admin:
                raise CommandError("actor may not edit groups")
            # Sync, not merge: groups missing from the document are dropped.
            updated = replace(updated, group_ids=group_ids)

        self._users.save(updated)
        logger.info(
            "Edited user id=%d actor=%d groups=%s",
            updated.id,
            actor.id,
            sorted(updated.group_ids),
        )
        return updated

    # -------------------------------------------------------------- register

    async def _register(self, command: RegisterUser) -> User:
        attributes = dict(command.data.get("attributes", {}))
        token_value = attributes.get("token")
        token = None

        if token_value:
            token = await self._tokens.get(token_value)
            if token is None:
                raise CommandError("invalid or expired registration token")
            # Values the provider vouched for override whatever was submitted.
            attributes.update(token.user_attributes)

        username = attributes.get("username")
        email = attributes.get("email")
        if not username:
            raise CommandError("username is required")
        if not email:
            raise CommandError("email is required")
        self._check_username(username)
        self._check_email(email)

        confirmed = bool(
            token is not None and token.user_attributes.get("email") == email
        )
        user = User(
            id=self._users.next_id(),
            username=username,
            email=email,
            is_email_confirmed=confirmed,
            avatar_url=attributes.get("avatar_url") or None,
        )
        self._users.add(user)

        if token is not None:
            self._login_providers.add(
                LoginProvider(
                    provider=token.provider,
                    identifier=token.identifier,
                    user_id=user.id,
                )
            )
            await self._tokens.delete(token.token)

        logger.info(
            "Registered user id=%d username=%s confirmed=%s",
            user.id,
            user.username,
            confirmed,
        )
        return user

    # ------------------------------------------------------------ validation

    def _check_username(self, username: str, exclude_id: int | None = None) -> None:
        if not _USERNAME_RE.match(username):
            raise CommandError(f"invalid username {username!r}")
        existing = self._users.get_by_username(username)
        if existing is not None and existing.id != exclude_id:
            raise CommandError(f"username {username!r} already taken")

    def _check_email(self, email: str, exclude_id: int | None = None) -> None:
        existing = self._users.get_by_email(email)
        if existing is not None and existing.id != exclude_id:
            raise CommandError("email already taken")
