"""Identity reconciliation: decide what a Keycloak login does to local accounts.

For one validated RemoteIdentity the reconciler picks exactly one of:

  UpdateLinkedUser    an account is linked to (keycloak, subject); refresh it
  LinkAndUpdateUser   no link, but an account has the same email; refresh it
                      (the response factory then creates the link)
  CreateUser          no match; register a new account from the identity

Group assignments are computed from the identity's roles before the decision
and are sent with every branch's update.

Failure handling differs per branch:

  UpdateLinkedUser   EditUser failure is logged, login continues
  LinkAndUpdateUser  EditUser failure propagates, the request fails
  CreateUser         RegisterUser/EditUser failure is logged, the user ends
                     up on the registration-continuation page

Resolving the admin actor is fatal on every branch.

Known limitation: CreateUser issues RegisterUser then EditUser (the forum's
registration ignores groups). A crash between the two leaves an account
without its groups until the next login.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable, Mapping
from typing import Any, Protocol

from keycloak_bridge.core.errors import CommandError, NotFoundError
from keycloak_bridge.core.metrics import COMMAND_FAILURES, RECONCILIATIONS
from keycloak_bridge.models.decision import (
    CreateUser,
    LinkAndUpdateUser,
    Reconciliation,
    ReconciliationDecision,
    UpdateLinkedUser,
)
from keycloak_bridge.models.identity import RemoteIdentity
from keycloak_bridge.models.registration import Registration, RegistrationToken
from keycloak_bridge.models.user import User
from keycloak_bridge.repos.group_repo import GroupRepo
from keycloak_bridge.repos.login_provider_repo import LoginProviderRepo
from keycloak_bridge.repos.registration_token_repo import RegistrationTokenRepo
from keycloak_bridge.repos.user_repo import UserRepo
from keycloak_bridge.services.user_commands import CommandBus, EditUser, RegisterUser

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Role → group mapping
# ---------------------------------------------------------------------------


def parse_role_mapping(raw: str | None) -> dict[str, str]:
    """Decode the JSON role mapping setting.

    Anything that is not a JSON object yields an empty mapping, which turns
    group assignment off for the request instead of failing the login.
    Entries whose group name is not a non-empty string are dropped.
    """
    if not raw:
        return {}
    try:
        decoded = json.loads(raw)
    except ValueError:
        logger.warning("Role mapping is not valid JSON; group mapping disabled")
        return {}
    if not isinstance(decoded, dict):
        logger.warning("Role mapping is not a JSON object; group mapping disabled")
        return {}
    return {
        str(role): group
        for role, group in decoded.items()
        if isinstance(group, str) and group
    }


def compute_group_assignments(
    roles: Iterable[str],
    role_mapping: Mapping[str, str],
    groups: GroupRepo,
) -> frozenset[int]:
    """Ids of the existing local groups the roles map onto.

    Unmapped roles and names with no matching group contribute nothing;
    groups are never created here.
    """
    assigned: set[int] = set()
    for role in roles:
        group_name = role_mapping.get(role)
        if not group_name:
            continue
        group = groups.find_by_name(group_name)
        if group is None:
            logger.debug("Role %s maps to missing group %s", role, group_name)
            continue
        assigned.add(group.id)
    return frozenset(assigned)


# ---------------------------------------------------------------------------
# Admin actor
# ---------------------------------------------------------------------------


class AdminActorResolver(Protocol):
    def __call__(self) -> User: ...


class FirstMemberAdminResolver:
    """The oldest member of the administrator group authorises edits."""

    def __init__(self, groups: GroupRepo, admin_group_id: int) -> None:
        self._groups = groups
        self._admin_group_id = admin_group_id

    def __call__(self) -> User:
        group = self._groups.find_or_fail(self._admin_group_id)
        members = self._groups.list_users(group)
        if not members:
            raise NotFoundError(f"admin group {self._admin_group_id} has no members")
        return members[0]


# ---------------------------------------------------------------------------
# Registration helpers
# ---------------------------------------------------------------------------


def decorate_registration(
    registration: Registration, identity: RemoteIdentity
) -> Registration:
    """Fill a registration from the identity: trusted email, suggested
    username, raw payload, and the avatar when Keycloak sent one."""
    registration.provide_trusted_email(identity.email).suggest_username(
        identity.preferred_username
    ).set_payload(identity.payload)
    if identity.avatar_url:
        registration.provide_avatar(identity.avatar_url)
    return registration


def _groups_document(group_ids: frozenset[int]) -> dict[str, Any]:
    return {"groups": {"data": [{"id": gid} for gid in sorted(group_ids)]}}


def build_update_data(
    registration: Registration, group_ids: frozenset[int]
) -> dict[str, Any]:
    return {
        "attributes": {**registration.provided, **registration.suggested},
        "relationships": _groups_document(group_ids),
    }


def build_creation_data(
    registration: Registration,
    token: RegistrationToken,
    group_ids: frozenset[int],
) -> dict[str, Any]:
    provided = registration.provided
    return {
        "attributes": {
            **provided,
            **registration.suggested,
            "token": token.token,
            "provided": list(provided),
        },
        "relationships": _groups_document(group_ids),
    }


# ---------------------------------------------------------------------------
# Reconciler
# ---------------------------------------------------------------------------


class IdentityReconciler:
    def __init__(
        self,
        *,
        users: UserRepo,
        groups: GroupRepo,
        login_providers: LoginProviderRepo,
        registration_tokens: RegistrationTokenRepo,
        bus: CommandBus,
        admin_actor: AdminActorResolver,
    ) -> None:
        self._users = users
        self._groups = groups
        self._login_providers = login_providers
        self._tokens = registration_tokens
        self._bus = bus
        self._admin_actor = admin_actor

    async def reconcile(
        self,
        identity: RemoteIdentity,
        role_mapping: Mapping[str, str],
        actor: User | None,
    ) -> Reconciliation:
        group_ids = compute_group_assignments(identity.roles, role_mapping, self._groups)
        logger.info(
            "Reconciling identity roles=%s groups=%s",
            sorted(identity.roles),
            sorted(group_ids),
        )

        token: RegistrationToken | None = None
        linked = self.find_linked_user(identity)
        decision: ReconciliationDecision
        if linked is not None:
            await self._update_linked_user(linked, identity, group_ids)
            decision = UpdateLinkedUser(linked.id)
        else:
            registration = decorate_registration(Registration(), identity)
            decision, token = await self._complete_registration(
                registration, identity, group_ids, actor
            )

        RECONCILIATIONS.labels(decision=decision.label).inc()
        logger.info(
            "Reconciliation decided %s user_id=%s",
            decision.label,
            decision.user_id,
            extra={"decision": decision.label},
        )
        return Reconciliation(
            decision=decision, group_ids=group_ids, registration_token=token
        )

    def find_linked_user(self, identity: RemoteIdentity) -> User | None:
        link = self._login_providers.get(identity.provider, identity.subject_id)
        if link is None:
            return None
        return self._users.get_by_id(link.user_id)

    async def _update_linked_user(
        self,
        user: User,
        identity: RemoteIdentity,
        group_ids: frozenset[int],
    ) -> None:
        registration = decorate_registration(Registration(), identity)
        data = build_update_data(registration, group_ids)
        admin = self._admin_actor()
        try:
            await self._bus.dispatch(EditUser(user.id, admin, data))
        except CommandError as e:
            COMMAND_FAILURES.labels(command="edit_user", fatal="false").inc()
            logger.error("Failed to update linked user id=%d: %s", user.id, e)

    async def _complete_registration(
        self,
        registration: Registration,
        identity: RemoteIdentity,
        group_ids: frozenset[int],
        actor: User | None,
    ) -> tuple[ReconciliationDecision, RegistrationToken | None]:
        provided = registration.provided
        admin = self._admin_actor()

        email = provided.get("email")
        local = self._users.get_by_email(email) if email else None

        if local is not None:
            data = build_update_data(registration, group_ids)
            try:
                await self._bus.dispatch(EditUser(local.id, admin, data))
            except CommandError as e:
                COMMAND_FAILURES.labels(command="edit_user", fatal="true").inc()
                logger.error("Failed to update user id=%d matched by email: %s", local.id, e)
                raise
            return LinkAndUpdateUser(local.id), None

        token = RegistrationToken.generate(
            identity.provider, identity.subject_id, provided, registration.payload
        )
        await self._tokens.save(token)
        data = build_creation_data(registration, token, group_ids)

        created: User | None = None
        command = "register_user"
        try:
            created = await self._bus.dispatch(RegisterUser(actor, data))
            command = "edit_user"
            # Registration ignores relationships; groups need a second pass.
            await self._bus.dispatch(EditUser(created.id, admin, data))
            # The response factory links the account itself right after.
            self._login_providers.delete_for_user(created.id, identity.provider)
        except CommandError as e:
            COMMAND_FAILURES.labels(command=command, fatal="false").inc()
            logger.error("Failed to create user: %s", e)

        return CreateUser(created.id if created is not None else None), token
