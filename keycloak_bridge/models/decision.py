from __future__ import annotations

from dataclasses import dataclass

from keycloak_bridge.models.registration import RegistrationToken


@dataclass(frozen=True, slots=True)
class UpdateLinkedUser:
    """A local account is already linked to (provider, subject)."""

    user_id: int
    label = "update_linked"


@dataclass(frozen=True, slots=True)
class LinkAndUpdateUser:
    """No link, but a local account has the same email."""

    user_id: int
    label = "link_and_update"


@dataclass(frozen=True, slots=True)
class CreateUser:
    """No local match. user_id is None when account creation failed."""

    user_id: int | None = None
    label = "create"


ReconciliationDecision = UpdateLinkedUser | LinkAndUpdateUser | CreateUser


@dataclass(frozen=True, slots=True)
class Reconciliation:
    decision: ReconciliationDecision
    group_ids: frozenset[int]
    registration_token: RegistrationToken | None = None
