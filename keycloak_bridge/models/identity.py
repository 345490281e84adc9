from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

PROVIDER = "keycloak"


@dataclass(frozen=True, slots=True)
class RemoteIdentity:
    """The resource owner as reported by Keycloak for one callback.

    payload is the merged userinfo/token claim set, kept verbatim so the
    registration token can carry it forward.
    """

    subject_id: str
    email: str | None
    preferred_username: str | None
    avatar_url: str | None = None
    roles: frozenset[str] = frozenset()
    payload: Mapping[str, Any] = field(default_factory=dict)
    provider: str = PROVIDER

    @staticmethod
    def from_claims(claims: Mapping[str, Any]) -> RemoteIdentity:
        return RemoteIdentity(
            subject_id=str(claims["sub"]),
            email=claims.get("email"),
            preferred_username=claims.get("preferred_username"),
            avatar_url=claims.get("picture") or None,
            roles=_extract_roles(claims),
            payload=dict(claims),
        )


def _extract_roles(claims: Mapping[str, Any]) -> frozenset[str]:
    # A "roles" claim added by a Keycloak client mapper wins; otherwise fall
    # back to the realm roles Keycloak puts in every access token.
    roles = claims.get("roles")
    if not isinstance(roles, list):
        realm_access = claims.get("realm_access")
        roles = realm_access.get("roles") if isinstance(realm_access, dict) else None
    if not isinstance(roles, list):
        return frozenset()
    return frozenset(r for r in roles if isinstance(r, str))
