from __future__ import annotations

import hmac
import logging
import secrets
from collections.abc import AsyncGenerator
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from fastapi.responses import JSONResponse, RedirectResponse, Response

from keycloak_bridge.core.config import SETTINGS
from keycloak_bridge.core.errors import (
    CommandError,
    NotFoundError,
    ProtocolError,
    ProviderError,
)
from keycloak_bridge.middleware.request_context import subject_var
from keycloak_bridge.models.identity import PROVIDER
from keycloak_bridge.models.user import Group, User
from keycloak_bridge.repos.group_repo import InMemoryGroupRepo
from keycloak_bridge.repos.login_provider_repo import InMemoryLoginProviderRepo
from keycloak_bridge.repos.registration_token_repo import registration_tokens
from keycloak_bridge.repos.user_repo import InMemoryUserRepo
from keycloak_bridge.services.keycloak_client import KeycloakProvider
from keycloak_bridge.services.reconciliation_service import (
    FirstMemberAdminResolver,
    IdentityReconciler,
    decorate_registration,
    parse_role_mapping,
)
from keycloak_bridge.services.response_factory import ResponseFactory
from keycloak_bridge.services.session_service import Session, load_session, save_session
from keycloak_bridge.services.user_commands import UserCommandBus

# ---------------------------------------------------------------------------
# Keycloak login callback
#
#   GET /auth/keycloak                   no code: redirect to Keycloak
#   GET /auth/keycloak?code=..&state=..  back from Keycloak: reconcile and
#                                         finish the login
# ---------------------------------------------------------------------------

logger = logging.getLogger(__name__)

router = APIRouter(tags=["auth"])

STATE_KEY = "oauth2state"

# Module-level host singletons (the forum's directories and command bus).
user_repo = InMemoryUserRepo()
group_repo = InMemoryGroupRepo(user_repo)
login_provider_repo = InMemoryLoginProviderRepo()
command_bus = UserCommandBus(
    user_repo,
    login_provider_repo,
    registration_tokens,
    admin_group_id=SETTINGS.keycloak.admin_group_id,
)
reconciler = IdentityReconciler(
    users=user_repo,
    groups=group_repo,
    login_providers=login_provider_repo,
    registration_tokens=registration_tokens,
    bus=command_bus,
    admin_actor=FirstMemberAdminResolver(group_repo, SETTINGS.keycloak.admin_group_id),
)
response_factory = ResponseFactory(user_repo, login_provider_repo, registration_tokens)


def _seed_admin_email() -> str:
    if SETTINGS.admin_email:
        return SETTINGS.admin_email
    # Random local part on a reserved domain: link-by-email can never reach it.
    return f"admin-{secrets.token_hex(16)}@forum.invalid"


def seed_forum() -> None:
    """Install the forum's default groups and its first administrator.

    The administrator's username and email come from settings. The email
    matters: any Keycloak identity carrying it is linked to the account.
    """
    admin_group_id = SETTINGS.keycloak.admin_group_id
    defaults = {2: "Guest", 3: "Member", 4: "Mod"}
    defaults[admin_group_id] = "Admin"
    for group_id, name in defaults.items():
        try:
            group_repo.find_or_fail(group_id)
        except NotFoundError:
            group_repo.add(Group(id=group_id, name=name))

    if not user_repo.list_all():
        user_repo.add(
            User(
                id=user_repo.next_id(),
                username=SETTINGS.admin_username,
                email=_seed_admin_email(),
                is_email_confirmed=True,
                group_ids=frozenset({admin_group_id}),
            )
        )


seed_forum()


async def get_keycloak_provider() -> AsyncGenerator[KeycloakProvider, None]:
    async with KeycloakProvider(SETTINGS.keycloak, SETTINGS.redirect_uri) as provider:
        yield provider


def _check_state(session: Session, state: str | None) -> None:
    expected = session.get(STATE_KEY)
    valid = bool(state and expected) and hmac.compare_digest(
        state.encode(), str(expected).encode()
    )
    if not valid:
        session.remove(STATE_KEY)
        raise ProtocolError("Invalid state")


def _current_actor(session: Session) -> User | None:
    user_id = session.get("user_id")
    if user_id is None:
        return None
    return user_repo.get_by_id(user_id)


@router.get("/auth/keycloak", response_model=None)
async def keycloak_callback(
    request: Request,
    provider: Annotated[KeycloakProvider, Depends(get_keycloak_provider)],
    code: str | None = Query(None),
    state: str | None = Query(None),
) -> Response:
    session = load_session(request)

    if not code:
        auth_url = provider.get_authorization_url()
        session.put(STATE_KEY, provider.get_state())
        logger.info("Redirecting to Keycloak for authorization")
        redirect = RedirectResponse(url=auth_url, status_code=status.HTTP_302_FOUND)
        save_session(redirect, session)
        return redirect

    try:
        _check_state(session, state)
    except ProtocolError as e:
        logger.warning("Keycloak callback rejected: state mismatch")
        rejected = JSONResponse(
            {"detail": str(e)}, status_code=status.HTTP_400_BAD_REQUEST
        )
        save_session(rejected, session)
        return rejected

    try:
        token = await provider.get_access_token(code)
        identity = await provider.get_resource_owner(token)
    except ProviderError as e:
        raise HTTPException(status.HTTP_502_BAD_GATEWAY, str(e)) from None

    subject_var.set(identity.subject_id)
    role_mapping = parse_role_mapping(SETTINGS.keycloak.role_mapping)

    try:
        result = await reconciler.reconcile(
            identity, role_mapping, _current_actor(session)
        )
    except NotFoundError as e:
        logger.error("Cannot resolve administrator account: %s", e)
        raise HTTPException(
            status.HTTP_500_INTERNAL_SERVER_ERROR, "Administrator account not found"
        ) from None
    except CommandError:
        raise HTTPException(
            status.HTTP_500_INTERNAL_SERVER_ERROR, "Failed to update user"
        ) from None

    # Read by MetricsMiddleware for keycloak_callbacks_total.
    request.state.keycloak_decision = result.decision.label

    response = await response_factory.make(
        PROVIDER,
        identity.subject_id,
        lambda registration: decorate_registration(registration, identity),
        session,
        registration_token=result.registration_token,
    )
    save_session(response, session)
    logger.info(
        "Keycloak login finished user_id=%s",
        session.get("user_id"),
        extra={"decision": result.decision.label},
    )
    return response
