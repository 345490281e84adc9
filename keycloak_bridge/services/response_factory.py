"""Finish an external login the way the forum does.

make() runs in the popup window that came back from Keycloak:

  1. an account is linked to (provider, identifier) → log it in
  2. otherwise let the caller fill a Registration; if its provided email
     belongs to an account, link that account and log it in
  3. otherwise store a registration token and hand the provided/suggested
     attributes to the forum's sign-up modal

Both outcomes are a tiny HTML page that passes a JSON payload to
window.opener.app.authenticationComplete() and closes the popup.
"""

from __future__ import annotations

import inspect
import json
import logging
from collections.abc import Awaitable, Callable
from typing import Any

from fastapi.responses import HTMLResponse

from keycloak_bridge.models.registration import Registration, RegistrationToken
from keycloak_bridge.models.user import LoginProvider, User
from keycloak_bridge.repos.login_provider_repo import LoginProviderRepo
from keycloak_bridge.repos.registration_token_repo import RegistrationTokenRepo
from keycloak_bridge.repos.user_repo import UserRepo
from keycloak_bridge.services.session_service import Session

logger = logging.getLogger(__name__)

ConfigureRegistration = Callable[[Registration], Awaitable[object] | object]

_PAGE = """\
<!DOCTYPE html>
<html lang="en">
<head><meta charset="utf-8"><title>Signing in…</title></head>
<body>
<script>
window.close();
window.opener.app.authenticationComplete({payload});
</script>
</body>
</html>
"""


def render_payload(payload: dict[str, Any]) -> HTMLResponse:
    # "</" would end the script element early.
    encoded = json.dumps(payload, default=str).replace("</", "<\\/")
    return HTMLResponse(_PAGE.format(payload=encoded))


class ResponseFactory:
    def __init__(
        self,
        users: UserRepo,
        login_providers: LoginProviderRepo,
        registration_tokens: RegistrationTokenRepo,
    ) -> None:
        self._users = users
        self._login_providers = login_providers
        self._tokens = registration_tokens

    async def make(
        self,
        provider: str,
        identifier: str,
        configure_registration: ConfigureRegistration,
        session: Session,
        *,
        registration_token: RegistrationToken | None = None,
    ) -> HTMLResponse:
        """Log the identity in or hand it to sign-up.

        registration_token: a stored token already issued for this identity;
        reused for the sign-up continuation instead of issuing a second one.
        """
        link = self._login_providers.get(provider, identifier)
        user = self._users.get_by_id(link.user_id) if link is not None else None
        if user is not None:
            return self.make_logged_in_response(user, session)

        registration = Registration()
        result = configure_registration(registration)
        if inspect.isawaitable(result):
            await result

        provided = registration.provided
        email = provided.get("email")
        user = self._users.get_by_email(email) if email else None
        if user is not None:
            self._login_providers.add(
                LoginProvider(provider=provider, identifier=identifier, user_id=user.id)
            )
            logger.info("Linked %s login to user id=%d", provider, user.id)
            return self.make_logged_in_response(user, session)

        token = registration_token
        if token is None or (token.provider, token.identifier) != (provider, identifier):
            token = RegistrationToken.generate(
                provider, identifier, provided, registration.payload
            )
            await self._tokens.save(token)
        logger.info("Login needs registration; continuation token issued")
        return render_payload(
            {
                **provided,
                **registration.suggested,
                "token": token.token,
                "provided": list(provided),
            }
        )

    def make_logged_in_response(self, user: User, session: Session) -> HTMLResponse:
        session.put("user_id", user.id)
        logger.info("Logged in user id=%d", user.id)
        return render_payload({"loggedIn": True})
