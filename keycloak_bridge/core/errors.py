"""Error taxonomy for the Keycloak callback.

Route handlers translate these into HTTP responses; the reconciliation
service decides per branch whether a CommandError is fatal.
"""

from __future__ import annotations


class KeycloakBridgeError(Exception):
    pass


class ProtocolError(KeycloakBridgeError):
    """The callback's state does not match the one stored in the session."""


class ProviderError(KeycloakBridgeError):
    """Token exchange or resource-owner fetch failed."""


class CommandError(KeycloakBridgeError):
    """A user command was rejected by the host."""


class NotFoundError(KeycloakBridgeError, LookupError):
    pass
