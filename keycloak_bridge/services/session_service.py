"""Cookie-backed session store.

The callback needs a small server-trusted scratchpad between the redirect to
Keycloak and the return trip (the oauth2state value), and the response
factory records the logged-in user id in it. The whole session is a signed
HS256 JWT in an HttpOnly cookie: nothing is stored server-side, and
tampering invalidates the signature.

A cookie that fails verification (bad signature, expired, wrong audience)
loads as an empty session.
"""

from __future__ import annotations

import logging
import uuid
from datetime import UTC, datetime, timedelta
from typing import Any

import jwt
from starlette.requests import Request
from starlette.responses import Response

from keycloak_bridge.core.config import SETTINGS

logger = logging.getLogger(__name__)

COOKIE_NAME = "kc_session"
ALGORITHM = "HS256"
AUDIENCE = "keycloak-bridge-session"
SESSION_TTL_MIN = 30


class Session:
    def __init__(self, data: dict[str, Any] | None = None) -> None:
        self._data: dict[str, Any] = dict(data or {})
        self.modified = False

    def get(self, key: str, default: Any = None) -> Any:
        return self._data.get(key, default)

    def put(self, key: str, value: Any) -> None:
        self._data[key] = value
        self.modified = True

    def remove(self, key: str) -> Any:
        self.modified = True
        return self._data.pop(key, None)

    def to_dict(self) -> dict[str, Any]:
        return dict(self._data)


def encode_session(session: Session, *, secret: str | None = None) -> str:
    now = datetime.now(UTC)
    payload = {
        "aud": AUDIENCE,
        "iat": now,
        "exp": now + timedelta(minutes=SESSION_TTL_MIN),
        "jti": str(uuid.uuid4()),
        "data": session.to_dict(),
    }
    return jwt.encode(payload, secret or SETTINGS.session_secret, algorithm=ALGORITHM)


def decode_session(raw: str, *, secret: str | None = None) -> Session:
    try:
        claims = jwt.decode(
            raw,
            secret or SETTINGS.session_secret,
            algorithms=[ALGORITHM],
            audience=AUDIENCE,
            options={"require": ["exp", "iat", "jti"]},
        )
    except jwt.ExpiredSignatureError:
        logger.debug("Session cookie expired")
        return Session()
    except jwt.InvalidTokenError:
        logger.debug("Invalid session cookie")
        return Session()
    data = claims.get("data")
    return Session(data if isinstance(data, dict) else None)


def load_session(request: Request) -> Session:
    raw = request.cookies.get(COOKIE_NAME)
    if not raw:
        return Session()
    return decode_session(raw)


def save_session(response: Response, session: Session) -> None:
    """Write the session back onto the response if anything changed."""
    if not session.modified:
        return
    response.set_cookie(
        key=COOKIE_NAME,
        value=encode_session(session),
        httponly=True,
        samesite="lax",
        secure=SETTINGS.is_prod,
        path="/",
        max_age=SESSION_TTL_MIN * 60,
    )
