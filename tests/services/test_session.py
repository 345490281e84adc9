from __future__ import annotations

from datetime import UTC, datetime, timedelta

import jwt
from starlette.responses import Response

from keycloak_bridge.services.session_service import (
    ALGORITHM,
    AUDIENCE,
    COOKIE_NAME,
    Session,
    decode_session,
    encode_session,
    save_session,
)

SECRET = "test-session-secret-0123456789abcdef"


def test_session_cookie_round_trip() -> None:
    session = Session()
    session.put("oauth2state", "abc")
    session.put("user_id", 7)

    restored = decode_session(encode_session(session, secret=SECRET), secret=SECRET)

    assert restored.get("oauth2state") == "abc"
    assert restored.get("user_id") == 7
    assert restored.modified is False


def test_tampered_cookie_loads_empty() -> None:
    session = Session({"user_id": 1})
    raw = encode_session(session, secret=SECRET)
    assert decode_session(raw, secret="another-secret-0123456789abcdefgh").to_dict() == {}


def test_expired_cookie_loads_empty() -> None:
    past = datetime.now(UTC) - timedelta(hours=2)
    raw = jwt.encode(
        {
            "aud": AUDIENCE,
            "iat": past,
            "exp": past + timedelta(minutes=30),
            "jti": "x",
            "data": {"user_id": 1},
        },
        SECRET,
        algorithm=ALGORITHM,
    )
    assert decode_session(raw, secret=SECRET).to_dict() == {}


def test_wrong_audience_loads_empty() -> None:
    now = datetime.now(UTC)
    raw = jwt.encode(
        {
            "aud": "someone-else",
            "iat": now,
            "exp": now + timedelta(minutes=5),
            "jti": "x",
            "data": {"user_id": 1},
        },
        SECRET,
        algorithm=ALGORITHM,
    )
    assert decode_session(raw, secret=SECRET).to_dict() == {}


def test_remove_marks_modified() -> None:
    session = Session({"oauth2state": "abc"})
    assert session.remove("oauth2state") == "abc"
    assert session.modified
    assert session.get("oauth2state") is None


def test_save_session_only_when_modified() -> None:
    untouched = Response()
    save_session(untouched, Session({"user_id": 1}))
    assert "set-cookie" not in untouched.headers

    changed = Session()
    changed.put("user_id", 1)
    response = Response()
    save_session(response, changed)
    cookie = response.headers["set-cookie"]
    assert cookie.startswith(f"{COOKIE_NAME}=")
    assert "httponly" in cookie.lower()
    assert "samesite=lax" in cookie.lower()
