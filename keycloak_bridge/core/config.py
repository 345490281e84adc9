from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Literal

AppEnv = Literal["dev", "test", "prod"]
LogLevel = Literal["debug", "info", "warning", "error"]


def _getenv(name: str, default: str) -> str:
    return os.environ.get(name, default).strip()


def _getbool(name: str, default: bool) -> bool:
    raw = _getenv(name, "true" if default else "false").lower()
    return raw in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class KeycloakSettings:
    """Provider settings. Read once at startup, never validated beyond shape.

    role_mapping is kept as the raw JSON string; it is decoded per request so
    a bad value only disables mapping instead of failing the service.
    """

    server_url: str
    realm: str
    client_id: str
    client_secret: str
    encryption_algorithm: str | None
    encryption_key: str | None
    role_mapping: str
    admin_group_id: int


@dataclass(frozen=True)
class Settings:
    app_env: AppEnv
    log_level: LogLevel
    log_json: bool
    port: int
    redis_url: str | None
    forum_url: str
    session_secret: str
    # Seeded administrator; admin_email is None outside prod when unset.
    admin_username: str
    admin_email: str | None
    keycloak: KeycloakSettings

    @property
    def is_dev(self) -> bool:
        return self.app_env == "dev"

    @property
    def is_test(self) -> bool:
        return self.app_env == "test"

    @property
    def is_prod(self) -> bool:
        return self.app_env == "prod"

    @property
    def redirect_uri(self) -> str:
        return f"{self.forum_url.rstrip('/')}/auth/keycloak"


def load_keycloak_settings() -> KeycloakSettings:
    admin_group_raw = _getenv("KEYCLOAK_ADMIN_GROUP_ID", "1")
    try:
        admin_group_id = int(admin_group_raw)
    except ValueError:
        raise ValueError(
            f"KEYCLOAK_ADMIN_GROUP_ID must be an integer (got {admin_group_raw!r})"
        ) from None

    return KeycloakSettings(
        server_url=_getenv("KEYCLOAK_SERVER_URL", "http://localhost:8080").rstrip("/"),
        realm=_getenv("KEYCLOAK_REALM", "master"),
        client_id=_getenv("KEYCLOAK_CLIENT_ID", "forum"),
        client_secret=_getenv("KEYCLOAK_CLIENT_SECRET", ""),
        encryption_algorithm=_getenv("KEYCLOAK_ENCRYPTION_ALGORITHM", "") or None,
        encryption_key=_getenv("KEYCLOAK_ENCRYPTION_KEY", "") or None,
        role_mapping=_getenv("KEYCLOAK_ROLE_MAPPING", ""),
        admin_group_id=admin_group_id,
    )


def load_settings() -> Settings:
    app_env_raw = _getenv("APP_ENV", "dev").lower()
    log_level_raw = _getenv("LOG_LEVEL", "info").lower()
    port_raw = _getenv("PORT", "8000")

    if app_env_raw not in ("dev", "test", "prod"):
        raise ValueError(f"APP_ENV must be dev|test|prod (got {app_env_raw!r})")

    if log_level_raw not in ("debug", "info", "warning", "error"):
        raise ValueError(
            f"LOG_LEVEL must be debug|info|warning|error (got {log_level_raw!r})"
        )

    try:
        port = int(port_raw)
    except ValueError:
        raise ValueError(f"PORT must be an integer (got {port_raw!r})") from None

    session_secret = _getenv("SESSION_SECRET", "")
    if not session_secret:
        if app_env_raw == "prod":
            raise ValueError("SESSION_SECRET must be set when APP_ENV=prod")
        session_secret = "dev-only-session-secret-change-me"

    admin_email = _getenv("FORUM_ADMIN_EMAIL", "") or None
    if admin_email is None and app_env_raw == "prod":
        raise ValueError("FORUM_ADMIN_EMAIL must be set when APP_ENV=prod")

    return Settings(  # type: ignore[arg-type]
        app_env=app_env_raw,
        log_level=log_level_raw,
        log_json=_getbool("LOG_JSON", False),
        port=port,
        redis_url=_getenv("REDIS_URL", "") or None,
        forum_url=_getenv("FORUM_URL", "http://localhost:8000"),
        session_secret=session_secret,
        admin_username=_getenv("FORUM_ADMIN_USERNAME", "admin"),
        admin_email=admin_email,
        keycloak=load_keycloak_settings(),
    )


SETTINGS = load_settings()
