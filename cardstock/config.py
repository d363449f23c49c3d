"""Runtime configuration loaded from the environment."""

from __future__ import annotations

import dataclasses
import os
from functools import lru_cache

RESERVED_SLUGS = frozenset({"api", "admin", "www", "app", "auth", "login", "register"})
DEFAULT_INVITE_TTL_SECONDS = 60 * 60 * 24 * 7  # seven days


@dataclasses.dataclass(frozen=True)
class Settings:
    """Core settings shared by the HTTP layer, procedures and tools."""

    database_url: str | None = None
    isolation_level: str = "SERIALIZABLE"
    invite_ttl_seconds: int = DEFAULT_INVITE_TTL_SECONDS
    accept_invite_rate_limit: str = "10/minute"
    admin_ui_origins: tuple[str, ...] = ()


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Load settings from the environment with sane defaults for development."""

    origins = os.getenv("ADMIN_UI_ORIGINS", "")
    return Settings(
        database_url=os.getenv("DATABASE_URL") or None,
        isolation_level=os.getenv("DATABASE_ISOLATION_LEVEL", "SERIALIZABLE").upper(),
        invite_ttl_seconds=int(
            os.getenv("INVITE_TTL_SECONDS", str(DEFAULT_INVITE_TTL_SECONDS))
        ),
        accept_invite_rate_limit=os.getenv("RATE_LIMIT_ACCEPT_INVITE", "10/minute"),
        admin_ui_origins=tuple(o.strip() for o in origins.split(",") if o.strip()),
    )


def reset_settings_cache() -> None:
    """Clear cached settings; useful in tests when env vars change."""

    get_settings.cache_clear()


__all__ = [
    "DEFAULT_INVITE_TTL_SECONDS",
    "RESERVED_SLUGS",
    "Settings",
    "get_settings",
    "reset_settings_cache",
]
