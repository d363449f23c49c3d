"""Security utilities exposed for convenience."""

from .auth import get_current_principal, get_db_session
from .tokens import (
    JWTSettings,
    create_access_token,
    get_jwt_settings,
    reset_jwt_settings_cache,
)

__all__ = [
    "JWTSettings",
    "create_access_token",
    "get_current_principal",
    "get_db_session",
    "get_jwt_settings",
    "reset_jwt_settings_cache",
]
