"""Authentication dependencies for FastAPI routers."""

from __future__ import annotations

import logging
from collections.abc import Iterator

from fastapi import Depends
from sqlalchemy.orm import Session, sessionmaker

from cardstock.core.auth import get_principal_from_request
from cardstock.core.principal import Principal
from cardstock.core.tenancy import ensure_profile
from cardstock.models.session import get_sessionmaker

logger = logging.getLogger(__name__)

_SESSION_FACTORY: sessionmaker[Session] | None = None


def _get_session_factory() -> sessionmaker[Session]:
    global _SESSION_FACTORY
    if _SESSION_FACTORY is None:
        _SESSION_FACTORY = get_sessionmaker()
    return _SESSION_FACTORY


def get_db_session() -> Iterator[Session]:
    """Yield a SQLAlchemy session for request-scoped dependencies."""

    session = _get_session_factory()()
    try:
        yield session
    finally:
        session.close()


async def get_current_principal(
    principal: Principal = Depends(get_principal_from_request),
    session: Session = Depends(get_db_session),
) -> Principal:
    """Resolve the caller and make sure a profile row exists for it."""

    try:
        ensure_profile(session, principal)
        session.commit()
    except Exception:
        session.rollback()
        logger.exception("Failed to provision profile for %s", principal.id)
        raise
    return principal


__all__ = ["get_current_principal", "get_db_session"]
