"""Helpers for configuring SQLAlchemy engine and session factories."""

from __future__ import annotations

import functools
import logging
import uuid
from collections.abc import Callable
from typing import Any, TypeVar

from sqlalchemy import Engine, create_engine, event
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session, sessionmaker

from cardstock.config import get_settings
from cardstock.errors import Conflict, CoreError

from . import Base

logger = logging.getLogger(__name__)

T = TypeVar("T")

# serialization_failure, deadlock_detected
CONFLICT_SQLSTATES = frozenset({"40001", "40P01"})


def get_engine(database_url: str | None = None, **kwargs: object) -> Engine:
    """Create a SQLAlchemy engine.

    Args:
        database_url: Optional database URL. When ``None`` the ``DATABASE_URL``
            environment variable is used.
        **kwargs: Additional keyword arguments forwarded to
            :func:`sqlalchemy.create_engine`.  ``isolation_level`` defaults to
            the configured level (``SERIALIZABLE`` unless overridden).

    Returns:
        Configured SQLAlchemy :class:`~sqlalchemy.engine.Engine` instance.
    """

    settings = get_settings()
    url = database_url or settings.database_url
    if not url:
        raise RuntimeError("DATABASE_URL is not configured.")

    kwargs.setdefault("isolation_level", settings.isolation_level)
    engine = create_engine(url, **kwargs)

    if engine.dialect.name == "sqlite":

        @event.listens_for(engine, "connect")
        def _configure_sqlite(dbapi_connection, _connection_record):  # pragma: no cover - dialect hook
            dbapi_connection.create_function("gen_random_uuid", 0, lambda: str(uuid.uuid4()))
            dbapi_connection.execute("PRAGMA foreign_keys=ON")

    return engine


def get_sessionmaker(database_url: str | None = None, **kwargs: object) -> sessionmaker[Session]:
    """Return a session factory bound to the configured engine."""

    engine = get_engine(database_url=database_url, **kwargs)
    return sessionmaker(bind=engine, expire_on_commit=False, future=True)


def atomic(func: Callable[..., T]) -> Callable[..., T]:
    """Commit the wrapped unit of work on success and roll it back on any error.

    The wrapped callable receives the session as its first argument.  Core
    errors propagate unchanged; an ``IntegrityError`` that escapes the unit of
    work (a constraint lost to a concurrent writer), a serialization failure
    or a deadlock is reported as a :class:`~cardstock.errors.Conflict`.
    """

    @functools.wraps(func)
    def wrapper(session: Session, *args: Any, **kwargs: Any) -> T:
        try:
            result = func(session, *args, **kwargs)
            session.commit()
        except CoreError as exc:
            session.rollback()
            logger.info("%s refused (%s): %s", func.__name__, exc.kind, exc.message)
            raise
        except IntegrityError as exc:
            session.rollback()
            logger.warning("%s lost a constraint race: %s", func.__name__, exc.orig)
            raise Conflict("The change conflicts with a concurrent update.") from exc
        except OperationalError as exc:
            session.rollback()
            if getattr(exc.orig, "sqlstate", None) not in CONFLICT_SQLSTATES:
                logger.exception("%s failed; transaction rolled back", func.__name__)
                raise
            logger.warning("%s lost a concurrency race: %s", func.__name__, exc.orig)
            raise Conflict("The change conflicts with a concurrent update.") from exc
        except Exception:
            session.rollback()
            logger.exception("%s failed; transaction rolled back", func.__name__)
            raise
        logger.info("%s committed", func.__name__)
        return result

    return wrapper


__all__ = ["Base", "atomic", "get_engine", "get_sessionmaker"]
