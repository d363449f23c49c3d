"""Explicit audit recording for governed-table mutations.

The recorder is invoked as an ordinary step of the unit of work that performs
the mutation.  It flushes immediately, so a failure to persist the entry
raises inside the caller's transaction and rolls the mutation back with it;
an entry is never silently dropped.
"""

from __future__ import annotations

import datetime as dt
import decimal
import enum
import logging
import uuid
from typing import Any

from sqlalchemy import inspect as sa_inspect
from sqlalchemy.orm import Session

from cardstock.models import AuditEntry, Organization

__all__ = ["AUDITED_TABLES", "AuditAction", "AuditRecorder", "snapshot"]

logger = logging.getLogger(__name__)

AUDITED_TABLES = frozenset(
    {
        "organizations",
        "memberships",
        "inventory",
        "inventory_images",
        "transactions",
        "invites",
    }
)


class AuditAction(str, enum.Enum):
    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


def _json_safe(value: Any) -> Any:
    if isinstance(value, enum.Enum):
        return value.value
    if isinstance(value, uuid.UUID):
        return str(value)
    if isinstance(value, dt.datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=dt.timezone.utc)
        return value.isoformat()
    if isinstance(value, decimal.Decimal):
        return str(value)
    return value


def snapshot(row: Any) -> dict[str, Any]:
    """Return a JSON-safe image of every mapped column of ``row``."""

    mapper = sa_inspect(row).mapper
    return {
        attr.key: _json_safe(getattr(row, attr.key)) for attr in mapper.column_attrs
    }


class AuditRecorder:
    """Append one :class:`AuditEntry` per governed mutation."""

    def audits(self, row_or_model: Any) -> bool:
        return getattr(row_or_model, "__tablename__", None) in AUDITED_TABLES

    def record(
        self,
        session: Session,
        *,
        actor_id: uuid.UUID | None,
        row: Any,
        action: AuditAction,
        before: dict[str, Any] | None = None,
        after: dict[str, Any] | None = None,
    ) -> AuditEntry:
        """Persist the entry for ``row`` in the current transaction.

        Args:
            session: Session carrying the mutation being audited.
            actor_id: Acting principal.
            row: The mutated ORM instance; supplies table, record and
                organization identity.
            action: Kind of mutation.
            before: Pre-image, required for updates and deletes.
            after: Post-image, required for inserts and updates.
        """

        table_name = row.__tablename__
        if table_name not in AUDITED_TABLES:
            raise ValueError(f"Table {table_name!r} is not audited.")
        if action in (AuditAction.UPDATE, AuditAction.DELETE) and before is None:
            raise ValueError(f"{action.value} audit requires a before-image.")
        if action in (AuditAction.INSERT, AuditAction.UPDATE) and after is None:
            raise ValueError(f"{action.value} audit requires an after-image.")

        organization_id = row.id if isinstance(row, Organization) else row.organization_id
        entry = AuditEntry(
            organization_id=organization_id,
            table_name=table_name,
            record_id=row.id,
            action=action.value,
            old_data=before if action != AuditAction.INSERT else None,
            new_data=after if action != AuditAction.DELETE else None,
            changed_by=actor_id,
        )
        session.add(entry)
        session.flush()
        logger.debug(
            "Audited %s %s/%s by %s", action.value, table_name, row.id, actor_id
        )
        return entry
