"""Append-only audit trail model."""

from __future__ import annotations

import datetime as dt
import uuid
from typing import Any

from sqlalchemy import JSON, DateTime, ForeignKey, Index, String, text
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column

from . import Base
from .tenant import _utcnow

_JSONType = JSON().with_variant(JSONB(), "postgresql")


class AuditEntry(Base):
    """Immutable record of one mutation to a governed row.

    Rows are written by :class:`cardstock.audit.AuditRecorder` inside the same
    transaction as the mutation they describe and are never updated or
    deleted by any flow (other than the cascade of a hard-deleted
    organization).
    """

    __tablename__ = "audit_log"
    __table_args__ = (
        Index("ix_audit_org_table", "organization_id", "table_name", "changed_at"),
        Index("ix_audit_record", "record_id"),
        Index("ix_audit_changed_by", "changed_by"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
        server_default=text("gen_random_uuid()"),
    )
    organization_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=False,
    )
    table_name: Mapped[str] = mapped_column(String(length=63), nullable=False)
    record_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    action: Mapped[str] = mapped_column(String(length=16), nullable=False)
    old_data: Mapped[dict[str, Any] | None] = mapped_column(_JSONType)
    new_data: Mapped[dict[str, Any] | None] = mapped_column(_JSONType)
    changed_by: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("profiles.user_id", ondelete="SET NULL")
    )
    changed_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )


__all__ = ["AuditEntry"]
