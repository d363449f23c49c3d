"""Policy-scoped direct access to governed tables.

:class:`TenantRepository` is the only path through which application code
reads or writes governed rows directly.  Every call evaluates the row policy
for the acting principal, and every write maintains ``updated_at`` /
``updated_by`` and records its audit entry as explicit steps of the caller's
transaction.  Committing is left to the caller so several calls can form one
unit of work.
"""

from __future__ import annotations

import datetime as dt
from collections.abc import Mapping, Sequence
from typing import Any, TypeVar

from sqlalchemy import inspect as sa_inspect
from sqlalchemy.orm import Session
from sqlalchemy.sql.elements import ColumnElement

from cardstock.audit import AuditAction, AuditRecorder, snapshot
from cardstock.core.principal import Principal
from cardstock.errors import NotFound, ValidationError
from cardstock.policy import Operation, PolicyEngine, ProposedRow, default_policy_engine

__all__ = ["TenantRepository"]

T = TypeVar("T")


def _utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


class TenantRepository:
    """Governed reads and writes on behalf of one principal."""

    def __init__(
        self,
        session: Session,
        principal: Principal,
        *,
        policies: PolicyEngine | None = None,
        recorder: AuditRecorder | None = None,
    ) -> None:
        self.session = session
        self.principal = principal
        self.policies = policies or default_policy_engine()
        self.recorder = recorder or AuditRecorder()

    def select(
        self,
        model: type[T],
        *criteria: ColumnElement[bool],
        order_by: Sequence[Any] = (),
        limit: int | None = None,
    ) -> list[T]:
        """Return the rows of ``model`` matching ``criteria`` that the principal may see."""

        return self.policies.query(
            self.session, self.principal, model, *criteria, order_by=order_by, limit=limit
        )

    def get(self, model: type[T], pk: Any) -> T:
        """Return one visible row or raise :class:`NotFound`."""

        ctx = self.policies.context(self.session, self.principal)
        row = ctx.visible(model, pk)
        if row is None:
            raise NotFound(f"{_label(model)} not found.")
        return row

    def insert(self, row: T) -> T:
        ctx = self.policies.context(self.session, self.principal)
        self.policies.authorize(ctx, Operation.INSERT, None, row)
        if _has_column(row, "created_by") and getattr(row, "created_by") is None:
            setattr(row, "created_by", self.principal.id)
        self.session.add(row)
        self.session.flush()
        self._audit(row, AuditAction.INSERT, after=snapshot(row))
        return row

    def update(self, model: type[T], pk: Any, changes: Mapping[str, Any]) -> T:
        row = self.get(model, pk)
        _check_columns(row, changes)
        ctx = self.policies.context(self.session, self.principal)
        self.policies.authorize(ctx, Operation.UPDATE, row, ProposedRow(row, changes))

        before = snapshot(row)
        for key, value in changes.items():
            setattr(row, key, value)
        if _has_column(row, "updated_at"):
            setattr(row, "updated_at", _utcnow())
        if _has_column(row, "updated_by"):
            setattr(row, "updated_by", self.principal.id)
        self.session.flush()
        self._audit(row, AuditAction.UPDATE, before=before, after=snapshot(row))
        return row

    def soft_delete(self, model: type[T], pk: Any) -> T:
        return self.update(model, pk, {"deleted_at": _utcnow()})

    def delete(self, model: type[T], pk: Any) -> None:
        row = self.get(model, pk)
        ctx = self.policies.context(self.session, self.principal)
        self.policies.authorize(ctx, Operation.DELETE, row)

        self._delete_dependents(row)
        before = snapshot(row)
        self._audit(row, AuditAction.DELETE, before=before)
        self.session.delete(row)
        self.session.flush()

    def _delete_dependents(self, row: Any) -> None:
        """Delete the rows a delete would cascade to, each governed and audited."""

        for relationship in sa_inspect(type(row)).relationships:
            if not (relationship.uselist and relationship.cascade.delete):
                continue
            for child in list(getattr(row, relationship.key)):
                self.delete(type(child), sa_inspect(child).identity[0])
            self.session.expire(row, [relationship.key])

    def _audit(self, row: Any, action: AuditAction, **images: Any) -> None:
        if self.recorder.audits(row):
            self.recorder.record(
                self.session, actor_id=self.principal.id, row=row, action=action, **images
            )


def _label(model: type) -> str:
    return model.__name__


def _has_column(row: Any, name: str) -> bool:
    return name in sa_inspect(type(row)).columns


def _check_columns(row: Any, changes: Mapping[str, Any]) -> None:
    mapper = sa_inspect(type(row))
    primary_keys = {column.key for column in mapper.primary_key}
    for key in changes:
        if key not in mapper.columns:
            raise ValidationError(f"Unknown field '{key}' for {_label(type(row))}.")
        if key in primary_keys:
            raise ValidationError(f"Field '{key}' cannot be changed.")
