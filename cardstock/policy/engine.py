"""Per-row authorization engine.

A :class:`PolicyEngine` holds one :class:`TablePolicy` per governed table.
Each policy carries at most one predicate per :class:`Operation`; a missing
policy or a missing predicate denies the operation.  Predicates receive the
:class:`PolicyContext` of the acting principal, the candidate row (``None``
for inserts) and the proposed new row (``None`` for selects and deletes) and
return a plain boolean.

Reads are filtered row by row: a bulk read returns only the admissible subset
instead of failing as a whole.  A policy may also expose a coarse SQL
``scope`` that narrows bulk reads before the per-row pass; the scope must
never exclude a row the select predicate would admit.

The context is built from the store once per query, so every predicate in a
single query observes the same membership snapshot.
"""

from __future__ import annotations

import dataclasses
import enum
import logging
import uuid
from collections.abc import Callable, Iterable, Mapping, Sequence
from typing import Any, TypeVar

from sqlalchemy import Select, select
from sqlalchemy.orm import Session
from sqlalchemy.sql.elements import ColumnElement

from cardstock.core.principal import Principal
from cardstock.core.tenancy import co_member_ids, organization_roles
from cardstock.errors import PermissionDenied
from cardstock.models import Role

__all__ = [
    "Operation",
    "PolicyContext",
    "PolicyEngine",
    "Predicate",
    "ProposedRow",
    "TablePolicy",
]

logger = logging.getLogger(__name__)

T = TypeVar("T")


class Operation(str, enum.Enum):
    SELECT = "select"
    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"


class PolicyContext:
    """Acting principal plus the membership relation as seen by one query."""

    def __init__(self, engine: "PolicyEngine", session: Session, principal: Principal) -> None:
        self.engine = engine
        self.session = session
        self.principal = principal
        self._roles: dict[uuid.UUID, Role] | None = None
        self._co_members: set[uuid.UUID] | None = None

    @property
    def principal_id(self) -> uuid.UUID:
        return self.principal.id

    @property
    def roles(self) -> dict[uuid.UUID, Role]:
        if self._roles is None:
            self._roles = organization_roles(self.session, self.principal.id)
        return self._roles

    @property
    def co_members(self) -> set[uuid.UUID]:
        if self._co_members is None:
            self._co_members = co_member_ids(self.session, self.principal.id)
        return self._co_members

    def organization_ids(self, minimum: Role = Role.MEMBER) -> list[uuid.UUID]:
        return [org_id for org_id, role in self.roles.items() if role.at_least(minimum)]

    def role_in(self, organization_id: uuid.UUID | None) -> Role | None:
        if organization_id is None:
            return None
        return self.roles.get(organization_id)

    def has_role(self, organization_id: uuid.UUID | None, minimum: Role = Role.MEMBER) -> bool:
        role = self.role_in(organization_id)
        return role is not None and role.at_least(minimum)

    def visible(self, model: type[T], pk: Any) -> T | None:
        """Fetch a row of another table only if its own select predicate admits it."""

        row = self.session.get(model, pk)
        if row is None or not self.engine.is_allowed(self, Operation.SELECT, row):
            return None
        return row


Predicate = Callable[[PolicyContext, Any, Any], bool]
Scope = Callable[[PolicyContext], ColumnElement[bool]]


@dataclasses.dataclass(frozen=True)
class TablePolicy:
    """Predicates governing one table."""

    model: type
    select: Predicate | None = None
    insert: Predicate | None = None
    update: Predicate | None = None
    delete: Predicate | None = None
    scope: Scope | None = None

    @property
    def table_name(self) -> str:
        return self.model.__tablename__  # type: ignore[attr-defined]

    def predicate_for(self, operation: Operation) -> Predicate | None:
        return getattr(self, operation.value)


class ProposedRow:
    """Read-only view of a row with pending changes applied on top."""

    def __init__(self, row: Any, changes: Mapping[str, Any]) -> None:
        self._row = row
        self._changes = dict(changes)

    def __getattr__(self, name: str) -> Any:
        if name.startswith("_"):
            raise AttributeError(name)
        if name in self._changes:
            return self._changes[name]
        return getattr(self._row, name)


class PolicyEngine:
    """Registry and evaluator of table policies."""

    def __init__(self, policies: Iterable[TablePolicy] = ()) -> None:
        self._policies: dict[str, TablePolicy] = {}
        for policy in policies:
            self.register(policy)

    def register(self, policy: TablePolicy) -> None:
        self._policies[policy.table_name] = policy

    def policy_for(self, model: type | Any) -> TablePolicy | None:
        table_name = getattr(model, "__tablename__", None)
        if table_name is None:
            return None
        return self._policies.get(table_name)

    def context(self, session: Session, principal: Principal) -> PolicyContext:
        return PolicyContext(self, session, principal)

    def is_allowed(
        self,
        ctx: PolicyContext,
        operation: Operation,
        row: Any = None,
        new_row: Any = None,
    ) -> bool:
        target = row if row is not None else new_row
        policy = self.policy_for(type(target) if target is not None else None)
        if policy is None:
            return False
        predicate = policy.predicate_for(operation)
        if predicate is None:
            return False
        return bool(predicate(ctx, row, new_row))

    def authorize(
        self,
        ctx: PolicyContext,
        operation: Operation,
        row: Any = None,
        new_row: Any = None,
    ) -> None:
        """Raise :class:`PermissionDenied` unless the operation is admissible."""

        if not self.is_allowed(ctx, operation, row, new_row):
            target = row if row is not None else new_row
            table = getattr(target, "__tablename__", type(target).__name__)
            logger.debug(
                "Denied %s on %s for principal %s", operation.value, table, ctx.principal_id
            )
            raise PermissionDenied(f"Not allowed to {operation.value} {table}.")

    def filter_rows(self, ctx: PolicyContext, rows: Iterable[T]) -> list[T]:
        return [row for row in rows if self.is_allowed(ctx, Operation.SELECT, row)]

    def scoped(self, ctx: PolicyContext, model: type[T]) -> Select[tuple[T]]:
        """Return ``SELECT model`` narrowed by the policy scope when it has one."""

        stmt = select(model)
        policy = self.policy_for(model)
        if policy is not None and policy.scope is not None:
            stmt = stmt.where(policy.scope(ctx))
        return stmt

    def query(
        self,
        session: Session,
        principal: Principal,
        model: type[T],
        *criteria: ColumnElement[bool],
        order_by: Sequence[Any] = (),
        limit: int | None = None,
    ) -> list[T]:
        """Run a filtered read and return the rows admitted for ``principal``."""

        ctx = self.context(session, principal)
        stmt = self.scoped(ctx, model).where(*criteria)
        if order_by:
            stmt = stmt.order_by(*order_by)
        rows = session.execute(stmt).scalars().all()
        visible = self.filter_rows(ctx, rows)
        if limit is not None:
            visible = visible[:limit]
        return visible
