"""Privileged transactional procedures.

These are the only code paths allowed to write the security-sensitive tables
(organizations, memberships, transactions) that the row policies deny
outright.  Each procedure:

* re-implements its own authorization explicitly against the store,
* validates fully before its first write,
* takes row locks where it must observe-then-act,
* audits every mutation it makes,
* and runs as one unit of work through :func:`cardstock.models.session.atomic`,
  so any error rolls back every step.

Elevated rights never leak out of this module: callers pass the acting
:class:`~cardstock.core.principal.Principal` and receive plain rows back.
"""

from __future__ import annotations

import datetime as dt
import decimal
import logging
import re
import uuid
from typing import Any

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from cardstock.audit import AuditAction, AuditRecorder, snapshot
from cardstock.config import RESERVED_SLUGS
from cardstock.core.principal import Principal
from cardstock.errors import (
    Conflict,
    InvariantViolation,
    NotFound,
    PermissionDenied,
    ValidationError,
)
from cardstock.invites import InviteState, invite_state, normalize_email
from cardstock.models import (
    InventoryItem,
    InventoryStatus,
    Invite,
    Membership,
    Organization,
    Role,
    Transaction,
)
from cardstock.models.session import atomic

__all__ = [
    "accept_invite",
    "change_member_role",
    "create_organization",
    "leave_organization",
    "mark_item_sold",
    "remove_member",
    "soft_delete_organization",
    "validate_slug",
]

logger = logging.getLogger(__name__)

SLUG_PATTERN = re.compile(r"^[a-z0-9][a-z0-9-]{0,30}[a-z0-9]$")
NAME_MAX_LENGTH = 100
PRICE_LIMIT = decimal.Decimal("100000000")  # NUMERIC(10, 2)

_recorder = AuditRecorder()


def _utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


def _audit(
    session: Session,
    principal: Principal,
    row: Any,
    action: AuditAction,
    *,
    before: dict[str, Any] | None = None,
) -> None:
    after = snapshot(row) if action != AuditAction.DELETE else None
    _recorder.record(
        session, actor_id=principal.id, row=row, action=action, before=before, after=after
    )


def validate_slug(slug: str) -> str:
    """Return ``slug`` if it is well formed and not reserved."""

    if not SLUG_PATTERN.match(slug or ""):
        raise ValidationError(
            "Invalid slug format: use 2-32 lowercase letters, digits or hyphens, "
            "starting and ending with a letter or digit."
        )
    if slug in RESERVED_SLUGS:
        raise ValidationError(f"Slug '{slug}' is reserved.")
    return slug


def _validate_name(name: str) -> str:
    trimmed = (name or "").strip()
    if not 1 <= len(trimmed) <= NAME_MAX_LENGTH:
        raise ValidationError(f"Name must be between 1 and {NAME_MAX_LENGTH} characters.")
    return trimmed


def _validate_price(price: Any) -> decimal.Decimal:
    try:
        value = decimal.Decimal(str(price))
    except (decimal.InvalidOperation, ValueError) as exc:
        raise ValidationError(f"Invalid price: {price!r}.") from exc
    if not value.is_finite() or value < 0 or value >= PRICE_LIMIT:
        raise ValidationError("Price must be a non-negative amount below 100,000,000.")
    if value.as_tuple().exponent < -2:  # type: ignore[operator]
        raise ValidationError("Price cannot have more than two decimal places.")
    return value.quantize(decimal.Decimal("0.01"))


def _membership_for_update(
    session: Session, principal_id: uuid.UUID, organization_id: uuid.UUID
) -> Membership | None:
    return session.execute(
        select(Membership)
        .where(Membership.user_id == principal_id)
        .where(Membership.organization_id == organization_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    ).scalar_one_or_none()


def _lock_owner_rows(session: Session, organization_id: uuid.UUID) -> list[Membership]:
    """Lock every owner membership of the organization for the rest of the transaction.

    Leaves, removals and demotions take these locks first, in id order and
    before any other membership lock, so the owner count they observe cannot
    change underneath them.
    """

    return list(
        session.execute(
            select(Membership)
            .where(Membership.organization_id == organization_id)
            .where(Membership.role == Role.OWNER)
            .order_by(Membership.id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalars()
    )


def _live_organization(session: Session, organization_id: uuid.UUID) -> Organization:
    organization = session.get(Organization, organization_id)
    if organization is None or organization.deleted_at is not None:
        raise NotFound("Organization not found.")
    return organization


@atomic
def create_organization(
    session: Session, principal: Principal, name: str, slug: str
) -> Organization:
    """Create an organization and make the caller its owner."""

    name = _validate_name(name)
    slug = validate_slug(slug)
    taken = session.execute(
        select(Organization.id).where(Organization.slug == slug)
    ).scalar_one_or_none()
    if taken is not None:
        raise Conflict(f"Slug '{slug}' is already in use.")

    now = _utcnow()
    organization = Organization(name=name, slug=slug, created_at=now, updated_at=now)
    session.add(organization)
    session.flush()
    _audit(session, principal, organization, AuditAction.INSERT)

    membership = Membership(
        user_id=principal.id,
        organization_id=organization.id,
        role=Role.OWNER,
        accepted_at=now,
        created_at=now,
    )
    session.add(membership)
    session.flush()
    _audit(session, principal, membership, AuditAction.INSERT)

    logger.info("Organization %s created by %s", organization.slug, principal.id)
    return organization


@atomic
def accept_invite(
    session: Session,
    principal: Principal,
    token: str,
    *,
    now: dt.datetime | None = None,
) -> Membership:
    """Turn an invite token into a membership for the caller.

    The invite row stays locked from the first check to the final write, and
    the claim itself is a guarded update, so of two concurrent acceptances
    only one can ever observe the invite as pending.
    """

    now = now or _utcnow()
    if not token:
        raise ValidationError("Invite token is required.")

    invite = session.execute(
        select(Invite)
        .where(Invite.token == token)
        .with_for_update()
        .execution_options(populate_existing=True)
    ).scalar_one_or_none()
    if invite is None:
        raise NotFound("Invalid invite token.")

    state = invite_state(invite, now)
    if state == InviteState.REVOKED:
        raise Conflict("Invite has been revoked.")
    if state == InviteState.ACCEPTED:
        raise Conflict("Invite has already been used.")
    if state == InviteState.EXPIRED:
        raise Conflict("Invite has expired.")

    organization = session.get(Organization, invite.organization_id)
    if organization is None or organization.deleted_at is not None:
        raise NotFound("Organization no longer exists.")

    if principal.normalized_email != invite.email.lower():
        raise PermissionDenied("Invite is for a different email address.")

    existing = session.execute(
        select(Membership.id)
        .where(Membership.user_id == principal.id)
        .where(Membership.organization_id == invite.organization_id)
    ).scalar_one_or_none()
    if existing is not None:
        raise Conflict("You are already a member of this organization.")

    before = snapshot(invite)
    claimed = session.execute(
        update(Invite)
        .where(Invite.id == invite.id)
        .where(Invite.accepted_at.is_(None))
        .where(Invite.revoked_at.is_(None))
        .values(accepted_at=now)
        .execution_options(synchronize_session=False)
    )
    if claimed.rowcount != 1:
        raise Conflict("Invite has already been used.")
    session.refresh(invite)
    _audit(session, principal, invite, AuditAction.UPDATE, before=before)

    membership = Membership(
        user_id=principal.id,
        organization_id=invite.organization_id,
        role=invite.role,
        invited_by=invite.invited_by,
        invited_at=invite.created_at,
        accepted_at=now,
        created_at=now,
    )
    session.add(membership)
    session.flush()
    _audit(session, principal, membership, AuditAction.INSERT)

    logger.info(
        "Invite %s accepted by %s into organization %s",
        invite.id,
        principal.id,
        invite.organization_id,
    )
    return membership


@atomic
def mark_item_sold(
    session: Session,
    principal: Principal,
    item_id: uuid.UUID,
    price: Any,
    *,
    buyer_email: str | None = None,
    buyer_notes: str | None = None,
    now: dt.datetime | None = None,
) -> Transaction:
    """Mark an available item as sold and record its single sale transaction.

    The ``available -> sold`` transition is a guarded update, so a retry (or
    a concurrent caller that slipped past the lock) finds nothing to update
    and cannot record a second sale.
    """

    sold_price = _validate_price(price)
    buyer = normalize_email(buyer_email) if buyer_email else None
    now = now or _utcnow()

    item = session.execute(
        select(InventoryItem)
        .where(InventoryItem.id == item_id)
        .where(InventoryItem.deleted_at.is_(None))
        .with_for_update()
        .execution_options(populate_existing=True)
    ).scalar_one_or_none()
    if item is None:
        raise NotFound("Inventory item not found.")

    # Non-members get the same answer as for a missing item.
    membership = session.execute(
        select(Membership.id)
        .join(Organization, Organization.id == Membership.organization_id)
        .where(Membership.user_id == principal.id)
        .where(Membership.organization_id == item.organization_id)
        .where(Organization.deleted_at.is_(None))
    ).scalar_one_or_none()
    if membership is None:
        raise NotFound("Inventory item not found.")

    if item.status != InventoryStatus.AVAILABLE:
        raise Conflict(f"Card is not available (status: {InventoryStatus(item.status).value}).")

    before = snapshot(item)
    moved = session.execute(
        update(InventoryItem)
        .where(InventoryItem.id == item.id)
        .where(InventoryItem.status == InventoryStatus.AVAILABLE)
        .where(InventoryItem.deleted_at.is_(None))
        .values(status=InventoryStatus.SOLD, updated_at=now, updated_by=principal.id)
        .execution_options(synchronize_session=False)
    )
    if moved.rowcount != 1:
        raise Conflict("Card is no longer available.")
    session.refresh(item)
    _audit(session, principal, item, AuditAction.UPDATE, before=before)

    sale = Transaction(
        organization_id=item.organization_id,
        inventory_id=item.id,
        sold_price=sold_price,
        sold_at=now,
        sold_by=principal.id,
        buyer_email=buyer,
        buyer_notes=buyer_notes,
        created_at=now,
    )
    session.add(sale)
    session.flush()
    _audit(session, principal, sale, AuditAction.INSERT)

    logger.info("Item %s sold by %s for %s", item.id, principal.id, sold_price)
    return sale


@atomic
def soft_delete_organization(
    session: Session,
    principal: Principal,
    organization_id: uuid.UUID,
    *,
    now: dt.datetime | None = None,
) -> Organization:
    """Hide an organization and everything it owns; owners only."""

    now = now or _utcnow()
    organization = session.execute(
        select(Organization)
        .where(Organization.id == organization_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    ).scalar_one_or_none()
    if organization is None or organization.deleted_at is not None:
        raise NotFound("Organization not found.")

    membership = _membership_for_update(session, principal.id, organization_id)
    if membership is None:
        raise NotFound("Organization not found.")
    if membership.role != Role.OWNER:
        raise PermissionDenied("Only owners can delete organizations.")

    before = snapshot(organization)
    organization.deleted_at = now
    organization.updated_at = now
    session.flush()
    _audit(session, principal, organization, AuditAction.UPDATE, before=before)

    logger.info("Organization %s soft-deleted by %s", organization.id, principal.id)
    return organization


def _ensure_other_owner(owners: list[Membership], leaving: Membership) -> None:
    if leaving.role == Role.OWNER and not any(o.id != leaving.id for o in owners):
        raise InvariantViolation(
            "Cannot leave: you are the only owner. "
            "Transfer ownership first or delete the organization."
        )


def _delete_membership(session: Session, principal: Principal, membership: Membership) -> None:
    before = snapshot(membership)
    _recorder.record(
        session,
        actor_id=principal.id,
        row=membership,
        action=AuditAction.DELETE,
        before=before,
    )
    session.delete(membership)
    session.flush()


@atomic
def leave_organization(
    session: Session, principal: Principal, organization_id: uuid.UUID
) -> None:
    """Remove the caller's own membership unless it is the last owner."""

    _live_organization(session, organization_id)
    owners = _lock_owner_rows(session, organization_id)
    membership = _membership_for_update(session, principal.id, organization_id)
    if membership is None:
        raise NotFound("Not a member of this organization.")
    _ensure_other_owner(owners, membership)

    _delete_membership(session, principal, membership)
    logger.info("Principal %s left organization %s", principal.id, organization_id)


@atomic
def change_member_role(
    session: Session,
    principal: Principal,
    membership_id: uuid.UUID,
    role: Role | str,
) -> Membership:
    """Change a member's role; owners only, never demoting the last owner."""

    try:
        new_role = Role(role)
    except ValueError as exc:
        raise ValidationError(f"Invalid role: {role!r}.") from exc

    target = session.get(Membership, membership_id)
    if target is None:
        raise NotFound("Membership not found.")
    _live_organization(session, target.organization_id)
    owners = _lock_owner_rows(session, target.organization_id)
    acting = _membership_for_update(session, principal.id, target.organization_id)
    if acting is None:
        raise NotFound("Membership not found.")
    if acting.role != Role.OWNER:
        raise PermissionDenied("Only owners can change member roles.")

    target = session.execute(
        select(Membership)
        .where(Membership.id == membership_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    ).scalar_one()
    if target.role == new_role:
        return target
    if target.role == Role.OWNER and not any(o.id != target.id for o in owners):
        raise InvariantViolation("Cannot demote the only owner of the organization.")

    before = snapshot(target)
    target.role = new_role
    session.flush()
    _audit(session, principal, target, AuditAction.UPDATE, before=before)

    logger.info(
        "Membership %s role changed to %s by %s", target.id, new_role.value, principal.id
    )
    return target


@atomic
def remove_member(
    session: Session, principal: Principal, membership_id: uuid.UUID
) -> None:
    """Remove another principal's membership.

    Owners may remove anyone, admins may remove admins and members.  The last
    owner can never be removed.
    """

    target = session.get(Membership, membership_id)
    if target is None:
        raise NotFound("Membership not found.")
    organization_id = target.organization_id
    _live_organization(session, organization_id)
    owners = _lock_owner_rows(session, organization_id)
    acting = _membership_for_update(session, principal.id, organization_id)
    if acting is None:
        raise NotFound("Membership not found.")
    if acting.id == target.id:
        raise ValidationError("Use leave_organization to remove your own membership.")
    if not Role(acting.role).at_least(Role.ADMIN):
        raise PermissionDenied("Only admins and owners can remove members.")

    target = session.execute(
        select(Membership)
        .where(Membership.id == membership_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    ).scalar_one()
    if target.role == Role.OWNER:
        if acting.role != Role.OWNER:
            raise PermissionDenied("Only owners can remove an owner.")
        if not any(o.id != target.id for o in owners):
            raise InvariantViolation("Cannot remove the only owner of the organization.")

    _delete_membership(session, principal, target)
    logger.info("Membership %s removed by %s", membership_id, principal.id)


def owner_count(session: Session, organization_id: uuid.UUID) -> int:
    """Number of owner memberships of an organization."""

    return int(
        session.execute(
            select(func.count())
            .select_from(Membership)
            .where(Membership.organization_id == organization_id)
            .where(Membership.role == Role.OWNER)
        ).scalar_one()
    )
