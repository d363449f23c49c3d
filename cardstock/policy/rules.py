"""Row policies for every governed table.

Writes to the security-sensitive tables (organization creation and
deletion, membership writes, sale records, the audit trail) are denied here
outright; those changes only happen inside :mod:`cardstock.procedures`.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Any

from sqlalchemy import and_, false, or_

from cardstock.models import (
    AuditEntry,
    InventoryImage,
    InventoryItem,
    InventoryStatus,
    Invite,
    Membership,
    Organization,
    Profile,
    Role,
    Transaction,
)

from .engine import PolicyContext, PolicyEngine, TablePolicy

__all__ = ["build_policies", "default_policy_engine", "deny"]


def deny(ctx: PolicyContext, row: Any, new: Any) -> bool:
    """Explicit deny; documents writes that only privileged procedures perform."""

    return False


def _in(column, ids):
    if not ids:
        return false()
    return column.in_(ids)


def _unchanged(row: Any, new: Any, *names: str) -> bool:
    return all(getattr(row, name) == getattr(new, name) for name in names)


# profiles


def _profile_select(ctx: PolicyContext, row: Profile, new: Any) -> bool:
    return row.user_id == ctx.principal_id or row.user_id in ctx.co_members


def _profile_insert(ctx: PolicyContext, row: Any, new: Profile) -> bool:
    return new.user_id == ctx.principal_id


def _profile_update(ctx: PolicyContext, row: Profile, new: Any) -> bool:
    # The registered e-mail belongs to the identity provider.
    return row.user_id == ctx.principal_id and _unchanged(row, new, "user_id", "email")


# organizations


def _organization_scope(ctx: PolicyContext):
    return and_(_in(Organization.id, ctx.organization_ids()), Organization.deleted_at.is_(None))


def _organization_select(ctx: PolicyContext, row: Organization, new: Any) -> bool:
    return row.deleted_at is None and ctx.has_role(row.id)


def _organization_update(ctx: PolicyContext, row: Organization, new: Any) -> bool:
    return (
        row.deleted_at is None
        and new.deleted_at is None
        and ctx.has_role(row.id, Role.ADMIN)
        and _unchanged(row, new, "id", "slug")
    )


# memberships


def _membership_scope(ctx: PolicyContext):
    return _in(Membership.organization_id, ctx.organization_ids())


def _membership_select(ctx: PolicyContext, row: Membership, new: Any) -> bool:
    return ctx.has_role(row.organization_id)


# inventory


def _inventory_scope(ctx: PolicyContext):
    return and_(
        _in(InventoryItem.organization_id, ctx.organization_ids()),
        InventoryItem.deleted_at.is_(None),
    )


def _inventory_select(ctx: PolicyContext, row: InventoryItem, new: Any) -> bool:
    return row.deleted_at is None and ctx.has_role(row.organization_id)


def _inventory_insert(ctx: PolicyContext, row: Any, new: InventoryItem) -> bool:
    return (
        ctx.has_role(new.organization_id)
        and new.status != InventoryStatus.SOLD
        and new.deleted_at is None
    )


def _inventory_update(ctx: PolicyContext, row: InventoryItem, new: Any) -> bool:
    # Moving into or out of ``sold`` must go together with the sale record.
    sold_before = row.status == InventoryStatus.SOLD
    sold_after = new.status == InventoryStatus.SOLD
    return (
        row.deleted_at is None
        and ctx.has_role(row.organization_id)
        and _unchanged(row, new, "id", "organization_id")
        and sold_before == sold_after
    )


def _inventory_delete(ctx: PolicyContext, row: InventoryItem, new: Any) -> bool:
    # A sold item carries its immutable sale record.
    return row.status != InventoryStatus.SOLD and ctx.has_role(row.organization_id, Role.ADMIN)


# transactions


def _transaction_scope(ctx: PolicyContext):
    return _in(Transaction.organization_id, ctx.organization_ids())


def _transaction_select(ctx: PolicyContext, row: Transaction, new: Any) -> bool:
    return ctx.has_role(row.organization_id)


# invites


def _invite_scope(ctx: PolicyContext):
    return _in(Invite.organization_id, ctx.organization_ids(Role.ADMIN))


def _invite_select(ctx: PolicyContext, row: Invite, new: Any) -> bool:
    return ctx.has_role(row.organization_id, Role.ADMIN)


def _may_grant(ctx: PolicyContext, organization_id, role: Role) -> bool:
    if role == Role.OWNER:
        return ctx.has_role(organization_id, Role.OWNER)
    return ctx.has_role(organization_id, Role.ADMIN)


def _invite_insert(ctx: PolicyContext, row: Any, new: Invite) -> bool:
    return (
        new.accepted_at is None
        and new.revoked_at is None
        and _may_grant(ctx, new.organization_id, Role(new.role or Role.MEMBER))
    )


def _invite_update(ctx: PolicyContext, row: Invite, new: Any) -> bool:
    # Acceptance only happens through the accept-invite procedure; revoked and
    # accepted invites are final.
    return (
        row.revoked_at is None
        and row.accepted_at is None
        and ctx.has_role(row.organization_id, Role.ADMIN)
        and _unchanged(row, new, "id", "organization_id", "email", "token", "accepted_at")
        and _may_grant(ctx, row.organization_id, Role(new.role))
    )


def _invite_delete(ctx: PolicyContext, row: Invite, new: Any) -> bool:
    return ctx.has_role(row.organization_id, Role.ADMIN)


# inventory_images


def _image_scope(ctx: PolicyContext):
    return _in(InventoryImage.organization_id, ctx.organization_ids())


def _image_select(ctx: PolicyContext, row: InventoryImage, new: Any) -> bool:
    return ctx.has_role(row.organization_id)


def _image_insert(ctx: PolicyContext, row: Any, new: InventoryImage) -> bool:
    if not ctx.has_role(new.organization_id):
        return False
    item = ctx.visible(InventoryItem, new.inventory_id)
    return item is not None and item.organization_id == new.organization_id


def _image_update(ctx: PolicyContext, row: InventoryImage, new: Any) -> bool:
    return ctx.has_role(row.organization_id) and _unchanged(
        row, new, "id", "organization_id", "inventory_id"
    )


def _image_delete(ctx: PolicyContext, row: InventoryImage, new: Any) -> bool:
    if not ctx.has_role(row.organization_id):
        return False
    return row.created_by == ctx.principal_id or ctx.has_role(row.organization_id, Role.ADMIN)


# audit_log


def _audit_scope(ctx: PolicyContext):
    return _in(AuditEntry.organization_id, ctx.organization_ids(Role.ADMIN))


def _audit_select(ctx: PolicyContext, row: AuditEntry, new: Any) -> bool:
    return ctx.has_role(row.organization_id, Role.ADMIN)


def build_policies() -> list[TablePolicy]:
    """Return the policy set for every governed table."""

    return [
        TablePolicy(
            Profile,
            select=_profile_select,
            insert=_profile_insert,
            update=_profile_update,
            # Profiles follow the identity provider's account lifecycle.
            delete=deny,
            scope=lambda ctx: or_(
                Profile.user_id == ctx.principal_id,
                _in(Profile.user_id, list(ctx.co_members)),
            ),
        ),
        TablePolicy(
            Organization,
            select=_organization_select,
            insert=deny,
            update=_organization_update,
            delete=deny,
            scope=_organization_scope,
        ),
        TablePolicy(
            Membership,
            select=_membership_select,
            insert=deny,
            update=deny,
            delete=deny,
            scope=_membership_scope,
        ),
        TablePolicy(
            InventoryItem,
            select=_inventory_select,
            insert=_inventory_insert,
            update=_inventory_update,
            delete=_inventory_delete,
            scope=_inventory_scope,
        ),
        TablePolicy(
            Transaction,
            select=_transaction_select,
            insert=deny,
            update=deny,
            delete=deny,
            scope=_transaction_scope,
        ),
        TablePolicy(
            Invite,
            select=_invite_select,
            insert=_invite_insert,
            update=_invite_update,
            delete=_invite_delete,
            scope=_invite_scope,
        ),
        TablePolicy(
            InventoryImage,
            select=_image_select,
            insert=_image_insert,
            update=_image_update,
            delete=_image_delete,
            scope=_image_scope,
        ),
        TablePolicy(
            AuditEntry,
            select=_audit_select,
            insert=deny,
            update=deny,
            delete=deny,
            scope=_audit_scope,
        ),
    ]


@lru_cache(maxsize=1)
def default_policy_engine() -> PolicyEngine:
    return PolicyEngine(build_policies())
