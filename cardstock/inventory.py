"""Direct, policy-governed writes on inventory, images, profiles and organizations.

Every function here is one unit of work on behalf of a principal and goes
through :class:`~cardstock.repository.TenantRepository`, so the row policies
decide what is allowed and the audit trail is written alongside.
"""

from __future__ import annotations

import uuid
from collections.abc import Mapping
from typing import Any

from sqlalchemy.orm import Session

from cardstock.core.principal import Principal
from cardstock.errors import ValidationError
from cardstock.models import InventoryImage, InventoryItem, Organization, Profile
from cardstock.models.session import atomic
from cardstock.repository import TenantRepository

__all__ = [
    "add_image",
    "create_item",
    "delete_item",
    "remove_image",
    "rename_organization",
    "soft_delete_item",
    "update_item",
    "update_profile",
]


@atomic
def create_item(
    session: Session, principal: Principal, fields: Mapping[str, Any]
) -> InventoryItem:
    """Add a card to an organization's inventory."""

    if not (fields.get("card_name") or "").strip():
        raise ValidationError("card_name is required.")
    item = InventoryItem(**fields)
    item.updated_by = principal.id
    return TenantRepository(session, principal).insert(item)


@atomic
def update_item(
    session: Session, principal: Principal, item_id: uuid.UUID, changes: Mapping[str, Any]
) -> InventoryItem:
    if not changes:
        raise ValidationError("No changes supplied.")
    return TenantRepository(session, principal).update(InventoryItem, item_id, changes)


@atomic
def soft_delete_item(
    session: Session, principal: Principal, item_id: uuid.UUID
) -> InventoryItem:
    return TenantRepository(session, principal).soft_delete(InventoryItem, item_id)


@atomic
def delete_item(session: Session, principal: Principal, item_id: uuid.UUID) -> None:
    """Hard delete; admins and owners only, never a sold item.  Images go first."""

    TenantRepository(session, principal).delete(InventoryItem, item_id)


@atomic
def add_image(
    session: Session,
    principal: Principal,
    item_id: uuid.UUID,
    storage_path: str,
    *,
    is_primary: bool = False,
) -> InventoryImage:
    repo = TenantRepository(session, principal)
    item = repo.get(InventoryItem, item_id)
    image = InventoryImage(
        inventory_id=item.id,
        organization_id=item.organization_id,
        storage_path=storage_path,
        is_primary=is_primary,
    )
    return repo.insert(image)


@atomic
def remove_image(session: Session, principal: Principal, image_id: uuid.UUID) -> None:
    TenantRepository(session, principal).delete(InventoryImage, image_id)


@atomic
def update_profile(
    session: Session, principal: Principal, changes: Mapping[str, Any]
) -> Profile:
    return TenantRepository(session, principal).update(Profile, principal.id, changes)


@atomic
def rename_organization(
    session: Session, principal: Principal, organization_id: uuid.UUID, name: str
) -> Organization:
    trimmed = (name or "").strip()
    if not 1 <= len(trimmed) <= 100:
        raise ValidationError("Name must be between 1 and 100 characters.")
    return TenantRepository(session, principal).update(
        Organization, organization_id, {"name": trimmed}
    )
