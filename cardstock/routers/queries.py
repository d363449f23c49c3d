"""Policy-scoped reads and direct writes on governed tables."""

from __future__ import annotations

import uuid
from typing import Annotated

from fastapi import APIRouter, Depends, Query, Response, status
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from cardstock import inventory, schemas
from cardstock.core.principal import Principal
from cardstock.models import (
    AuditEntry,
    InventoryImage,
    InventoryItem,
    InventoryStatus,
    Membership,
    Organization,
    Profile,
    Transaction,
)
from cardstock.repository import TenantRepository
from cardstock.security.auth import get_current_principal, get_db_session

router = APIRouter(prefix="/api", tags=["queries"])

SessionDep = Annotated[Session, Depends(get_db_session)]
PrincipalDep = Annotated[Principal, Depends(get_current_principal)]
LimitQuery = Annotated[int, Query(ge=1, le=500)]


class RenameOrganizationRequest(BaseModel):
    name: str = Field(..., max_length=100)


@router.get("/organizations", response_model=list[schemas.Organization])
def list_organizations(session: SessionDep, principal: PrincipalDep):
    repo = TenantRepository(session, principal)
    return repo.select(Organization, order_by=[Organization.name])


@router.get("/organizations/{organization_id}", response_model=schemas.Organization)
def get_organization(organization_id: uuid.UUID, session: SessionDep, principal: PrincipalDep):
    return TenantRepository(session, principal).get(Organization, organization_id)


@router.patch("/organizations/{organization_id}", response_model=schemas.Organization)
def rename_organization(
    organization_id: uuid.UUID,
    payload: RenameOrganizationRequest,
    session: SessionDep,
    principal: PrincipalDep,
):
    return inventory.rename_organization(session, principal, organization_id, payload.name)


@router.get("/memberships", response_model=list[schemas.Membership])
def list_memberships(
    organization_id: uuid.UUID, session: SessionDep, principal: PrincipalDep
):
    repo = TenantRepository(session, principal)
    return repo.select(
        Membership,
        Membership.organization_id == organization_id,
        order_by=[Membership.created_at],
    )


@router.get("/inventory", response_model=list[schemas.InventoryItem])
def list_inventory(
    organization_id: uuid.UUID,
    session: SessionDep,
    principal: PrincipalDep,
    status_filter: Annotated[InventoryStatus | None, Query(alias="status")] = None,
    limit: LimitQuery = 100,
):
    criteria = [InventoryItem.organization_id == organization_id]
    if status_filter is not None:
        criteria.append(InventoryItem.status == status_filter)
    repo = TenantRepository(session, principal)
    return repo.select(
        InventoryItem, *criteria, order_by=[InventoryItem.created_at.desc()], limit=limit
    )


@router.post(
    "/inventory",
    response_model=schemas.InventoryItem,
    status_code=status.HTTP_201_CREATED,
)
def create_inventory_item(
    payload: schemas.InventoryItemCreate, session: SessionDep, principal: PrincipalDep
):
    return inventory.create_item(session, principal, payload.model_dump())


@router.get("/inventory/{item_id}", response_model=schemas.InventoryItem)
def get_inventory_item(item_id: uuid.UUID, session: SessionDep, principal: PrincipalDep):
    return TenantRepository(session, principal).get(InventoryItem, item_id)


@router.patch("/inventory/{item_id}", response_model=schemas.InventoryItem)
def update_inventory_item(
    item_id: uuid.UUID,
    payload: schemas.InventoryItemUpdate,
    session: SessionDep,
    principal: PrincipalDep,
):
    changes = payload.model_dump(exclude_unset=True)
    return inventory.update_item(session, principal, item_id, changes)


@router.delete("/inventory/{item_id}", status_code=status.HTTP_204_NO_CONTENT)
def soft_delete_inventory_item(
    item_id: uuid.UUID, session: SessionDep, principal: PrincipalDep
) -> Response:
    inventory.soft_delete_item(session, principal, item_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/inventory/{item_id}/images", response_model=list[schemas.InventoryImage])
def list_inventory_images(item_id: uuid.UUID, session: SessionDep, principal: PrincipalDep):
    repo = TenantRepository(session, principal)
    repo.get(InventoryItem, item_id)
    return repo.select(
        InventoryImage,
        InventoryImage.inventory_id == item_id,
        order_by=[InventoryImage.created_at],
    )


@router.post(
    "/inventory/{item_id}/images",
    response_model=schemas.InventoryImage,
    status_code=status.HTTP_201_CREATED,
)
def add_inventory_image(
    item_id: uuid.UUID,
    payload: schemas.InventoryImageCreate,
    session: SessionDep,
    principal: PrincipalDep,
):
    return inventory.add_image(
        session, principal, item_id, payload.storage_path, is_primary=payload.is_primary
    )


@router.delete("/inventory/images/{image_id}", status_code=status.HTTP_204_NO_CONTENT)
def remove_inventory_image(
    image_id: uuid.UUID, session: SessionDep, principal: PrincipalDep
) -> Response:
    inventory.remove_image(session, principal, image_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/transactions", response_model=list[schemas.Transaction])
def list_transactions(
    organization_id: uuid.UUID,
    session: SessionDep,
    principal: PrincipalDep,
    limit: LimitQuery = 100,
):
    repo = TenantRepository(session, principal)
    return repo.select(
        Transaction,
        Transaction.organization_id == organization_id,
        order_by=[Transaction.sold_at.desc()],
        limit=limit,
    )


@router.get("/audit", response_model=list[schemas.AuditEntry])
def list_audit_entries(
    organization_id: uuid.UUID,
    session: SessionDep,
    principal: PrincipalDep,
    table_name: str | None = None,
    record_id: uuid.UUID | None = None,
    limit: LimitQuery = 100,
):
    criteria = [AuditEntry.organization_id == organization_id]
    if table_name:
        criteria.append(AuditEntry.table_name == table_name)
    if record_id:
        criteria.append(AuditEntry.record_id == record_id)
    repo = TenantRepository(session, principal)
    return repo.select(
        AuditEntry, *criteria, order_by=[AuditEntry.changed_at.desc()], limit=limit
    )


@router.get("/profiles", response_model=list[schemas.Profile])
def list_profiles(session: SessionDep, principal: PrincipalDep):
    """The caller's own profile plus those of everyone sharing an organization."""

    return TenantRepository(session, principal).select(Profile, order_by=[Profile.email])


@router.get("/profiles/me", response_model=schemas.Profile)
def get_my_profile(session: SessionDep, principal: PrincipalDep):
    return TenantRepository(session, principal).get(Profile, principal.id)


@router.patch("/profiles/me", response_model=schemas.Profile)
def update_my_profile(
    payload: schemas.ProfileUpdate, session: SessionDep, principal: PrincipalDep
):
    changes = payload.model_dump(exclude_unset=True)
    return inventory.update_profile(session, principal, changes)
