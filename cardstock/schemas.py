"""Pydantic schemas for the HTTP surface."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, EmailStr, Field

from cardstock.invites import InviteState
from cardstock.models import CardCondition, GradingCompany, InventoryStatus, Role


class _RowModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)


class Organization(_RowModel):
    id: UUID
    name: str
    slug: str
    created_at: datetime
    updated_at: datetime
    deleted_at: datetime | None = None


class Membership(_RowModel):
    id: UUID
    user_id: UUID
    organization_id: UUID
    role: Role
    invited_by: UUID | None = None
    invited_at: datetime | None = None
    accepted_at: datetime | None = None
    created_at: datetime


class Profile(_RowModel):
    user_id: UUID
    email: str
    display_name: str | None = None
    avatar_url: str | None = None
    created_at: datetime
    updated_at: datetime


class ProfileUpdate(BaseModel):
    display_name: str | None = Field(default=None, max_length=255)
    avatar_url: str | None = None


class Invite(_RowModel):
    id: UUID
    organization_id: UUID
    email: str
    role: Role
    invited_by: UUID | None = None
    created_at: datetime
    expires_at: datetime
    accepted_at: datetime | None = None
    revoked_at: datetime | None = None
    state: InviteState


class IssuedInvite(Invite):
    """Returned once, on creation; the token is never listed again."""

    token: str


class InventoryItem(_RowModel):
    id: UUID
    organization_id: UUID
    card_name: str
    set_name: str | None = None
    set_code: str | None = None
    card_number: str | None = None
    rarity: str | None = None
    language: str | None = None
    is_foil: bool
    condition: CardCondition
    grading_company: GradingCompany | None = None
    grade: Decimal | None = None
    purchase_price: Decimal | None = None
    selling_price: Decimal | None = None
    status: InventoryStatus
    notes: str | None = None
    created_at: datetime
    created_by: UUID | None = None
    updated_at: datetime
    updated_by: UUID | None = None


class InventoryItemCreate(BaseModel):
    organization_id: UUID
    card_name: str = Field(..., min_length=1)
    set_name: str | None = None
    set_code: str | None = None
    card_number: str | None = None
    rarity: str | None = None
    language: str | None = "English"
    is_foil: bool = False
    condition: CardCondition = CardCondition.NEAR_MINT
    grading_company: GradingCompany | None = None
    grade: Decimal | None = Field(default=None, ge=0, le=10)
    purchase_price: Decimal | None = Field(default=None, ge=0)
    selling_price: Decimal | None = Field(default=None, ge=0)
    status: InventoryStatus = InventoryStatus.AVAILABLE
    notes: str | None = None


class InventoryItemUpdate(BaseModel):
    """Patchable inventory fields; only fields sent by the client are applied."""

    card_name: str | None = Field(default=None, min_length=1)
    set_name: str | None = None
    set_code: str | None = None
    card_number: str | None = None
    rarity: str | None = None
    language: str | None = None
    is_foil: bool | None = None
    condition: CardCondition | None = None
    grading_company: GradingCompany | None = None
    grade: Decimal | None = Field(default=None, ge=0, le=10)
    purchase_price: Decimal | None = Field(default=None, ge=0)
    selling_price: Decimal | None = Field(default=None, ge=0)
    status: InventoryStatus | None = None
    notes: str | None = None


class InventoryImage(_RowModel):
    id: UUID
    inventory_id: UUID
    organization_id: UUID
    storage_path: str
    is_primary: bool
    created_by: UUID | None = None
    created_at: datetime


class InventoryImageCreate(BaseModel):
    storage_path: str = Field(..., min_length=1)
    is_primary: bool = False


class Transaction(_RowModel):
    id: UUID
    organization_id: UUID
    inventory_id: UUID
    sold_price: Decimal
    sold_at: datetime
    sold_by: UUID | None = None
    buyer_email: str | None = None
    buyer_notes: str | None = None
    created_at: datetime


class AuditEntry(_RowModel):
    id: UUID
    organization_id: UUID
    table_name: str
    record_id: UUID
    action: str
    old_data: dict[str, Any] | None = None
    new_data: dict[str, Any] | None = None
    changed_by: UUID | None = None
    changed_at: datetime


class CreateOrganizationRequest(BaseModel):
    name: str
    slug: str


class AcceptInviteRequest(BaseModel):
    token: str = Field(..., min_length=1)


class MarkItemSoldRequest(BaseModel):
    item_id: UUID
    price: Decimal
    buyer_email: EmailStr | None = None
    buyer_notes: str | None = Field(default=None, max_length=2000)


class OrganizationRef(BaseModel):
    organization_id: UUID


class ChangeMemberRoleRequest(BaseModel):
    membership_id: UUID
    role: Role


class RemoveMemberRequest(BaseModel):
    membership_id: UUID


class CreateInviteRequest(BaseModel):
    organization_id: UUID
    email: EmailStr
    role: Role = Role.MEMBER
    expires_in: int | None = Field(default=None, ge=300, le=60 * 60 * 24 * 30)


class Envelope(BaseModel):
    status: str = "ok"
