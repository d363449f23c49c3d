"""Inventory models: cards, their images and sale records."""

from __future__ import annotations

import datetime as dt
import decimal
import enum
import uuid
from typing import List

from sqlalchemy import (
    Boolean,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Numeric,
    String,
    Text,
    text,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from . import Base
from .tenant import Organization, _enum_values, _utcnow


class InventoryStatus(str, enum.Enum):
    AVAILABLE = "available"
    RESERVED = "reserved"
    SOLD = "sold"


class CardCondition(str, enum.Enum):
    MINT = "mint"
    NEAR_MINT = "near_mint"
    LIGHTLY_PLAYED = "lightly_played"
    MODERATELY_PLAYED = "moderately_played"
    HEAVILY_PLAYED = "heavily_played"
    DAMAGED = "damaged"


class GradingCompany(str, enum.Enum):
    PSA = "psa"
    CGC = "cgc"
    BGS = "bgs"
    SGC = "sgc"
    ACE = "ace"


class InventoryItem(Base):
    """One row per physical card held by an organization.

    Attributes:
        status: Lifecycle status.  Moving into ``sold`` only happens through
            :func:`cardstock.procedures.mark_item_sold`, which records the
            matching :class:`Transaction` in the same unit of work.
        deleted_at: Soft-delete marker; soft-deleted items are invisible to
            ordinary reads.
    """

    __tablename__ = "inventory"
    __table_args__ = (
        Index("ix_inventory_org_status", "organization_id", "status"),
        Index("ix_inventory_org_set", "organization_id", "set_name"),
        Index("ix_inventory_created_by", "created_by"),
        Index("ix_inventory_updated_by", "updated_by"),
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

    card_name: Mapped[str] = mapped_column(Text(), nullable=False)
    set_name: Mapped[str | None] = mapped_column(Text())
    set_code: Mapped[str | None] = mapped_column(Text())
    card_number: Mapped[str | None] = mapped_column(Text())
    rarity: Mapped[str | None] = mapped_column(Text())
    language: Mapped[str | None] = mapped_column(Text(), default="English")
    is_foil: Mapped[bool] = mapped_column(Boolean(), nullable=False, default=False)

    condition: Mapped[CardCondition] = mapped_column(
        Enum(CardCondition, name="condition_enum", values_callable=_enum_values),
        nullable=False,
        default=CardCondition.NEAR_MINT,
    )
    grading_company: Mapped[GradingCompany | None] = mapped_column(
        Enum(GradingCompany, name="grading_company_enum", values_callable=_enum_values)
    )
    grade: Mapped[decimal.Decimal | None] = mapped_column(Numeric(3, 1))

    purchase_price: Mapped[decimal.Decimal | None] = mapped_column(Numeric(10, 2))
    selling_price: Mapped[decimal.Decimal | None] = mapped_column(Numeric(10, 2))

    status: Mapped[InventoryStatus] = mapped_column(
        Enum(InventoryStatus, name="inventory_status_enum", values_callable=_enum_values),
        nullable=False,
        default=InventoryStatus.AVAILABLE,
    )

    notes: Mapped[str | None] = mapped_column(Text())
    created_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )
    created_by: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("profiles.user_id", ondelete="SET NULL")
    )
    updated_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )
    updated_by: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("profiles.user_id", ondelete="SET NULL")
    )
    deleted_at: Mapped[dt.datetime | None] = mapped_column(DateTime(timezone=True))

    organization: Mapped[Organization] = relationship(back_populates="inventory_items")
    images: Mapped[List["InventoryImage"]] = relationship(
        back_populates="item",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
    transactions: Mapped[List["Transaction"]] = relationship(
        back_populates="item",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )


class InventoryImage(Base):
    """Metadata for an image stored in external object storage."""

    __tablename__ = "inventory_images"
    __table_args__ = (
        Index("ix_inventory_images_inventory", "inventory_id"),
        Index("ix_inventory_images_org", "organization_id"),
        Index("ix_inventory_images_created_by", "created_by"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
        server_default=text("gen_random_uuid()"),
    )
    inventory_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("inventory.id", ondelete="CASCADE"),
        nullable=False,
    )
    organization_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=False,
    )
    storage_path: Mapped[str] = mapped_column(Text(), nullable=False)
    is_primary: Mapped[bool] = mapped_column(Boolean(), nullable=False, default=False)
    created_by: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("profiles.user_id", ondelete="SET NULL")
    )
    created_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )

    item: Mapped[InventoryItem] = relationship(back_populates="images")


class Transaction(Base):
    """Sale record; created once per item transition into ``sold``."""

    __tablename__ = "transactions"
    __table_args__ = (
        Index("ix_transactions_org_date", "organization_id", "sold_at"),
        Index("ix_transactions_inventory_unique", "inventory_id", unique=True),
        Index("ix_transactions_sold_by", "sold_by"),
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
    inventory_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("inventory.id", ondelete="CASCADE"),
        nullable=False,
    )
    sold_price: Mapped[decimal.Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    sold_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )
    sold_by: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("profiles.user_id", ondelete="SET NULL")
    )
    buyer_email: Mapped[str | None] = mapped_column(String(length=320))
    buyer_notes: Mapped[str | None] = mapped_column(Text())
    created_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )

    item: Mapped[InventoryItem] = relationship(back_populates="transactions")


__all__ = [
    "CardCondition",
    "GradingCompany",
    "InventoryImage",
    "InventoryItem",
    "InventoryStatus",
    "Transaction",
]
