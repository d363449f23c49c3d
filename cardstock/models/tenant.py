"""Tenancy SQLAlchemy models.

The models defined here represent the tenancy root and the principal-facing
entities: organizations, profiles, memberships and invites.  They mirror the
DDL maintained in the migrations (see
``cardstock/migrations/001_initial_schema.py``) to ensure consistency between
ORM usage and the migrated schema.
"""

from __future__ import annotations

import datetime as dt
import enum
import uuid
from typing import List

from sqlalchemy import DateTime, Enum, ForeignKey, Index, String, Text, UniqueConstraint, text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from . import Base


def _utcnow() -> dt.datetime:
    """Return the current UTC timestamp with timezone awareness."""

    return dt.datetime.now(dt.timezone.utc)


class Role(str, enum.Enum):
    """Membership role within an organization.

    Roles are totally ordered (``owner > admin > member``).  The ordering is
    only meant for permission checks.
    """

    OWNER = "owner"
    ADMIN = "admin"
    MEMBER = "member"

    @property
    def rank(self) -> int:
        return _ROLE_RANKS[self]

    def at_least(self, other: "Role") -> bool:
        return self.rank >= other.rank


_ROLE_RANKS = {Role.MEMBER: 0, Role.ADMIN: 1, Role.OWNER: 2}


def _enum_values(enum_cls: type[enum.Enum]) -> list[str]:
    return [member.value for member in enum_cls]


RoleType = Enum(Role, name="role_enum", values_callable=_enum_values)


class Organization(Base):
    """Represents a tenant (a store) in the platform.

    Attributes:
        id: Primary key generated via ``gen_random_uuid`` in Postgres.
        name: Display name of the organization.
        slug: Unique, URL-safe identifier.
        deleted_at: Soft-delete marker; non-null hides the organization from
            every policy predicate.
        memberships: Principals that belong to this organization.
    """

    __tablename__ = "organizations"
    __table_args__ = (Index("ix_organizations_slug_unique", "slug", unique=True),)

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
        server_default=text("gen_random_uuid()"),
    )
    name: Mapped[str] = mapped_column(String(length=100), nullable=False)
    slug: Mapped[str] = mapped_column(String(length=32), nullable=False)
    created_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )
    updated_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )
    deleted_at: Mapped[dt.datetime | None] = mapped_column(DateTime(timezone=True))

    memberships: Mapped[List["Membership"]] = relationship(
        back_populates="organization",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
    invites: Mapped[List["Invite"]] = relationship(
        back_populates="organization",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
    inventory_items: Mapped[List["InventoryItem"]] = relationship(  # noqa: F821
        back_populates="organization",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
    audit_entries: Mapped[List["AuditEntry"]] = relationship(  # noqa: F821
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None


class Profile(Base):
    """One row per authenticated principal, independent of any tenant.

    The row is created on first authentication and carries the registered
    e-mail supplied by the identity provider.
    """

    __tablename__ = "profiles"
    __table_args__ = (Index("ix_profiles_email", "email"),)

    user_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True)
    email: Mapped[str] = mapped_column(String(length=320), nullable=False)
    display_name: Mapped[str | None] = mapped_column(String(length=255))
    avatar_url: Mapped[str | None] = mapped_column(Text())
    created_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )
    updated_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )


class Membership(Base):
    """Links a principal to an organization with a role."""

    __tablename__ = "memberships"
    __table_args__ = (
        UniqueConstraint("user_id", "organization_id", name="uq_memberships_user_org"),
        Index("ix_memberships_org", "organization_id"),
        Index("ix_memberships_invited_by", "invited_by"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
        server_default=text("gen_random_uuid()"),
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("profiles.user_id", ondelete="CASCADE"),
        nullable=False,
    )
    organization_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=False,
    )
    role: Mapped[Role] = mapped_column(RoleType, nullable=False, default=Role.MEMBER)
    invited_by: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("profiles.user_id", ondelete="SET NULL")
    )
    invited_at: Mapped[dt.datetime | None] = mapped_column(DateTime(timezone=True))
    accepted_at: Mapped[dt.datetime | None] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )

    organization: Mapped[Organization] = relationship(back_populates="memberships")


class Invite(Base):
    """Single-use, time-bounded invitation into an organization.

    ``expired`` is never stored; it is derived from ``expires_at`` (see
    :func:`cardstock.invites.invite_state`).  The partial unique index keeps at
    most one unresolved invite per organization and e-mail.
    """

    __tablename__ = "invites"
    __table_args__ = (
        Index("ix_invites_token_unique", "token", unique=True),
        Index(
            "ix_invites_org_email_pending",
            "organization_id",
            "email",
            unique=True,
            postgresql_where=text("accepted_at IS NULL AND revoked_at IS NULL"),
            sqlite_where=text("accepted_at IS NULL AND revoked_at IS NULL"),
        ),
        Index("ix_invites_invited_by", "invited_by"),
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
    email: Mapped[str] = mapped_column(String(length=320), nullable=False)
    role: Mapped[Role] = mapped_column(RoleType, nullable=False, default=Role.MEMBER)
    token: Mapped[str] = mapped_column(String(length=255), nullable=False)
    invited_by: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("profiles.user_id", ondelete="SET NULL")
    )
    created_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )
    expires_at: Mapped[dt.datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    accepted_at: Mapped[dt.datetime | None] = mapped_column(DateTime(timezone=True))
    revoked_at: Mapped[dt.datetime | None] = mapped_column(DateTime(timezone=True))

    organization: Mapped[Organization] = relationship(back_populates="invites")


__all__ = ["Invite", "Membership", "Organization", "Profile", "Role", "RoleType"]
