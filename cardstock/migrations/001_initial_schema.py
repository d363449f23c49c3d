"""Create the tenancy, inventory and audit tables."""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

revision = "001_initial_schema"
down_revision = None
branch_labels = None
depends_on = None


_UUID = postgresql.UUID(as_uuid=True)
_JSON = sa.JSON().with_variant(postgresql.JSONB(), "postgresql")

_ENUMS = {
    "role_enum": ("owner", "admin", "member"),
    "inventory_status_enum": ("available", "reserved", "sold"),
    "condition_enum": (
        "mint",
        "near_mint",
        "lightly_played",
        "moderately_played",
        "heavily_played",
        "damaged",
    ),
    "grading_company_enum": ("psa", "cgc", "bgs", "sgc", "ace"),
}


def _enum(name: str) -> sa.types.TypeEngine:
    values = _ENUMS[name]
    return sa.Enum(*values, name=name).with_variant(
        postgresql.ENUM(*values, name=name, create_type=False), "postgresql"
    )


def _id_column() -> sa.Column:
    return sa.Column(
        "id",
        _UUID,
        nullable=False,
        primary_key=True,
        server_default=sa.text("gen_random_uuid()"),
    )


def _timestamp(name: str, *, nullable: bool = False) -> sa.Column:
    if nullable:
        return sa.Column(name, sa.DateTime(timezone=True), nullable=True)
    return sa.Column(
        name, sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()
    )


def _org_fk() -> sa.Column:
    return sa.Column(
        "organization_id",
        _UUID,
        sa.ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=False,
    )


def _profile_ref(name: str) -> sa.Column:
    return sa.Column(
        name, _UUID, sa.ForeignKey("profiles.user_id", ondelete="SET NULL"), nullable=True
    )


_PENDING = sa.text("accepted_at IS NULL AND revoked_at IS NULL")


def upgrade() -> None:
    bind = op.get_bind()
    if bind.dialect.name == "postgresql":
        for name, values in _ENUMS.items():
            postgresql.ENUM(*values, name=name).create(bind, checkfirst=True)

    op.create_table(
        "organizations",
        _id_column(),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("slug", sa.String(length=32), nullable=False),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        _timestamp("deleted_at", nullable=True),
    )
    op.create_index("ix_organizations_slug_unique", "organizations", ["slug"], unique=True)

    op.create_table(
        "profiles",
        sa.Column("user_id", _UUID, primary_key=True, nullable=False),
        sa.Column("email", sa.String(length=320), nullable=False),
        sa.Column("display_name", sa.String(length=255), nullable=True),
        sa.Column("avatar_url", sa.Text(), nullable=True),
        _timestamp("created_at"),
        _timestamp("updated_at"),
    )
    op.create_index("ix_profiles_email", "profiles", ["email"])

    op.create_table(
        "memberships",
        _id_column(),
        sa.Column(
            "user_id",
            _UUID,
            sa.ForeignKey("profiles.user_id", ondelete="CASCADE"),
            nullable=False,
        ),
        _org_fk(),
        sa.Column("role", _enum("role_enum"), nullable=False, server_default="member"),
        _profile_ref("invited_by"),
        _timestamp("invited_at", nullable=True),
        _timestamp("accepted_at", nullable=True),
        _timestamp("created_at"),
        sa.UniqueConstraint("user_id", "organization_id", name="uq_memberships_user_org"),
    )
    op.create_index("ix_memberships_org", "memberships", ["organization_id"])
    op.create_index("ix_memberships_invited_by", "memberships", ["invited_by"])

    op.create_table(
        "invites",
        _id_column(),
        _org_fk(),
        sa.Column("email", sa.String(length=320), nullable=False),
        sa.Column("role", _enum("role_enum"), nullable=False, server_default="member"),
        sa.Column("token", sa.String(length=255), nullable=False),
        _profile_ref("invited_by"),
        _timestamp("created_at"),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        _timestamp("accepted_at", nullable=True),
        _timestamp("revoked_at", nullable=True),
    )
    op.create_index("ix_invites_token_unique", "invites", ["token"], unique=True)
    op.create_index(
        "ix_invites_org_email_pending",
        "invites",
        ["organization_id", "email"],
        unique=True,
        postgresql_where=_PENDING,
        sqlite_where=_PENDING,
    )
    op.create_index("ix_invites_invited_by", "invites", ["invited_by"])

    op.create_table(
        "inventory",
        _id_column(),
        _org_fk(),
        sa.Column("card_name", sa.Text(), nullable=False),
        sa.Column("set_name", sa.Text(), nullable=True),
        sa.Column("set_code", sa.Text(), nullable=True),
        sa.Column("card_number", sa.Text(), nullable=True),
        sa.Column("rarity", sa.Text(), nullable=True),
        sa.Column("language", sa.Text(), nullable=True, server_default="English"),
        sa.Column("is_foil", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column(
            "condition",
            _enum("condition_enum"),
            nullable=False,
            server_default="near_mint",
        ),
        sa.Column("grading_company", _enum("grading_company_enum"), nullable=True),
        sa.Column("grade", sa.Numeric(3, 1), nullable=True),
        sa.Column("purchase_price", sa.Numeric(10, 2), nullable=True),
        sa.Column("selling_price", sa.Numeric(10, 2), nullable=True),
        sa.Column(
            "status",
            _enum("inventory_status_enum"),
            nullable=False,
            server_default="available",
        ),
        sa.Column("notes", sa.Text(), nullable=True),
        _timestamp("created_at"),
        _profile_ref("created_by"),
        _timestamp("updated_at"),
        _profile_ref("updated_by"),
        _timestamp("deleted_at", nullable=True),
    )
    op.create_index("ix_inventory_org_status", "inventory", ["organization_id", "status"])
    op.create_index("ix_inventory_org_set", "inventory", ["organization_id", "set_name"])
    op.create_index("ix_inventory_created_by", "inventory", ["created_by"])
    op.create_index("ix_inventory_updated_by", "inventory", ["updated_by"])

    op.create_table(
        "inventory_images",
        _id_column(),
        sa.Column(
            "inventory_id",
            _UUID,
            sa.ForeignKey("inventory.id", ondelete="CASCADE"),
            nullable=False,
        ),
        _org_fk(),
        sa.Column("storage_path", sa.Text(), nullable=False),
        sa.Column("is_primary", sa.Boolean(), nullable=False, server_default=sa.false()),
        _profile_ref("created_by"),
        _timestamp("created_at"),
    )
    op.create_index("ix_inventory_images_inventory", "inventory_images", ["inventory_id"])
    op.create_index("ix_inventory_images_org", "inventory_images", ["organization_id"])
    op.create_index("ix_inventory_images_created_by", "inventory_images", ["created_by"])

    op.create_table(
        "transactions",
        _id_column(),
        _org_fk(),
        sa.Column(
            "inventory_id",
            _UUID,
            sa.ForeignKey("inventory.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("sold_price", sa.Numeric(10, 2), nullable=False),
        _timestamp("sold_at"),
        _profile_ref("sold_by"),
        sa.Column("buyer_email", sa.String(length=320), nullable=True),
        sa.Column("buyer_notes", sa.Text(), nullable=True),
        _timestamp("created_at"),
    )
    op.create_index("ix_transactions_org_date", "transactions", ["organization_id", "sold_at"])
    op.create_index(
        "ix_transactions_inventory_unique", "transactions", ["inventory_id"], unique=True
    )
    op.create_index("ix_transactions_sold_by", "transactions", ["sold_by"])

    op.create_table(
        "audit_log",
        _id_column(),
        _org_fk(),
        sa.Column("table_name", sa.String(length=63), nullable=False),
        sa.Column("record_id", _UUID, nullable=False),
        sa.Column("action", sa.String(length=16), nullable=False),
        sa.Column("old_data", _JSON, nullable=True),
        sa.Column("new_data", _JSON, nullable=True),
        _profile_ref("changed_by"),
        _timestamp("changed_at"),
    )
    op.create_index(
        "ix_audit_org_table", "audit_log", ["organization_id", "table_name", "changed_at"]
    )
    op.create_index("ix_audit_record", "audit_log", ["record_id"])
    op.create_index("ix_audit_changed_by", "audit_log", ["changed_by"])


def downgrade() -> None:
    for table in (
        "audit_log",
        "transactions",
        "inventory_images",
        "inventory",
        "invites",
        "memberships",
        "profiles",
        "organizations",
    ):
        op.drop_table(table)

    bind = op.get_bind()
    if bind.dialect.name == "postgresql":
        for name in reversed(list(_ENUMS)):
            postgresql.ENUM(name=name).drop(bind, checkfirst=True)
