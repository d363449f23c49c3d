from __future__ import annotations

import decimal

import pytest
from sqlalchemy import select

from cardstock import inventory, procedures
from cardstock.errors import NotFound, PermissionDenied, ValidationError
from cardstock.models import (
    AuditEntry,
    CardCondition,
    InventoryImage,
    InventoryItem,
    InventoryStatus,
    Role,
    Transaction,
)
from cardstock.repository import TenantRepository


@pytest.fixture
def store(core):
    org_id = core.store("alice")
    core.add_member(org_id, "carol", Role.MEMBER)
    return org_id


def _create(core, store, who="carol", **fields):
    with core.session() as session:
        return inventory.create_item(
            session, core.principal(who), {"organization_id": store, "card_name": "Lugia", **fields}
        )


def test_create_item_defaults(core, store) -> None:
    item = _create(core, store, selling_price=decimal.Decimal("199.99"))

    assert item.status == InventoryStatus.AVAILABLE
    assert item.condition == CardCondition.NEAR_MINT
    assert item.language == "English"
    assert item.created_by == core.principal("carol").id
    assert item.updated_by == core.principal("carol").id


def test_create_item_requires_card_name(core, store) -> None:
    with pytest.raises(ValidationError):
        _create(core, store, card_name="  ")


def test_outsiders_cannot_stock_a_store(core, store) -> None:
    core.principal("mallory")
    with pytest.raises(PermissionDenied):
        _create(core, store, who="mallory")


def test_update_item_validates_changes(core, store) -> None:
    item = _create(core, store)
    carol = core.principal("carol")
    with core.session() as session:
        with pytest.raises(ValidationError):
            inventory.update_item(session, carol, item.id, {})
        with pytest.raises(ValidationError):
            inventory.update_item(session, carol, item.id, {"colour": "gold"})
        with pytest.raises(ValidationError):
            inventory.update_item(session, carol, item.id, {"id": item.id})

        updated = inventory.update_item(session, carol, item.id, {"is_foil": True})
    assert updated.is_foil is True


def test_soft_deleted_item_disappears(core, store) -> None:
    item = _create(core, store)
    with core.session() as session:
        inventory.soft_delete_item(session, core.principal("carol"), item.id)

    with core.session() as session:
        repo = TenantRepository(session, core.principal("alice"))
        assert repo.select(InventoryItem) == []
        with pytest.raises(NotFound):
            repo.get(InventoryItem, item.id)
        assert session.get(InventoryItem, item.id).deleted_at is not None


def test_images_follow_their_item(core, store) -> None:
    item = _create(core, store)
    with core.session() as session:
        image = inventory.add_image(
            session, core.principal("carol"), item.id, "cards/lugia-front.png", is_primary=True
        )
    assert image.organization_id == store
    assert image.created_by == core.principal("carol").id

    core.principal("mallory")
    with core.session() as session:
        with pytest.raises(NotFound):
            inventory.add_image(session, core.principal("mallory"), item.id, "x.png")

    with core.session() as session:
        inventory.delete_item(session, core.principal("alice"), item.id)
    with core.session() as session:
        assert session.execute(select(InventoryImage)).scalars().all() == []
        deletes = session.execute(
            select(AuditEntry.table_name, AuditEntry.record_id).where(AuditEntry.action == "DELETE")
        ).all()
    assert sorted(tuple(row) for row in deletes) == sorted(
        [("inventory", item.id), ("inventory_images", image.id)]
    )


def test_sold_items_cannot_be_hard_deleted(core, store) -> None:
    item = _create(core, store)
    with core.session() as session:
        inventory.add_image(session, core.principal("carol"), item.id, "cards/lugia-front.png")
    with core.session() as session:
        sale = procedures.mark_item_sold(session, core.principal("carol"), item.id, "249.99")

    with core.session() as session:
        with pytest.raises(PermissionDenied):
            inventory.delete_item(session, core.principal("alice"), item.id)

    with core.session() as session:
        assert session.get(Transaction, sale.id) is not None
        assert len(session.execute(select(InventoryImage)).scalars().all()) == 1
        assert session.execute(
            select(AuditEntry).where(AuditEntry.action == "DELETE")
        ).scalars().all() == []


def test_rename_organization(core, store) -> None:
    with core.session() as session:
        with pytest.raises(ValidationError):
            inventory.rename_organization(session, core.principal("alice"), store, " ")
        with pytest.raises(PermissionDenied):
            inventory.rename_organization(session, core.principal("carol"), store, "Carol's")
        org = inventory.rename_organization(
            session, core.principal("alice"), store, " Moody Cards & Comics "
        )
    assert org.name == "Moody Cards & Comics"


def test_update_profile(core, store) -> None:
    with core.session() as session:
        profile = inventory.update_profile(
            session, core.principal("carol"), {"display_name": "Carol", "avatar_url": "c.png"}
        )
    assert profile.display_name == "Carol"
    assert profile.email == "carol@moodycards.com"
