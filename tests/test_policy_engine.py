from __future__ import annotations

import uuid

import pytest
from sqlalchemy import select

from cardstock import inventory, invites, procedures
from cardstock.errors import Conflict, NotFound, PermissionDenied
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
from cardstock.policy import (
    Operation,
    PolicyEngine,
    ProposedRow,
    TablePolicy,
    default_policy_engine,
)
from cardstock.repository import TenantRepository


def _item(core, owner: str, org_id: uuid.UUID, name: str = "Charizard") -> uuid.UUID:
    with core.session() as session:
        return inventory.create_item(
            session, core.principal(owner), {"organization_id": org_id, "card_name": name}
        ).id


@pytest.fixture
def two_stores(core):
    moody = core.store("alice", "moody-cards")
    rival = core.store("bob", "rival-cards", "Rival Cards")
    core.add_member(moody, "carol", Role.MEMBER)
    core.add_member(moody, "dave", Role.ADMIN)
    return moody, rival


def test_unregistered_table_is_denied(core, two_stores) -> None:
    engine = PolicyEngine()
    with core.session() as session:
        ctx = engine.context(session, core.principal("alice"))
        org = session.get(Organization, two_stores[0])
        assert not engine.is_allowed(ctx, Operation.SELECT, org)
        with pytest.raises(PermissionDenied):
            engine.authorize(ctx, Operation.SELECT, org)


def test_missing_predicate_is_denied(core, two_stores) -> None:
    engine = PolicyEngine([TablePolicy(Organization, select=lambda ctx, row, new: True)])
    with core.session() as session:
        ctx = engine.context(session, core.principal("alice"))
        org = session.get(Organization, two_stores[0])
        assert engine.is_allowed(ctx, Operation.SELECT, org)
        assert not engine.is_allowed(ctx, Operation.DELETE, org)


def test_bulk_read_returns_admissible_subset(core, two_stores) -> None:
    moody, rival = two_stores
    _item(core, "alice", moody, "Pikachu")
    _item(core, "bob", rival, "Mewtwo")

    engine = default_policy_engine()
    with core.session() as session:
        everything = session.execute(select(InventoryItem)).scalars().all()
        assert len(everything) == 2
        ctx = engine.context(session, core.principal("carol"))
        visible = engine.filter_rows(ctx, everything)

    assert [item.card_name for item in visible] == ["Pikachu"]


def test_members_only_see_their_own_organizations(core, two_stores) -> None:
    moody, rival = two_stores
    with core.session() as session:
        repo = TenantRepository(session, core.principal("carol"))
        assert [org.id for org in repo.select(Organization)] == [moody]
        with pytest.raises(NotFound):
            repo.get(Organization, rival)


def test_soft_deleted_organization_hides_everything(core, two_stores) -> None:
    moody, _ = two_stores
    _item(core, "alice", moody)
    with core.session() as session:
        procedures.soft_delete_organization(session, core.principal("alice"), moody)

    with core.session() as session:
        repo = TenantRepository(session, core.principal("carol"))
        assert repo.select(Organization) == []
        assert repo.select(InventoryItem) == []
        assert repo.select(Membership) == []


def test_profiles_visible_to_self_and_co_members_only(core, two_stores) -> None:
    with core.session() as session:
        repo = TenantRepository(session, core.principal("carol"))
        emails = sorted(profile.email for profile in repo.select(Profile))

    assert emails == ["alice@moodycards.com", "carol@moodycards.com", "dave@moodycards.com"]


def test_profile_email_and_deletion_are_not_direct_writes(core, two_stores) -> None:
    carol = core.principal("carol")
    with core.session() as session:
        repo = TenantRepository(session, carol)
        with pytest.raises(PermissionDenied):
            repo.update(Profile, carol.id, {"email": "other@moodycards.com"})
        with pytest.raises(PermissionDenied):
            repo.delete(Profile, carol.id)
        profile = repo.update(Profile, carol.id, {"display_name": "Carol"})
        assert profile.display_name == "Carol"


def test_governed_writes_reserved_for_procedures(core, two_stores) -> None:
    moody, _ = two_stores
    alice = core.principal("alice")
    item_id = _item(core, "alice", moody)
    with core.session() as session:
        repo = TenantRepository(session, alice)
        with pytest.raises(PermissionDenied):
            repo.insert(Organization(name="Sneaky", slug="sneaky"))
        with pytest.raises(PermissionDenied):
            repo.insert(
                Membership(user_id=core.principal("bob").id, organization_id=moody, role=Role.OWNER)
            )
        with pytest.raises(PermissionDenied):
            repo.insert(Transaction(organization_id=moody, inventory_id=item_id, sold_price=1))
        membership = repo.select(Membership, Membership.user_id == alice.id)[0]
        with pytest.raises(PermissionDenied):
            repo.update(Membership, membership.id, {"role": Role.MEMBER})
        with pytest.raises(PermissionDenied):
            repo.delete(Membership, membership.id)
        with pytest.raises(PermissionDenied):
            repo.delete(Organization, moody)


def test_inventory_cannot_be_marked_sold_directly(core, two_stores) -> None:
    moody, _ = two_stores
    item_id = _item(core, "alice", moody)
    with core.session() as session:
        repo = TenantRepository(session, core.principal("carol"))
        with pytest.raises(PermissionDenied):
            repo.update(InventoryItem, item_id, {"status": InventoryStatus.SOLD})
        with pytest.raises(PermissionDenied):
            repo.insert(
                InventoryItem(organization_id=moody, card_name="Lugia", status=InventoryStatus.SOLD)
            )
        updated = repo.update(InventoryItem, item_id, {"status": InventoryStatus.RESERVED})
        assert updated.status == InventoryStatus.RESERVED
        assert updated.updated_by == core.principal("carol").id


def test_inventory_cannot_move_between_organizations(core, two_stores) -> None:
    moody, rival = two_stores
    item_id = _item(core, "alice", moody)
    with core.session() as session:
        repo = TenantRepository(session, core.principal("alice"))
        with pytest.raises(PermissionDenied):
            repo.update(InventoryItem, item_id, {"organization_id": rival})


def test_only_admins_hard_delete_inventory(core, two_stores) -> None:
    moody, _ = two_stores
    item_id = _item(core, "alice", moody)
    with core.session() as session:
        with pytest.raises(PermissionDenied):
            TenantRepository(session, core.principal("carol")).delete(InventoryItem, item_id)
    with core.session() as session:
        TenantRepository(session, core.principal("dave")).delete(InventoryItem, item_id)
        session.commit()
        assert session.get(InventoryItem, item_id) is None


def test_organization_updates_need_admin(core, two_stores) -> None:
    moody, _ = two_stores
    with core.session() as session:
        with pytest.raises(PermissionDenied):
            TenantRepository(session, core.principal("carol")).update(
                Organization, moody, {"name": "Carol's"}
            )
    with core.session() as session:
        repo = TenantRepository(session, core.principal("dave"))
        with pytest.raises(PermissionDenied):
            repo.soft_delete(Organization, moody)
        org = repo.update(Organization, moody, {"name": "Moody Cards & Co"})
        assert org.name == "Moody Cards & Co"


def test_image_organization_must_match_item(core, two_stores) -> None:
    moody, rival = two_stores
    item_id = _item(core, "bob", rival)
    core.add_member(rival, "alice", Role.MEMBER)
    with core.session() as session:
        repo = TenantRepository(session, core.principal("alice"))
        with pytest.raises(PermissionDenied):
            repo.insert(
                InventoryImage(inventory_id=item_id, organization_id=moody, storage_path="x.png")
            )


def test_image_delete_by_uploader_or_admin(core, two_stores) -> None:
    moody, _ = two_stores
    item_id = _item(core, "alice", moody)
    core.add_member(moody, "erin", Role.MEMBER)
    with core.session() as session:
        image = inventory.add_image(session, core.principal("carol"), item_id, "front.png")

    with core.session() as session:
        with pytest.raises(PermissionDenied):
            TenantRepository(session, core.principal("erin")).delete(InventoryImage, image.id)
    with core.session() as session:
        inventory.remove_image(session, core.principal("carol"), image.id)
        assert session.get(InventoryImage, image.id) is None


def test_audit_log_visible_to_admins_only(core, two_stores) -> None:
    moody, _ = two_stores
    with core.session() as session:
        assert TenantRepository(session, core.principal("carol")).select(AuditEntry) == []
        entries = TenantRepository(session, core.principal("dave")).select(AuditEntry)
    assert entries
    assert {entry.organization_id for entry in entries} == {moody}


def test_proposed_row_overlays_changes(core, two_stores) -> None:
    moody, _ = two_stores
    with core.session() as session:
        org = session.get(Organization, moody)
        proposed = ProposedRow(org, {"name": "New"})
        assert proposed.name == "New"
        assert proposed.slug == "moody-cards"
        with pytest.raises(AttributeError):
            proposed._private


def test_revoked_invite_cannot_be_reopened(core, two_stores) -> None:
    moody, _ = two_stores
    with core.session() as session:
        invite = invites.create_invite(session, core.principal("alice"), moody, "erin@moodycards.com")
    with core.session() as session:
        invites.revoke_invite(session, core.principal("dave"), invite.id)

    with core.session() as session:
        repo = TenantRepository(session, core.principal("alice"))
        with pytest.raises(PermissionDenied):
            repo.update(Invite, invite.id, {"revoked_at": None})
        with pytest.raises(PermissionDenied):
            repo.update(Invite, invite.id, {"role": Role.ADMIN})

    erin = core.principal("erin")
    with core.session() as session:
        with pytest.raises(Conflict, match="revoked"):
            procedures.accept_invite(session, erin, invite.token)
        assert session.execute(
            select(Membership).where(Membership.user_id == erin.id)
        ).scalars().all() == []


def test_accepted_invite_is_final(core, two_stores) -> None:
    moody, _ = two_stores
    with core.session() as session:
        invite = invites.create_invite(session, core.principal("alice"), moody, "erin@moodycards.com")
    with core.session() as session:
        procedures.accept_invite(session, core.principal("erin"), invite.token)

    with core.session() as session:
        repo = TenantRepository(session, core.principal("alice"))
        with pytest.raises(PermissionDenied):
            repo.update(Invite, invite.id, {"role": Role.OWNER})
