from __future__ import annotations

import datetime as dt
import decimal
import uuid

import pytest
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from cardstock.models import (
    InventoryItem,
    InventoryStatus,
    Invite,
    Membership,
    Organization,
    Profile,
    Role,
    Transaction,
)


@pytest.fixture
def session(core) -> Session:
    with core.session() as session:
        yield session
        session.rollback()


def _org(session: Session, slug: str = "moody-cards") -> Organization:
    org = Organization(name="Moody Cards", slug=slug)
    session.add(org)
    session.flush()
    return org


def _profile(session: Session, email: str = "owner@moodycards.com") -> Profile:
    profile = Profile(user_id=uuid.uuid4(), email=email)
    session.add(profile)
    session.flush()
    return profile


def test_role_ranks() -> None:
    assert Role.OWNER.at_least(Role.ADMIN)
    assert Role.ADMIN.at_least(Role.ADMIN)
    assert not Role.MEMBER.at_least(Role.ADMIN)
    assert Role.OWNER.rank > Role.ADMIN.rank > Role.MEMBER.rank


def test_defaults_are_applied(session: Session) -> None:
    org = _org(session)
    profile = _profile(session)
    membership = Membership(user_id=profile.user_id, organization_id=org.id)
    item = InventoryItem(organization_id=org.id, card_name="Pikachu")
    session.add_all([membership, item])
    session.flush()

    assert isinstance(org.id, uuid.UUID)
    assert org.deleted_at is None and not org.is_deleted
    assert membership.role == Role.MEMBER
    assert item.status == InventoryStatus.AVAILABLE
    assert item.is_foil is False
    assert item.language == "English"
    assert org.memberships == [membership]


def test_unique_slug_constraint(session: Session) -> None:
    _org(session, "moody-cards")
    session.commit()

    with pytest.raises(IntegrityError):
        _org(session, "moody-cards")
    session.rollback()


def test_membership_unique_per_user_and_organization(session: Session) -> None:
    org = _org(session)
    profile = _profile(session)
    session.add(Membership(user_id=profile.user_id, organization_id=org.id, role=Role.OWNER))
    session.commit()

    with pytest.raises(IntegrityError):
        session.add(Membership(user_id=profile.user_id, organization_id=org.id))
        session.flush()
    session.rollback()


def test_single_pending_invite_per_email(session: Session) -> None:
    org = _org(session)
    expires = dt.datetime.now(dt.timezone.utc) + dt.timedelta(days=7)
    session.add(Invite(organization_id=org.id, email="a@moodycards.com", token="t1", expires_at=expires))
    session.commit()

    with pytest.raises(IntegrityError):
        session.add(
            Invite(organization_id=org.id, email="a@moodycards.com", token="t2", expires_at=expires)
        )
        session.flush()
    session.rollback()


def test_revoked_invite_does_not_block_a_new_one(session: Session) -> None:
    org = _org(session)
    now = dt.datetime.now(dt.timezone.utc)
    expires = now + dt.timedelta(days=7)
    session.add(
        Invite(
            organization_id=org.id,
            email="a@moodycards.com",
            token="t1",
            expires_at=expires,
            revoked_at=now,
        )
    )
    session.add(Invite(organization_id=org.id, email="a@moodycards.com", token="t2", expires_at=expires))
    session.flush()

    assert len(session.execute(select(Invite)).scalars().all()) == 2


def test_one_transaction_per_item(session: Session) -> None:
    org = _org(session)
    item = InventoryItem(organization_id=org.id, card_name="Charizard")
    session.add(item)
    session.flush()
    session.add(Transaction(organization_id=org.id, inventory_id=item.id, sold_price=decimal.Decimal("10.00")))
    session.commit()

    with pytest.raises(IntegrityError):
        session.add(
            Transaction(organization_id=org.id, inventory_id=item.id, sold_price=decimal.Decimal("11.00"))
        )
        session.flush()
    session.rollback()


def test_hard_delete_cascades_to_dependents(session: Session) -> None:
    org = _org(session)
    profile = _profile(session)
    session.add(Membership(user_id=profile.user_id, organization_id=org.id, role=Role.OWNER))
    session.add(InventoryItem(organization_id=org.id, card_name="Mewtwo"))
    session.commit()

    session.delete(org)
    session.commit()

    assert session.execute(select(Membership)).scalars().all() == []
    assert session.execute(select(InventoryItem)).scalars().all() == []
    assert session.get(Profile, profile.user_id) is not None
