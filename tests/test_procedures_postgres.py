"""Concurrency checks that need real row locks, run against PostgreSQL."""

from __future__ import annotations

import os
import threading
import uuid

import pytest
import sqlalchemy as sa
from sqlalchemy.orm import sessionmaker

from cardstock import invites, inventory, procedures
from cardstock.core.principal import Principal
from cardstock.core.tenancy import ensure_profile
from cardstock.errors import Conflict, CoreError, InvariantViolation
from cardstock.models import Base, Membership, Role, Transaction
from cardstock.models.session import get_engine

pytestmark = pytest.mark.integration


def _postgres_url() -> str:
    url = os.getenv("DATABASE_URL_POSTGRES") or os.getenv("DATABASE_URL") or ""
    if not url.startswith("postgresql"):
        pytest.skip("PostgreSQL database not configured")
    if url.startswith("postgresql://"):
        url = url.replace("postgresql://", "postgresql+psycopg://", 1)
    return url


@pytest.fixture
def factory(request):
    isolation_level = getattr(request, "param", "READ COMMITTED")
    engine = get_engine(_postgres_url(), isolation_level=isolation_level)
    try:
        with engine.connect():
            pass
    except sa.exc.OperationalError:
        engine.dispose()
        pytest.skip("database not available")
    Base.metadata.drop_all(engine)
    Base.metadata.create_all(engine)
    yield sessionmaker(bind=engine, expire_on_commit=False, future=True)
    Base.metadata.drop_all(engine)
    engine.dispose()


def _principal(factory, email: str) -> Principal:
    principal = Principal(id=uuid.uuid4(), email=email)
    with factory.begin() as session:
        ensure_profile(session, principal)
    return principal


def _race(factory, calls) -> list[object]:
    """Run each call in its own session and thread, started together."""

    barrier = threading.Barrier(len(calls))
    results: list[object] = [None] * len(calls)

    def run(index, call):
        with factory() as session:
            barrier.wait()
            try:
                results[index] = call(session)
            except CoreError as exc:
                results[index] = exc

    threads = [threading.Thread(target=run, args=(i, c)) for i, c in enumerate(calls)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()
    return results


def test_concurrent_acceptance_creates_one_membership(factory) -> None:
    owner = _principal(factory, "alice@moodycards.com")
    with factory() as session:
        org = procedures.create_organization(session, owner, "Moody Cards", "moody-cards")
        invite = invites.create_invite(session, owner, org.id, "carol@moodycards.com")
    carol = _principal(factory, "carol@moodycards.com")
    twin = _principal(factory, "carol@moodycards.com")

    results = _race(
        factory,
        [
            lambda s: procedures.accept_invite(s, carol, invite.token),
            lambda s: procedures.accept_invite(s, twin, invite.token),
        ],
    )

    assert sum(isinstance(r, Membership) for r in results) == 1
    assert sum(isinstance(r, Conflict) for r in results) == 1
    with factory() as session:
        count = session.execute(
            sa.select(sa.func.count()).select_from(Membership).where(Membership.organization_id == org.id)
        ).scalar_one()
    assert count == 2


@pytest.mark.parametrize("factory", ["READ COMMITTED", "SERIALIZABLE"], indirect=True)
def test_concurrent_sales_record_one_transaction(factory) -> None:
    owner = _principal(factory, "alice@moodycards.com")
    with factory() as session:
        org = procedures.create_organization(session, owner, "Moody Cards", "moody-cards")
        item = inventory.create_item(
            session, owner, {"organization_id": org.id, "card_name": "Charizard"}
        )

    results = _race(
        factory,
        [lambda s: procedures.mark_item_sold(s, owner, item.id, "249.99") for _ in range(4)],
    )

    assert sum(isinstance(r, Transaction) for r in results) == 1
    assert all(isinstance(r, (Transaction, Conflict)) for r in results)


def test_concurrent_owner_departures_keep_one_owner(factory) -> None:
    alice = _principal(factory, "alice@moodycards.com")
    bob = _principal(factory, "bob@moodycards.com")
    with factory() as session:
        org = procedures.create_organization(session, alice, "Moody Cards", "moody-cards")
    with factory.begin() as session:
        session.add(Membership(user_id=bob.id, organization_id=org.id, role=Role.OWNER))

    results = _race(
        factory,
        [
            lambda s: procedures.leave_organization(s, alice, org.id),
            lambda s: procedures.leave_organization(s, bob, org.id),
        ],
    )

    assert sum(isinstance(r, InvariantViolation) for r in results) == 1
    with factory() as session:
        assert procedures.owner_count(session, org.id) == 1
