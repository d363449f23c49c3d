"""Utility CLI to bootstrap the demo store, its owner and sample inventory."""

from __future__ import annotations

import decimal
import logging
import os
import uuid

from dotenv import load_dotenv
from sqlalchemy import func, select
from sqlalchemy.engine import make_url
from sqlalchemy.exc import ArgumentError
from sqlalchemy.orm import Session

from cardstock import inventory, procedures
from cardstock.core.principal import Principal
from cardstock.core.tenancy import ensure_profile
from cardstock.models import Base, CardCondition, InventoryItem, Organization, Profile
from cardstock.models.session import get_sessionmaker
from cardstock.security import create_access_token

logger = logging.getLogger("tools.bootstrap_demo")

DEFAULT_ORG_NAME = "Moody Cards"
DEFAULT_ORG_SLUG = "moody-cards"
DEFAULT_OWNER_EMAIL = "owner@moodycards.com"

# (card_name, set_name, set_code, card_number, rarity, condition, selling_price)
SAMPLE_CARDS: tuple[tuple[str, str, str, str, str, str, str], ...] = (
    ("Charizard", "Base Set", "BS", "4/102", "Holo Rare", "lightly_played", "249.99"),
    ("Pikachu", "Base Set", "BS", "58/102", "Common", "near_mint", "19.99"),
    ("Blastoise", "Base Set", "BS", "2/102", "Holo Rare", "near_mint", "179.99"),
    ("Venusaur", "Base Set", "BS", "15/102", "Holo Rare", "moderately_played", "129.99"),
    ("Mewtwo", "Base Set", "BS", "10/102", "Holo Rare", "near_mint", "89.99"),
    ("Gyarados", "Base Set", "BS", "6/102", "Holo Rare", "mint", "149.99"),
    ("Lugia", "Neo Genesis", "NG", "9/111", "Holo Rare", "near_mint", "199.99"),
    ("Umbreon", "Neo Discovery", "ND", "13/75", "Holo Rare", "lightly_played", "159.99"),
    ("Rayquaza VMAX", "Evolving Skies", "EVS", "218/203", "Secret Rare", "mint", "89.99"),
    ("Pikachu VMAX", "Vivid Voltage", "VV", "188/185", "Secret Rare", "near_mint", "299.99"),
)


def _as_sqlalchemy_url(db_url: str) -> str:
    """Return a SQLAlchemy URL that uses the ``psycopg`` driver."""

    if db_url.startswith("postgresql+psycopg://"):
        return db_url
    if db_url.startswith("postgresql://"):
        return db_url.replace("postgresql://", "postgresql+psycopg://", 1)
    return db_url


def _safe_url(db_url: str) -> str:
    """Return ``db_url`` with any password redacted for logging."""

    try:
        parsed = make_url(db_url)
    except ArgumentError:
        return db_url
    if parsed.password is None:
        return db_url
    redacted = parsed.set(password="***")
    return redacted.render_as_string(hide_password=False)


def demo_owner_id(email: str) -> uuid.UUID:
    """Stable principal id for the demo owner, derived from the e-mail."""

    return uuid.uuid5(uuid.NAMESPACE_URL, f"mailto:{email.strip().lower()}")


def ensure_demo_entities(
    session: Session,
    *,
    organization_name: str = DEFAULT_ORG_NAME,
    organization_slug: str = DEFAULT_ORG_SLUG,
    owner_email: str = DEFAULT_OWNER_EMAIL,
    owner_id: uuid.UUID | None = None,
) -> tuple[Organization, Profile, bool, int]:
    """Ensure the demo store, its owner and its sample inventory exist.

    The store is created through the regular procedures, so the owner
    membership and the audit trail look exactly like a real sign-up.

    Returns:
        The organization, the owner's profile, whether the organization was
        created, and how many sample cards were added.
    """

    principal = Principal(id=owner_id or demo_owner_id(owner_email), email=owner_email)
    profile = ensure_profile(session, principal)
    session.commit()

    slug = organization_slug.strip().lower()
    org = session.execute(
        select(Organization).where(Organization.slug == slug)
    ).scalar_one_or_none()
    created_org = org is None
    if org is None:
        org = procedures.create_organization(session, principal, organization_name, slug)
        logger.info("Created organization %s (id=%s)", org.slug, org.id)
    else:
        logger.info("Organization %s already exists (id=%s)", org.slug, org.id)

    existing = session.execute(
        select(func.count())
        .select_from(InventoryItem)
        .where(InventoryItem.organization_id == org.id)
    ).scalar_one()
    added = 0
    if existing == 0:
        for name, set_name, set_code, number, rarity, condition, price in SAMPLE_CARDS:
            inventory.create_item(
                session,
                principal,
                {
                    "organization_id": org.id,
                    "card_name": name,
                    "set_name": set_name,
                    "set_code": set_code,
                    "card_number": number,
                    "rarity": rarity,
                    "condition": CardCondition(condition),
                    "selling_price": decimal.Decimal(price),
                },
            )
            added += 1
        logger.info("Added %d sample cards to %s", added, org.slug)
    else:
        logger.info("Inventory for %s already exists (%d items)", org.slug, existing)

    return org, profile, created_org, added


def main() -> None:
    """Script entrypoint for ensuring the demo store exists."""

    load_dotenv()
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(message)s")

    db_url = os.getenv("DATABASE_URL")
    if not db_url:
        raise RuntimeError("DATABASE_URL environment variable is required")

    logger.info("Ensuring schema on %s", _safe_url(db_url))
    SessionLocal = get_sessionmaker(database_url=_as_sqlalchemy_url(db_url))
    Base.metadata.create_all(SessionLocal.kw["bind"])

    owner_email = os.getenv("DEMO_OWNER_EMAIL", DEFAULT_OWNER_EMAIL)
    with SessionLocal() as session:
        org, profile, created_org, added = ensure_demo_entities(
            session, owner_email=owner_email
        )

    logger.info("Organization %s (%s)", "created" if created_org else "existing", org.slug)
    logger.info("Owner %s (%s)", profile.email, profile.user_id)

    if os.getenv("AUTH_TOKEN_SECRET"):
        token, expires_at = create_access_token(profile.user_id, profile.email)
        print(f"Development token (expires {expires_at.isoformat()}):\n{token}")
    else:
        logger.info("AUTH_TOKEN_SECRET not set; skipping development token")


if __name__ == "__main__":  # pragma: no cover - CLI execution
    main()
