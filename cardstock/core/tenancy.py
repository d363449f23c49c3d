"""Derived tenancy relations and profile provisioning.

Both relations ignore soft-deleted organizations: a principal whose only
organization was soft-deleted belongs to nothing and shares nothing.
"""

from __future__ import annotations

import datetime as dt
import logging
import uuid

from sqlalchemy import select
from sqlalchemy.orm import Session, aliased

from cardstock.models import Membership, Organization, Profile, Role

from .principal import Principal

__all__ = ["co_member_ids", "ensure_profile", "organization_roles"]

logger = logging.getLogger(__name__)


def organization_roles(session: Session, principal_id: uuid.UUID) -> dict[uuid.UUID, Role]:
    """Return ``{organization_id: role}`` for every live organization of a principal."""

    rows = session.execute(
        select(Membership.organization_id, Membership.role)
        .join(Organization, Organization.id == Membership.organization_id)
        .where(Membership.user_id == principal_id)
        .where(Organization.deleted_at.is_(None))
    ).all()
    return {org_id: Role(role) for org_id, role in rows}


def co_member_ids(session: Session, principal_id: uuid.UUID) -> set[uuid.UUID]:
    """Return principals sharing at least one live organization with ``principal_id``."""

    mine = aliased(Membership)
    theirs = aliased(Membership)
    rows = session.execute(
        select(theirs.user_id)
        .distinct()
        .join(mine, mine.organization_id == theirs.organization_id)
        .join(Organization, Organization.id == mine.organization_id)
        .where(mine.user_id == principal_id)
        .where(Organization.deleted_at.is_(None))
    ).scalars()
    return set(rows)


def ensure_profile(session: Session, principal: Principal) -> Profile:
    """Create the principal's profile on first authentication.

    The registered e-mail is kept in sync with the identity provider, which
    is the source of truth for it.
    """

    profile = session.get(Profile, principal.id)
    email = principal.normalized_email
    if profile is None:
        profile = Profile(user_id=principal.id, email=email)
        session.add(profile)
        session.flush()
        logger.info("Created profile for principal %s", principal.id)
    elif profile.email != email:
        profile.email = email
        profile.updated_at = dt.datetime.now(dt.timezone.utc)
        session.flush()
    return profile
