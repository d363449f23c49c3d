"""Invite lifecycle: issue, supersede, revoke and derive state.

An invite moves from ``pending`` to exactly one terminal state:
``accepted`` (through :func:`cardstock.procedures.accept_invite`) or
``revoked``.  ``expired`` is derived from ``expires_at`` and never stored.

Issuing a new invite for an e-mail that still has an unresolved invite in the
same organization supersedes it: the old invite is revoked in the same
transaction before the new one is inserted, so at most one pending invite per
(organization, e-mail) exists at any time.
"""

from __future__ import annotations

import datetime as dt
import enum
import logging
import secrets
import uuid

from email_validator import EmailNotValidError, validate_email
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from cardstock.config import get_settings
from cardstock.core.principal import Principal
from cardstock.errors import Conflict, InvariantViolation, ValidationError
from cardstock.models import Invite, Membership, Organization, Profile, Role
from cardstock.models.session import atomic
from cardstock.repository import TenantRepository

__all__ = [
    "InviteState",
    "as_utc",
    "create_invite",
    "invite_state",
    "list_invites",
    "normalize_email",
    "revoke_invite",
]

logger = logging.getLogger(__name__)


class InviteState(str, enum.Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    REVOKED = "revoked"
    EXPIRED = "expired"


def _utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


def as_utc(value: dt.datetime) -> dt.datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=dt.timezone.utc)
    return value.astimezone(dt.timezone.utc)


def invite_state(invite: Invite, now: dt.datetime | None = None) -> InviteState:
    """Derive the lifecycle state of ``invite`` at ``now``."""

    now = now or _utcnow()
    if invite.accepted_at is not None:
        return InviteState.ACCEPTED
    if invite.revoked_at is not None:
        return InviteState.REVOKED
    if as_utc(invite.expires_at) < as_utc(now):
        return InviteState.EXPIRED
    return InviteState.PENDING


def normalize_email(email: str) -> str:
    """Validate ``email`` and return its lower-cased form."""

    try:
        result = validate_email(email.strip(), check_deliverability=False)
    except EmailNotValidError as exc:
        raise ValidationError(f"Invalid e-mail address: {exc}") from exc
    return result.normalized.lower()


def _parse_role(role: Role | str) -> Role:
    try:
        return Role(role)
    except ValueError as exc:
        raise ValidationError(f"Invalid role: {role!r}.") from exc


@atomic
def create_invite(
    session: Session,
    principal: Principal,
    organization_id: uuid.UUID,
    email: str,
    role: Role | str = Role.MEMBER,
    *,
    expires_in: int | None = None,
    now: dt.datetime | None = None,
) -> Invite:
    """Issue an invite, superseding any unresolved invite for the same e-mail.

    Raises:
        ValidationError: Malformed e-mail, role or lifetime.
        NotFound: The organization is absent, soft-deleted or not visible.
        PermissionDenied: The caller is not an admin/owner, or an admin tries
            to grant ``owner``.
        Conflict: The e-mail already belongs to a member of the organization.
        InvariantViolation: A concurrent invite won the pending slot.
    """

    normalized = normalize_email(email)
    target_role = _parse_role(role)
    ttl = expires_in if expires_in is not None else get_settings().invite_ttl_seconds
    if ttl <= 0:
        raise ValidationError("Invite lifetime must be positive.")
    now = now or _utcnow()

    repo = TenantRepository(session, principal)
    repo.get(Organization, organization_id)

    profile_ids = [p.user_id for p in repo.select(Profile, Profile.email == normalized)]
    if profile_ids and repo.select(
        Membership,
        Membership.organization_id == organization_id,
        Membership.user_id.in_(profile_ids),
    ):
        raise Conflict("This e-mail already belongs to a member of the organization.")

    superseded = repo.select(
        Invite,
        Invite.organization_id == organization_id,
        Invite.email == normalized,
        Invite.accepted_at.is_(None),
        Invite.revoked_at.is_(None),
    )
    for previous in superseded:
        repo.update(Invite, previous.id, {"revoked_at": now})
        logger.info("Superseded invite %s for organization %s", previous.id, organization_id)

    invite = Invite(
        organization_id=organization_id,
        email=normalized,
        role=target_role,
        token=secrets.token_urlsafe(32),
        invited_by=principal.id,
        created_at=now,
        expires_at=now + dt.timedelta(seconds=ttl),
    )
    try:
        repo.insert(invite)
    except IntegrityError as exc:
        raise InvariantViolation(
            "A pending invite for this e-mail already exists in the organization."
        ) from exc
    return invite


@atomic
def revoke_invite(
    session: Session,
    principal: Principal,
    invite_id: uuid.UUID,
    *,
    now: dt.datetime | None = None,
) -> Invite:
    """Revoke a pending or expired invite."""

    now = now or _utcnow()
    repo = TenantRepository(session, principal)
    invite = repo.get(Invite, invite_id)
    state = invite_state(invite, now)
    if state in (InviteState.ACCEPTED, InviteState.REVOKED):
        raise Conflict(f"Invite has already been {state.value}.")
    return repo.update(Invite, invite_id, {"revoked_at": now})


def list_invites(
    session: Session,
    principal: Principal,
    organization_id: uuid.UUID,
    *,
    state: InviteState | None = None,
    now: dt.datetime | None = None,
) -> list[Invite]:
    """Return the organization's invites visible to ``principal``, newest first."""

    repo = TenantRepository(session, principal)
    invites = repo.select(
        Invite,
        Invite.organization_id == organization_id,
        order_by=[Invite.created_at.desc()],
    )
    if state is None:
        return invites
    return [invite for invite in invites if invite_state(invite, now) == state]
