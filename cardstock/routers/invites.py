"""Invite management API."""

from __future__ import annotations

import uuid
from typing import Annotated

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from cardstock import invites, schemas
from cardstock.core.principal import Principal
from cardstock.models import Invite
from cardstock.security.auth import get_current_principal, get_db_session

router = APIRouter(prefix="/api/invites", tags=["invites"])

SessionDep = Annotated[Session, Depends(get_db_session)]
PrincipalDep = Annotated[Principal, Depends(get_current_principal)]


def _invite_payload(
    invite: Invite, model: type[schemas.Invite] = schemas.Invite
) -> schemas.Invite:
    data = {name: getattr(invite, name) for name in model.model_fields if name != "state"}
    data["state"] = invites.invite_state(invite)
    return model.model_validate(data)


@router.post("", response_model=schemas.IssuedInvite, status_code=status.HTTP_201_CREATED)
def create_invite(
    payload: schemas.CreateInviteRequest,
    session: SessionDep,
    principal: PrincipalDep,
) -> schemas.Invite:
    """Invite an e-mail address, superseding its previous unresolved invite."""

    invite = invites.create_invite(
        session,
        principal,
        payload.organization_id,
        payload.email,
        payload.role,
        expires_in=payload.expires_in,
    )
    return _invite_payload(invite, schemas.IssuedInvite)


@router.get("", response_model=list[schemas.Invite])
def list_invites(
    session: SessionDep,
    principal: PrincipalDep,
    organization_id: uuid.UUID,
    state: Annotated[invites.InviteState | None, Query()] = None,
) -> list[schemas.Invite]:
    rows = invites.list_invites(session, principal, organization_id, state=state)
    return [_invite_payload(invite) for invite in rows]


@router.post("/{invite_id}/revoke", response_model=schemas.Invite)
def revoke_invite(
    invite_id: uuid.UUID,
    session: SessionDep,
    principal: PrincipalDep,
) -> schemas.Invite:
    invite = invites.revoke_invite(session, principal, invite_id)
    return _invite_payload(invite)
