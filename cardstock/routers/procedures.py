"""Procedure endpoints: the only HTTP path to privileged workflows."""

from typing import Annotated

from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.orm import Session

from cardstock import procedures, schemas
from cardstock.core.principal import Principal
from cardstock.core.rate_limit import accept_invite_limit, limiter
from cardstock.security.auth import get_current_principal, get_db_session

router = APIRouter(prefix="/api/rpc", tags=["procedures"])

SessionDep = Annotated[Session, Depends(get_db_session)]
PrincipalDep = Annotated[Principal, Depends(get_current_principal)]


@router.post(
    "/create-organization",
    response_model=schemas.Organization,
    status_code=status.HTTP_201_CREATED,
)
def create_organization(
    payload: schemas.CreateOrganizationRequest,
    session: SessionDep,
    principal: PrincipalDep,
) -> schemas.Organization:
    """Create an organization owned by the caller."""

    organization = procedures.create_organization(
        session, principal, payload.name, payload.slug
    )
    return schemas.Organization.model_validate(organization)


@router.post(
    "/accept-invite",
    response_model=schemas.Membership,
    status_code=status.HTTP_201_CREATED,
)
@limiter.limit(accept_invite_limit)
def accept_invite(
    request: Request,
    payload: schemas.AcceptInviteRequest,
    session: SessionDep,
    principal: PrincipalDep,
) -> schemas.Membership:
    """Join the organization behind an invite token."""

    membership = procedures.accept_invite(session, principal, payload.token)
    return schemas.Membership.model_validate(membership)


@router.post(
    "/mark-item-sold",
    response_model=schemas.Transaction,
    status_code=status.HTTP_201_CREATED,
)
def mark_item_sold(
    payload: schemas.MarkItemSoldRequest,
    session: SessionDep,
    principal: PrincipalDep,
) -> schemas.Transaction:
    sale = procedures.mark_item_sold(
        session,
        principal,
        payload.item_id,
        payload.price,
        buyer_email=payload.buyer_email,
        buyer_notes=payload.buyer_notes,
    )
    return schemas.Transaction.model_validate(sale)


@router.post("/soft-delete-organization", response_model=schemas.Organization)
def soft_delete_organization(
    payload: schemas.OrganizationRef,
    session: SessionDep,
    principal: PrincipalDep,
) -> schemas.Organization:
    organization = procedures.soft_delete_organization(
        session, principal, payload.organization_id
    )
    return schemas.Organization.model_validate(organization)


@router.post("/leave-organization", response_model=schemas.Envelope)
def leave_organization(
    payload: schemas.OrganizationRef,
    session: SessionDep,
    principal: PrincipalDep,
) -> schemas.Envelope:
    procedures.leave_organization(session, principal, payload.organization_id)
    return schemas.Envelope()


@router.post("/change-member-role", response_model=schemas.Membership)
def change_member_role(
    payload: schemas.ChangeMemberRoleRequest,
    session: SessionDep,
    principal: PrincipalDep,
) -> schemas.Membership:
    membership = procedures.change_member_role(
        session, principal, payload.membership_id, payload.role
    )
    return schemas.Membership.model_validate(membership)


@router.post("/remove-member", response_model=schemas.Envelope)
def remove_member(
    payload: schemas.RemoveMemberRequest,
    session: SessionDep,
    principal: PrincipalDep,
) -> schemas.Envelope:
    procedures.remove_member(session, principal, payload.membership_id)
    return schemas.Envelope()
