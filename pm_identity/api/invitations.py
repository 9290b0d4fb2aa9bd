"""HTTP routes for invitation-only onboarding."""

from __future__ import annotations

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel

from ..domain.invitations import InvitationService
from ..domain.results import Success
from ..security.session import SessionContext, require_owner
from .dependencies import auth_rate_limit, get_invitation_service
from .errors import failure_response

router = APIRouter(prefix="/v1/invitations", tags=["invitations"])


class CreateInvitationRequest(BaseModel):
    email: str = ""


class CreateInvitationResponse(BaseModel):
    invitation_id: str
    message: str


class InvitationValidationResponse(BaseModel):
    is_valid: bool
    email: str | None = None
    error_message: str | None = None


class AcceptInvitationRequest(BaseModel):
    password: str = ""


class AcceptInvitationResponse(BaseModel):
    user_id: str
    email: str
    message: str


@router.post("", response_model=CreateInvitationResponse, status_code=status.HTTP_201_CREATED)
def create_invitation(
    payload: CreateInvitationRequest,
    session: SessionContext = Depends(require_owner),
    service: InvitationService = Depends(get_invitation_service),
):
    """Invite an email address to create its own account. Owners only."""
    outcome = service.create_invitation(
        payload.email, invited_by=session.user_id, tenant_id=session.tenant_id
    )
    if not isinstance(outcome, Success):
        return failure_response(outcome)
    return CreateInvitationResponse(
        invitation_id=outcome.value.invitation_id,
        message=outcome.value.message,
    )


@router.get("/{code}/validate", response_model=InvitationValidationResponse)
def validate_invitation(
    code: str,
    service: InvitationService = Depends(get_invitation_service),
) -> InvitationValidationResponse:
    validation = service.validate_invitation(code)
    return InvitationValidationResponse(
        is_valid=validation.is_valid,
        email=validation.email,
        error_message=validation.error_message,
    )


@router.post(
    "/{code}/accept",
    response_model=AcceptInvitationResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(auth_rate_limit)],
)
def accept_invitation(
    code: str,
    payload: AcceptInvitationRequest,
    service: InvitationService = Depends(get_invitation_service),
):
    """Redeem an invitation code, creating the invitee's account and owner user."""
    outcome = service.accept_invitation(code, payload.password)
    if not isinstance(outcome, Success):
        return failure_response(outcome)
    return AcceptInvitationResponse(
        user_id=outcome.value.user_id,
        email=outcome.value.email,
        message=outcome.value.message,
    )
