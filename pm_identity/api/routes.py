"""HTTP route definitions for registration, sign-in and session management."""

from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Body, Cookie, Depends, Header, HTTPException, Response, status
from pydantic import BaseModel, EmailStr

from ..config import Settings
from ..domain.contracts import LoginInput, RegisterInput, ResetPasswordInput
from ..domain.identity import IdentityService
from ..domain.results import Success
from ..domain.service import AuthService
from ..logging_config import sanitize_for_log
from ..security.session import SessionContext, require_authenticated
from .dependencies import (
    auth_rate_limit,
    get_auth_service,
    get_identity_service,
    get_settings_state,
    refresh_rate_limit,
)
from .errors import failure_response

router = APIRouter(prefix="/v1/auth", tags=["auth"])

REFRESH_COOKIE = "refreshToken"
REFRESH_COOKIE_PATH = "/v1/auth"


class RegisterRequest(BaseModel):
    """Payload accepted when signing up a new account and its owner."""

    email: str = ""
    password: str = ""
    account_name: str = ""


class RegisterResponse(BaseModel):
    user_id: str
    requires_email_verification: bool


class VerifyEmailRequest(BaseModel):
    token: str = ""


class LoginRequest(BaseModel):
    email: str = ""
    password: str = ""


class LoginResponse(BaseModel):
    """Token issuance response containing the bearer token and metadata."""

    access_token: str
    token_type: str = "bearer"
    expires_in: int
    refresh_token: str
    user_id: str
    tenant_id: str
    role: str


class RefreshTokenRequest(BaseModel):
    """Refresh token supplied in the body; the cookie is used when absent."""

    refresh_token: str | None = None


class RefreshResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_in: int
    user_id: str
    tenant_id: str
    role: str
    refresh_token: str | None = None


class ForgotPasswordRequest(BaseModel):
    email: str = ""


class ResetPasswordRequest(BaseModel):
    token: str = ""
    new_password: str = ""


class CurrentUserResponse(BaseModel):
    user_id: str
    tenant_id: str
    email: EmailStr
    role: str
    email_verified: bool
    created_at: datetime


def _set_refresh_cookie(response: Response, token: str, settings: Settings) -> None:
    response.set_cookie(
        REFRESH_COOKIE,
        token,
        max_age=settings.refresh_token_seconds,
        path=REFRESH_COOKIE_PATH,
        secure=settings.refresh_cookie_secure,
        httponly=True,
        samesite="strict",
    )


def _clear_refresh_cookie(response: Response, settings: Settings) -> None:
    response.delete_cookie(
        REFRESH_COOKIE,
        path=REFRESH_COOKIE_PATH,
        secure=settings.refresh_cookie_secure,
        httponly=True,
        samesite="strict",
    )


def _presented_token(
    payload: RefreshTokenRequest | None, cookie_value: str | None
) -> str | None:
    if payload is not None and payload.refresh_token:
        return payload.refresh_token
    return cookie_value


@router.post(
    "/register",
    response_model=RegisterResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(auth_rate_limit)],
)
def register(
    payload: RegisterRequest,
    service: AuthService = Depends(get_auth_service),
):
    """Create an account, its owner user and send the verification email."""
    outcome = service.register(
        RegisterInput(
            email=payload.email,
            password=payload.password,
            account_name=payload.account_name,
        )
    )
    if not isinstance(outcome, Success):
        return failure_response(outcome)
    return RegisterResponse(
        user_id=outcome.value.user_id,
        requires_email_verification=outcome.value.requires_email_verification,
    )


@router.post(
    "/verify-email",
    status_code=status.HTTP_204_NO_CONTENT,
    dependencies=[Depends(auth_rate_limit)],
)
def verify_email(
    payload: VerifyEmailRequest,
    service: AuthService = Depends(get_auth_service),
):
    outcome = service.verify_email(payload.token)
    if not isinstance(outcome, Success):
        return failure_response(outcome)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/login", response_model=LoginResponse, dependencies=[Depends(auth_rate_limit)])
def login(
    payload: LoginRequest,
    response: Response,
    user_agent: str | None = Header(default=None),
    service: AuthService = Depends(get_auth_service),
    settings: Settings = Depends(get_settings_state),
):
    """Exchange email and password for an access token and a refresh token."""
    device_info = sanitize_for_log(user_agent) or None
    outcome = service.login(
        LoginInput(email=payload.email, password=payload.password, device_info=device_info)
    )
    if not isinstance(outcome, Success):
        return failure_response(outcome)

    result = outcome.value
    _set_refresh_cookie(response, result.refresh_token, settings)
    return LoginResponse(
        access_token=result.access_token,
        expires_in=result.expires_in,
        refresh_token=result.refresh_token,
        user_id=result.user_id,
        tenant_id=result.tenant_id,
        role=result.role,
    )


@router.post("/refresh", response_model=RefreshResponse, dependencies=[Depends(refresh_rate_limit)])
def refresh(
    response: Response,
    payload: RefreshTokenRequest | None = Body(default=None),
    refresh_cookie: str | None = Cookie(default=None, alias=REFRESH_COOKIE),
    service: AuthService = Depends(get_auth_service),
    settings: Settings = Depends(get_settings_state),
):
    """Issue a new access token for a valid refresh token."""
    outcome = service.refresh(_presented_token(payload, refresh_cookie))
    if not isinstance(outcome, Success):
        failed = failure_response(outcome)
        _clear_refresh_cookie(failed, settings)
        return failed

    result = outcome.value
    if result.refresh_token:
        _set_refresh_cookie(response, result.refresh_token, settings)
    return RefreshResponse(
        access_token=result.access_token,
        expires_in=result.expires_in,
        user_id=result.user_id,
        tenant_id=result.tenant_id,
        role=result.role,
        refresh_token=result.refresh_token,
    )


@router.post("/logout", status_code=status.HTTP_204_NO_CONTENT)
def logout(
    payload: RefreshTokenRequest | None = Body(default=None),
    refresh_cookie: str | None = Cookie(default=None, alias=REFRESH_COOKIE),
    service: AuthService = Depends(get_auth_service),
    settings: Settings = Depends(get_settings_state),
):
    """Revoke the presented refresh token and clear the cookie."""
    outcome = service.logout(_presented_token(payload, refresh_cookie))
    if not isinstance(outcome, Success):
        return failure_response(outcome)
    response = Response(status_code=status.HTTP_204_NO_CONTENT)
    _clear_refresh_cookie(response, settings)
    return response


@router.post(
    "/forgot-password",
    status_code=status.HTTP_204_NO_CONTENT,
    dependencies=[Depends(auth_rate_limit)],
)
def forgot_password(
    payload: ForgotPasswordRequest,
    service: AuthService = Depends(get_auth_service),
):
    """Start a password reset; the response never reveals whether the email exists."""
    outcome = service.forgot_password(payload.email)
    if not isinstance(outcome, Success):
        return failure_response(outcome)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post(
    "/reset-password",
    status_code=status.HTTP_204_NO_CONTENT,
    dependencies=[Depends(auth_rate_limit)],
)
def reset_password(
    payload: ResetPasswordRequest,
    service: AuthService = Depends(get_auth_service),
):
    outcome = service.reset_password(
        ResetPasswordInput(token=payload.token, new_password=payload.new_password)
    )
    if not isinstance(outcome, Success):
        return failure_response(outcome)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/me", response_model=CurrentUserResponse)
def current_user(
    session: SessionContext = Depends(require_authenticated),
    identity: IdentityService = Depends(get_identity_service),
) -> CurrentUserResponse:
    """Return the signed-in user, looked up inside the caller's tenant."""
    user = identity.get_user(session.user_id, session.tenant_id)
    if user is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    return CurrentUserResponse(
        user_id=user.user_id,
        tenant_id=user.tenant_id,
        email=user.email,
        role=user.role,
        email_verified=user.email_verified,
        created_at=user.created_at,
    )
