"""Domain-level request and response contracts shared by multiple layers."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(slots=True)
class RegisterInput:
    email: str
    password: str
    account_name: str


@dataclass(slots=True)
class LoginInput:
    email: str
    password: str
    device_info: str | None = None


@dataclass(slots=True)
class ResetPasswordInput:
    token: str
    new_password: str


@dataclass(slots=True)
class Credentials:
    """Identity resolved by a successful credential check."""

    user_id: str
    tenant_id: str
    role: str


@dataclass(slots=True)
class RegisterResult:
    user_id: str
    requires_email_verification: bool = True


@dataclass(slots=True)
class LoginResult:
    access_token: str
    expires_in: int
    refresh_token: str
    user_id: str
    tenant_id: str
    role: str


@dataclass(slots=True)
class RefreshResult:
    access_token: str
    expires_in: int
    user_id: str
    tenant_id: str
    role: str
    refresh_token: str | None = None


@dataclass(slots=True)
class RefreshTokenValidation:
    is_valid: bool
    user_id: str | None = None
    tenant_id: str | None = None
    role: str | None = None


@dataclass(slots=True)
class CreateInvitationResult:
    invitation_id: str
    message: str = "Invitation sent successfully"


@dataclass(slots=True)
class InvitationValidation:
    is_valid: bool
    email: str | None = None
    error_message: str | None = None


@dataclass(slots=True)
class AcceptInvitationResult:
    user_id: str
    email: str
    message: str = "Account created successfully"
