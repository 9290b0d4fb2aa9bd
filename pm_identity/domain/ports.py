"""Interfaces for the stores and collaborators the identity core depends on.

Lookups that take ``tenant_id=None`` run with the tenant filter switched off;
those are the cross-tenant lookups needed for duplicate-email detection,
sign-in and token validation. Passing a tenant id restricts the lookup to
that tenant.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional, Protocol, Tuple

from .account import Account, User
from .records import AuditLogRecord, InvitationRecord, RefreshTokenRecord


class DuplicateEmailError(Exception):
    """Raised by a credential store when the unique email index rejects an insert."""


class CredentialStore(Protocol):
    def create_account(self, name: str) -> Account: ...

    def delete_account(self, account_id: str) -> None:
        """Remove an account; a missing row is not an error."""
        ...

    def create_user(
        self,
        *,
        tenant_id: str,
        email: str,
        password_hash: str,
        role: str,
        email_verified: bool,
        security_stamp: str,
    ) -> User: ...

    def email_exists(self, email: str) -> bool: ...

    def find_user_by_email(self, email: str, *, tenant_id: str | None = None) -> User | None: ...

    def find_user_by_id(self, user_id: str, *, tenant_id: str | None = None) -> User | None: ...

    def mark_email_verified(self, user_id: str, security_stamp: str) -> None: ...

    def update_password(self, user_id: str, password_hash: str, security_stamp: str) -> None: ...


class TokenLedger(Protocol):
    def create_refresh_token(
        self,
        *,
        user_id: str,
        tenant_id: str,
        token_hash: str,
        expires_at: datetime,
        device_info: str | None = None,
    ) -> RefreshTokenRecord: ...

    def find_refresh_token(self, token_hash: str) -> RefreshTokenRecord | None: ...

    def revoke_refresh_token(self, token_id: str, revoked_at: datetime) -> bool:
        """Set ``revoked_at`` when unset; return whether a row changed."""
        ...

    def revoke_user_refresh_tokens(self, user_id: str, revoked_at: datetime) -> int: ...


class InvitationLedger(Protocol):
    def create_invitation(
        self,
        *,
        email: str,
        code_hash: str,
        created_at: datetime,
        expires_at: datetime,
        invited_by: str | None = None,
    ) -> InvitationRecord: ...

    def find_by_code_hash(self, code_hash: str) -> InvitationRecord | None: ...

    def find_pending_for_email(self, email: str, now: datetime) -> InvitationRecord | None: ...

    def mark_used(self, invitation_id: str, used_at: datetime) -> bool:
        """Set ``used_at`` when unset; return whether a row changed."""
        ...


class AuditTrail(Protocol):
    def write_audit_event(
        self,
        *,
        account_id: str | None,
        tenant_id: str | None,
        event_type: str,
        actor: str | None,
        metadata: dict[str, Any] | None = None,
    ) -> None: ...

    def list_audit_events(
        self,
        *,
        tenant_id: str,
        account_id: str | None = None,
        event_type: str | None = None,
        created_after: datetime | None = None,
        created_before: datetime | None = None,
        limit: int = 50,
        cursor: Tuple[datetime, int] | None = None,
    ) -> tuple[list[AuditLogRecord], Optional[Tuple[datetime, int]]]: ...


class EmailSender(Protocol):
    """Outbound mail collaborator; failures are never surfaced to callers."""

    def send_verification_email(self, email: str, token: str) -> None: ...

    def send_password_reset_email(self, email: str, token: str) -> None: ...

    def send_invitation_email(self, email: str, code: str) -> None: ...


class UserTokenProvider(Protocol):
    """Issues and checks the opaque, time-boxed, single-use half of a user token."""

    def generate(self, user: User, purpose: str) -> str: ...

    def verify(self, user: User, purpose: str, token: str) -> bool: ...
