"""Row projections for the token ledger, invitation ledger and audit trail."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any


@dataclass(slots=True)
class RefreshTokenRecord:
    """A stored refresh token; only the hash of the raw value is kept."""

    token_id: str
    user_id: str
    tenant_id: str
    token_hash: str
    expires_at: datetime
    revoked_at: datetime | None = None
    device_info: str | None = None
    created_at: datetime | None = None

    def is_active(self, now: datetime) -> bool:
        """Valid iff never revoked and strictly before expiry."""
        return self.revoked_at is None and now < self.expires_at


@dataclass(slots=True)
class InvitationRecord:
    invitation_id: str
    email: str
    code_hash: str
    created_at: datetime
    expires_at: datetime
    used_at: datetime | None = None
    invited_by: str | None = None

    @property
    def is_used(self) -> bool:
        return self.used_at is not None

    def is_expired(self, now: datetime) -> bool:
        return now > self.expires_at

    def is_valid(self, now: datetime) -> bool:
        return not self.is_used and not self.is_expired(now)


@dataclass(slots=True)
class AuditLogRecord:
    """Row projection for items in identity_audit_log."""

    audit_id: int
    account_id: str | None
    tenant_id: str | None
    event_type: str
    actor: str | None
    metadata: dict[str, Any] = field(default_factory=dict)
    created_at: datetime | None = None
