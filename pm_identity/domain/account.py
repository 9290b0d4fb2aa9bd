from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone

ROLE_OWNER = "Owner"
ROLE_CONTRIBUTOR = "Contributor"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def normalize_email(email: str) -> str:
    """Return the lookup form of an email address."""
    return email.strip().lower()


@dataclass(slots=True)
class Account:
    """Tenant boundary; every user and token belongs to exactly one account."""

    account_id: str
    name: str
    created_at: datetime


@dataclass(slots=True)
class User:
    """Credential record for a person who can sign in to a tenant."""

    user_id: str
    tenant_id: str
    email: str
    password_hash: str
    role: str
    email_verified: bool
    security_stamp: str
    created_at: datetime
