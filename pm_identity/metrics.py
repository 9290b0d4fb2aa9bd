"""Prometheus counters for identity workflows."""

from __future__ import annotations

from prometheus_client import Counter

LOGIN_ATTEMPTS = Counter(
    "pm_identity_login_attempts_total",
    "Sign-in attempts by outcome.",
    ["outcome"],
)

INVITATIONS = Counter(
    "pm_identity_invitations_total",
    "Invitation lifecycle events.",
    ["event"],
)

REFRESH_TOKENS_REVOKED = Counter(
    "pm_identity_refresh_tokens_revoked_total",
    "Refresh tokens revoked by logout, rotation or password reset.",
)
