"""Service wiring on ``app.state`` and the FastAPI dependencies that read it back."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable

from fastapi import FastAPI, HTTPException, Request, status

from ..config import Settings
from ..domain.account import utcnow
from ..domain.audit import AuditService
from ..domain.identity import IdentityService
from ..domain.invitations import InvitationService
from ..domain.ports import AuditTrail, CredentialStore, EmailSender, InvitationLedger, TokenLedger
from ..domain.service import AuthService
from ..domain.token_service import TokenService
from ..security.passwords import PasswordHasher
from ..security.rate_limiter import RateLimiter, build_rate_limiter
from ..security.user_tokens import SignedUserTokenProvider

logger = logging.getLogger(__name__)


def configure_services(
    app: FastAPI,
    settings: Settings,
    *,
    credentials: CredentialStore,
    token_ledger: TokenLedger,
    invitation_ledger: InvitationLedger,
    audit_trail: AuditTrail,
    emails: EmailSender,
    clock: Callable[[], datetime] = utcnow,
    auth_rate_limiter: RateLimiter | None = None,
    refresh_rate_limiter: RateLimiter | None = None,
) -> None:
    """Build the service graph over the given stores and attach it to ``app.state``."""
    identity = IdentityService(
        credentials,
        PasswordHasher(rounds=settings.bcrypt_rounds),
        SignedUserTokenProvider(
            settings.effective_user_token_secret,
            max_age_seconds=settings.user_token_ttl_hours * 3600,
        ),
    )
    tokens = TokenService(token_ledger, credentials, settings, clock=clock)

    state = app.state
    state.settings = settings
    state.identity_service = identity
    state.auth_service = AuthService(identity, tokens, credentials, emails, audit_trail, settings)
    state.invitation_service = InvitationService(
        invitation_ledger, identity, credentials, emails, audit_trail, settings, clock=clock
    )
    state.audit_service = AuditService(audit_trail)
    state.auth_rate_limiter = auth_rate_limiter or build_rate_limiter(
        settings, max_requests=settings.rate_limit_auth_requests, prefix="auth"
    )
    state.refresh_rate_limiter = refresh_rate_limiter or build_rate_limiter(
        settings, max_requests=settings.rate_limit_refresh_requests, prefix="refresh"
    )


def get_settings_state(request: Request) -> Settings:
    return request.app.state.settings


def get_auth_service(request: Request) -> AuthService:
    """Resolve the `AuthService` stored on the FastAPI application state."""
    service: AuthService = request.app.state.auth_service
    return service


def get_identity_service(request: Request) -> IdentityService:
    return request.app.state.identity_service


def get_invitation_service(request: Request) -> InvitationService:
    return request.app.state.invitation_service


def get_audit_service(request: Request) -> AuditService:
    return request.app.state.audit_service


def client_key(request: Request) -> str:
    return request.client.host if request.client else "unknown"


def enforce_rate_limit(limiter: RateLimiter, key: str) -> None:
    """Raise 429 with ``Retry-After`` once ``key`` has used up its window."""
    if limiter.allow(key):
        return
    retry_after = max(1, limiter.retry_after(key))
    logger.warning("rate limit exceeded for %s", key)
    raise HTTPException(
        status_code=status.HTTP_429_TOO_MANY_REQUESTS,
        detail="Too many requests. Please try again later.",
        headers={"Retry-After": str(retry_after)},
    )


def auth_rate_limit(request: Request) -> None:
    """Per-route, per-client limit for the credential endpoints."""
    limiter: RateLimiter = request.app.state.auth_rate_limiter
    route = request.scope.get("route")
    path = getattr(route, "path", request.url.path)
    enforce_rate_limit(limiter, f"{path}:{client_key(request)}")


def refresh_rate_limit(request: Request) -> None:
    limiter: RateLimiter = request.app.state.refresh_rate_limiter
    enforce_rate_limit(limiter, f"refresh:{client_key(request)}")
