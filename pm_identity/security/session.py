"""Per-request caller identity derived from a verified access token."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Mapping

import jwt
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from ..config import Settings
from ..domain.account import ROLE_OWNER
from .tokens import decode_access_token

logger = logging.getLogger(__name__)

_bearer = HTTPBearer(auto_error=False)


@dataclass(slots=True, frozen=True)
class SessionContext:
    user_id: str | None = None
    tenant_id: str | None = None
    role: str | None = None
    is_authenticated: bool = False

    @property
    def is_owner(self) -> bool:
        return self.is_authenticated and self.role == ROLE_OWNER


ANONYMOUS = SessionContext()


def session_from_claims(claims: Mapping[str, Any]) -> SessionContext:
    """Build a context from already verified claims.

    Claims without a user and tenant produce an anonymous context.
    """
    user_id = claims.get("userId") or claims.get("sub")
    tenant_id = claims.get("accountId")
    if not user_id or not tenant_id:
        return ANONYMOUS
    role = claims.get("role")
    if role is None:
        roles = claims.get("roles") or []
        role = roles[0] if roles else None
    return SessionContext(user_id=user_id, tenant_id=tenant_id, role=role, is_authenticated=True)


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def get_session_context(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(_bearer),
) -> SessionContext:
    if credentials is None:
        return ANONYMOUS
    settings: Settings = request.app.state.settings
    try:
        claims = decode_access_token(credentials.credentials, settings)
    except jwt.PyJWTError as exc:
        logger.info("rejected bearer token: %s", exc.__class__.__name__)
        raise _unauthorized("Invalid or expired access token") from exc
    return session_from_claims(claims)


def require_authenticated(
    session: SessionContext = Depends(get_session_context),
) -> SessionContext:
    if not session.is_authenticated:
        raise _unauthorized("Authentication required")
    return session


def require_owner(session: SessionContext = Depends(require_authenticated)) -> SessionContext:
    if not session.is_owner:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Owner role required")
    return session
