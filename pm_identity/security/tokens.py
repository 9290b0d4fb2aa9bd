"""Utilities for issuing and validating access tokens and hashing stored secrets."""

from __future__ import annotations

import base64
import hashlib
import secrets
import time
import uuid
from typing import Any

import jwt

from ..config import Settings, get_settings

REFRESH_TOKEN_BYTES = 64
INVITATION_CODE_BYTES = 32
ROLES_CLAIM = "roles"


def issue_access_token(
    *,
    user_id: str,
    tenant_id: str,
    role: str,
    settings: Settings | None = None,
) -> tuple[str, int]:
    """Create a signed JWT representing an authenticated user.

    Parameters
    ----------
    user_id:
        User identifier embedded in the ``sub`` and ``userId`` claims.
    tenant_id:
        Account the user belongs to, embedded as ``accountId``.
    role:
        Role name, carried both as ``role`` and in the standard ``roles`` list.
    settings:
        Optional settings override; defaults to the process-wide settings.

    Returns
    -------
    tuple[str, int]
        The encoded JWT string and its lifetime in seconds.
    """

    settings = settings or get_settings()
    now = int(time.time())
    expires_in = settings.access_token_seconds
    payload: dict[str, Any] = {
        "iss": settings.jwt_issuer,
        "aud": settings.jwt_audience,
        "sub": user_id,
        "jti": str(uuid.uuid4()),
        "iat": now,
        "exp": now + expires_in,
        "userId": user_id,
        "accountId": tenant_id,
        "role": role,
        ROLES_CLAIM: [role],
    }

    token = jwt.encode(payload, settings.jwt_secret, algorithm="HS256")
    return token, expires_in


def decode_access_token(token: str, settings: Settings | None = None) -> dict[str, Any]:
    """Decode and verify a JWT returning its payload.

    Raises
    ------
    jwt.PyJWTError
        Propagated when the token is invalid, expired, or minted for another
        issuer or audience.
    """

    settings = settings or get_settings()
    return jwt.decode(
        token,
        settings.jwt_secret,
        algorithms=["HS256"],
        audience=settings.jwt_audience,
        issuer=settings.jwt_issuer,
        options={"require": ["exp", "iat", "sub", "jti"]},
    )


def generate_refresh_token() -> tuple[str, str]:
    """Generate a refresh token string and its SHA-256 hash."""
    token = base64.b64encode(secrets.token_bytes(REFRESH_TOKEN_BYTES)).decode("ascii")
    return token, hash_secret(token)


def generate_invitation_code() -> tuple[str, str]:
    """Generate a URL-safe invitation code and its SHA-256 hash."""
    code = secrets.token_urlsafe(INVITATION_CODE_BYTES)
    return code, hash_secret(code)


def hash_secret(value: str) -> str:
    """Return the SHA-256 hex digest used to store bearer secrets at rest."""
    return hashlib.sha256(value.encode("utf-8")).hexdigest()
