"""Access-token issuance and the refresh-token ledger workflows."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Callable

from .account import utcnow
from .contracts import RefreshTokenValidation
from .ports import CredentialStore, TokenLedger
from .records import RefreshTokenRecord
from ..config import Settings
from ..metrics import REFRESH_TOKENS_REVOKED
from ..security.tokens import generate_refresh_token, hash_secret, issue_access_token

logger = logging.getLogger(__name__)

DEVICE_INFO_MAX_LENGTH = 255


class TokenService:
    """Issues short-lived access tokens and manages long-lived refresh tokens.

    Refresh tokens are opaque random values; only their SHA-256 hash reaches
    the ledger. Access tokens are never tracked, their short lifetime is the
    only revocation mechanism.
    """

    def __init__(
        self,
        ledger: TokenLedger,
        credentials: CredentialStore,
        settings: Settings,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._ledger = ledger
        self._credentials = credentials
        self._settings = settings
        self._clock = clock

    def generate_access_token(self, user_id: str, tenant_id: str, role: str) -> tuple[str, int]:
        return issue_access_token(
            user_id=user_id,
            tenant_id=tenant_id,
            role=role,
            settings=self._settings,
        )

    def generate_refresh_token(
        self, user_id: str, tenant_id: str, device_info: str | None = None
    ) -> str:
        token, token_hash = generate_refresh_token()
        self._ledger.create_refresh_token(
            user_id=user_id,
            tenant_id=tenant_id,
            token_hash=token_hash,
            expires_at=self._clock() + timedelta(days=self._settings.refresh_token_days),
            device_info=device_info[:DEVICE_INFO_MAX_LENGTH] if device_info else None,
        )
        return token

    def validate_refresh_token(self, token: str) -> RefreshTokenValidation:
        """Resolve a refresh token to its owner, reading the role live."""
        record = self._ledger.find_refresh_token(hash_secret(token))
        if record is None or not record.is_active(self._clock()):
            return RefreshTokenValidation(is_valid=False)

        user = self._credentials.find_user_by_id(record.user_id)
        if user is None:
            return RefreshTokenValidation(is_valid=False)
        return RefreshTokenValidation(
            is_valid=True,
            user_id=record.user_id,
            tenant_id=record.tenant_id,
            role=user.role,
        )

    def revoke_refresh_token(self, token: str) -> RefreshTokenRecord | None:
        """Revoke one token and return it.

        Unknown or already revoked tokens are a no-op and return ``None``.
        """
        record = self._ledger.find_refresh_token(hash_secret(token))
        if record is None or record.revoked_at is not None:
            return None
        if not self._ledger.revoke_refresh_token(record.token_id, self._clock()):
            return None
        REFRESH_TOKENS_REVOKED.inc()
        return record

    def revoke_all_user_refresh_tokens(self, user_id: str) -> int:
        revoked = self._ledger.revoke_user_refresh_tokens(user_id, self._clock())
        if revoked:
            REFRESH_TOKENS_REVOKED.inc(revoked)
        logger.info("revoked %d refresh tokens for user %s", revoked, user_id)
        return revoked
