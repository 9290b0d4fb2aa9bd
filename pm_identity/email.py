"""Email dispatch collaborator.

Delivery belongs to the outbound mail relay. The sender shipped here builds
the links the frontend expects and records each dispatch without logging the
secret they carry.
"""

from __future__ import annotations

import logging
from urllib.parse import quote

from .logging_config import mask_email

logger = logging.getLogger(__name__)


class LoggingEmailSender:
    def __init__(self, frontend_base_url: str) -> None:
        self._base_url = frontend_base_url.rstrip("/")

    def _dispatch(self, kind: str, email: str, link: str) -> None:
        logger.info("queued %s email for %s (%d-char link)", kind, mask_email(email), len(link))

    def send_verification_email(self, email: str, token: str) -> None:
        self._dispatch("verification", email, f"{self._base_url}/verify-email?token={quote(token, safe='')}")

    def send_password_reset_email(self, email: str, token: str) -> None:
        self._dispatch("password-reset", email, f"{self._base_url}/reset-password?token={quote(token, safe='')}")

    def send_invitation_email(self, email: str, code: str) -> None:
        self._dispatch("invitation", email, f"{self._base_url}/accept-invitation?code={quote(code, safe='')}")
