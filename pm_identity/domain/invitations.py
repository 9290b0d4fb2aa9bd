"""Invitation-only onboarding: issue, check and redeem invitation codes."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Callable

from .account import ROLE_OWNER, normalize_email, utcnow
from .cancellation import CancellationSignal, raise_if_cancelled
from .contracts import AcceptInvitationResult, CreateInvitationResult, InvitationValidation
from .identity import IdentityService
from .ports import AuditTrail, CredentialStore, EmailSender, InvitationLedger
from .records import InvitationRecord
from .results import ConflictFailure, Result, Success, ValidationFailure
from .validation import collect, email_errors, required
from ..config import Settings
from ..logging_config import mask_email
from ..metrics import INVITATIONS
from ..security.tokens import generate_invitation_code, hash_secret

logger = logging.getLogger(__name__)

INVALID_CODE = "Invalid invitation code"
ALREADY_USED = "This invitation has already been used"
EXPIRED = "This invitation has expired"
ALREADY_REGISTERED = "This email is already registered"
PENDING_INVITATION = "This email already has a pending invitation"


class InvitationService:
    """Issues invitation codes and provisions an account when one is redeemed.

    Codes are 32 random bytes, base64url encoded and returned exactly once;
    only their SHA-256 hash is stored. The code is the secret, so lookups may
    report precisely why a code is unusable.
    """

    def __init__(
        self,
        ledger: InvitationLedger,
        identity: IdentityService,
        accounts: CredentialStore,
        emails: EmailSender,
        audit: AuditTrail,
        settings: Settings,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._ledger = ledger
        self._identity = identity
        self._accounts = accounts
        self._emails = emails
        self._audit = audit
        self._settings = settings
        self._clock = clock

    def create_invitation(
        self,
        email: str,
        *,
        invited_by: str | None = None,
        tenant_id: str | None = None,
        cancel: CancellationSignal | None = None,
    ) -> Result[CreateInvitationResult]:
        """Invite an email address; callers must already hold the Owner role."""
        errors = email_errors(email)
        if errors:
            return ValidationFailure.many("email", errors)
        email = normalize_email(email)

        raise_if_cancelled(cancel)
        if self._identity.email_exists(email):
            return ValidationFailure.single("email", ALREADY_REGISTERED)

        now = self._clock()
        raise_if_cancelled(cancel)
        if self._ledger.find_pending_for_email(email, now) is not None:
            return ConflictFailure("email", PENDING_INVITATION)

        code, code_hash = generate_invitation_code()
        raise_if_cancelled(cancel)
        invitation = self._ledger.create_invitation(
            email=email,
            code_hash=code_hash,
            created_at=now,
            expires_at=now + timedelta(hours=self._settings.invitation_ttl_hours),
            invited_by=invited_by,
        )
        try:
            self._emails.send_invitation_email(email, code)
        except Exception:
            logger.exception("invitation email to %s failed", mask_email(email))

        INVITATIONS.labels(event="created").inc()
        self._audit.write_audit_event(
            account_id=invited_by,
            tenant_id=tenant_id,
            event_type="invitation.created",
            actor=invited_by,
            metadata={"invitation_id": invitation.invitation_id, "email": mask_email(email)},
        )
        logger.info("invitation %s created for %s", invitation.invitation_id, mask_email(email))
        return Success(CreateInvitationResult(invitation_id=invitation.invitation_id))

    def validate_invitation(
        self, code: str, *, cancel: CancellationSignal | None = None
    ) -> InvitationValidation:
        if not code or not code.strip():
            return InvitationValidation(is_valid=False, error_message=INVALID_CODE)
        raise_if_cancelled(cancel)
        invitation = self._ledger.find_by_code_hash(hash_secret(code.strip()))
        problem = self._problem(invitation)
        if problem is not None:
            return InvitationValidation(is_valid=False, error_message=problem)
        return InvitationValidation(is_valid=True, email=invitation.email)

    def accept_invitation(
        self, code: str, password: str, *, cancel: CancellationSignal | None = None
    ) -> Result[AcceptInvitationResult]:
        """Redeem a code: provision an account and a pre-verified owner for its email."""
        errors = collect(
            code=required(code, "Invitation code is required"),
            password=required(password, "Password is required"),
        )
        if errors:
            return ValidationFailure(errors)

        raise_if_cancelled(cancel)
        invitation = self._ledger.find_by_code_hash(hash_secret(code.strip()))
        problem = self._problem(invitation)
        if problem == ALREADY_USED:
            return ConflictFailure("code", ALREADY_USED)
        if problem is not None:
            return ValidationFailure.single("code", problem)

        raise_if_cancelled(cancel)
        if self._identity.email_exists(invitation.email):
            return ConflictFailure("email", ALREADY_REGISTERED)

        raise_if_cancelled(cancel)
        account = self._accounts.create_account(f"{invitation.email}'s Account")
        if cancel is not None and cancel.is_set():
            self._compensate(account.account_id)
        raise_if_cancelled(cancel)

        try:
            created = self._identity.create_user(
                invitation.email, password, account.account_id, ROLE_OWNER, email_verified=True
            )
        except BaseException:
            self._compensate(account.account_id)
            raise
        if not isinstance(created, Success):
            self._compensate(account.account_id)
            return created

        user_id = created.value
        if not self._ledger.mark_used(invitation.invitation_id, self._clock()):
            logger.warning("invitation %s was marked used concurrently", invitation.invitation_id)

        INVITATIONS.labels(event="accepted").inc()
        self._audit.write_audit_event(
            account_id=user_id,
            tenant_id=account.account_id,
            event_type="invitation.accepted",
            actor=user_id,
            metadata={"invitation_id": invitation.invitation_id},
        )
        logger.info("invitation %s accepted, user %s", invitation.invitation_id, user_id)
        return Success(AcceptInvitationResult(user_id=user_id, email=invitation.email))

    def _problem(self, invitation: InvitationRecord | None) -> str | None:
        if invitation is None:
            return INVALID_CODE
        if invitation.is_used:
            return ALREADY_USED
        if invitation.is_expired(self._clock()):
            return EXPIRED
        return None

    def _compensate(self, account_id: str) -> None:
        logger.warning("user creation failed, removing account %s", account_id)
        self._accounts.delete_account(account_id)
