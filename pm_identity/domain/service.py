"""Account and session workflows: register, sign-in, refresh and password recovery."""

from __future__ import annotations

import logging

from .account import ROLE_OWNER
from .cancellation import CancellationSignal, raise_if_cancelled
from .contracts import (
    LoginInput,
    LoginResult,
    RefreshResult,
    RegisterInput,
    RegisterResult,
    ResetPasswordInput,
)
from .identity import (
    EMAIL_ALREADY_EXISTS,
    INVALID_RESET_LINK,
    INVALID_VERIFICATION_LINK,
    IdentityService,
)
from .ports import AuditTrail, CredentialStore, EmailSender
from .results import AuthFailure, Result, Success, ValidationFailure
from .token_service import TokenService
from .validation import ACCOUNT_NAME_MAX_LENGTH, collect, email_errors, required
from ..config import Settings
from ..logging_config import mask_email
from ..metrics import LOGIN_ATTEMPTS

logger = logging.getLogger(__name__)

INVALID_REFRESH_TOKEN = "Invalid or expired refresh token"


class AuthService:
    """Orchestrates the identity and token services for each account use case.

    Every public method returns a :mod:`~pm_identity.domain.results` variant and
    accepts ``cancel=``; once the signal is set no further store call is made.
    """

    def __init__(
        self,
        identity: IdentityService,
        tokens: TokenService,
        accounts: CredentialStore,
        emails: EmailSender,
        audit: AuditTrail,
        settings: Settings,
    ) -> None:
        self._identity = identity
        self._tokens = tokens
        self._accounts = accounts
        self._emails = emails
        self._audit = audit
        self._settings = settings

    def register(
        self, payload: RegisterInput, *, cancel: CancellationSignal | None = None
    ) -> Result[RegisterResult]:
        """Provision an account plus its owner and send the verification email."""
        name_errors = required(payload.account_name, "Account name is required")
        if not name_errors and len(payload.account_name.strip()) > ACCOUNT_NAME_MAX_LENGTH:
            name_errors = [f"Account name must be {ACCOUNT_NAME_MAX_LENGTH} characters or less"]
        errors = collect(
            email=email_errors(payload.email),
            password=required(payload.password, "Password is required"),
            account_name=name_errors,
        )
        if errors:
            return ValidationFailure(errors)

        raise_if_cancelled(cancel)
        if self._identity.email_exists(payload.email):
            return ValidationFailure.single("email", EMAIL_ALREADY_EXISTS)

        raise_if_cancelled(cancel)
        account = self._accounts.create_account(payload.account_name.strip())

        if cancel is not None and cancel.is_set():
            self._compensate(account.account_id)
        raise_if_cancelled(cancel)

        try:
            created = self._identity.create_user(
                payload.email, payload.password, account.account_id, ROLE_OWNER
            )
        except BaseException:
            self._compensate(account.account_id)
            raise
        if not isinstance(created, Success):
            self._compensate(account.account_id)
            return created

        user_id = created.value
        raise_if_cancelled(cancel)
        token = self._identity.generate_email_verification_token(user_id)
        self._send(self._emails.send_verification_email, payload.email, token)

        self._audit.write_audit_event(
            account_id=user_id,
            tenant_id=account.account_id,
            event_type="account.registered",
            actor=user_id,
            metadata={"email": mask_email(payload.email)},
        )
        logger.info("registered user %s in account %s", user_id, account.account_id)
        return Success(RegisterResult(user_id=user_id))

    def verify_email(
        self, token: str, *, cancel: CancellationSignal | None = None
    ) -> Result[None]:
        if not token or not token.strip():
            return AuthFailure(INVALID_VERIFICATION_LINK)

        raise_if_cancelled(cancel)
        outcome = self._identity.verify_email(token.strip())
        if not isinstance(outcome, Success):
            logger.warning("email verification rejected")
            return outcome

        user = outcome.value
        self._audit.write_audit_event(
            account_id=user.user_id,
            tenant_id=user.tenant_id,
            event_type="email.verified",
            actor=user.user_id,
        )
        return Success(None)

    def login(
        self, payload: LoginInput, *, cancel: CancellationSignal | None = None
    ) -> Result[LoginResult]:
        errors = collect(
            email=email_errors(payload.email),
            password=required(payload.password, "Password is required"),
        )
        if errors:
            return ValidationFailure(errors)

        raise_if_cancelled(cancel)
        checked = self._identity.validate_credentials(payload.email, payload.password)
        if not isinstance(checked, Success):
            LOGIN_ATTEMPTS.labels(outcome="failure").inc()
            logger.warning("failed login attempt for %s", mask_email(payload.email))
            self._audit.write_audit_event(
                account_id=None,
                tenant_id=None,
                event_type="auth.login_failed",
                actor=None,
                metadata={"email": mask_email(payload.email)},
            )
            return checked

        credentials = checked.value
        access_token, expires_in = self._tokens.generate_access_token(
            credentials.user_id, credentials.tenant_id, credentials.role
        )
        raise_if_cancelled(cancel)
        refresh_token = self._tokens.generate_refresh_token(
            credentials.user_id, credentials.tenant_id, payload.device_info
        )

        LOGIN_ATTEMPTS.labels(outcome="success").inc()
        self._audit.write_audit_event(
            account_id=credentials.user_id,
            tenant_id=credentials.tenant_id,
            event_type="auth.login_succeeded",
            actor=credentials.user_id,
            metadata={"device": payload.device_info} if payload.device_info else None,
        )
        logger.info("user %s logged in", credentials.user_id)
        return Success(
            LoginResult(
                access_token=access_token,
                expires_in=expires_in,
                refresh_token=refresh_token,
                user_id=credentials.user_id,
                tenant_id=credentials.tenant_id,
                role=credentials.role,
            )
        )

    def logout(
        self, refresh_token: str | None, *, cancel: CancellationSignal | None = None
    ) -> Result[None]:
        """Revoke the presented refresh token only; other devices stay signed in."""
        if not refresh_token:
            return Success(None)
        raise_if_cancelled(cancel)
        record = self._tokens.revoke_refresh_token(refresh_token)
        if record is None:
            return Success(None)

        self._audit.write_audit_event(
            account_id=record.user_id,
            tenant_id=record.tenant_id,
            event_type="auth.logout",
            actor=record.user_id,
        )
        logger.info("refresh token %s revoked on logout", record.token_id)
        return Success(None)

    def refresh(
        self, refresh_token: str | None, *, cancel: CancellationSignal | None = None
    ) -> Result[RefreshResult]:
        if not refresh_token:
            return AuthFailure("No refresh token provided")

        raise_if_cancelled(cancel)
        validation = self._tokens.validate_refresh_token(refresh_token)
        if not validation.is_valid:
            return AuthFailure(INVALID_REFRESH_TOKEN)

        user_id, tenant_id, role = validation.user_id, validation.tenant_id, validation.role
        access_token, expires_in = self._tokens.generate_access_token(user_id, tenant_id, role)

        rotated: str | None = None
        if self._settings.refresh_token_rotation:
            raise_if_cancelled(cancel)
            if self._tokens.revoke_refresh_token(refresh_token) is None:
                logger.warning("refresh token for user %s was already rotated", user_id)
                return AuthFailure(INVALID_REFRESH_TOKEN)
            rotated = self._tokens.generate_refresh_token(user_id, tenant_id)

        self._audit.write_audit_event(
            account_id=user_id,
            tenant_id=tenant_id,
            event_type="token.refreshed",
            actor=user_id,
            metadata={"rotated": rotated is not None},
        )
        return Success(
            RefreshResult(
                access_token=access_token,
                expires_in=expires_in,
                user_id=user_id,
                tenant_id=tenant_id,
                role=role,
                refresh_token=rotated,
            )
        )

    def forgot_password(
        self, email: str, *, cancel: CancellationSignal | None = None
    ) -> Result[None]:
        """Start a password reset. Succeeds identically whether or not the email is known."""
        errors = email_errors(email)
        if errors:
            return ValidationFailure.many("email", errors)

        raise_if_cancelled(cancel)
        user = self._identity.find_user_by_email(email)
        if user is None:
            logger.info("password reset requested for unknown email %s", mask_email(email))
            return Success(None)

        raise_if_cancelled(cancel)
        token = self._identity.generate_password_reset_token(user.user_id)
        self._send(self._emails.send_password_reset_email, email.strip(), token)
        self._audit.write_audit_event(
            account_id=user.user_id,
            tenant_id=user.tenant_id,
            event_type="password.reset_requested",
            actor=None,
        )
        return Success(None)

    def reset_password(
        self, payload: ResetPasswordInput, *, cancel: CancellationSignal | None = None
    ) -> Result[None]:
        """Set a new password and sign the user out of every device."""
        if not payload.token or not payload.token.strip():
            return AuthFailure(INVALID_RESET_LINK)
        if not payload.new_password:
            return ValidationFailure.single("new_password", "Password is required")

        raise_if_cancelled(cancel)
        outcome = self._identity.reset_password(payload.token.strip(), payload.new_password)
        if not isinstance(outcome, Success):
            logger.warning("password reset rejected")
            return outcome

        user = outcome.value
        # the password is already replaced, so revocation runs even when cancelled
        self._tokens.revoke_all_user_refresh_tokens(user.user_id)
        self._audit.write_audit_event(
            account_id=user.user_id,
            tenant_id=user.tenant_id,
            event_type="password.reset",
            actor=user.user_id,
        )
        logger.info("password reset completed for user %s, all sessions revoked", user.user_id)
        return Success(None)

    def _compensate(self, account_id: str) -> None:
        logger.warning("user creation failed, removing account %s", account_id)
        self._accounts.delete_account(account_id)

    def _send(self, send, email: str, secret: str) -> None:
        try:
            send(email, secret)
        except Exception:
            logger.exception("email dispatch to %s failed", mask_email(email))
