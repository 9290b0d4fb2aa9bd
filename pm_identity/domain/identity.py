"""Credential lifecycle: user creation, sign-in checks, verification and reset."""

from __future__ import annotations

import logging

from .account import User, normalize_email
from .contracts import Credentials
from .ports import CredentialStore, DuplicateEmailError, UserTokenProvider
from .results import AuthFailure, ConflictFailure, Result, Success, ValidationFailure
from ..security.passwords import PasswordHasher, password_policy_errors
from ..security.user_tokens import (
    PURPOSE_EMAIL_VERIFICATION,
    PURPOSE_PASSWORD_RESET,
    MalformedUserToken,
    decode_user_token,
    encode_user_token,
    new_security_stamp,
)

logger = logging.getLogger(__name__)

INVALID_CREDENTIALS = "Invalid email or password"
EMAIL_NOT_VERIFIED = "Please verify your email before logging in"
INVALID_VERIFICATION_LINK = "Invalid verification link"
VERIFICATION_ALREADY_USED = "This verification link has already been used"
INVALID_RESET_LINK = "This reset link is invalid or expired"
EMAIL_ALREADY_EXISTS = "An account with this email already exists"


class IdentityService:
    """Wraps the credential store with password and single-use token rules."""

    def __init__(
        self,
        store: CredentialStore,
        hasher: PasswordHasher,
        token_provider: UserTokenProvider,
    ) -> None:
        self._store = store
        self._hasher = hasher
        self._tokens = token_provider

    def create_user(
        self,
        email: str,
        password: str,
        tenant_id: str,
        role: str,
        *,
        email_verified: bool = False,
    ) -> Result[str]:
        """Create a credential record inside an already provisioned tenant.

        Returns the new user id, or every password rule the password breaks.
        """
        errors = password_policy_errors(password)
        if errors:
            return ValidationFailure.many("password", errors)
        try:
            user = self._store.create_user(
                tenant_id=tenant_id,
                email=email.strip(),
                password_hash=self._hasher.hash(password),
                role=role,
                email_verified=email_verified,
                security_stamp=new_security_stamp(),
            )
        except DuplicateEmailError:
            logger.info("user insert rejected by the unique email index")
            return ValidationFailure.single("email", EMAIL_ALREADY_EXISTS)
        return Success(user.user_id)

    def email_exists(self, email: str) -> bool:
        return self._store.email_exists(normalize_email(email))

    def find_user_by_email(self, email: str) -> User | None:
        return self._store.find_user_by_email(normalize_email(email))

    def get_user_id_by_email(self, email: str) -> str | None:
        user = self.find_user_by_email(email)
        return user.user_id if user else None

    def get_user(self, user_id: str, tenant_id: str) -> User | None:
        return self._store.find_user_by_id(user_id, tenant_id=tenant_id)

    def validate_credentials(self, email: str, password: str) -> Result[Credentials]:
        """Check an email/password pair across all tenants.

        An unknown email and a wrong password produce the same failure.
        """
        user = self._store.find_user_by_email(normalize_email(email))
        if user is None:
            self._hasher.burn(password)
            return AuthFailure(INVALID_CREDENTIALS)
        if not self._hasher.verify(password, user.password_hash):
            return AuthFailure(INVALID_CREDENTIALS)
        if not user.email_verified:
            return AuthFailure(EMAIL_NOT_VERIFIED)
        return Success(Credentials(user_id=user.user_id, tenant_id=user.tenant_id, role=user.role))

    def generate_email_verification_token(self, user_id: str) -> str:
        return self._generate(user_id, PURPOSE_EMAIL_VERIFICATION)

    def generate_password_reset_token(self, user_id: str) -> str:
        return self._generate(user_id, PURPOSE_PASSWORD_RESET)

    def _generate(self, user_id: str, purpose: str) -> str:
        user = self._store.find_user_by_id(user_id)
        if user is None:
            raise LookupError(f"user {user_id} not found")
        return encode_user_token(user.user_id, self._tokens.generate(user, purpose))

    def verify_email(self, token: str) -> Result[User]:
        """Consume a verification token and return the verified user."""
        try:
            decoded = decode_user_token(token)
        except MalformedUserToken:
            return AuthFailure(INVALID_VERIFICATION_LINK)

        user = self._store.find_user_by_id(decoded.user_id)
        if user is None:
            return AuthFailure(INVALID_VERIFICATION_LINK)
        if user.email_verified:
            return ConflictFailure("token", VERIFICATION_ALREADY_USED)
        if not self._tokens.verify(user, PURPOSE_EMAIL_VERIFICATION, decoded.opaque):
            return AuthFailure(INVALID_VERIFICATION_LINK)

        self._store.mark_email_verified(user.user_id, new_security_stamp())
        return Success(user)

    def reset_password(self, token: str, new_password: str) -> Result[User]:
        """Replace the password when the reset token checks out.

        Every token problem collapses to one message; password rule
        violations are returned individually.
        """
        try:
            decoded = decode_user_token(token)
        except MalformedUserToken:
            return AuthFailure(INVALID_RESET_LINK)

        user = self._store.find_user_by_id(decoded.user_id)
        if user is None:
            return AuthFailure(INVALID_RESET_LINK)
        if not self._tokens.verify(user, PURPOSE_PASSWORD_RESET, decoded.opaque):
            return AuthFailure(INVALID_RESET_LINK)

        errors = password_policy_errors(new_password)
        if errors:
            return ValidationFailure.many("new_password", errors)

        self._store.update_password(user.user_id, self._hasher.hash(new_password), new_security_stamp())
        return Success(user)
