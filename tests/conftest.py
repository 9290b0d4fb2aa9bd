from __future__ import annotations

import uuid
from dataclasses import replace
from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient

from pm_identity.api.dependencies import configure_services
from pm_identity.config import Settings
from pm_identity.domain.account import Account, User, normalize_email
from pm_identity.domain.audit import AuditService
from pm_identity.domain.identity import IdentityService
from pm_identity.domain.invitations import InvitationService
from pm_identity.domain.ports import DuplicateEmailError
from pm_identity.domain.records import AuditLogRecord, InvitationRecord, RefreshTokenRecord
from pm_identity.domain.service import AuthService
from pm_identity.domain.token_service import TokenService
from pm_identity.main import create_app
from pm_identity.security.passwords import PasswordHasher
from pm_identity.security.rate_limiter import SlidingWindowRateLimiter
from pm_identity.security.user_tokens import SignedUserTokenProvider

STRONG_PASSWORD = "Sup3r$ecret"


class FakeClock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class FakeCredentialStore:
    """In-memory credential store mimicking the Postgres repository."""

    def __init__(self) -> None:
        self.accounts: dict[str, Account] = {}
        self.users: dict[str, User] = {}
        self.calls: list[str] = []

    def create_account(self, name: str) -> Account:
        self.calls.append("create_account")
        account = Account(
            account_id=str(uuid.uuid4()), name=name, created_at=datetime.now(timezone.utc)
        )
        self.accounts[account.account_id] = account
        return account

    def delete_account(self, account_id: str) -> None:
        self.calls.append("delete_account")
        self.accounts.pop(account_id, None)

    def create_user(self, *, tenant_id, email, password_hash, role, email_verified, security_stamp):
        self.calls.append("create_user")
        if any(normalize_email(u.email) == normalize_email(email) for u in self.users.values()):
            raise DuplicateEmailError(email)
        user = User(
            user_id=str(uuid.uuid4()),
            tenant_id=tenant_id,
            email=email,
            password_hash=password_hash,
            role=role,
            email_verified=email_verified,
            security_stamp=security_stamp,
            created_at=datetime.now(timezone.utc),
        )
        self.users[user.user_id] = user
        return replace(user)

    def email_exists(self, email: str) -> bool:
        self.calls.append("email_exists")
        return self._by_email(email) is not None

    def find_user_by_email(self, email: str, *, tenant_id: str | None = None):
        self.calls.append("find_user_by_email")
        user = self._by_email(email)
        if user is None or (tenant_id is not None and user.tenant_id != tenant_id):
            return None
        return replace(user)

    def find_user_by_id(self, user_id: str, *, tenant_id: str | None = None):
        self.calls.append("find_user_by_id")
        user = self.users.get(user_id)
        if user is None or (tenant_id is not None and user.tenant_id != tenant_id):
            return None
        return replace(user)

    def mark_email_verified(self, user_id: str, security_stamp: str) -> None:
        self.calls.append("mark_email_verified")
        user = self.users[user_id]
        user.email_verified = True
        user.security_stamp = security_stamp

    def update_password(self, user_id: str, password_hash: str, security_stamp: str) -> None:
        self.calls.append("update_password")
        user = self.users[user_id]
        user.password_hash = password_hash
        user.security_stamp = security_stamp

    def set_role(self, user_id: str, role: str) -> None:
        self.users[user_id].role = role

    def _by_email(self, email: str) -> User | None:
        for user in self.users.values():
            if normalize_email(user.email) == normalize_email(email):
                return user
        return None


class FakeTokenLedger:
    def __init__(self) -> None:
        self.tokens: dict[str, RefreshTokenRecord] = {}
        self.calls: list[str] = []

    def create_refresh_token(self, *, user_id, tenant_id, token_hash, expires_at, device_info=None):
        self.calls.append("create_refresh_token")
        record = RefreshTokenRecord(
            token_id=str(uuid.uuid4()),
            user_id=user_id,
            tenant_id=tenant_id,
            token_hash=token_hash,
            expires_at=expires_at,
            device_info=device_info,
            created_at=datetime.now(timezone.utc),
        )
        self.tokens[token_hash] = record
        return record

    def find_refresh_token(self, token_hash: str):
        self.calls.append("find_refresh_token")
        record = self.tokens.get(token_hash)
        return replace(record) if record else None

    def revoke_refresh_token(self, token_id: str, revoked_at: datetime) -> bool:
        self.calls.append("revoke_refresh_token")
        for record in self.tokens.values():
            if record.token_id == token_id and record.revoked_at is None:
                record.revoked_at = revoked_at
                return True
        return False

    def revoke_user_refresh_tokens(self, user_id: str, revoked_at: datetime) -> int:
        self.calls.append("revoke_user_refresh_tokens")
        count = 0
        for record in self.tokens.values():
            if record.user_id == user_id and record.revoked_at is None:
                record.revoked_at = revoked_at
                count += 1
        return count


class FakeInvitationLedger:
    def __init__(self) -> None:
        self.invitations: dict[str, InvitationRecord] = {}
        self.calls: list[str] = []

    def create_invitation(self, *, email, code_hash, created_at, expires_at, invited_by=None):
        self.calls.append("create_invitation")
        record = InvitationRecord(
            invitation_id=str(uuid.uuid4()),
            email=email,
            code_hash=code_hash,
            created_at=created_at,
            expires_at=expires_at,
            invited_by=invited_by,
        )
        self.invitations[record.invitation_id] = record
        return record

    def find_by_code_hash(self, code_hash: str):
        self.calls.append("find_by_code_hash")
        for record in self.invitations.values():
            if record.code_hash == code_hash:
                return replace(record)
        return None

    def find_pending_for_email(self, email: str, now: datetime):
        self.calls.append("find_pending_for_email")
        for record in self.invitations.values():
            if record.email == normalize_email(email) and record.is_valid(now):
                return replace(record)
        return None

    def mark_used(self, invitation_id: str, used_at: datetime) -> bool:
        self.calls.append("mark_used")
        record = self.invitations[invitation_id]
        if record.used_at is not None:
            return False
        record.used_at = used_at
        return True


class FakeAuditTrail:
    def __init__(self) -> None:
        self.audit_log: list[AuditLogRecord] = []
        self._audit_seq = 0

    def write_audit_event(self, *, account_id, tenant_id, event_type, actor, metadata=None) -> None:
        self._audit_seq += 1
        self.audit_log.append(
            AuditLogRecord(
                audit_id=self._audit_seq,
                account_id=account_id,
                tenant_id=tenant_id,
                event_type=event_type,
                actor=actor,
                metadata=metadata or {},
                created_at=datetime.now(timezone.utc),
            )
        )

    def list_audit_events(
        self,
        *,
        tenant_id,
        account_id=None,
        event_type=None,
        created_after=None,
        created_before=None,
        limit=50,
        cursor=None,
    ):
        results = [record for record in self.audit_log if record.tenant_id == tenant_id]
        if account_id:
            results = [record for record in results if record.account_id == account_id]
        if event_type:
            results = [record for record in results if record.event_type == event_type]
        if created_after:
            results = [record for record in results if record.created_at >= created_after]
        if created_before:
            results = [record for record in results if record.created_at <= created_before]
        results.sort(key=lambda r: (r.created_at, r.audit_id), reverse=True)
        if cursor:
            results = [record for record in results if (record.created_at, record.audit_id) < cursor]
        slice_ = results[:limit]
        next_cursor = None
        if len(results) > limit:
            last = slice_[-1]
            next_cursor = (last.created_at, last.audit_id)
        return slice_, next_cursor

    def event_types(self) -> list[str]:
        return [record.event_type for record in self.audit_log]


class RecordingEmailSender:
    def __init__(self) -> None:
        self.verification: list[tuple[str, str]] = []
        self.password_reset: list[tuple[str, str]] = []
        self.invitations: list[tuple[str, str]] = []
        self.fail = False

    def send_verification_email(self, email: str, token: str) -> None:
        self._check()
        self.verification.append((email, token))

    def send_password_reset_email(self, email: str, token: str) -> None:
        self._check()
        self.password_reset.append((email, token))

    def send_invitation_email(self, email: str, code: str) -> None:
        self._check()
        self.invitations.append((email, code))

    def _check(self) -> None:
        if self.fail:
            raise RuntimeError("smtp relay unavailable")


@pytest.fixture()
def settings() -> Settings:
    return Settings(
        jwt_secret="test-secret-that-is-long-enough-for-hs256",
        bcrypt_rounds=4,
        refresh_cookie_secure=False,
        rate_limit_auth_requests=100,
        rate_limit_refresh_requests=100,
        rate_limit_backend="memory",
    )


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock(datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc))


@pytest.fixture()
def credentials() -> FakeCredentialStore:
    return FakeCredentialStore()


@pytest.fixture()
def token_ledger() -> FakeTokenLedger:
    return FakeTokenLedger()


@pytest.fixture()
def invitation_ledger() -> FakeInvitationLedger:
    return FakeInvitationLedger()


@pytest.fixture()
def audit_trail() -> FakeAuditTrail:
    return FakeAuditTrail()


@pytest.fixture()
def emails() -> RecordingEmailSender:
    return RecordingEmailSender()


@pytest.fixture()
def hasher() -> PasswordHasher:
    return PasswordHasher(rounds=4)


@pytest.fixture()
def identity(credentials, hasher, settings) -> IdentityService:
    provider = SignedUserTokenProvider(settings.effective_user_token_secret, max_age_seconds=3600)
    return IdentityService(credentials, hasher, provider)


@pytest.fixture()
def tokens(token_ledger, credentials, settings, clock) -> TokenService:
    return TokenService(token_ledger, credentials, settings, clock=clock)


@pytest.fixture()
def auth_service(identity, tokens, credentials, emails, audit_trail, settings) -> AuthService:
    return AuthService(identity, tokens, credentials, emails, audit_trail, settings)


@pytest.fixture()
def invitation_service(
    invitation_ledger, identity, credentials, emails, audit_trail, settings, clock
) -> InvitationService:
    return InvitationService(
        invitation_ledger, identity, credentials, emails, audit_trail, settings, clock=clock
    )


@pytest.fixture()
def audit_service(audit_trail) -> AuditService:
    return AuditService(audit_trail)


@pytest.fixture()
def app(settings, credentials, token_ledger, invitation_ledger, audit_trail, emails, clock):
    application = create_app(settings)
    configure_services(
        application,
        settings,
        credentials=credentials,
        token_ledger=token_ledger,
        invitation_ledger=invitation_ledger,
        audit_trail=audit_trail,
        emails=emails,
        clock=clock,
        auth_rate_limiter=SlidingWindowRateLimiter(max_requests=100, window_seconds=60),
        refresh_rate_limiter=SlidingWindowRateLimiter(max_requests=100, window_seconds=60),
    )
    return application


@pytest.fixture()
def client(app) -> TestClient:
    return TestClient(app)
