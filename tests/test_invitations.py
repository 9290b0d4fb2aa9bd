from __future__ import annotations

import base64
import threading
from datetime import timedelta

import pytest

from pm_identity.domain.cancellation import OperationCancelled
from pm_identity.domain.contracts import LoginInput
from pm_identity.domain.identity import EMAIL_ALREADY_EXISTS
from pm_identity.domain.invitations import (
    ALREADY_REGISTERED,
    ALREADY_USED,
    EXPIRED,
    INVALID_CODE,
    PENDING_INVITATION,
)
from pm_identity.domain.results import ConflictFailure, Success, ValidationFailure
from pm_identity.security.tokens import hash_secret

from conftest import STRONG_PASSWORD


def _invite(invitation_service, emails, email="guest@example.com"):
    result = invitation_service.create_invitation(email, invited_by="inviter")
    assert isinstance(result, Success)
    _, code = emails.invitations[-1]
    return result.value.invitation_id, code


def test_create_invitation_stores_only_code_hash(invitation_service, invitation_ledger, emails, clock):
    invitation_id, code = _invite(invitation_service, emails, " Guest@Example.com ")

    record = invitation_ledger.invitations[invitation_id]
    assert record.email == "guest@example.com"
    assert record.code_hash == hash_secret(code)
    assert record.expires_at == clock.now + timedelta(hours=24)
    assert record.invited_by == "inviter"
    assert len(base64.urlsafe_b64decode(code + "=" * (-len(code) % 4))) == 32
    assert "=" not in code


def test_create_invitation_validates_email(invitation_service):
    assert invitation_service.create_invitation("") == ValidationFailure(
        {"email": ["Email is required"]}
    )
    assert invitation_service.create_invitation("bad") == ValidationFailure(
        {"email": ["Invalid email format"]}
    )


def test_create_invitation_rejects_registered_email(invitation_service, credentials, identity):
    account = credentials.create_account("Acme")
    identity.create_user("member@example.com", STRONG_PASSWORD, account.account_id, "Owner")

    assert invitation_service.create_invitation("member@example.com") == ValidationFailure(
        {"email": [ALREADY_REGISTERED]}
    )


def test_second_pending_invitation_conflicts(invitation_service, emails, clock):
    _invite(invitation_service, emails)

    assert invitation_service.create_invitation("guest@example.com") == ConflictFailure(
        "email", PENDING_INVITATION
    )

    clock.advance(hours=25)
    assert isinstance(invitation_service.create_invitation("guest@example.com"), Success)


def test_validate_invitation_reports_state(invitation_service, emails, clock):
    _, code = _invite(invitation_service, emails)

    valid = invitation_service.validate_invitation(code)
    assert valid.is_valid and valid.email == "guest@example.com"

    unknown = invitation_service.validate_invitation("nope")
    assert not unknown.is_valid and unknown.error_message == INVALID_CODE

    clock.advance(hours=24)
    assert invitation_service.validate_invitation(code).is_valid
    clock.advance(seconds=1)
    expired = invitation_service.validate_invitation(code)
    assert not expired.is_valid and expired.error_message == EXPIRED


def test_accept_creates_verified_owner_in_new_account(
    invitation_service, auth_service, emails, credentials, invitation_ledger
):
    invitation_id, code = _invite(invitation_service, emails)

    result = invitation_service.accept_invitation(code, STRONG_PASSWORD)

    assert isinstance(result, Success)
    user = credentials.users[result.value.user_id]
    assert user.email == "guest@example.com"
    assert user.role == "Owner"
    assert user.email_verified
    assert credentials.accounts[user.tenant_id].name == "guest@example.com's Account"
    assert invitation_ledger.invitations[invitation_id].used_at is not None
    assert isinstance(auth_service.login(LoginInput("guest@example.com", STRONG_PASSWORD)), Success)


def test_double_accept_conflicts_without_second_account(invitation_service, emails, credentials):
    _, code = _invite(invitation_service, emails)
    assert isinstance(invitation_service.accept_invitation(code, STRONG_PASSWORD), Success)

    second = invitation_service.accept_invitation(code, STRONG_PASSWORD)

    assert second == ConflictFailure("code", ALREADY_USED)
    assert len(credentials.accounts) == 1
    assert not invitation_service.validate_invitation(code).is_valid


def test_accept_expired_invitation(invitation_service, emails, clock, credentials):
    _, code = _invite(invitation_service, emails)
    clock.advance(days=2)

    assert invitation_service.accept_invitation(code, STRONG_PASSWORD) == ValidationFailure(
        {"code": [EXPIRED]}
    )
    assert credentials.accounts == {}


def test_accept_unknown_code(invitation_service):
    assert invitation_service.accept_invitation("missing", STRONG_PASSWORD) == ValidationFailure(
        {"code": [INVALID_CODE]}
    )


def test_accept_when_email_registered_meanwhile(invitation_service, emails, credentials, identity):
    _, code = _invite(invitation_service, emails)
    account = credentials.create_account("Elsewhere")
    identity.create_user("guest@example.com", STRONG_PASSWORD, account.account_id, "Owner")

    assert invitation_service.accept_invitation(code, STRONG_PASSWORD) == ConflictFailure(
        "email", ALREADY_REGISTERED
    )
    assert len(credentials.accounts) == 1


def test_accept_with_weak_password_compensates(invitation_service, emails, credentials, invitation_ledger):
    invitation_id, code = _invite(invitation_service, emails)

    result = invitation_service.accept_invitation(code, "weak")

    assert isinstance(result, ValidationFailure)
    assert "password" in result.errors
    assert credentials.accounts == {}
    assert invitation_ledger.invitations[invitation_id].used_at is None


def test_accept_requires_code_and_password(invitation_service):
    assert invitation_service.accept_invitation("", "") == ValidationFailure(
        {"code": ["Invitation code is required"], "password": ["Password is required"]}
    )


def test_cancelled_accept_issues_no_store_calls(invitation_service, invitation_ledger, credentials):
    cancel = threading.Event()
    cancel.set()

    with pytest.raises(OperationCancelled):
        invitation_service.accept_invitation("code", STRONG_PASSWORD, cancel=cancel)

    assert invitation_ledger.calls == []
    assert credentials.calls == []


def test_store_error_during_accept_removes_account(
    invitation_service, emails, credentials, invitation_ledger, monkeypatch
):
    invitation_id, code = _invite(invitation_service, emails)

    def connection_reset(**kwargs):
        raise RuntimeError("connection reset")

    monkeypatch.setattr(credentials, "create_user", connection_reset)

    with pytest.raises(RuntimeError):
        invitation_service.accept_invitation(code, STRONG_PASSWORD)

    assert credentials.accounts == {}
    assert invitation_ledger.invitations[invitation_id].used_at is None


def test_accept_losing_insert_race_compensates(
    invitation_service, emails, credentials, identity, invitation_ledger, monkeypatch
):
    invitation_id, code = _invite(invitation_service, emails)
    account = credentials.create_account("Elsewhere")
    identity.create_user("guest@example.com", STRONG_PASSWORD, account.account_id, "Owner")
    monkeypatch.setattr(credentials, "email_exists", lambda email: False)

    result = invitation_service.accept_invitation(code, STRONG_PASSWORD)

    assert result == ValidationFailure({"email": [EMAIL_ALREADY_EXISTS]})
    assert list(credentials.accounts) == [account.account_id]
    assert invitation_ledger.invitations[invitation_id].used_at is None
