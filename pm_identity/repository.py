"""Postgres repositories for credentials, refresh tokens, invitations and audit events.

Row-level security on every table keys off ``app.tenant_id``. Lookups that
must see all tenants switch the filter off with ``app.bypass_tenant_filter``
for the current transaction only.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any, Optional, Tuple

from psycopg import Cursor
from psycopg.errors import UniqueViolation
from psycopg.rows import tuple_row
from psycopg.types.json import Json
from psycopg_pool import ConnectionPool

from .domain.account import Account, User, normalize_email
from .domain.ports import DuplicateEmailError
from .domain.records import AuditLogRecord, InvitationRecord, RefreshTokenRecord

_USER_COLUMNS = (
    "user_id, tenant_id, email, password_hash, role, email_verified, security_stamp, created_at"
)
_TOKEN_COLUMNS = (
    "token_id, user_id, tenant_id, token_hash, expires_at, revoked_at, device_info, created_at"
)
_INVITATION_COLUMNS = (
    "invitation_id, email, code_hash, created_at, expires_at, used_at, invited_by"
)


def _scope(cur: Cursor, tenant_id: str | None) -> None:
    """Restrict the transaction to one tenant, or lift the filter when ``None``."""
    if tenant_id is None:
        cur.execute("SELECT set_config('app.bypass_tenant_filter', 'on', true)")
    else:
        cur.execute("SELECT set_config('app.tenant_id', %s, true)", (tenant_id,))


def _map_user(row: tuple) -> User:
    return User(
        user_id=str(row[0]),
        tenant_id=str(row[1]),
        email=row[2],
        password_hash=row[3],
        role=row[4],
        email_verified=row[5],
        security_stamp=row[6],
        created_at=row[7],
    )


def _map_token(row: tuple) -> RefreshTokenRecord:
    return RefreshTokenRecord(
        token_id=str(row[0]),
        user_id=str(row[1]),
        tenant_id=str(row[2]),
        token_hash=row[3],
        expires_at=row[4],
        revoked_at=row[5],
        device_info=row[6],
        created_at=row[7],
    )


def _map_invitation(row: tuple) -> InvitationRecord:
    return InvitationRecord(
        invitation_id=str(row[0]),
        email=row[1],
        code_hash=row[2],
        created_at=row[3],
        expires_at=row[4],
        used_at=row[5],
        invited_by=str(row[6]) if row[6] is not None else None,
    )


class CredentialRepository:
    """Accounts (tenants) and the users that sign in to them."""

    def __init__(self, pool: ConnectionPool) -> None:
        self._pool = pool

    def create_account(self, name: str) -> Account:
        account_id = str(uuid.uuid4())
        now = datetime.now(timezone.utc)
        with self._pool.connection() as conn:
            with conn.cursor(row_factory=tuple_row) as cur:
                _scope(cur, account_id)
                cur.execute(
                    """
                    INSERT INTO accounts (account_id, name, created_at)
                    VALUES (%s, %s, %s)
                    RETURNING account_id, name, created_at
                    """,
                    (account_id, name, now),
                )
                row = cur.fetchone()
                conn.commit()
        return Account(account_id=str(row[0]), name=row[1], created_at=row[2])

    def delete_account(self, account_id: str) -> None:
        """Delete an account; deleting an absent row is a no-op."""
        with self._pool.connection() as conn:
            with conn.cursor() as cur:
                _scope(cur, account_id)
                cur.execute("DELETE FROM accounts WHERE account_id = %s", (account_id,))
                conn.commit()

    def create_user(
        self,
        *,
        tenant_id: str,
        email: str,
        password_hash: str,
        role: str,
        email_verified: bool,
        security_stamp: str,
    ) -> User:
        user_id = str(uuid.uuid4())
        now = datetime.now(timezone.utc)
        with self._pool.connection() as conn:
            with conn.cursor(row_factory=tuple_row) as cur:
                _scope(cur, tenant_id)
                try:
                    cur.execute(
                        f"""
                        INSERT INTO users ({_USER_COLUMNS})
                        VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
                        RETURNING {_USER_COLUMNS}
                        """,
                        (
                            user_id,
                            tenant_id,
                            email,
                            password_hash,
                            role,
                            email_verified,
                            security_stamp,
                            now,
                        ),
                    )
                except UniqueViolation as exc:
                    raise DuplicateEmailError(email) from exc
                row = cur.fetchone()
                conn.commit()
        return _map_user(row)

    def email_exists(self, email: str) -> bool:
        with self._pool.connection() as conn:
            with conn.cursor(row_factory=tuple_row) as cur:
                _scope(cur, None)
                cur.execute(
                    "SELECT EXISTS (SELECT 1 FROM users WHERE lower(email) = %s)",
                    (normalize_email(email),),
                )
                row = cur.fetchone()
        return bool(row[0])

    def find_user_by_email(self, email: str, *, tenant_id: str | None = None) -> User | None:
        with self._pool.connection() as conn:
            with conn.cursor(row_factory=tuple_row) as cur:
                _scope(cur, tenant_id)
                cur.execute(
                    f"SELECT {_USER_COLUMNS} FROM users WHERE lower(email) = %s",
                    (normalize_email(email),),
                )
                row = cur.fetchone()
        return _map_user(row) if row else None

    def find_user_by_id(self, user_id: str, *, tenant_id: str | None = None) -> User | None:
        with self._pool.connection() as conn:
            with conn.cursor(row_factory=tuple_row) as cur:
                _scope(cur, tenant_id)
                cur.execute(f"SELECT {_USER_COLUMNS} FROM users WHERE user_id = %s", (user_id,))
                row = cur.fetchone()
        return _map_user(row) if row else None

    def mark_email_verified(self, user_id: str, security_stamp: str) -> None:
        with self._pool.connection() as conn:
            with conn.cursor() as cur:
                _scope(cur, None)
                cur.execute(
                    """
                    UPDATE users
                    SET email_verified = TRUE, security_stamp = %s
                    WHERE user_id = %s
                    """,
                    (security_stamp, user_id),
                )
                conn.commit()

    def update_password(self, user_id: str, password_hash: str, security_stamp: str) -> None:
        with self._pool.connection() as conn:
            with conn.cursor() as cur:
                _scope(cur, None)
                cur.execute(
                    """
                    UPDATE users
                    SET password_hash = %s, security_stamp = %s
                    WHERE user_id = %s
                    """,
                    (password_hash, security_stamp, user_id),
                )
                conn.commit()


class RefreshTokenRepository:
    """Hashed refresh tokens. Raw token values never reach this table."""

    def __init__(self, pool: ConnectionPool) -> None:
        self._pool = pool

    def create_refresh_token(
        self,
        *,
        user_id: str,
        tenant_id: str,
        token_hash: str,
        expires_at: datetime,
        device_info: str | None = None,
    ) -> RefreshTokenRecord:
        token_id = str(uuid.uuid4())
        with self._pool.connection() as conn:
            with conn.cursor(row_factory=tuple_row) as cur:
                _scope(cur, tenant_id)
                cur.execute(
                    f"""
                    INSERT INTO refresh_tokens (token_id, user_id, tenant_id, token_hash, expires_at, device_info)
                    VALUES (%s, %s, %s, %s, %s, %s)
                    RETURNING {_TOKEN_COLUMNS}
                    """,
                    (token_id, user_id, tenant_id, token_hash, expires_at, device_info),
                )
                row = cur.fetchone()
                conn.commit()
        return _map_token(row)

    def find_refresh_token(self, token_hash: str) -> RefreshTokenRecord | None:
        """Return the token for a hash whether or not it is still usable."""
        with self._pool.connection() as conn:
            with conn.cursor(row_factory=tuple_row) as cur:
                _scope(cur, None)
                cur.execute(
                    f"SELECT {_TOKEN_COLUMNS} FROM refresh_tokens WHERE token_hash = %s",
                    (token_hash,),
                )
                row = cur.fetchone()
        return _map_token(row) if row else None

    def revoke_refresh_token(self, token_id: str, revoked_at: datetime) -> bool:
        with self._pool.connection() as conn:
            with conn.cursor() as cur:
                _scope(cur, None)
                cur.execute(
                    """
                    UPDATE refresh_tokens
                    SET revoked_at = %s
                    WHERE token_id = %s AND revoked_at IS NULL
                    """,
                    (revoked_at, token_id),
                )
                changed = cur.rowcount
                conn.commit()
        return changed > 0

    def revoke_user_refresh_tokens(self, user_id: str, revoked_at: datetime) -> int:
        with self._pool.connection() as conn:
            with conn.cursor() as cur:
                _scope(cur, None)
                cur.execute(
                    """
                    UPDATE refresh_tokens
                    SET revoked_at = %s
                    WHERE user_id = %s AND revoked_at IS NULL
                    """,
                    (revoked_at, user_id),
                )
                changed = cur.rowcount
                conn.commit()
        return changed


class InvitationRepository:
    """Invitations are not tenant data; the invitee has no tenant yet."""

    def __init__(self, pool: ConnectionPool) -> None:
        self._pool = pool

    def create_invitation(
        self,
        *,
        email: str,
        code_hash: str,
        created_at: datetime,
        expires_at: datetime,
        invited_by: str | None = None,
    ) -> InvitationRecord:
        invitation_id = str(uuid.uuid4())
        with self._pool.connection() as conn:
            with conn.cursor(row_factory=tuple_row) as cur:
                cur.execute(
                    f"""
                    INSERT INTO invitations ({_INVITATION_COLUMNS})
                    VALUES (%s, %s, %s, %s, %s, NULL, %s)
                    RETURNING {_INVITATION_COLUMNS}
                    """,
                    (invitation_id, email, code_hash, created_at, expires_at, invited_by),
                )
                row = cur.fetchone()
                conn.commit()
        return _map_invitation(row)

    def find_by_code_hash(self, code_hash: str) -> InvitationRecord | None:
        with self._pool.connection() as conn:
            with conn.cursor(row_factory=tuple_row) as cur:
                cur.execute(
                    f"SELECT {_INVITATION_COLUMNS} FROM invitations WHERE code_hash = %s",
                    (code_hash,),
                )
                row = cur.fetchone()
        return _map_invitation(row) if row else None

    def find_pending_for_email(self, email: str, now: datetime) -> InvitationRecord | None:
        with self._pool.connection() as conn:
            with conn.cursor(row_factory=tuple_row) as cur:
                cur.execute(
                    f"""
                    SELECT {_INVITATION_COLUMNS}
                    FROM invitations
                    WHERE email = %s AND used_at IS NULL AND expires_at > %s
                    ORDER BY created_at DESC
                    LIMIT 1
                    """,
                    (normalize_email(email), now),
                )
                row = cur.fetchone()
        return _map_invitation(row) if row else None

    def mark_used(self, invitation_id: str, used_at: datetime) -> bool:
        with self._pool.connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    UPDATE invitations
                    SET used_at = %s
                    WHERE invitation_id = %s AND used_at IS NULL
                    """,
                    (used_at, invitation_id),
                )
                changed = cur.rowcount
                conn.commit()
        return changed > 0


class AuditRepository:
    """Append-only identity audit trail."""

    def __init__(self, pool: ConnectionPool) -> None:
        self._pool = pool

    def write_audit_event(
        self,
        *,
        account_id: str | None,
        tenant_id: str | None,
        event_type: str,
        actor: str | None,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        """Record an audit trail entry capturing identity workflow activity."""
        with self._pool.connection() as conn:
            with conn.cursor() as cur:
                _scope(cur, tenant_id)
                cur.execute(
                    """
                    INSERT INTO identity_audit_log (account_id, tenant_id, event_type, actor, metadata)
                    VALUES (%s, %s, %s, %s, %s)
                    """,
                    (account_id, tenant_id, event_type, actor, Json(metadata or {})),
                )
                conn.commit()

    def list_audit_events(
        self,
        *,
        tenant_id: str,
        account_id: str | None = None,
        event_type: str | None = None,
        created_after: datetime | None = None,
        created_before: datetime | None = None,
        limit: int = 50,
        cursor: Tuple[datetime, int] | None = None,
    ) -> tuple[list[AuditLogRecord], Optional[Tuple[datetime, int]]]:
        """Return a tenant's audit entries, newest first, with keyset pagination."""
        limit = max(1, min(limit, 100))
        clauses = ["tenant_id = %s"]
        params: list[Any] = [tenant_id]

        for column, op, value in (
            ("account_id", "=", account_id),
            ("event_type", "=", event_type),
            ("created_at", ">=", created_after),
            ("created_at", "<=", created_before),
        ):
            if value is not None:
                clauses.append(f"{column} {op} %s")
                params.append(value)
        if cursor:
            clauses.append("(created_at, audit_id) < (%s, %s)")
            params.extend(cursor)
        params.append(limit)

        query = f"""
            SELECT audit_id, account_id, tenant_id, event_type, actor, metadata, created_at
            FROM identity_audit_log
            WHERE {" AND ".join(clauses)}
            ORDER BY created_at DESC, audit_id DESC
            LIMIT %s
        """
        with self._pool.connection() as conn:
            with conn.cursor(row_factory=tuple_row) as cur:
                _scope(cur, tenant_id)
                cur.execute(query, params)
                records = [
                    AuditLogRecord(
                        audit_id=row[0],
                        account_id=str(row[1]) if row[1] is not None else None,
                        tenant_id=str(row[2]) if row[2] is not None else None,
                        event_type=row[3],
                        actor=row[4],
                        metadata=row[5] or {},
                        created_at=row[6],
                    )
                    for row in cur.fetchall()
                ]

        next_cursor: Tuple[datetime, int] | None = None
        if len(records) == limit:
            last = records[-1]
            next_cursor = (last.created_at, last.audit_id)
        return records, next_cursor
