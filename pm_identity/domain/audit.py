from __future__ import annotations

import json
from base64 import urlsafe_b64decode, urlsafe_b64encode
from datetime import datetime
from typing import Optional, Tuple

from .ports import AuditTrail
from .records import AuditLogRecord


class AuditService:
    """Read side of the identity audit trail, scoped to one tenant per call."""

    def __init__(self, trail: AuditTrail) -> None:
        self._trail = trail

    def list_audit_events(
        self,
        *,
        tenant_id: str,
        event_type: str | None = None,
        created_after: datetime | None = None,
        created_before: datetime | None = None,
        limit: int = 50,
        cursor: str | None = None,
    ) -> tuple[list[AuditLogRecord], str | None]:
        """Return the tenant's audit records, newest first, with an opaque next cursor.

        Raises ``ValueError`` for a cursor this service did not issue.
        """
        decoded_cursor: Optional[Tuple[datetime, int]] = None
        if cursor:
            decoded_cursor = self._decode_cursor(cursor)
        records, next_cursor_tuple = self._trail.list_audit_events(
            tenant_id=tenant_id,
            event_type=event_type,
            created_after=created_after,
            created_before=created_before,
            limit=limit,
            cursor=decoded_cursor,
        )
        return records, self._encode_cursor(next_cursor_tuple)

    def _encode_cursor(self, cursor: Tuple[datetime, int] | None) -> str | None:
        if cursor is None:
            return None
        created_at, audit_id = cursor
        payload = json.dumps({"created_at": created_at.isoformat(), "audit_id": audit_id})
        return urlsafe_b64encode(payload.encode("utf-8")).decode("utf-8")

    def _decode_cursor(self, cursor: str) -> Tuple[datetime, int]:
        try:
            data = json.loads(urlsafe_b64decode(cursor.encode("utf-8")).decode("utf-8"))
            return datetime.fromisoformat(data["created_at"]), int(data["audit_id"])
        except (ValueError, KeyError, TypeError) as exc:
            raise ValueError("invalid cursor") from exc
