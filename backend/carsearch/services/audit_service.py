# Overview: Service-layer operations for the audit trail; append and read only.

from __future__ import annotations

from typing import Any, Optional

from ..models import AuditAction, AuditEntry, ListingState, TriggeredBy
from ..models.types import json_object
from ..time_utils import utcnow
from ..validation import coerce_enum

"""
Audit Trail Invariants

- Append-only. There is no update or delete in this module, and the mapper
  refuses ORM updates/deletes of AuditEntry rows.
- Entries are written inside the same DB transaction as the mutation they
  record: append() flushes but never commits, so the caller's commit (or
  rollback) covers both.
- query() is a read-only projection, newest first. Concurrent appends may show
  up on the next call; callers must not assume a frozen snapshot.
"""


def _tag(value) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, (AuditAction, ListingState)):
        return value.value
    return str(value)


class AuditTrail:
    def __init__(self, session, *, clock=utcnow):
        self.session = session
        self.clock = clock

    def append(
        self,
        *,
        action: AuditAction | str,
        description: str,
        listing_id: Optional[int] = None,
        from_state: ListingState | str | None = None,
        to_state: ListingState | str | None = None,
        reasoning: Optional[str] = None,
        context: Optional[dict[str, Any]] = None,
        triggered_by: TriggeredBy | str = TriggeredBy.SYSTEM,
    ) -> int:
        """Insert one entry and return its id. Flushes, does not commit."""
        entry = AuditEntry(
            listing_id=listing_id,
            action=_tag(action),
            from_state=_tag(from_state),
            to_state=_tag(to_state),
            description=description,
            reasoning=reasoning,
            context=json_object(context, "context"),
            triggered_by=coerce_enum(TriggeredBy, triggered_by, "triggered_by"),
            created_at=self.clock(),
        )
        self.session.add(entry)
        self.session.flush()
        return entry.id

    def query(
        self,
        listing_id: Optional[int] = None,
        *,
        action: AuditAction | str | None = None,
        limit: Optional[int] = None,
    ) -> list[AuditEntry]:
        """
        Entries newest first (created_at, then id as tie-breaker).

        listing_id=None returns every entry, including listing-independent ones.
        """
        q = self.session.query(AuditEntry)
        if listing_id is not None:
            q = q.filter(AuditEntry.listing_id == listing_id)
        if action is not None:
            q = q.filter(AuditEntry.action == _tag(action))
        q = q.order_by(AuditEntry.created_at.desc(), AuditEntry.id.desc())
        if limit:
            q = q.limit(limit)
        return q.all()
