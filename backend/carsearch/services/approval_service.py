# Overview: Service-layer operations for the human approval queue.

"""
Approval Queue

================================================================================
PURPOSE: Hold proposed automated actions until a human approves or rejects them
================================================================================

STATUS:
    pending -> approved | rejected | expired      (never back to pending)

LAZY EXPIRY:
    A pending request whose expires_at has passed is treated as expired on
    read (list_pending, stats, get) without touching the row. The expiry is
    persisted when someone tries to resolve it, or by the optional
    expire_stale() sweep. Both paths audit approval_expired.

AT-MOST-ONE RESOLUTION:
    approve/reject write with UPDATE ... WHERE status = 'pending'. Of two
    racing callers exactly one changes the row; the other sees zero rows,
    re-reads, and gets ALREADY_RESOLVED.

THE QUEUE NEVER EXECUTES PAYLOADS:
    approve() hands the stored payload back. Running the action is the
    caller's job, so "approval failed" and "execution failed" stay distinct.
================================================================================
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from sqlalchemy import func, or_, select
from sqlalchemy.exc import SQLAlchemyError

from ..models import ApprovalRequest, ApprovalStatus, AuditAction, Listing, TriggeredBy
from ..models.types import json_object
from ..time_utils import parse_timestamp, utcnow
from ..validation import NotFoundError, ValidationError, coerce_int
from .audit_service import AuditTrail
from .concurrency import compare_and_set, lock_for_update


class ApprovalOutcome(str, Enum):
    OK = "ok"
    NOT_FOUND = "not_found"
    ALREADY_RESOLVED = "already_resolved"
    EXPIRED = "expired"


@dataclass(frozen=True)
class ApprovalResult:
    ok: bool
    approval_id: int
    status: Optional[ApprovalStatus] = None
    payload: Any = None
    error: Optional[str] = None
    code: ApprovalOutcome = ApprovalOutcome.OK

    def to_dict(self) -> dict:
        return {
            "ok": self.ok,
            "code": self.code.value,
            "approval_id": self.approval_id,
            "status": self.status.value if self.status else None,
            "payload": self.payload,
            "error": self.error,
        }


class ApprovalQueue:
    def __init__(self, session, *, audit: Optional[AuditTrail] = None, clock=utcnow):
        self.session = session
        self.clock = clock
        self.audit = audit or AuditTrail(session, clock=clock)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def enqueue(
        self,
        *,
        action_type: str,
        description: str,
        payload: dict[str, Any],
        listing_id: Optional[int] = None,
        reasoning: Optional[str] = None,
        checkpoint_type: Optional[str] = None,
        threshold_value: Optional[str] = None,
        expires_at: datetime | str | None = None,
        commit: bool = True,
    ) -> int:
        """
        Queue one request and its approval_queued audit entry in a single
        transaction. Returns the new request id.
        """
        if not action_type or not str(action_type).strip():
            raise ValidationError("action_type is required")
        if not description or not str(description).strip():
            raise ValidationError("description is required")
        if payload is None:
            raise ValidationError("payload is required")
        payload = json_object(payload, "payload")
        expires_at = parse_timestamp(expires_at, "expires_at")

        if listing_id is not None:
            listing_id = coerce_int(listing_id, "listing_id")
            if self.session.get(Listing, listing_id) is None:
                raise NotFoundError(f"Listing {listing_id} not found")

        try:
            request = ApprovalRequest(
                listing_id=listing_id,
                action_type=str(action_type).strip(),
                description=description,
                reasoning=reasoning,
                payload=payload,
                checkpoint_type=checkpoint_type,
                threshold_value=None if threshold_value is None else str(threshold_value),
                status=ApprovalStatus.PENDING,
                created_at=self.clock(),
                expires_at=expires_at,
            )
            self.session.add(request)
            self.session.flush()

            self.audit.append(
                action=AuditAction.APPROVAL_QUEUED,
                listing_id=listing_id,
                description=f"Queued for approval: {description}",
                reasoning=reasoning,
                context={
                    "approval_id": request.id,
                    "action_type": request.action_type,
                    "checkpoint_type": checkpoint_type,
                },
                triggered_by=TriggeredBy.SYSTEM,
            )
            if commit:
                self.session.commit()
        except SQLAlchemyError:
            self.session.rollback()
            raise
        return request.id

    def approve(self, approval_id: int, notes: Optional[str] = None) -> ApprovalResult:
        """On success the stored payload comes back for the caller to execute."""
        return self._resolve(approval_id, ApprovalStatus.APPROVED, notes)

    def reject(self, approval_id: int, notes: Optional[str] = None) -> ApprovalResult:
        result = self._resolve(approval_id, ApprovalStatus.REJECTED, notes)
        if result.ok:
            return ApprovalResult(ok=True, approval_id=result.approval_id, status=result.status)
        return result

    def expire_stale(self, now: Optional[datetime] = None) -> int:
        """Persist every lazily-expired request. Returns how many were expired."""
        now = now or self.clock()
        ids = self.session.execute(
            select(ApprovalRequest.id).where(
                ApprovalRequest.status == ApprovalStatus.PENDING,
                ApprovalRequest.expires_at.isnot(None),
                ApprovalRequest.expires_at <= now,
            ).order_by(ApprovalRequest.id)
        ).scalars().all()

        expired = 0
        try:
            for approval_id in ids:
                if self._persist_expiry(approval_id, now):
                    expired += 1
            self.session.commit()
        except SQLAlchemyError:
            self.session.rollback()
            raise
        return expired

    # ------------------------------------------------------------------
    # Reads (never mutate; lazily-expired rows are reported as expired)
    # ------------------------------------------------------------------

    def get(self, approval_id: int) -> Optional[ApprovalRequest]:
        return self.session.get(ApprovalRequest, coerce_int(approval_id, "approval_id"))

    def list_pending(
        self,
        *,
        listing_id: Optional[int] = None,
        action_type: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> list[ApprovalRequest]:
        """Oldest first. Excludes rows whose deadline has passed."""
        now = self.clock()
        q = self.session.query(ApprovalRequest).filter(
            ApprovalRequest.status == ApprovalStatus.PENDING,
            or_(ApprovalRequest.expires_at.is_(None), ApprovalRequest.expires_at > now),
        )
        if listing_id is not None:
            q = q.filter(ApprovalRequest.listing_id == coerce_int(listing_id, "listing_id"))
        if action_type:
            q = q.filter(ApprovalRequest.action_type == action_type)
        q = q.order_by(ApprovalRequest.created_at.asc(), ApprovalRequest.id.asc())
        if limit:
            q = q.limit(coerce_int(limit, "limit"))
        return q.all()

    def stats(self) -> dict[str, int]:
        now = self.clock()
        counts = {status.value: 0 for status in ApprovalStatus}
        rows = self.session.execute(
            select(ApprovalRequest.status, func.count(ApprovalRequest.id)).group_by(ApprovalRequest.status)
        ).all()
        for status, count in rows:
            counts[status.value] = count

        lapsed = self.session.execute(
            select(func.count(ApprovalRequest.id)).where(
                ApprovalRequest.status == ApprovalStatus.PENDING,
                ApprovalRequest.expires_at.isnot(None),
                ApprovalRequest.expires_at <= now,
            )
        ).scalar_one()
        counts[ApprovalStatus.PENDING.value] -= lapsed
        counts[ApprovalStatus.EXPIRED.value] += lapsed
        return counts

    # ------------------------------------------------------------------

    def _load(self, approval_id: int):
        stmt = lock_for_update(
            select(ApprovalRequest.status, ApprovalRequest.expires_at).where(ApprovalRequest.id == approval_id)
        )
        return self.session.execute(stmt).one_or_none()

    def _persist_expiry(self, approval_id: int, now: datetime) -> bool:
        changed = compare_and_set(
            self.session,
            ApprovalRequest,
            approval_id,
            ApprovalRequest.status,
            ApprovalStatus.PENDING,
            status=ApprovalStatus.EXPIRED,
            resolved_by=TriggeredBy.SYSTEM.value,
            resolved_at=now,
        )
        if changed:
            listing_id = self.session.execute(
                select(ApprovalRequest.listing_id).where(ApprovalRequest.id == approval_id)
            ).scalar_one()
            self.audit.append(
                action=AuditAction.APPROVAL_EXPIRED,
                listing_id=listing_id,
                description=f"Approval #{approval_id} expired without a decision",
                context={"approval_id": approval_id},
                triggered_by=TriggeredBy.SYSTEM,
            )
        return changed

    def _expired(self, approval_id: int) -> ApprovalResult:
        """A pending request whose deadline passed before anyone decided."""
        return ApprovalResult(
            ok=False,
            approval_id=approval_id,
            status=ApprovalStatus.EXPIRED,
            error=f"Approval #{approval_id} has expired",
            code=ApprovalOutcome.EXPIRED,
        )

    def _already_resolved(self, approval_id: int, status: ApprovalStatus) -> ApprovalResult:
        """Any stored non-pending status, including a persisted expiry."""
        return ApprovalResult(
            ok=False,
            approval_id=approval_id,
            status=status,
            error=f"Approval #{approval_id} is already {status.value}",
            code=ApprovalOutcome.ALREADY_RESOLVED,
        )

    def _resolve(self, approval_id, decision: ApprovalStatus, notes: Optional[str]) -> ApprovalResult:
        approval_id = coerce_int(approval_id, "approval_id")
        now = self.clock()
        action = (
            AuditAction.APPROVAL_APPROVED if decision == ApprovalStatus.APPROVED else AuditAction.APPROVAL_REJECTED
        )

        try:
            row = self._load(approval_id)
            if row is None:
                return ApprovalResult(
                    ok=False,
                    approval_id=approval_id,
                    error=f"Approval #{approval_id} not found",
                    code=ApprovalOutcome.NOT_FOUND,
                )
            status, expires_at = row

            if status != ApprovalStatus.PENDING:
                self.session.rollback()
                return self._already_resolved(approval_id, status)

            if expires_at is not None and expires_at <= now:
                # Enforced at write time; persist what readers already see
                self._persist_expiry(approval_id, now)
                self.session.commit()
                return self._expired(approval_id)

            changed = compare_and_set(
                self.session,
                ApprovalRequest,
                approval_id,
                ApprovalRequest.status,
                ApprovalStatus.PENDING,
                status=decision,
                resolved_by=TriggeredBy.USER.value,
                resolved_at=now,
                resolution_notes=notes,
            )
            if not changed:
                # Someone else resolved (or expired) it between our read and write
                self.session.rollback()
                row = self._load(approval_id)
                if row is None:
                    return ApprovalResult(
                        ok=False,
                        approval_id=approval_id,
                        error=f"Approval #{approval_id} not found",
                        code=ApprovalOutcome.NOT_FOUND,
                    )
                return self._already_resolved(approval_id, row[0])

            request = self.session.execute(
                select(ApprovalRequest.listing_id, ApprovalRequest.description, ApprovalRequest.payload)
                .where(ApprovalRequest.id == approval_id)
            ).one()
            self.audit.append(
                action=action,
                listing_id=request.listing_id,
                description=f"{decision.value.capitalize()}: {request.description}",
                reasoning=notes,
                context={"approval_id": approval_id},
                triggered_by=TriggeredBy.USER,
            )
            self.session.commit()
        except SQLAlchemyError:
            self.session.rollback()
            raise

        return ApprovalResult(
            ok=True,
            approval_id=approval_id,
            status=decision,
            payload=request.payload,
        )
