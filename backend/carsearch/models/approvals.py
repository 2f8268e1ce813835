from __future__ import annotations

from datetime import datetime
from typing import Optional

from ..extensions import db
from ..time_utils import to_utc_z, utcnow
from .enums import ApprovalStatus
from .listings import _enum_column


class ApprovalRequest(db.Model):
    """
    A proposed automated action held for a human decision.

    LIFECYCLE: pending -> approved | rejected | expired. Never re-enters pending,
    never deleted (kept for audit).

    LAZY EXPIRY: a pending row whose expires_at has passed is *treated* as
    expired even before the row is updated. Use effective_status(now) for reads;
    ApprovalQueue persists the expiry when someone tries to resolve it.
    """
    __tablename__ = "approval_queue"
    __table_args__ = (
        db.Index("ix_approval_queue_status_created", "status", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    listing_id = db.Column(db.Integer, db.ForeignKey("listings.id"), nullable=True, index=True)

    action_type = db.Column(db.String(64), nullable=False, index=True)  # send_offer, schedule_viewing, follow_up, ...
    description = db.Column(db.Text, nullable=False)
    reasoning = db.Column(db.Text, nullable=True)

    # Opaque data the caller needs to perform the action once approved
    payload = db.Column(db.JSON, nullable=False)

    checkpoint_type = db.Column(db.String(64), nullable=True)  # offer_threshold, viewing_approval, ...
    threshold_value = db.Column(db.String(64), nullable=True)

    status = _enum_column(ApprovalStatus, nullable=False, default=ApprovalStatus.PENDING)

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    expires_at = db.Column(db.DateTime, nullable=True)

    resolved_by = db.Column(db.String(16), nullable=True)
    resolved_at = db.Column(db.DateTime, nullable=True)
    resolution_notes = db.Column(db.Text, nullable=True)

    def is_past_deadline(self, now: datetime) -> bool:
        return self.expires_at is not None and self.expires_at <= now

    def effective_status(self, now: Optional[datetime] = None) -> ApprovalStatus:
        now = now or utcnow()
        if self.status == ApprovalStatus.PENDING and self.is_past_deadline(now):
            return ApprovalStatus.EXPIRED
        return self.status

    def to_dict(self, now: Optional[datetime] = None) -> dict:
        return {
            "id": self.id,
            "listing_id": self.listing_id,
            "action_type": self.action_type,
            "description": self.description,
            "reasoning": self.reasoning,
            "payload": self.payload,
            "checkpoint_type": self.checkpoint_type,
            "threshold_value": self.threshold_value,
            "status": self.effective_status(now).value,
            "created_at": to_utc_z(self.created_at),
            "expires_at": to_utc_z(self.expires_at),
            "resolved_by": self.resolved_by,
            "resolved_at": to_utc_z(self.resolved_at),
            "resolution_notes": self.resolution_notes,
        }
