from __future__ import annotations

from sqlalchemy import event

from ..extensions import db
from ..time_utils import to_utc_z, utcnow
from .enums import TriggeredBy
from .listings import _enum_column


class AuditEntry(db.Model):
    """
    Append-only audit trail of every mutation (state changes, approval decisions,
    automated actions).

    IMMUTABLE: Never update or delete. The mapper hooks below refuse ORM-level
    updates and deletes; there is no update/delete path in AuditTrail.

    listing_id is nullable for listing-independent events (e.g. portfolio
    exposure holds).
    """
    __tablename__ = "audit_log"
    __table_args__ = (
        db.Index("ix_audit_log_listing_created", "listing_id", "created_at"),
        db.Index("ix_audit_log_action", "action"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    listing_id = db.Column(db.Integer, db.ForeignKey("listings.id"), nullable=True, index=True)

    action = db.Column(db.String(64), nullable=False)  # state_change, approval_queued, email_sent, ...
    from_state = db.Column(db.String(32), nullable=True)
    to_state = db.Column(db.String(32), nullable=True)

    description = db.Column(db.Text, nullable=False)
    reasoning = db.Column(db.Text, nullable=True)
    context = db.Column(db.JSON, nullable=True)

    triggered_by = _enum_column(TriggeredBy, nullable=False, default=TriggeredBy.SYSTEM)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "listing_id": self.listing_id,
            "action": self.action,
            "from_state": self.from_state,
            "to_state": self.to_state,
            "description": self.description,
            "reasoning": self.reasoning,
            "context": self.context,
            "triggered_by": self.triggered_by.value,
            "created_at": to_utc_z(self.created_at),
        }


@event.listens_for(AuditEntry, "before_update")
def _refuse_audit_update(mapper, connection, target):
    raise ValueError(f"AuditEntry {target.id} is append-only and cannot be updated")


@event.listens_for(AuditEntry, "before_delete")
def _refuse_audit_delete(mapper, connection, target):
    raise ValueError(f"AuditEntry {target.id} is append-only and cannot be deleted")
