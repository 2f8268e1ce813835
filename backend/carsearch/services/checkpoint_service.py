# Overview: Checkpoint policy; decides which automated actions need a human first.

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping, Optional

from sqlalchemy import select

from ..models import CostBreakdown, Listing, ListingState
from ..time_utils import hours_after, utcnow
from ..validation import coerce_amount, coerce_int
from .approval_service import ApprovalQueue

# Deals that still tie up money
ACTIVE_DEAL_STATES = (
    ListingState.NEGOTIATING,
    ListingState.VIEWING_SCHEDULED,
    ListingState.OFFER_MADE,
)


@dataclass(frozen=True)
class CheckpointSettings:
    enabled: bool = True
    offer_approval_threshold: int = 15000
    viewing_requires_approval: bool = True
    max_auto_followups: int = 2
    portfolio_exposure_alert: int = 40000  # 0 disables
    approval_ttl_hours: int = 48  # 0 = no deadline

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> "CheckpointSettings":
        return cls(
            enabled=bool(config.get("CHECKPOINTS_ENABLED", True)),
            offer_approval_threshold=int(config.get("OFFER_APPROVAL_THRESHOLD", 15000)),
            viewing_requires_approval=bool(config.get("VIEWING_REQUIRES_APPROVAL", True)),
            max_auto_followups=int(config.get("MAX_AUTO_FOLLOWUPS", 2)),
            portfolio_exposure_alert=int(config.get("PORTFOLIO_EXPOSURE_ALERT", 40000)),
            approval_ttl_hours=int(config.get("APPROVAL_TTL_HOURS", 48)),
        )


@dataclass(frozen=True)
class CheckpointResult:
    requires_approval: bool
    approval_id: Optional[int] = None
    reason: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "requires_approval": self.requires_approval,
            "approval_id": self.approval_id,
            "reason": self.reason,
        }


PROCEED = CheckpointResult(requires_approval=False)


class CheckpointPolicy:
    def __init__(self, session, settings: CheckpointSettings, *, queue: Optional[ApprovalQueue] = None, clock=utcnow):
        self.session = session
        self.settings = settings
        self.clock = clock
        self.queue = queue or ApprovalQueue(session, clock=clock)

    def _vehicle(self, listing_id: int) -> str:
        listing = self.session.get(Listing, listing_id)
        if listing is None:
            return f"Listing #{listing_id}"
        return f"{listing.year} {listing.make} {listing.model}"

    def _hold(self, **fields) -> int:
        fields.setdefault("expires_at", hours_after(self.clock(), self.settings.approval_ttl_hours))
        return self.queue.enqueue(**fields)

    def check_offer(self, listing_id: int, amount: int, payload: Optional[dict] = None) -> CheckpointResult:
        if not self.settings.enabled:
            return PROCEED
        listing_id = coerce_int(listing_id, "listing_id")
        amount = coerce_amount(amount, "amount")
        threshold = self.settings.offer_approval_threshold
        if amount < threshold:
            return PROCEED

        approval_id = self._hold(
            listing_id=listing_id,
            action_type="send_offer",
            description=f"Send offer of ${amount:,} for {self._vehicle(listing_id)}",
            reasoning=f"Offer amount (${amount:,}) meets or exceeds approval threshold (${threshold:,})",
            payload={**(payload or {}), "offer_amount": amount},
            checkpoint_type="offer_threshold",
            threshold_value=f"${threshold:,}",
        )
        return CheckpointResult(
            requires_approval=True,
            approval_id=approval_id,
            reason=f"Offer of ${amount:,} exceeds threshold of ${threshold:,}",
        )

    def check_viewing(self, listing_id: int, details: Mapping[str, Any], payload: Optional[dict] = None) -> CheckpointResult:
        if not (self.settings.enabled and self.settings.viewing_requires_approval):
            return PROCEED
        listing_id = coerce_int(listing_id, "listing_id")

        description = f"Schedule viewing for {self._vehicle(listing_id)}"
        if details.get("date"):
            description += f" on {details['date']}"
        if details.get("time"):
            description += f" at {details['time']}"
        if details.get("location"):
            description += f" ({details['location']})"

        approval_id = self._hold(
            listing_id=listing_id,
            action_type="schedule_viewing",
            description=description,
            reasoning="Viewing requires human approval per configuration",
            payload={**(payload or {}), "viewing_details": dict(details)},
            checkpoint_type="viewing_approval",
        )
        return CheckpointResult(True, approval_id, "Viewing scheduling requires approval")

    def check_follow_up(self, listing_id: int, follow_up_count: int, payload: Optional[dict] = None) -> CheckpointResult:
        if not self.settings.enabled:
            return PROCEED
        listing_id = coerce_int(listing_id, "listing_id")
        follow_up_count = coerce_int(follow_up_count, "follow_up_count")
        limit = self.settings.max_auto_followups
        if follow_up_count < limit:
            return PROCEED

        approval_id = self._hold(
            listing_id=listing_id,
            action_type="follow_up",
            description=f"Send follow-up #{follow_up_count + 1} for {self._vehicle(listing_id)}",
            reasoning=f"Reached max auto follow-ups ({limit}). Human decision required to continue.",
            payload={**(payload or {}), "follow_up_count": follow_up_count + 1},
            checkpoint_type="max_followups",
            threshold_value=str(limit),
        )
        return CheckpointResult(True, approval_id, f"Max auto follow-ups ({limit}) reached")

    def active_exposure(self) -> tuple[int, int]:
        """(sum of latest total cost, or asking price when never costed; deal count) over active deals."""
        rows = self.session.execute(
            select(Listing.price, CostBreakdown.total_estimated_cost)
            .outerjoin(CostBreakdown, CostBreakdown.listing_id == Listing.id)
            .where(Listing.status.in_(ACTIVE_DEAL_STATES))
        ).all()
        total = 0
        for price, costed in rows:
            if costed:
                total += costed
            elif price:
                total += price
        return total, len(rows)

    def check_portfolio_exposure(self, amount: int, payload: Optional[dict] = None) -> CheckpointResult:
        alert = self.settings.portfolio_exposure_alert
        if not self.settings.enabled or alert <= 0:
            return PROCEED
        amount = coerce_amount(amount, "amount")

        active_total, active_deals = self.active_exposure()
        exposure = active_total + amount
        if exposure <= alert:
            return PROCEED

        approval_id = self._hold(
            action_type="portfolio_exposure",
            description=f"Total portfolio exposure (${exposure:,}) exceeds alert threshold",
            reasoning=(
                f"Adding this deal would bring total exposure to ${exposure:,}, "
                f"exceeding the ${alert:,} threshold"
            ),
            payload={
                **(payload or {}),
                "total_exposure": exposure,
                "threshold": alert,
                "active_deals": active_deals,
            },
            checkpoint_type="portfolio_exposure",
            threshold_value=f"${alert:,}",
        )
        return CheckpointResult(True, approval_id, f"Portfolio exposure (${exposure:,}) exceeds threshold")

    def flag_unusual_behavior(self, listing_id: int, description: str, payload: Optional[dict] = None) -> CheckpointResult:
        if not self.settings.enabled:
            return PROCEED
        listing_id = coerce_int(listing_id, "listing_id")

        approval_id = self._hold(
            listing_id=listing_id,
            action_type="unusual_behavior",
            description=f"Unusual seller behavior detected for {self._vehicle(listing_id)}",
            reasoning=description,
            payload=dict(payload or {}),
            checkpoint_type="unusual_behavior",
        )
        return CheckpointResult(True, approval_id, description)
