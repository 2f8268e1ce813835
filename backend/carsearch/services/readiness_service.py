# Overview: Purchase-readiness score (0-100) from six independent signals.

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError

from ..models import CostBreakdown, Listing
from ..validation import NotFoundError, coerce_int

# Weights sum to 100
SIGNAL_WEIGHTS: dict[str, int] = {
    "vehicle_history_received": 20,
    "clean_history": 15,
    "price_negotiated": 15,
    "within_budget": 20,
    "seller_responded": 10,
    "no_red_flags": 20,
}


@dataclass(frozen=True)
class ReadinessSignals:
    vehicle_history_received: bool = False
    clean_history: bool = False
    price_negotiated: bool = False
    within_budget: bool = False
    seller_responded: bool = False
    no_red_flags: bool = False

    @classmethod
    def from_listing(cls, listing: Listing, cost: Optional[CostBreakdown] = None) -> "ReadinessSignals":
        history = bool(listing.carfax_received)
        return cls(
            vehicle_history_received=history,
            # Unknown accident count counts as clean
            clean_history=history and not listing.accident_count,
            price_negotiated=listing.negotiated_price is not None,
            within_budget=bool(cost is not None and cost.within_budget),
            seller_responded=listing.first_response_at is not None,
            no_red_flags=not listing.red_flags,
        )

    def as_dict(self) -> dict[str, bool]:
        return {name: getattr(self, name) for name in SIGNAL_WEIGHTS}


def score_signals(signals: ReadinessSignals) -> int:
    score = sum(weight for name, weight in SIGNAL_WEIGHTS.items() if getattr(signals, name))
    return max(0, min(100, score))


def readiness_score(listing: Listing, cost: Optional[CostBreakdown] = None) -> int:
    """Derived from current signals only; the cached Listing.readiness_score is never read."""
    return score_signals(ReadinessSignals.from_listing(listing, cost))


class ReadinessScorer:
    def __init__(self, session):
        self.session = session

    def signals(self, listing_id: int) -> ReadinessSignals:
        listing = self._listing(listing_id)
        return ReadinessSignals.from_listing(listing, self._cost(listing.id))

    def score(self, listing_id: int) -> int:
        """Recompute and write the cache back onto the listing."""
        listing = self._listing(listing_id)
        value = readiness_score(listing, self._cost(listing.id))
        try:
            listing.readiness_score = value
            self.session.commit()
        except SQLAlchemyError:
            self.session.rollback()
            raise
        return value

    def _listing(self, listing_id: int) -> Listing:
        listing_id = coerce_int(listing_id, "listing_id")
        listing = self.session.get(Listing, listing_id)
        if listing is None:
            raise NotFoundError(f"Listing {listing_id} not found")
        return listing

    def _cost(self, listing_id: int) -> Optional[CostBreakdown]:
        return self.session.query(CostBreakdown).filter(CostBreakdown.listing_id == listing_id).one_or_none()
