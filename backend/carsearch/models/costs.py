from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, utcnow
from .types import AmountMap


class CostBreakdown(db.Model):
    """
    Latest total-cost-of-ownership snapshot for a listing.

    One row per listing (unique listing_id). Not history: every recomputation
    replaces the whole row.
    """
    __tablename__ = "cost_breakdown"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    listing_id = db.Column(db.Integer, db.ForeignKey("listings.id"), nullable=False, unique=True)

    asking_price = db.Column(db.Integer, nullable=False)
    negotiated_price = db.Column(db.Integer, nullable=True)
    effective_price = db.Column(db.Integer, nullable=False)

    fees = db.Column(AmountMap, nullable=False)
    total_fees = db.Column(db.Integer, nullable=False)

    taxable_amount = db.Column(db.Integer, nullable=False)
    tax_rate = db.Column(db.Numeric(6, 4), nullable=False)
    tax_amount = db.Column(db.Integer, nullable=False)

    registration_included = db.Column(db.Boolean, nullable=False)
    plate_transfer = db.Column(db.Boolean, nullable=False)
    registration_cost = db.Column(db.Integer, nullable=False)

    total_estimated_cost = db.Column(db.Integer, nullable=False)
    budget = db.Column(db.Integer, nullable=False)
    remaining_budget = db.Column(db.Integer, nullable=False)  # may be negative
    within_budget = db.Column(db.Boolean, nullable=False)

    calculated_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    listing = db.relationship("Listing", back_populates="cost_breakdown")

    def to_dict(self) -> dict:
        return {
            "listing_id": self.listing_id,
            "asking_price": self.asking_price,
            "negotiated_price": self.negotiated_price,
            "effective_price": self.effective_price,
            "fees": dict(self.fees or {}),
            "total_fees": self.total_fees,
            "taxable_amount": self.taxable_amount,
            "tax_rate": str(self.tax_rate),
            "tax_amount": self.tax_amount,
            "registration_included": self.registration_included,
            "plate_transfer": self.plate_transfer,
            "registration_cost": self.registration_cost,
            "total_estimated_cost": self.total_estimated_cost,
            "budget": self.budget,
            "remaining_budget": self.remaining_budget,
            "within_budget": self.within_budget,
            "calculated_at": to_utc_z(self.calculated_at),
        }
