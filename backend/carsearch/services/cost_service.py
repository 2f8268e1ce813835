# Overview: Total-cost-of-ownership calculator and the per-listing cost snapshot.

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Mapping, Optional

from sqlalchemy.exc import SQLAlchemyError

from ..models import AuditAction, CostBreakdown, Listing, SellerType
from ..time_utils import utcnow
from ..validation import NotFoundError, ValidationError, coerce_amount, coerce_enum, coerce_int
from .audit_service import AuditTrail

"""
Ontario purchase cost model (whole dollars)

- Dealer sales carry an admin (documentation) fee, the OMVIC regulatory fee and
  the tire stewardship fee. Private sales carry none of them.
- HST applies to price + admin fee + tire stewardship. OMVIC and other fees are
  not taxable.
- Registration = base registration + (plate transfer or new plates), or zero
  when the buyer handles registration separately.
- There is no partial update: any input change means a full recompute, and the
  stored snapshot is replaced as a whole.
"""

DEFAULT_TAX_RATE = Decimal("0.13")

DEALER_FEES: dict[str, int] = {
    "admin_fee": 499,
    "omvic_fee": 10,
    "tire_stewardship": 20,
    "other_fees": 0,
}
PRIVATE_FEES: dict[str, int] = {name: 0 for name in DEALER_FEES}
TAXABLE_FEES = ("admin_fee", "tire_stewardship")

REGISTRATION_COST = 32
PLATE_TRANSFER_COST = 32
NEW_PLATE_COST = 59


@dataclass(frozen=True)
class RegistrationOptions:
    include: bool = True
    plate_transfer: bool = True

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> "RegistrationOptions":
        if not data:
            return cls()
        return cls(
            include=bool(data.get("include", True)),
            plate_transfer=bool(data.get("plate_transfer", True)),
        )

    @property
    def cost(self) -> int:
        if not self.include:
            return 0
        plates = PLATE_TRANSFER_COST if self.plate_transfer else NEW_PLATE_COST
        return REGISTRATION_COST + plates


@dataclass(frozen=True)
class CostQuote:
    asking_price: int
    negotiated_price: Optional[int]
    effective_price: int
    seller_type: SellerType
    fees: dict[str, int] = field(default_factory=dict)
    total_fees: int = 0
    taxable_amount: int = 0
    tax_rate: Decimal = DEFAULT_TAX_RATE
    tax_amount: int = 0
    registration_included: bool = True
    plate_transfer: bool = True
    registration_cost: int = 0
    total_estimated_cost: int = 0
    budget: int = 0
    remaining_budget: int = 0
    within_budget: bool = True

    def to_dict(self) -> dict:
        return {
            "asking_price": self.asking_price,
            "negotiated_price": self.negotiated_price,
            "effective_price": self.effective_price,
            "seller_type": self.seller_type.value,
            "fees": dict(self.fees),
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
        }


def parse_tax_rate(value: Any) -> Decimal:
    try:
        rate = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise ValidationError(f"tax_rate must be a decimal, got {value!r}")
    if not rate.is_finite() or rate < 0 or rate >= 1:
        raise ValidationError("tax_rate must be between 0 and 1")
    return rate


def fee_table(seller_type: SellerType, overrides: Optional[Mapping[str, Any]] = None) -> dict[str, int]:
    """Seller-type defaults with caller overrides applied. Unknown fee names are kept as extra fees."""
    fees = dict(DEALER_FEES if seller_type == SellerType.DEALER else PRIVATE_FEES)
    for name, amount in (overrides or {}).items():
        fees[str(name)] = coerce_amount(amount, f"fees.{name}")
    return fees


def compute_cost(
    asking_price: int,
    negotiated_price: Optional[int] = None,
    seller_type: SellerType | str = SellerType.DEALER,
    fee_overrides: Optional[Mapping[str, Any]] = None,
    registration: Optional[RegistrationOptions] = None,
    budget: int = 20000,
    tax_rate: Decimal | str = DEFAULT_TAX_RATE,
) -> CostQuote:
    """Pure: same inputs, same quote. No I/O, no clock."""
    asking_price = coerce_amount(asking_price, "asking_price")
    negotiated_price = coerce_amount(negotiated_price, "negotiated_price", allow_none=True)
    seller_type = coerce_enum(SellerType, seller_type, "seller_type")
    budget = coerce_amount(budget, "budget")
    rate = parse_tax_rate(tax_rate)
    registration = registration or RegistrationOptions()

    effective = negotiated_price if negotiated_price is not None else asking_price
    fees = fee_table(seller_type, fee_overrides)
    total_fees = sum(fees.values())

    taxable = effective + sum(fees.get(name, 0) for name in TAXABLE_FEES)
    tax = int((Decimal(taxable) * rate).quantize(Decimal("1"), rounding=ROUND_HALF_UP))

    registration_cost = registration.cost
    total = effective + total_fees + tax + registration_cost

    return CostQuote(
        asking_price=asking_price,
        negotiated_price=negotiated_price,
        effective_price=effective,
        seller_type=seller_type,
        fees=fees,
        total_fees=total_fees,
        taxable_amount=taxable,
        tax_rate=rate,
        tax_amount=tax,
        registration_included=registration.include,
        plate_transfer=registration.plate_transfer,
        registration_cost=registration_cost,
        total_estimated_cost=total,
        budget=budget,
        remaining_budget=budget - total,
        within_budget=total <= budget,
    )


class CostService:
    def __init__(self, session, *, tax_rate: Decimal | str = DEFAULT_TAX_RATE, audit=None, clock=utcnow):
        self.session = session
        self.tax_rate = parse_tax_rate(tax_rate)
        self.clock = clock
        self.audit = audit or AuditTrail(session, clock=clock)

    def get(self, listing_id: int) -> Optional[CostBreakdown]:
        return (
            self.session.query(CostBreakdown)
            .filter(CostBreakdown.listing_id == coerce_int(listing_id, "listing_id"))
            .one_or_none()
        )

    def compute_for_listing(
        self,
        listing_id: int,
        budget: int,
        *,
        negotiated_price: Optional[int] = None,
        fee_overrides: Optional[Mapping[str, Any]] = None,
        registration: Optional[RegistrationOptions] = None,
    ) -> CostBreakdown:
        """
        Recompute from the listing's current inputs and replace its snapshot.

        negotiated_price defaults to the listing's recorded one. A listing with
        no seller type is costed as a dealer sale.
        """
        listing_id = coerce_int(listing_id, "listing_id")
        listing = self.session.get(Listing, listing_id)
        if listing is None:
            raise NotFoundError(f"Listing {listing_id} not found")
        if listing.price is None:
            raise ValidationError(f"Listing {listing_id} has no asking price to cost")

        if negotiated_price is None:
            negotiated_price = listing.negotiated_price

        quote = compute_cost(
            listing.price,
            negotiated_price,
            listing.seller_type or SellerType.DEALER,
            fee_overrides,
            registration,
            budget,
            self.tax_rate,
        )

        try:
            snapshot = self.get(listing_id)
            if snapshot is None:
                snapshot = CostBreakdown(listing_id=listing_id)
                self.session.add(snapshot)
            snapshot.asking_price = quote.asking_price
            snapshot.negotiated_price = quote.negotiated_price
            snapshot.effective_price = quote.effective_price
            snapshot.fees = quote.fees
            snapshot.total_fees = quote.total_fees
            snapshot.taxable_amount = quote.taxable_amount
            snapshot.tax_rate = quote.tax_rate
            snapshot.tax_amount = quote.tax_amount
            snapshot.registration_included = quote.registration_included
            snapshot.plate_transfer = quote.plate_transfer
            snapshot.registration_cost = quote.registration_cost
            snapshot.total_estimated_cost = quote.total_estimated_cost
            snapshot.budget = quote.budget
            snapshot.remaining_budget = quote.remaining_budget
            snapshot.within_budget = quote.within_budget
            snapshot.calculated_at = self.clock()
            self.session.flush()

            self.audit.append(
                action=AuditAction.COST_CALCULATED,
                listing_id=listing_id,
                description=(
                    f"Total cost ${quote.total_estimated_cost:,} "
                    f"({'within' if quote.within_budget else 'over'} ${quote.budget:,} budget)"
                ),
                context={"total": quote.total_estimated_cost, "remaining": quote.remaining_budget},
            )
            self.session.commit()
        except SQLAlchemyError:
            self.session.rollback()
            raise
        return snapshot
