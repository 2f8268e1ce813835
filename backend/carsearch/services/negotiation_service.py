# Overview: Negotiation price calculator; target, walk-away and counter-offers.

"""
Negotiation Price Calculator

All functions are pure: no session, no clock, no randomness. Amounts are whole
dollars and fractions are applied with Decimal so results never drift with
float rounding.

BOUNDS:
    target    = min(12% off listed, 5% off market average when known)
                but never below 75% of listed
    walk-away = min(budget less a 15% fee reserve, listed price)

COUNTER-OFFERS:
    Concede a share of the gap between our last offer and theirs. The share
    starts at 35% and drops 5 points per exchange down to a 15% minimum, so
    concessions never grow. Never above walk-away.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Optional

from ..validation import ValidationError, coerce_amount, coerce_int

LISTED_DISCOUNT = Decimal("0.88")
MARKET_DISCOUNT = Decimal("0.95")
TARGET_FLOOR = Decimal("0.75")
FEE_RESERVE = Decimal("0.85")

FIRST_CONCESSION = Decimal("0.35")
CONCESSION_STEP = Decimal("0.05")
MIN_CONCESSION = Decimal("0.15")

ACCEPT_TOLERANCE = Decimal("1.03")
MIN_EXCHANGES_FOR_TOLERANCE = 4


def _dollars(value: Decimal) -> int:
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


@dataclass(frozen=True)
class NegotiationBounds:
    listed_price: int
    target_price: int
    walk_away_price: int

    def to_dict(self) -> dict:
        return {
            "listed_price": self.listed_price,
            "target_price": self.target_price,
            "walk_away_price": self.walk_away_price,
        }


class Verdict(str, Enum):
    ACCEPT = "accept"
    CONTINUE = "continue"
    WALK_AWAY = "walk_away"


@dataclass(frozen=True)
class AcceptDecision:
    accept: bool
    reason: str
    verdict: Verdict

    def to_dict(self) -> dict:
        return {"accept": self.accept, "reason": self.reason, "verdict": self.verdict.value}


def initial_bounds(listed_price: Optional[int], budget: int, market_average: Optional[int] = None) -> NegotiationBounds:
    """A listing with no asking price is bounded by the budget instead."""
    budget = coerce_amount(budget, "budget")
    listed = coerce_amount(listed_price, "listed_price", allow_none=True)
    if listed is None:
        listed = budget
    market = coerce_amount(market_average, "market_average", allow_none=True)

    target = Decimal(listed) * LISTED_DISCOUNT
    if market:
        target = min(target, Decimal(market) * MARKET_DISCOUNT)
    target = max(target, Decimal(listed) * TARGET_FLOOR)

    walk_away = min(Decimal(budget) * FEE_RESERVE, Decimal(listed))

    return NegotiationBounds(
        listed_price=listed,
        target_price=_dollars(target),
        walk_away_price=_dollars(walk_away),
    )


def concession_share(exchange_count: int) -> Decimal:
    exchange_count = max(0, coerce_int(exchange_count, "exchange_count"))
    return max(MIN_CONCESSION, FIRST_CONCESSION - CONCESSION_STEP * exchange_count)


def next_counter_offer(our_last_offer: int, their_offer: int, exchange_count: int, walk_away_price: int) -> int:
    """
    Our next number.

    When they are already at or below our last offer there is nothing left to
    concede and their number is returned as-is (still capped at walk-away).
    """
    ours = coerce_amount(our_last_offer, "our_last_offer")
    theirs = coerce_amount(their_offer, "their_offer")
    walk_away = coerce_amount(walk_away_price, "walk_away_price")

    gap = theirs - ours
    if gap <= 0:
        return min(theirs, walk_away)

    move = _dollars(Decimal(gap) * concession_share(exchange_count))
    return min(ours + move, walk_away)


def should_accept(offer: int, target_price: int, walk_away_price: int, exchange_count: int) -> AcceptDecision:
    offer = coerce_amount(offer, "offer")
    target = coerce_amount(target_price, "target_price")
    walk_away = coerce_amount(walk_away_price, "walk_away_price")
    exchanges = coerce_int(exchange_count, "exchange_count")
    if exchanges < 0:
        raise ValidationError("exchange_count cannot be negative")

    if offer <= target:
        return AcceptDecision(
            True,
            f"Offer ${offer:,} meets target price ${target:,}",
            Verdict.ACCEPT,
        )
    if Decimal(offer) <= Decimal(target) * ACCEPT_TOLERANCE and exchanges >= MIN_EXCHANGES_FOR_TOLERANCE:
        return AcceptDecision(
            True,
            f"Offer ${offer:,} is within 3% of target after {exchanges} exchanges",
            Verdict.ACCEPT,
        )
    if offer > walk_away:
        return AcceptDecision(
            False,
            f"Offer ${offer:,} exceeds walk-away price ${walk_away:,}",
            Verdict.WALK_AWAY,
        )
    return AcceptDecision(
        False,
        f"Offer ${offer:,} is above target ${target:,}; room to negotiate",
        Verdict.CONTINUE,
    )
