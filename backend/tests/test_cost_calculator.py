import unittest
from decimal import Decimal

import pytest

from carsearch.models import AuditEntry, CostBreakdown
from carsearch.services.cost_service import (
    CostService,
    RegistrationOptions,
    compute_cost,
)
from carsearch.validation import NotFoundError, ValidationError


class ComputeCostTests(unittest.TestCase):
    def test_dealer_reference_case(self):
        quote = compute_cost(15000, None, "dealer", None, RegistrationOptions(), 18000, "0.13")

        self.assertEqual(quote.effective_price, 15000)
        self.assertEqual(quote.total_fees, 529)
        self.assertEqual(quote.fees["admin_fee"], 499)
        self.assertEqual(quote.fees["omvic_fee"], 10)
        self.assertEqual(quote.fees["tire_stewardship"], 20)
        # 13% of 15000 + 499 + 20; OMVIC fee is not taxable
        self.assertEqual(quote.taxable_amount, 15519)
        self.assertEqual(quote.tax_amount, 2017)
        self.assertEqual(quote.registration_cost, 64)
        self.assertEqual(quote.total_estimated_cost, 15000 + 529 + 2017 + 64)
        self.assertTrue(quote.within_budget)
        self.assertEqual(quote.remaining_budget, 18000 - 17610)

    def test_over_budget_flips_verdict_only(self):
        inside = compute_cost(15000, budget=18000)
        outside = compute_cost(17000, budget=18000)

        self.assertTrue(inside.within_budget)
        self.assertFalse(outside.within_budget)
        self.assertLess(outside.remaining_budget, 0)
        for field in ("total_fees", "tax_amount", "registration_cost", "total_estimated_cost"):
            self.assertGreaterEqual(getattr(outside, field), 0)

    def test_total_equal_to_budget_is_within(self):
        quote = compute_cost(15000, budget=17610)
        self.assertTrue(quote.within_budget)
        self.assertEqual(quote.remaining_budget, 0)

    def test_private_sale_has_no_dealer_fees(self):
        quote = compute_cost(10000, None, "private", budget=18000)
        self.assertEqual(quote.total_fees, 0)
        self.assertEqual(quote.tax_amount, 1300)
        self.assertEqual(quote.total_estimated_cost, 10000 + 1300 + 64)

    def test_negotiated_price_wins(self):
        quote = compute_cost(15000, 14000, "dealer", budget=18000)
        self.assertEqual(quote.effective_price, 14000)
        self.assertEqual(quote.asking_price, 15000)

    def test_fee_overrides(self):
        quote = compute_cost(10000, None, "dealer", {"admin_fee": 0, "other_fees": 150}, budget=18000)
        self.assertEqual(quote.fees["admin_fee"], 0)
        self.assertEqual(quote.fees["other_fees"], 150)
        self.assertEqual(quote.total_fees, 10 + 20 + 150)
        # other_fees is not taxable
        self.assertEqual(quote.taxable_amount, 10020)

    def test_registration_options(self):
        self.assertEqual(compute_cost(10000, registration=RegistrationOptions(plate_transfer=False)).registration_cost, 91)
        self.assertEqual(compute_cost(10000, registration=RegistrationOptions(include=False)).registration_cost, 0)

    def test_tax_rounds_half_up(self):
        # 10000 + 499 + 20 = 10519 -> 1367.47 ; private 4350 * 0.13 = 565.5 -> 566
        self.assertEqual(compute_cost(10000).tax_amount, 1367)
        self.assertEqual(compute_cost(4350, seller_type="private").tax_amount, 566)

    def test_invalid_inputs(self):
        with self.assertRaises(ValidationError):
            compute_cost(-1)
        with self.assertRaises(ValidationError):
            compute_cost(10000, seller_type="broker")
        with self.assertRaises(ValidationError):
            compute_cost(10000, tax_rate="1.5")
        with self.assertRaises(ValidationError):
            compute_cost(10000, fee_overrides={"admin_fee": "lots"})

    def test_pure(self):
        self.assertEqual(compute_cost(12345, 12000, "dealer"), compute_cost(12345, 12000, "dealer"))


def test_compute_for_listing_upserts_one_snapshot(db_session, make_listing):
    listing = make_listing(price=15000, seller_type="dealer")
    service = CostService(db_session, tax_rate="0.13")

    first = service.compute_for_listing(listing.id, 18000)
    assert first.total_estimated_cost == 17610
    assert first.within_budget
    assert first.tax_rate == Decimal("0.1300")

    second = service.compute_for_listing(listing.id, 16000, negotiated_price=14000)
    assert db_session.query(CostBreakdown).filter_by(listing_id=listing.id).count() == 1
    assert second.effective_price == 14000
    assert second.budget == 16000
    assert db_session.query(AuditEntry).filter_by(action="cost_calculated").count() == 2


def test_compute_for_listing_uses_recorded_negotiated_price(db_session, make_listing):
    listing = make_listing(price=15000)
    listing.negotiated_price = 13500
    db_session.commit()

    snapshot = CostService(db_session).compute_for_listing(listing.id, 18000)
    assert snapshot.effective_price == 13500


def test_unknown_seller_type_costs_as_dealer(db_session, make_listing):
    listing = make_listing(price=15000, seller_type=None)
    snapshot = CostService(db_session).compute_for_listing(listing.id, 18000)
    assert snapshot.total_fees == 529


def test_missing_price_is_a_validation_error(db_session, make_listing):
    listing = make_listing(price=None)
    with pytest.raises(ValidationError):
        CostService(db_session).compute_for_listing(listing.id, 18000)


def test_unknown_listing(db_session):
    with pytest.raises(NotFoundError):
        CostService(db_session).compute_for_listing(123, 18000)
