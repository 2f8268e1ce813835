from dataclasses import replace
from datetime import timedelta

import pytest

from carsearch.models import ApprovalRequest
from carsearch.services.approval_service import ApprovalQueue
from carsearch.services.checkpoint_service import CheckpointPolicy, CheckpointSettings
from carsearch.services.cost_service import CostService

SETTINGS = CheckpointSettings(
    enabled=True,
    offer_approval_threshold=15000,
    viewing_requires_approval=True,
    max_auto_followups=2,
    portfolio_exposure_alert=40000,
    approval_ttl_hours=48,
)


@pytest.fixture
def policy(db_session, clock):
    return CheckpointPolicy(db_session, SETTINGS, clock=clock)


def test_settings_from_flask_config(app):
    settings = CheckpointSettings.from_config(app.config)
    assert settings == SETTINGS


def test_offer_below_threshold_proceeds(policy, make_listing, db_session):
    listing = make_listing()
    result = policy.check_offer(listing.id, 14999, {"message": "offer text"})
    assert not result.requires_approval
    assert db_session.query(ApprovalRequest).count() == 0


def test_offer_at_threshold_is_held(policy, make_listing, db_session, clock):
    listing = make_listing()
    result = policy.check_offer(listing.id, 15000, {"message": "offer text"})

    assert result.requires_approval
    request = db_session.get(ApprovalRequest, result.approval_id)
    assert request.action_type == "send_offer"
    assert request.checkpoint_type == "offer_threshold"
    assert request.threshold_value == "$15,000"
    assert request.payload == {"message": "offer text", "offer_amount": 15000}
    assert request.expires_at == clock.now + timedelta(hours=48)
    assert "2019 Dodge Grand Caravan" in request.description


def test_viewing_held_when_configured(db_session, make_listing, clock):
    listing = make_listing(status="negotiating")
    held = CheckpointPolicy(db_session, SETTINGS, clock=clock).check_viewing(
        listing.id, {"date": "2026-03-07", "time": "11:00", "location": "Mississauga"}
    )
    assert held.requires_approval
    request = db_session.get(ApprovalRequest, held.approval_id)
    assert request.action_type == "schedule_viewing"
    assert request.payload["viewing_details"]["time"] == "11:00"
    assert "2026-03-07" in request.description

    relaxed = CheckpointPolicy(db_session, replace(SETTINGS, viewing_requires_approval=False), clock=clock)
    assert not relaxed.check_viewing(listing.id, {"date": "2026-03-07"}).requires_approval


def test_follow_up_limit(policy, make_listing, db_session):
    listing = make_listing(status="awaiting_response")
    assert not policy.check_follow_up(listing.id, 1).requires_approval

    held = policy.check_follow_up(listing.id, 2, {"template": "nudge"})
    assert held.requires_approval
    request = db_session.get(ApprovalRequest, held.approval_id)
    assert request.checkpoint_type == "max_followups"
    assert request.payload == {"template": "nudge", "follow_up_count": 3}


def test_portfolio_exposure(db_session, make_listing, policy):
    costed = make_listing(status="negotiating", price=15000)
    make_listing(status="offer_made", price=12000)
    make_listing(status="contacted", price=30000)  # not an active deal
    CostService(db_session).compute_for_listing(costed.id, 18000)  # total 17610

    exposure, deals = policy.active_exposure()
    assert (exposure, deals) == (17610 + 12000, 2)

    assert not policy.check_portfolio_exposure(10000).requires_approval
    held = policy.check_portfolio_exposure(10391)
    assert held.requires_approval
    request = db_session.get(ApprovalRequest, held.approval_id)
    assert request.listing_id is None
    assert request.payload["total_exposure"] == 40001
    assert request.payload["active_deals"] == 2


def test_portfolio_alert_zero_disables(db_session, make_listing, clock):
    make_listing(status="negotiating", price=90000)
    policy = CheckpointPolicy(db_session, replace(SETTINGS, portfolio_exposure_alert=0), clock=clock)
    assert not policy.check_portfolio_exposure(50000).requires_approval


def test_unusual_behavior_always_held(policy, make_listing, db_session):
    listing = make_listing(status="negotiating")
    result = policy.flag_unusual_behavior(listing.id, "Seller asks for e-transfer deposit before viewing")
    assert result.requires_approval
    assert result.reason.startswith("Seller asks")
    assert db_session.get(ApprovalRequest, result.approval_id).checkpoint_type == "unusual_behavior"


def test_disabled_checkpoints_never_hold(db_session, make_listing, clock):
    listing = make_listing()
    policy = CheckpointPolicy(db_session, replace(SETTINGS, enabled=False), clock=clock)

    assert not policy.check_offer(listing.id, 99000).requires_approval
    assert not policy.check_viewing(listing.id, {"date": "2026-03-07"}).requires_approval
    assert not policy.check_follow_up(listing.id, 10).requires_approval
    assert not policy.check_portfolio_exposure(500000).requires_approval
    assert not policy.flag_unusual_behavior(listing.id, "odd").requires_approval
    assert db_session.query(ApprovalRequest).count() == 0


def test_zero_ttl_means_no_deadline(db_session, make_listing, clock):
    listing = make_listing()
    policy = CheckpointPolicy(db_session, replace(SETTINGS, approval_ttl_hours=0), clock=clock)
    result = policy.check_offer(listing.id, 20000)
    assert db_session.get(ApprovalRequest, result.approval_id).expires_at is None


def test_held_items_appear_in_pending_queue(db_session, make_listing, clock):
    listing = make_listing()
    queue = ApprovalQueue(db_session, clock=clock)
    policy = CheckpointPolicy(db_session, SETTINGS, queue=queue, clock=clock)

    result = policy.check_offer(listing.id, 16000)
    assert [r.id for r in queue.list_pending()] == [result.approval_id]

    clock.advance(hours=49)
    assert queue.list_pending() == []
