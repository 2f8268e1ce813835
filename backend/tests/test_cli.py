"""CLI command tests (flask <group> <command>)."""

import json
from datetime import datetime

import pytest

from carsearch.models import ApprovalRequest, ApprovalStatus, Listing, ListingState
from carsearch.services.approval_service import ApprovalQueue


@pytest.fixture
def runner(app):
    return app.test_cli_runner()


@pytest.fixture
def queue(db_session):
    return ApprovalQueue(db_session)


def _queue_offer(queue, listing_id=None, **overrides):
    fields = dict(
        action_type="send_offer",
        description="Offer $14,000 on the Caravan",
        payload={"offer_amount": 14000, "message": "Cash today"},
        listing_id=listing_id,
    )
    fields.update(overrides)
    return queue.enqueue(**fields)


def test_init_db_is_idempotent(runner, db_session):
    result = runner.invoke(args=["system", "init-db"])
    assert result.exit_code == 0
    assert "PASS" in result.output


class TestListingCommands:

    def test_show(self, runner, make_listing):
        listing = make_listing(status="analyzed")
        result = runner.invoke(args=["listings", "show", str(listing.id)])
        assert result.exit_code == 0
        assert "2019 Dodge Grand Caravan GT" in result.output
        assert "$15,000" in result.output
        assert "Next:      contacted, rejected, withdrawn" in result.output

    def test_show_unknown(self, runner, db_session):
        result = runner.invoke(args=["listings", "show", "404"])
        assert result.exit_code == 1
        assert "FAIL Listing 404 not found" in result.output

    def test_transition(self, runner, db_session, make_listing):
        listing = make_listing(status="analyzed")
        result = runner.invoke(args=["listings", "transition", str(listing.id), "contacted", "--reason", "intro sent"])
        assert result.exit_code == 0
        assert "PASS" in result.output

        db_session.expire_all()
        assert db_session.get(Listing, listing.id).status == ListingState.CONTACTED

    def test_transition_rejected_edge_fails(self, runner, db_session, make_listing):
        listing = make_listing(status="contacted")
        result = runner.invoke(args=["listings", "transition", str(listing.id), "purchased"])
        assert result.exit_code == 1
        assert "Cannot move from 'contacted' to 'purchased'" in result.output

        db_session.expire_all()
        assert db_session.get(Listing, listing.id).status == ListingState.CONTACTED

    def test_transition_unknown_state_fails(self, runner, make_listing):
        listing = make_listing()
        result = runner.invoke(args=["listings", "transition", str(listing.id), "sold"])
        assert result.exit_code == 1
        assert "Invalid" in result.output

    def test_transition_path(self, runner, make_listing):
        listing = make_listing()
        result = runner.invoke(args=["listings", "transition", str(listing.id), "awaiting_response", "--path"])
        assert result.exit_code == 0
        assert "discovered -> analyzed -> contacted -> awaiting_response" in result.output

    def test_stats(self, runner, make_listing):
        make_listing()
        make_listing(source="facebook")
        result = runner.invoke(args=["listings", "stats"])
        assert result.exit_code == 0
        assert "Total listings: 2" in result.output
        assert "[facebook] 1" in result.output


class TestApprovalCommands:

    def test_list_empty(self, runner, db_session):
        result = runner.invoke(args=["approvals", "list"])
        assert "No pending approvals." in result.output

    def test_list_and_approve(self, runner, queue, make_listing):
        listing = make_listing(status="negotiating")
        approval_id = _queue_offer(queue, listing.id)

        listed = runner.invoke(args=["approvals", "list"])
        assert "send_offer" in listed.output

        result = runner.invoke(args=["approvals", "approve", str(approval_id), "--notes", "go"])
        assert result.exit_code == 0
        assert f"PASS Approval #{approval_id} approved" in result.output
        payload = json.loads(result.output[result.output.index("{"):])
        assert payload == {"message": "Cash today", "offer_amount": 14000}

    def test_second_resolution_fails(self, runner, queue):
        approval_id = _queue_offer(queue)
        assert runner.invoke(args=["approvals", "reject", str(approval_id)]).exit_code == 0

        result = runner.invoke(args=["approvals", "approve", str(approval_id)])
        assert result.exit_code == 1
        assert "already rejected" in result.output

    def test_expire_and_stats(self, runner, queue, db_session):
        stale = _queue_offer(queue, expires_at=datetime(2020, 1, 1))
        _queue_offer(queue)

        result = runner.invoke(args=["approvals", "expire"])
        assert "PASS Expired 1 stale approval(s)." in result.output

        db_session.expire_all()
        assert db_session.get(ApprovalRequest, stale).status == ApprovalStatus.EXPIRED

        stats = runner.invoke(args=["approvals", "stats"]).output
        assert "pending    1" in stats
        assert "expired    1" in stats


class TestPricingCommands:

    def test_cost(self, runner, make_listing):
        listing = make_listing(price=15000)
        result = runner.invoke(args=["pricing", "cost", str(listing.id)])
        assert result.exit_code == 0
        assert "TOTAL:            $17,610" in result.output
        assert "Within budget (remaining $390 of $18,000)" in result.output

    def test_cost_over_budget(self, runner, make_listing):
        listing = make_listing(price=15000)
        result = runner.invoke(args=["pricing", "cost", str(listing.id), "--budget", "17000"])
        assert "OVER BUDGET" in result.output

    def test_cost_unknown_listing(self, runner, db_session):
        result = runner.invoke(args=["pricing", "cost", "999"])
        assert result.exit_code == 1
        assert "FAIL" in result.output

    def test_bounds(self, runner):
        result = runner.invoke(args=["pricing", "bounds", "--listed", "12000", "--budget", "20000"])
        assert result.exit_code == 0
        assert "Target:    $10,560" in result.output
        assert "Walk-away: $12,000" in result.output

    def test_counter(self, runner):
        result = runner.invoke(
            args=["pricing", "counter", "--ours", "10000", "--theirs", "12000", "--exchanges", "1", "--walk-away", "12000"]
        )
        assert result.exit_code == 0
        assert "Counter-offer: $10,600" in result.output

    def test_counter_rejects_out_of_range_offer(self, runner):
        result = runner.invoke(
            args=["pricing", "counter", "--ours", "10000", "--theirs", "20000000", "--walk-away", "12000"]
        )
        assert result.exit_code == 1


def test_readiness_score(runner, db_session, make_listing):
    listing = make_listing()
    result = runner.invoke(args=["readiness", "score", str(listing.id)])
    assert result.exit_code == 0
    assert "Readiness: 20/100" in result.output
    assert "[x] no_red_flags" in result.output

    db_session.expire_all()
    assert db_session.get(Listing, listing.id).readiness_score == 20
