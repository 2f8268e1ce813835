"""
HTTP surface tests.

Verifies:
- Result codes map onto status codes (404 / 409 / 410 / 400)
- Ingest answers 201 on create and 200 on merge
- Calculators and checkpoints are reachable over JSON
"""

from carsearch.models import ApprovalRequest, ApprovalStatus, AuditEntry, Listing, ListingState


def _bundle(**overrides):
    bundle = {
        "source": "kijiji",
        "source_id": "KJ-7781",
        "source_url": "https://www.kijiji.ca/v-cars-trucks/7781",
        "year": 2018,
        "make": "Honda",
        "model": "Odyssey",
        "mileage_km": 121000,
        "price": 17500,
        "seller_type": "private",
    }
    bundle.update(overrides)
    return bundle


# =============================================================================
# HEALTH
# =============================================================================


def test_health_reports_queue_depths(client, db_session, make_listing):
    make_listing()
    resp = client.get("/api/health")
    assert resp.status_code == 200
    body = resp.get_json()
    assert body["status"] == "healthy"
    assert body["checks"]["database"]["details"] == {"listings": 1, "approvals_pending": 0}


# =============================================================================
# LISTINGS
# =============================================================================


class TestListingRoutes:

    def test_ingest_creates_then_merges(self, client, db_session):
        resp = client.post("/api/listings", json=_bundle())
        assert resp.status_code == 201
        created = resp.get_json()["listing"]
        assert created["status"] == "discovered"
        assert created["allowed_next"] == ["analyzed", "rejected", "withdrawn"]

        resp = client.post("/api/listings", json=_bundle(price=16900))
        assert resp.status_code == 200
        assert resp.get_json()["created"] is False
        assert resp.get_json()["listing"]["id"] == created["id"]
        assert resp.get_json()["listing"]["price"] == 16900

    def test_ingest_missing_fields_is_400(self, client, db_session):
        resp = client.post("/api/listings", json=_bundle(model=None))
        assert resp.status_code == 400
        assert "model" in resp.get_json()["error"]

    def test_get_listing_includes_history(self, client, make_listing):
        listing = make_listing(price=15000)
        resp = client.get(f"/api/listings/{listing.id}")
        assert resp.status_code == 200
        body = resp.get_json()["listing"]
        assert body["cost_breakdown"] is None
        assert [obs["price"] for obs in body["price_history"]] == [15000]

    def test_get_unknown_listing_is_404(self, client, db_session):
        assert client.get("/api/listings/4040").status_code == 404

    def test_list_filters_by_status(self, client, make_listing):
        make_listing()
        contacted = make_listing(status="contacted")
        resp = client.get("/api/listings?status=contacted")
        assert resp.status_code == 200
        assert [item["id"] for item in resp.get_json()["listings"]] == [contacted.id]

    def test_list_bad_order_is_400(self, client, db_session):
        assert client.get("/api/listings?order_by=colour").status_code == 400

    def test_stats(self, client, make_listing):
        make_listing()
        make_listing(status="analyzed")
        body = client.get("/api/listings/stats").get_json()
        assert body["total"] == 2
        assert body["by_status"]["analyzed"] == 1


# =============================================================================
# TRANSITIONS
# =============================================================================


class TestTransitionRoutes:

    def test_valid_transition(self, client, db_session, make_listing):
        listing = make_listing(status="analyzed")
        resp = client.post(
            f"/api/listings/{listing.id}/transition",
            json={"state": "contacted", "reasoning": "sent intro email"},
        )
        assert resp.status_code == 200
        body = resp.get_json()
        assert body["ok"] is True
        assert (body["from_state"], body["to_state"]) == ("analyzed", "contacted")

        db_session.expire_all()
        assert db_session.get(Listing, listing.id).status == ListingState.CONTACTED
        entry = db_session.query(AuditEntry).filter_by(listing_id=listing.id, action="state_change").order_by(AuditEntry.id.desc()).first()
        assert entry.triggered_by.value == "user"
        assert entry.reasoning == "sent intro email"

    def test_invalid_edge_is_409_with_allowed_states(self, client, make_listing):
        listing = make_listing(status="contacted")
        resp = client.post(f"/api/listings/{listing.id}/transition", json={"state": "purchased"})
        assert resp.status_code == 409
        body = resp.get_json()
        assert body["code"] == "invalid_transition"
        assert body["allowed"] == ["awaiting_response", "rejected", "withdrawn"]

    def test_unknown_listing_is_404(self, client, db_session):
        resp = client.post("/api/listings/999/transition", json={"state": "analyzed"})
        assert resp.status_code == 404
        assert resp.get_json()["code"] == "not_found"

    def test_unknown_state_is_400(self, client, make_listing):
        listing = make_listing()
        resp = client.post(f"/api/listings/{listing.id}/transition", json={"state": "sold"})
        assert resp.status_code == 400

    def test_missing_state_is_400(self, client, make_listing):
        listing = make_listing()
        assert client.post(f"/api/listings/{listing.id}/transition", json={}).status_code == 400

    def test_path_to_current_state_is_409(self, client, make_listing):
        listing = make_listing()
        resp = client.post(
            f"/api/listings/{listing.id}/transition",
            json={"state": "discovered", "path": True},
        )
        assert resp.status_code == 409
        assert resp.get_json()["code"] == "invalid_transition"

    def test_non_object_context_is_400(self, client, db_session, make_listing):
        listing = make_listing()
        resp = client.post(
            f"/api/listings/{listing.id}/transition",
            json={"state": "analyzed", "context": ["not", "an", "object"]},
        )
        assert resp.status_code == 400

        db_session.expire_all()
        assert db_session.get(Listing, listing.id).status == ListingState.DISCOVERED

    def test_path_walk(self, client, make_listing):
        listing = make_listing()
        resp = client.post(
            f"/api/listings/{listing.id}/transition",
            json={"state": "negotiating", "path": True},
        )
        assert resp.status_code == 200
        assert resp.get_json()["path"] == ["analyzed", "contacted", "awaiting_response", "negotiating"]


# =============================================================================
# ENRICHMENT EVENTS
# =============================================================================


class TestEnrichmentRoutes:

    def test_inbound_message_advances_to_negotiating(self, client, make_listing):
        listing = make_listing(status="awaiting_response")
        resp = client.post(
            f"/api/listings/{listing.id}/messages",
            json={
                "direction": "inbound",
                "channel": "email",
                "body": "Still available, come by Saturday",
                "timestamp": "2026-03-03T14:00:00Z",
            },
        )
        assert resp.status_code == 201
        body = resp.get_json()["listing"]
        assert body["status"] == "negotiating"
        assert body["first_response_at"] == "2026-03-03T14:00:00Z"
        assert len(body["conversation"]) == 1

    def test_message_validation(self, client, make_listing):
        listing = make_listing()
        resp = client.post(f"/api/listings/{listing.id}/messages", json={"direction": "inbound", "channel": "fax", "body": "x"})
        assert resp.status_code == 400

    def test_bad_message_timestamp_is_400(self, client, db_session, make_listing):
        listing = make_listing()
        for timestamp in (123, "yesterday", ["2024-05-01"]):
            resp = client.post(
                f"/api/listings/{listing.id}/messages",
                json={"direction": "inbound", "channel": "email", "body": "Still available?", "timestamp": timestamp},
            )
            assert resp.status_code == 400
            assert "timestamp" in resp.get_json()["error"]

        db_session.expire_all()
        assert not db_session.get(Listing, listing.id).conversation

    def test_analysis_then_audit(self, client, make_listing):
        listing = make_listing()
        resp = client.post(
            f"/api/listings/{listing.id}/analysis",
            json={"score": 78, "red_flags": [], "summary": "Fair price for the trim"},
        )
        assert resp.status_code == 200
        assert resp.get_json()["listing"]["status"] == "analyzed"

        entries = client.get(f"/api/listings/{listing.id}/audit").get_json()["entries"]
        actions = [entry["action"] for entry in entries]
        assert "analysis_recorded" in actions
        assert "state_change" in actions
        assert "listing_discovered" in actions

    def test_audit_limit(self, client, make_listing):
        listing = make_listing(status="awaiting_response")
        entries = client.get(f"/api/listings/{listing.id}/audit?limit=2").get_json()["entries"]
        assert len(entries) == 2

    def test_audit_unknown_listing_is_404(self, client, db_session):
        assert client.get("/api/listings/31337/audit").status_code == 404

    def test_vehicle_history_and_readiness(self, client, make_listing):
        listing = make_listing()
        resp = client.post(
            f"/api/listings/{listing.id}/vehicle-history",
            json={"accident_count": 0, "owner_count": 2, "summary": "No claims"},
        )
        assert resp.status_code == 200
        assert resp.get_json()["listing"]["info_status"] == "carfax_received"

        resp = client.get(f"/api/listings/{listing.id}/readiness")
        assert resp.status_code == 200
        body = resp.get_json()
        # history 20 + clean 15 + no red flags 20
        assert body["score"] == 55
        assert body["signals"]["clean_history"] is True
        assert body["signals"]["within_budget"] is False

    def test_negotiated_price(self, client, make_listing):
        listing = make_listing()
        resp = client.post(f"/api/listings/{listing.id}/negotiated-price", json={"price": 14200})
        assert resp.status_code == 200
        assert resp.get_json()["listing"]["negotiated_price"] == 14200

        resp = client.post(f"/api/listings/{listing.id}/negotiated-price", json={"price": -5})
        assert resp.status_code == 400

    def test_info_status(self, client, make_listing):
        listing = make_listing()
        resp = client.post(f"/api/listings/{listing.id}/info-status", json={"info_status": "carfax_requested"})
        assert resp.status_code == 200
        assert resp.get_json()["listing"]["info_status"] == "carfax_requested"
        assert client.post(f"/api/listings/{listing.id}/info-status", json={"info_status": "lost"}).status_code == 400


# =============================================================================
# CALCULATORS
# =============================================================================


class TestCalculatorRoutes:

    def test_cost_uses_configured_budget(self, client, make_listing):
        listing = make_listing(price=15000)
        resp = client.post(f"/api/listings/{listing.id}/cost", json={})
        assert resp.status_code == 200
        cost = resp.get_json()["cost_breakdown"]
        assert cost["total_estimated_cost"] == 17610
        assert cost["budget"] == 18000
        assert cost["remaining_budget"] == 390
        assert cost["within_budget"] is True

        detail = client.get(f"/api/listings/{listing.id}").get_json()["listing"]
        assert detail["cost_breakdown"]["total_estimated_cost"] == 17610

    def test_cost_rejects_bad_fee_table(self, client, make_listing):
        listing = make_listing()
        resp = client.post(f"/api/listings/{listing.id}/cost", json={"fees": [499]})
        assert resp.status_code == 400

    def test_cost_unknown_listing_is_404(self, client, db_session):
        assert client.post("/api/listings/777/cost", json={}).status_code == 404

    def test_listing_negotiation_bounds(self, client, make_listing):
        listing = make_listing(price=15000)
        body = client.get(f"/api/listings/{listing.id}/negotiation").get_json()
        assert body["target_price"] == 13200
        assert body["walk_away_price"] == 15000

    def test_bounds(self, client):
        resp = client.post("/api/negotiation/bounds", json={"listed_price": 12000, "budget": 20000})
        assert resp.status_code == 200
        assert resp.get_json() == {"listed_price": 12000, "target_price": 10560, "walk_away_price": 12000}

    def test_counter(self, client):
        resp = client.post(
            "/api/negotiation/counter",
            json={"our_last_offer": 10000, "their_offer": 12000, "exchange_count": 0, "walk_away_price": 12000},
        )
        assert resp.status_code == 200
        assert resp.get_json() == {"counter_offer": 10700}

    def test_counter_missing_field_is_400(self, client):
        resp = client.post("/api/negotiation/counter", json={"our_last_offer": 10000})
        assert resp.status_code == 400

    def test_evaluate(self, client):
        resp = client.post(
            "/api/negotiation/evaluate",
            json={"offer": 13000, "target_price": 12000, "walk_away_price": 12500, "exchange_count": 1},
        )
        assert resp.status_code == 200
        assert resp.get_json()["verdict"] == "walk_away"


# =============================================================================
# APPROVALS
# =============================================================================


class TestApprovalRoutes:

    def _queue(self, client, **overrides):
        body = {
            "action_type": "send_message",
            "description": "Reply to seller with availability",
            "payload": {"message": "Saturday at 11 works"},
        }
        body.update(overrides)
        return client.post("/api/approvals", json=body)

    def test_bad_expires_at_is_400(self, client, db_session):
        for expires_at in ("tomorrow", 123, {"days": 1}):
            resp = self._queue(client, expires_at=expires_at)
            assert resp.status_code == 400
            assert "expires_at" in resp.get_json()["error"]
        assert db_session.query(ApprovalRequest).count() == 0

    def test_queue_then_approve_returns_payload(self, client, db_session):
        resp = self._queue(client)
        assert resp.status_code == 201
        approval = resp.get_json()["approval"]
        assert approval["status"] == "pending"
        assert approval["expires_at"] is not None

        pending = client.get("/api/approvals").get_json()["approvals"]
        assert [item["id"] for item in pending] == [approval["id"]]

        resp = client.post(f"/api/approvals/{approval['id']}/approve", json={"notes": "ok"})
        assert resp.status_code == 200
        assert resp.get_json()["payload"] == {"message": "Saturday at 11 works"}

        again = client.post(f"/api/approvals/{approval['id']}/reject")
        assert again.status_code == 409
        assert again.get_json()["code"] == "already_resolved"

    def test_reject(self, client, db_session):
        approval_id = self._queue(client).get_json()["approval"]["id"]
        resp = client.post(f"/api/approvals/{approval_id}/reject", json={"notes": "too pushy"})
        assert resp.status_code == 200
        assert resp.get_json()["status"] == "rejected"
        assert resp.get_json()["payload"] is None

    def test_expired_is_410(self, client, db_session):
        approval_id = self._queue(client, expires_at="2020-01-01T00:00:00Z").get_json()["approval"]["id"]
        assert client.get(f"/api/approvals/{approval_id}").get_json()["approval"]["status"] == "expired"

        resp = client.post(f"/api/approvals/{approval_id}/approve")
        assert resp.status_code == 410
        assert resp.get_json()["code"] == "expired"

        db_session.expire_all()
        stored = db_session.get(ApprovalRequest, approval_id)
        assert stored.status == ApprovalStatus.EXPIRED
        assert stored.resolved_by == "system"

        again = client.post(f"/api/approvals/{approval_id}/reject")
        assert again.status_code == 409
        assert again.get_json()["code"] == "already_resolved"

    def test_unknown_approval_is_404(self, client, db_session):
        assert client.post("/api/approvals/5150/approve").status_code == 404
        assert client.get("/api/approvals/5150").status_code == 404

    def test_queue_validation(self, client, db_session):
        assert self._queue(client, payload=None).status_code == 400
        assert self._queue(client, payload=["not", "an", "object"]).status_code == 400
        assert self._queue(client, action_type="").status_code == 400
        assert self._queue(client, listing_id=8080).status_code == 404

    def test_stats(self, client, db_session):
        self._queue(client)
        self._queue(client, expires_at="2020-01-01T00:00:00Z")
        body = client.get("/api/approvals/stats").get_json()
        assert body == {"pending": 1, "approved": 0, "rejected": 0, "expired": 1}


# =============================================================================
# CHECKPOINTS
# =============================================================================


class TestCheckpointRoutes:

    def test_offer_over_threshold_is_held(self, client, make_listing):
        listing = make_listing()
        resp = client.post(
            "/api/checkpoints/offer",
            json={"listing_id": listing.id, "amount": 15500, "payload": {"message": "Would you take $15,500?"}},
        )
        assert resp.status_code == 202
        body = resp.get_json()
        assert body["requires_approval"] is True

        approval = client.get(f"/api/approvals/{body['approval_id']}").get_json()["approval"]
        assert approval["checkpoint_type"] == "offer_threshold"
        assert approval["payload"]["offer_amount"] == 15500

    def test_offer_under_threshold_proceeds(self, client, make_listing):
        listing = make_listing()
        resp = client.post("/api/checkpoints/offer", json={"listing_id": listing.id, "amount": 9000})
        assert resp.status_code == 200
        assert resp.get_json() == {"requires_approval": False, "approval_id": None, "reason": None}

    def test_follow_up_count_zero_is_accepted(self, client, make_listing):
        listing = make_listing(status="awaiting_response")
        resp = client.post("/api/checkpoints/follow-up", json={"listing_id": listing.id, "follow_up_count": 0})
        assert resp.status_code == 200

    def test_unusual_behavior_on_unknown_listing_is_404(self, client, db_session):
        resp = client.post("/api/checkpoints/unusual-behavior", json={"listing_id": 123456, "description": "odd"})
        assert resp.status_code == 404

    def test_checkpoint_missing_amount_is_400(self, client, db_session):
        assert client.post("/api/checkpoints/portfolio", json={}).status_code == 400
