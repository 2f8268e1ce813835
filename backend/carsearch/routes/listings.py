# backend/carsearch/routes/listings.py
"""
Listing routes: ingest, enrichment events, lifecycle transitions and the
read-only calculators that hang off a single listing.

Expected refusals (invalid transition, unknown listing) come back as JSON with
a 4xx status and are not logged as errors. Anything else is logged with a
traceback and answered with a generic 500.
"""

from flask import Blueprint, current_app, jsonify, request

from ..extensions import db
from ..services.audit_service import AuditTrail
from ..services.cost_service import CostService, RegistrationOptions
from ..services.listing_service import ListingService
from ..services.negotiation_service import initial_bounds
from ..services.readiness_service import ReadinessScorer
from ..services.state_machine import ListingStateMachine, allowed_next, state_description
from ..validation import NotFoundError, ValidationError, coerce_amount, coerce_int
from .common import TRANSITION_HTTP_STATUS, buyer_budget, json_body

listings_bp = Blueprint("listings", __name__, url_prefix="/api/listings")


def _listing_payload(listing) -> dict:
    data = listing.to_dict()
    data["allowed_next"] = [state.value for state in allowed_next(listing.status)]
    data["state_description"] = state_description(listing.status)
    return data


def _server_error(message: str):
    current_app.logger.exception(message)
    return jsonify({"error": "Internal server error"}), 500


@listings_bp.get("")
def list_listings_route():
    """
    Query params: status, source, min_score, limit (default 50),
    order_by (discovered | score | price | mileage).
    """
    try:
        listings = ListingService(db.session).list(
            status=request.args.get("status"),
            source=request.args.get("source"),
            min_score=request.args.get("min_score"),
            limit=request.args.get("limit", 50),
            order_by=request.args.get("order_by", "discovered"),
        )
        return jsonify({"listings": [listing.to_dict() for listing in listings]}), 200
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        return _server_error("Failed to list listings")


@listings_bp.get("/stats")
def listing_stats_route():
    try:
        return jsonify(ListingService(db.session).stats()), 200
    except Exception:
        return _server_error("Failed to compute listing stats")


@listings_bp.post("")
def ingest_listing_route():
    """Upsert by (source, source_id). 201 when created, 200 when merged."""
    try:
        listing, created = ListingService(db.session).ingest(json_body())
        return jsonify({"listing": _listing_payload(listing), "created": created}), (201 if created else 200)
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        return _server_error("Failed to ingest listing")


@listings_bp.get("/<int:listing_id>")
def get_listing_route(listing_id: int):
    try:
        service = ListingService(db.session)
        listing = service.require(listing_id)
        data = _listing_payload(listing)
        data["cost_breakdown"] = listing.cost_breakdown.to_dict() if listing.cost_breakdown else None
        data["price_history"] = [obs.to_dict() for obs in service.price_history(listing_id)]
        return jsonify({"listing": data}), 200
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except Exception:
        return _server_error("Failed to load listing")


@listings_bp.post("/<int:listing_id>/transition")
def transition_listing_route(listing_id: int):
    """
    Request body:
        {
            "state": "contacted",
            "reasoning": "...",          // optional
            "context": {...},            // optional
            "triggered_by": "user",      // optional, default user
            "path": false                // true: walk the shortest path instead of one edge
        }

    Error responses:
        400: Malformed request (unknown state name)
        404: Listing not found
        409: Edge not allowed from the current state (body lists allowed states)
    """
    try:
        data = json_body()
        state = data.get("state") or data.get("to_state")
        if not state:
            raise ValidationError("state is required")

        machine = ListingStateMachine(db.session)
        apply = machine.transition_path if data.get("path") else machine.transition
        result = apply(
            listing_id,
            state,
            triggered_by=data.get("triggered_by", "user"),
            reasoning=data.get("reasoning"),
            context=data.get("context"),
        )
        if result.ok:
            current_app.logger.info(
                "Listing %s moved %s -> %s", listing_id, result.from_state.value, result.to_state.value
            )
        return jsonify(result.to_dict()), TRANSITION_HTTP_STATUS[result.code]
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        return _server_error("Failed to transition listing")


@listings_bp.post("/<int:listing_id>/messages")
def record_message_route(listing_id: int):
    """Body: {direction, channel, subject?, body, timestamp?, attachments?}"""
    try:
        listing = ListingService(db.session).record_message(listing_id, json_body())
        return jsonify({"listing": _listing_payload(listing)}), 201
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except Exception:
        return _server_error("Failed to record message")


@listings_bp.post("/<int:listing_id>/analysis")
def record_analysis_route(listing_id: int):
    try:
        listing = ListingService(db.session).record_analysis(listing_id, json_body())
        return jsonify({"listing": _listing_payload(listing)}), 200
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except Exception:
        return _server_error("Failed to record analysis")


@listings_bp.post("/<int:listing_id>/vehicle-history")
def record_vehicle_history_route(listing_id: int):
    """Body: {accident_count?, owner_count?, service_record_count?, summary?}"""
    try:
        listing = ListingService(db.session).record_vehicle_history(listing_id, json_body())
        return jsonify({"listing": _listing_payload(listing)}), 200
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except Exception:
        return _server_error("Failed to record vehicle history")


@listings_bp.post("/<int:listing_id>/negotiated-price")
def record_negotiated_price_route(listing_id: int):
    try:
        data = json_body()
        listing = ListingService(db.session).record_negotiated_price(listing_id, data.get("price"))
        return jsonify({"listing": _listing_payload(listing)}), 200
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except Exception:
        return _server_error("Failed to record negotiated price")


@listings_bp.post("/<int:listing_id>/info-status")
def set_info_status_route(listing_id: int):
    try:
        listing = ListingService(db.session).set_info_status(listing_id, json_body().get("info_status"))
        return jsonify({"listing": _listing_payload(listing)}), 200
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except Exception:
        return _server_error("Failed to set info status")


@listings_bp.get("/<int:listing_id>/audit")
def listing_audit_route(listing_id: int):
    """Newest first. Query param: limit."""
    try:
        ListingService(db.session).require(listing_id)
        limit = request.args.get("limit")
        entries = AuditTrail(db.session).query(
            listing_id,
            limit=coerce_int(limit, "limit") if limit else None,
        )
        return jsonify({"entries": [entry.to_dict() for entry in entries]}), 200
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except Exception:
        return _server_error("Failed to load audit trail")


@listings_bp.get("/<int:listing_id>/readiness")
def listing_readiness_route(listing_id: int):
    try:
        scorer = ReadinessScorer(db.session)
        signals = scorer.signals(listing_id)
        score = scorer.score(listing_id)
        return jsonify({"listing_id": listing_id, "score": score, "signals": signals.as_dict()}), 200
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except Exception:
        return _server_error("Failed to score readiness")


@listings_bp.post("/<int:listing_id>/cost")
def listing_cost_route(listing_id: int):
    """
    Request body (all optional):
        {
            "budget": 18000,                         // default BUYER_BUDGET
            "negotiated_price": 14500,               // default: listing's recorded one
            "fees": {"admin_fee": 299},              // per-fee overrides
            "registration": {"include": true, "plate_transfer": true}
        }
    """
    try:
        data = json_body()
        fees = data.get("fees")
        if fees is not None and not isinstance(fees, dict):
            raise ValidationError("fees must be a JSON object")
        registration = data.get("registration")
        if registration is not None and not isinstance(registration, dict):
            raise ValidationError("registration must be a JSON object")

        snapshot = CostService(db.session, tax_rate=current_app.config["TAX_RATE"]).compute_for_listing(
            listing_id,
            buyer_budget(data.get("budget")),
            negotiated_price=coerce_amount(data.get("negotiated_price"), "negotiated_price", allow_none=True),
            fee_overrides=fees,
            registration=RegistrationOptions.from_dict(registration),
        )
        return jsonify({"cost_breakdown": snapshot.to_dict()}), 200
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except Exception:
        return _server_error("Failed to compute cost")


@listings_bp.get("/<int:listing_id>/negotiation")
def listing_negotiation_route(listing_id: int):
    """Query params: budget (default BUYER_BUDGET), market_average."""
    try:
        listing = ListingService(db.session).require(listing_id)
        bounds = initial_bounds(
            listing.price,
            buyer_budget(request.args.get("budget")),
            request.args.get("market_average") or None,
        )
        return jsonify({"listing_id": listing_id, **bounds.to_dict()}), 200
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except Exception:
        return _server_error("Failed to compute negotiation bounds")
