# backend/carsearch/routes/checkpoints.py
"""
Checkpoint routes. An automation asks before acting; a held action comes back
with requires_approval=true and the id of the queued approval request.

- POST /api/checkpoints/offer              {listing_id, amount, payload?}
- POST /api/checkpoints/viewing            {listing_id, details, payload?}
- POST /api/checkpoints/follow-up          {listing_id, follow_up_count, payload?}
- POST /api/checkpoints/portfolio          {amount, payload?}
- POST /api/checkpoints/unusual-behavior   {listing_id, description, payload?}
"""

from flask import Blueprint, current_app, jsonify

from ..extensions import db
from ..models.types import json_object
from ..services.checkpoint_service import CheckpointPolicy
from ..validation import NotFoundError, ValidationError, require_fields
from .common import checkpoint_settings, json_body

checkpoints_bp = Blueprint("checkpoints", __name__, url_prefix="/api/checkpoints")


def _run(check, required: tuple[str, ...]):
    try:
        data = json_body()
        require_fields(data, required)
        payload = json_object(data.get("payload"), "payload")
        policy = CheckpointPolicy(db.session, checkpoint_settings())
        result = check(policy, data, payload)
        if result.requires_approval:
            current_app.logger.info("Checkpoint held action as approval #%s: %s", result.approval_id, result.reason)
        return jsonify(result.to_dict()), (202 if result.requires_approval else 200)
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except Exception:
        current_app.logger.exception("Checkpoint evaluation failed")
        return jsonify({"error": "Internal server error"}), 500


@checkpoints_bp.post("/offer")
def offer_checkpoint_route():
    return _run(
        lambda policy, data, payload: policy.check_offer(data["listing_id"], data["amount"], payload),
        ("listing_id", "amount"),
    )


@checkpoints_bp.post("/viewing")
def viewing_checkpoint_route():
    def check(policy, data, payload):
        details = json_object(data.get("details") or {}, "details")
        return policy.check_viewing(data["listing_id"], details, payload)

    return _run(check, ("listing_id",))


@checkpoints_bp.post("/follow-up")
def follow_up_checkpoint_route():
    return _run(
        lambda policy, data, payload: policy.check_follow_up(data["listing_id"], data["follow_up_count"], payload),
        ("listing_id", "follow_up_count"),
    )


@checkpoints_bp.post("/portfolio")
def portfolio_checkpoint_route():
    return _run(
        lambda policy, data, payload: policy.check_portfolio_exposure(data["amount"], payload),
        ("amount",),
    )


@checkpoints_bp.post("/unusual-behavior")
def unusual_behavior_route():
    return _run(
        lambda policy, data, payload: policy.flag_unusual_behavior(data["listing_id"], data["description"], payload),
        ("listing_id", "description"),
    )
