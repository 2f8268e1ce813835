# backend/carsearch/routes/approvals.py
"""
Approval queue routes.

- GET  /api/approvals                 pending (non-expired), oldest first
- GET  /api/approvals/stats           counts by effective status
- GET  /api/approvals/<id>            one request with its effective status
- POST /api/approvals                 queue a proposed action
- POST /api/approvals/<id>/approve    returns the stored payload for the caller to run
- POST /api/approvals/<id>/reject

Resolution outcomes map to: 404 unknown id, 409 already resolved, 410 expired.
"""

from flask import Blueprint, current_app, jsonify, request

from ..extensions import db
from ..services.approval_service import ApprovalQueue
from ..time_utils import hours_after, utcnow
from ..validation import NotFoundError, ValidationError, coerce_int
from .common import APPROVAL_HTTP_STATUS, json_body

approvals_bp = Blueprint("approvals", __name__, url_prefix="/api/approvals")


def _server_error(message: str):
    current_app.logger.exception(message)
    return jsonify({"error": "Internal server error"}), 500


@approvals_bp.get("")
def list_pending_route():
    """Query params: listing_id, action_type, limit."""
    try:
        listing_id = request.args.get("listing_id")
        requests_ = ApprovalQueue(db.session).list_pending(
            listing_id=coerce_int(listing_id, "listing_id") if listing_id else None,
            action_type=request.args.get("action_type"),
            limit=request.args.get("limit"),
        )
        return jsonify({"approvals": [item.to_dict() for item in requests_]}), 200
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        return _server_error("Failed to list pending approvals")


@approvals_bp.get("/stats")
def approval_stats_route():
    try:
        return jsonify(ApprovalQueue(db.session).stats()), 200
    except Exception:
        return _server_error("Failed to compute approval stats")


@approvals_bp.get("/<int:approval_id>")
def get_approval_route(approval_id: int):
    try:
        item = ApprovalQueue(db.session).get(approval_id)
        if item is None:
            return jsonify({"error": f"Approval #{approval_id} not found"}), 404
        return jsonify({"approval": item.to_dict()}), 200
    except Exception:
        return _server_error("Failed to load approval")


@approvals_bp.post("")
def enqueue_approval_route():
    """
    Request body:
        {
            "action_type": "send_offer",
            "description": "...",
            "payload": {...},
            "listing_id": 12,            // optional
            "reasoning": "...",          // optional
            "checkpoint_type": "...",    // optional
            "threshold_value": "...",    // optional
            "expires_at": "ISO-8601"     // optional, default now + APPROVAL_TTL_HOURS
        }
    """
    try:
        data = json_body()
        expires_at = data.get("expires_at")
        if expires_at is None:
            expires_at = hours_after(utcnow(), int(current_app.config["APPROVAL_TTL_HOURS"]))
        queue = ApprovalQueue(db.session)
        approval_id = queue.enqueue(
            action_type=data.get("action_type"),
            description=data.get("description"),
            payload=data.get("payload"),
            listing_id=data.get("listing_id"),
            reasoning=data.get("reasoning"),
            checkpoint_type=data.get("checkpoint_type"),
            threshold_value=data.get("threshold_value"),
            expires_at=expires_at,
        )
        current_app.logger.info("Queued approval #%s (%s)", approval_id, data.get("action_type"))
        return jsonify({"approval": queue.get(approval_id).to_dict()}), 201
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except Exception:
        return _server_error("Failed to queue approval")


def _resolve(approval_id: int, approve: bool):
    try:
        notes = json_body().get("notes")
        queue = ApprovalQueue(db.session)
        result = queue.approve(approval_id, notes) if approve else queue.reject(approval_id, notes)
        if result.ok:
            current_app.logger.info("Approval #%s %s", approval_id, result.status.value)
        return jsonify(result.to_dict()), APPROVAL_HTTP_STATUS[result.code]
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        return _server_error("Failed to resolve approval")


@approvals_bp.post("/<int:approval_id>/approve")
def approve_route(approval_id: int):
    return _resolve(approval_id, approve=True)


@approvals_bp.post("/<int:approval_id>/reject")
def reject_route(approval_id: int):
    return _resolve(approval_id, approve=False)
