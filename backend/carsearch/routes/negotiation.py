# backend/carsearch/routes/negotiation.py
"""
Stateless negotiation calculators. Nothing here touches the database.
"""

from flask import Blueprint, current_app, jsonify

from ..services.negotiation_service import initial_bounds, next_counter_offer, should_accept
from ..validation import ValidationError, require_fields
from .common import buyer_budget, json_body

negotiation_bp = Blueprint("negotiation", __name__, url_prefix="/api/negotiation")


@negotiation_bp.post("/bounds")
def bounds_route():
    """Body: {listed_price, budget?, market_average?}"""
    try:
        data = json_body()
        bounds = initial_bounds(
            data.get("listed_price"),
            buyer_budget(data.get("budget")),
            data.get("market_average"),
        )
        return jsonify(bounds.to_dict()), 200
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to compute negotiation bounds")
        return jsonify({"error": "Internal server error"}), 500


@negotiation_bp.post("/counter")
def counter_route():
    """Body: {our_last_offer, their_offer, exchange_count, walk_away_price}"""
    try:
        data = json_body()
        require_fields(data, ("our_last_offer", "their_offer", "walk_away_price"))
        counter = next_counter_offer(
            data["our_last_offer"],
            data["their_offer"],
            data.get("exchange_count", 0),
            data["walk_away_price"],
        )
        return jsonify({"counter_offer": counter}), 200
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to compute counter-offer")
        return jsonify({"error": "Internal server error"}), 500


@negotiation_bp.post("/evaluate")
def evaluate_route():
    """Body: {offer, target_price, walk_away_price, exchange_count}"""
    try:
        data = json_body()
        require_fields(data, ("offer", "target_price", "walk_away_price"))
        decision = should_accept(
            data["offer"],
            data["target_price"],
            data["walk_away_price"],
            data.get("exchange_count", 0),
        )
        return jsonify(decision.to_dict()), 200
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to evaluate offer")
        return jsonify({"error": "Internal server error"}), 500
