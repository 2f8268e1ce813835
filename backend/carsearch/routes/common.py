# Overview: Request parsing and result-to-status mapping shared by the blueprints.

from __future__ import annotations

from flask import current_app, request

from ..services.approval_service import ApprovalOutcome
from ..services.checkpoint_service import CheckpointSettings
from ..services.state_machine import TransitionOutcome
from ..validation import ValidationError, coerce_amount

TRANSITION_HTTP_STATUS = {
    TransitionOutcome.OK: 200,
    TransitionOutcome.NOT_FOUND: 404,
    TransitionOutcome.INVALID_TRANSITION: 409,
}

APPROVAL_HTTP_STATUS = {
    ApprovalOutcome.OK: 200,
    ApprovalOutcome.NOT_FOUND: 404,
    ApprovalOutcome.ALREADY_RESOLVED: 409,
    ApprovalOutcome.EXPIRED: 410,
}


def json_body() -> dict:
    """Request JSON object; an empty body reads as {}."""
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


def buyer_budget(value=None) -> int:
    if value in (None, ""):
        return int(current_app.config["BUYER_BUDGET"])
    return coerce_amount(value, "budget")


def checkpoint_settings() -> CheckpointSettings:
    return CheckpointSettings.from_config(current_app.config)
