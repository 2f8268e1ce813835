from __future__ import annotations

from enum import Enum


class ListingState(str, Enum):
    """
    Lifecycle of a purchase candidate.

    The edge table lives in services/state_machine.py; every member here must
    appear there as a key (checked at import time).
    """
    DISCOVERED = "discovered"
    ANALYZED = "analyzed"
    CONTACTED = "contacted"
    AWAITING_RESPONSE = "awaiting_response"
    NEGOTIATING = "negotiating"
    VIEWING_SCHEDULED = "viewing_scheduled"
    INSPECTED = "inspected"
    OFFER_MADE = "offer_made"
    PURCHASED = "purchased"
    REJECTED = "rejected"
    WITHDRAWN = "withdrawn"


TERMINAL_STATES = frozenset({
    ListingState.PURCHASED,
    ListingState.REJECTED,
    ListingState.WITHDRAWN,
})


class InfoStatus(str, Enum):
    """Information-gathering progress. Independent of ListingState and never validated by it."""
    PENDING = "pending"
    CARFAX_REQUESTED = "carfax_requested"
    CARFAX_RECEIVED = "carfax_received"
    READY = "ready"


class SellerType(str, Enum):
    DEALER = "dealer"
    PRIVATE = "private"


class TriggeredBy(str, Enum):
    SYSTEM = "system"
    USER = "user"
    CLAUDE = "claude"


class ApprovalStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    EXPIRED = "expired"


class MessageDirection(str, Enum):
    INBOUND = "inbound"
    OUTBOUND = "outbound"


class MessageChannel(str, Enum):
    EMAIL = "email"
    SMS = "sms"
    PHONE = "phone"


class AuditAction(str, Enum):
    STATE_CHANGE = "state_change"
    APPROVAL_QUEUED = "approval_queued"
    APPROVAL_APPROVED = "approval_approved"
    APPROVAL_REJECTED = "approval_rejected"
    APPROVAL_EXPIRED = "approval_expired"
    LISTING_DISCOVERED = "listing_discovered"
    ANALYSIS_RECORDED = "analysis_recorded"
    MESSAGE_RECEIVED = "message_received"
    MESSAGE_SENT = "message_sent"
    VEHICLE_HISTORY_RECEIVED = "vehicle_history_received"
    PRICE_NEGOTIATED = "price_negotiated"
    COST_CALCULATED = "cost_calculated"
