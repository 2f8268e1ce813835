from .enums import (
    ApprovalStatus,
    AuditAction,
    InfoStatus,
    ListingState,
    MessageChannel,
    MessageDirection,
    SellerType,
    TERMINAL_STATES,
    TriggeredBy,
)
from .types import ConversationMessage
from .listings import Listing, PriceObservation
from .audit import AuditEntry
from .approvals import ApprovalRequest
from .costs import CostBreakdown

__all__ = [
    'ApprovalStatus', 'AuditAction', 'InfoStatus', 'ListingState',
    'MessageChannel', 'MessageDirection', 'SellerType', 'TERMINAL_STATES', 'TriggeredBy',
    'ConversationMessage',
    'Listing', 'PriceObservation',
    'AuditEntry',
    'ApprovalRequest',
    'CostBreakdown',
]
