# Overview: Listing lifecycle state machine; validates and applies status transitions.

"""
Listing Lifecycle State Machine

================================================================================
PURPOSE: The only path by which Listing.status changes after creation
================================================================================

HAPPY PATH:
    discovered -> analyzed -> contacted -> awaiting_response -> negotiating
        -> viewing_scheduled -> inspected -> offer_made -> purchased

RULES:
1. TRANSITIONS below is the single declared edge set; all validation derives from it.
2. Every non-terminal state may move to rejected or withdrawn.
3. No edge ever targets discovered.
4. Terminal states (purchased, rejected, withdrawn) have no outgoing edges.
5. analyzed_at / contacted_at are stamped on first arrival only (set-if-null).
6. Every successful transition appends exactly one state_change audit entry
   in the same DB transaction.

INVALID REQUESTS ARE NOT ERRORS:
    A well-formed request for a disallowed edge returns a TransitionResult with
    ok=False and the allowed next states. Nothing is written. Malformed input
    (unknown state name) raises ValidationError.

CONCURRENCY:
    The status write is a conditional UPDATE ... WHERE status = <observed>.
    If another caller moved the listing first, zero rows change; we re-read the
    new state and re-validate against it, so the loser of a race is judged by
    the post-transition state and never double-applies.
================================================================================
"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

from sqlalchemy import func, select

from ..models import AuditAction, Listing, ListingState, TERMINAL_STATES, TriggeredBy
from ..models.types import json_object
from ..time_utils import utcnow
from ..validation import coerce_enum, coerce_int
from .audit_service import AuditTrail
from .concurrency import compare_and_set, lock_for_update


S = ListingState

TRANSITIONS: dict[ListingState, tuple[ListingState, ...]] = {
    S.DISCOVERED: (S.ANALYZED, S.REJECTED, S.WITHDRAWN),
    S.ANALYZED: (S.CONTACTED, S.REJECTED, S.WITHDRAWN),
    S.CONTACTED: (S.AWAITING_RESPONSE, S.REJECTED, S.WITHDRAWN),
    S.AWAITING_RESPONSE: (S.NEGOTIATING, S.REJECTED, S.WITHDRAWN),
    S.NEGOTIATING: (S.VIEWING_SCHEDULED, S.OFFER_MADE, S.REJECTED, S.WITHDRAWN),
    S.VIEWING_SCHEDULED: (S.INSPECTED, S.REJECTED, S.WITHDRAWN),
    S.INSPECTED: (S.OFFER_MADE, S.REJECTED, S.WITHDRAWN),
    # Seller counters after our offer -> back to negotiating
    S.OFFER_MADE: (S.PURCHASED, S.NEGOTIATING, S.REJECTED, S.WITHDRAWN),
    S.PURCHASED: (),
    S.REJECTED: (),
    S.WITHDRAWN: (),
}

STATE_DESCRIPTIONS: dict[ListingState, str] = {
    S.DISCOVERED: "Found on a listing site, not yet analyzed",
    S.ANALYZED: "Analysis complete, ready for outreach",
    S.CONTACTED: "Initial message sent to the seller",
    S.AWAITING_RESPONSE: "Waiting for the seller to reply",
    S.NEGOTIATING: "Seller replied; price discussion in progress",
    S.VIEWING_SCHEDULED: "In-person viewing or test drive booked",
    S.INSPECTED: "Vehicle seen and inspected",
    S.OFFER_MADE: "Formal offer submitted",
    S.PURCHASED: "Deal closed",
    S.REJECTED: "Ruled out",
    S.WITHDRAWN: "Buyer walked away",
}

# Stamped on first arrival only
_ARRIVAL_STAMPS = {
    S.ANALYZED: "analyzed_at",
    S.CONTACTED: "contacted_at",
}


def _check_edge_table() -> None:
    missing = [state.value for state in ListingState if state not in TRANSITIONS]
    if missing:
        raise RuntimeError(f"State machine has no edge entry for: {', '.join(missing)}")
    undescribed = [state.value for state in ListingState if state not in STATE_DESCRIPTIONS]
    if undescribed:
        raise RuntimeError(f"State machine has no description for: {', '.join(undescribed)}")
    for state, targets in TRANSITIONS.items():
        if S.DISCOVERED in targets:
            raise RuntimeError(f"Edge {state.value} -> discovered is forbidden")
        if state in TERMINAL_STATES and targets:
            raise RuntimeError(f"Terminal state {state.value} cannot have outgoing edges")
        if state not in TERMINAL_STATES and not {S.REJECTED, S.WITHDRAWN} <= set(targets):
            raise RuntimeError(f"{state.value} must allow rejected and withdrawn")


_check_edge_table()


def allowed_next(state: ListingState | str) -> tuple[ListingState, ...]:
    return TRANSITIONS[coerce_enum(ListingState, state, "state")]


def can_transition(from_state: ListingState | str, to_state: ListingState | str) -> bool:
    """Self-transitions are not edges and are rejected like any other missing edge."""
    return coerce_enum(ListingState, to_state, "state") in allowed_next(from_state)


def state_description(state: ListingState | str) -> str:
    return STATE_DESCRIPTIONS[coerce_enum(ListingState, state, "state")]


def shortest_path(from_state: ListingState, to_state: ListingState) -> Optional[list[ListingState]]:
    """
    BFS over TRANSITIONS. Returns the hops after from_state (to_state last),
    [] when already there, or None when unreachable. Terminal states are never
    intermediate hops because they have no outgoing edges.
    """
    if from_state == to_state:
        return []
    previous: dict[ListingState, ListingState] = {}
    queue = deque([from_state])
    while queue:
        state = queue.popleft()
        for nxt in TRANSITIONS[state]:
            if nxt in previous or nxt == from_state:
                continue
            previous[nxt] = state
            if nxt == to_state:
                path = [nxt]
                while path[-1] in previous and previous[path[-1]] != from_state:
                    path.append(previous[path[-1]])
                return list(reversed(path))
            queue.append(nxt)
    return None


def describe_rejection(from_state: ListingState, to_state: ListingState) -> str:
    allowed = TRANSITIONS[from_state]
    if not allowed:
        return (
            f"Cannot move from '{from_state.value}' to '{to_state.value}'; "
            f"'{from_state.value}' is a terminal state"
        )
    return (
        f"Cannot move from '{from_state.value}' to '{to_state.value}'; "
        f"allowed: {', '.join(s.value for s in allowed)}"
    )


class TransitionOutcome(str, Enum):
    OK = "ok"
    NOT_FOUND = "not_found"
    INVALID_TRANSITION = "invalid_transition"


@dataclass(frozen=True)
class TransitionResult:
    ok: bool
    listing_id: int
    from_state: Optional[ListingState]
    to_state: ListingState
    allowed: tuple[ListingState, ...] = ()
    error: Optional[str] = None
    code: TransitionOutcome = TransitionOutcome.OK
    path: tuple[ListingState, ...] = field(default_factory=tuple)
    audit_ids: tuple[int, ...] = field(default_factory=tuple)

    def to_dict(self) -> dict:
        return {
            "ok": self.ok,
            "code": self.code.value,
            "listing_id": self.listing_id,
            "from_state": self.from_state.value if self.from_state else None,
            "to_state": self.to_state.value,
            "allowed": [s.value for s in self.allowed],
            "path": [s.value for s in self.path],
            "error": self.error,
        }


class ListingStateMachine:
    def __init__(self, session, *, audit: Optional[AuditTrail] = None, clock=utcnow):
        self.session = session
        self.clock = clock
        self.audit = audit or AuditTrail(session, clock=clock)

    def current_state(self, listing_id: int) -> Optional[ListingState]:
        stmt = lock_for_update(select(Listing.status).where(Listing.id == listing_id))
        return self.session.execute(stmt).scalar_one_or_none()

    def transition(
        self,
        listing_id: int,
        target: ListingState | str,
        *,
        triggered_by: TriggeredBy | str = TriggeredBy.SYSTEM,
        reasoning: Optional[str] = None,
        context: Optional[dict[str, Any]] = None,
        commit: bool = True,
    ) -> TransitionResult:
        """
        Move one listing along one edge.

        commit=True ends the transaction either way (commit on success,
        rollback on rejection). commit=False leaves both to the caller so the
        transition can share a transaction with other writes.
        """
        listing_id = coerce_int(listing_id, "listing_id")
        target = coerce_enum(ListingState, target, "state")
        triggered_by = coerce_enum(TriggeredBy, triggered_by, "triggered_by")
        context = json_object(context, "context")

        try:
            result = self._apply(listing_id, target, triggered_by, reasoning, context)
            if commit:
                if result.ok:
                    self.session.commit()
                else:
                    self.session.rollback()
        except Exception:
            # Never leave a status write behind without its audit entry
            self.session.rollback()
            raise
        return result

    def transition_path(
        self,
        listing_id: int,
        target: ListingState | str,
        *,
        triggered_by: TriggeredBy | str = TriggeredBy.SYSTEM,
        reasoning: Optional[str] = None,
        context: Optional[dict[str, Any]] = None,
        commit: bool = True,
    ) -> TransitionResult:
        """
        Walk the shortest forward path to `target`, one audited hop at a time.

        Used when an observed event implies several steps, e.g. a seller reply
        arriving while the listing is still `contacted`. All hops share one
        transaction: if any hop is refused (a concurrent caller moved the
        listing mid-walk) none of them stick. Asking for the current state is
        refused like any other self-transition.
        """
        listing_id = coerce_int(listing_id, "listing_id")
        target = coerce_enum(ListingState, target, "state")
        triggered_by = coerce_enum(TriggeredBy, triggered_by, "triggered_by")
        context = json_object(context, "context")

        try:
            start = self.current_state(listing_id)
            if start is None:
                return self._not_found(listing_id, target)

            if start == target:
                return TransitionResult(
                    ok=False,
                    listing_id=listing_id,
                    from_state=start,
                    to_state=target,
                    allowed=TRANSITIONS[start],
                    error=describe_rejection(start, target),
                    code=TransitionOutcome.INVALID_TRANSITION,
                )

            path = shortest_path(start, target)
            if path is None:
                return TransitionResult(
                    ok=False,
                    listing_id=listing_id,
                    from_state=start,
                    to_state=target,
                    allowed=TRANSITIONS[start],
                    error=f"No path from '{start.value}' to '{target.value}'",
                    code=TransitionOutcome.INVALID_TRANSITION,
                )

            audit_ids: list[int] = []
            for hop in path:
                result = self._apply(listing_id, hop, triggered_by, reasoning, context)
                if not result.ok:
                    if commit:
                        self.session.rollback()
                    return result
                audit_ids.extend(result.audit_ids)

            if commit:
                self.session.commit()
        except Exception:
            # Never leave a status write behind without its audit entry
            self.session.rollback()
            raise

        return TransitionResult(
            ok=True,
            listing_id=listing_id,
            from_state=start,
            to_state=target,
            allowed=TRANSITIONS[target],
            path=tuple(path),
            audit_ids=tuple(audit_ids),
        )

    # ------------------------------------------------------------------

    def _not_found(self, listing_id: int, target: ListingState) -> TransitionResult:
        return TransitionResult(
            ok=False,
            listing_id=listing_id,
            from_state=None,
            to_state=target,
            error=f"Listing {listing_id} not found",
            code=TransitionOutcome.NOT_FOUND,
        )

    def _apply(self, listing_id, target, triggered_by, reasoning, context) -> TransitionResult:
        now = self.clock()
        current = self.current_state(listing_id)

        while True:
            if current is None:
                return self._not_found(listing_id, target)
            if not can_transition(current, target):
                return TransitionResult(
                    ok=False,
                    listing_id=listing_id,
                    from_state=current,
                    to_state=target,
                    allowed=TRANSITIONS[current],
                    error=describe_rejection(current, target),
                    code=TransitionOutcome.INVALID_TRANSITION,
                )

            values: dict[str, Any] = {"status": target, "updated_at": now}
            stamp = _ARRIVAL_STAMPS.get(target)
            if stamp:
                values[stamp] = func.coalesce(getattr(Listing, stamp), now)

            if compare_and_set(self.session, Listing, listing_id, Listing.status, current, **values):
                break
            # Lost the race: judge the request against whatever state won
            current = self.current_state(listing_id)

        audit_id = self.audit.append(
            action=AuditAction.STATE_CHANGE,
            listing_id=listing_id,
            from_state=current,
            to_state=target,
            description=f"Status changed from {current.value} to {target.value}",
            reasoning=reasoning,
            context=context,
            triggered_by=triggered_by,
        )
        return TransitionResult(
            ok=True,
            listing_id=listing_id,
            from_state=current,
            to_state=target,
            allowed=TRANSITIONS[target],
            path=(target,),
            audit_ids=(audit_id,),
        )
