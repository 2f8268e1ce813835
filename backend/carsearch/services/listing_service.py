# Overview: Service-layer operations for listings; ingest, enrichment events and queries.

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any, Mapping, Optional

from sqlalchemy import func, or_, select
from sqlalchemy.exc import SQLAlchemyError

from ..models import (
    AuditAction,
    ConversationMessage,
    InfoStatus,
    Listing,
    ListingState,
    MessageChannel,
    MessageDirection,
    PriceObservation,
    SellerType,
    TriggeredBy,
)
from ..models.types import json_object
from ..time_utils import parse_timestamp, to_utc_z, utcnow
from ..validation import (
    NotFoundError,
    ValidationError,
    coerce_amount,
    coerce_enum,
    coerce_int,
    require_fields,
)
from .audit_service import AuditTrail
from .state_machine import ListingStateMachine

REQUIRED_ON_CREATE = ("source", "source_id", "source_url", "year", "make", "model")

# Updated by re-ingest when the incoming value is non-null
MERGE_FIELDS = (
    "vin", "trim", "mileage_km", "price", "seller_type", "seller_name", "seller_phone",
    "seller_email", "dealer_rating", "city", "province", "postal_code", "distance_km",
)

ORDERINGS = {
    "discovered": Listing.discovered_at.desc(),
    "score": Listing.score.desc(),
    "price": Listing.price.asc(),
    "mileage": Listing.mileage_km.asc(),
}

# Inbound replies in these states mean the seller is engaging
REPLY_ADVANCES_FROM = (ListingState.CONTACTED, ListingState.AWAITING_RESPONSE)
FOLLOW_UP_STATES = (ListingState.CONTACTED, ListingState.AWAITING_RESPONSE)


def _optional_int(data: Mapping[str, Any], name: str) -> Optional[int]:
    value = data.get(name)
    if value in (None, ""):
        return None
    return coerce_int(value, name)


def _optional_str(data: Mapping[str, Any], name: str) -> Optional[str]:
    value = data.get(name)
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def normalize_bundle(data: Mapping[str, Any]) -> dict[str, Any]:
    """Coerce an ingest bundle into column values. Absent keys come back as None."""
    if not isinstance(data, Mapping):
        raise ValidationError("listing bundle must be a JSON object")

    rating = data.get("dealer_rating")
    if rating in (None, ""):
        rating = None
    else:
        try:
            rating = float(rating)
        except (TypeError, ValueError):
            raise ValidationError("dealer_rating must be a number")

    seller_type = data.get("seller_type")
    return {
        "source": _optional_str(data, "source"),
        "source_id": _optional_str(data, "source_id"),
        "source_url": _optional_str(data, "source_url"),
        "vin": _optional_str(data, "vin"),
        "year": _optional_int(data, "year"),
        "make": _optional_str(data, "make"),
        "model": _optional_str(data, "model"),
        "trim": _optional_str(data, "trim"),
        "mileage_km": _optional_int(data, "mileage_km"),
        "price": coerce_amount(data.get("price"), "price", allow_none=True),
        "seller_type": None if seller_type in (None, "") else coerce_enum(SellerType, seller_type, "seller_type"),
        "seller_name": _optional_str(data, "seller_name"),
        "seller_phone": _optional_str(data, "seller_phone"),
        "seller_email": _optional_str(data, "seller_email"),
        "dealer_rating": rating,
        "city": _optional_str(data, "city"),
        "province": _optional_str(data, "province"),
        "postal_code": _optional_str(data, "postal_code"),
        "distance_km": _optional_int(data, "distance_km"),
        "description": _optional_str(data, "description"),
    }


def _later(current: Optional[datetime], stamp: datetime) -> datetime:
    return stamp if current is None or stamp > current else current


def _earlier(current: Optional[datetime], stamp: datetime) -> datetime:
    return stamp if current is None or stamp < current else current


def parse_message(data: Mapping[str, Any], *, default_timestamp: datetime) -> ConversationMessage:
    if not isinstance(data, Mapping):
        raise ValidationError("message must be a JSON object")
    body = data.get("body")
    if not isinstance(body, str) or not body.strip():
        raise ValidationError("body is required")
    timestamp = parse_timestamp(data.get("timestamp"), "timestamp")
    attachments = data.get("attachments") or ()
    if not isinstance(attachments, (list, tuple)):
        raise ValidationError("attachments must be a list")
    return ConversationMessage(
        direction=coerce_enum(MessageDirection, data.get("direction"), "direction"),
        channel=coerce_enum(MessageChannel, data.get("channel", MessageChannel.EMAIL.value), "channel"),
        timestamp=timestamp or default_timestamp,
        body=body,
        subject=_optional_str(data, "subject"),
        attachments=tuple(str(name) for name in attachments),
    )


class ListingService:
    def __init__(self, session, *, clock=utcnow):
        self.session = session
        self.clock = clock
        self.audit = AuditTrail(session, clock=clock)
        self.machine = ListingStateMachine(session, audit=self.audit, clock=clock)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, listing_id: int) -> Optional[Listing]:
        return self.session.get(Listing, coerce_int(listing_id, "listing_id"))

    def require(self, listing_id: int) -> Listing:
        listing = self.get(listing_id)
        if listing is None:
            raise NotFoundError(f"Listing {listing_id} not found")
        return listing

    def list(
        self,
        *,
        status: ListingState | str | None = None,
        source: Optional[str] = None,
        min_score: Optional[float] = None,
        limit: int = 50,
        order_by: str = "discovered",
    ) -> list[Listing]:
        if order_by not in ORDERINGS:
            raise ValidationError(f"order_by must be one of: {', '.join(ORDERINGS)}")
        q = self.session.query(Listing)
        if status:
            q = q.filter(Listing.status == coerce_enum(ListingState, status, "status"))
        if source:
            q = q.filter(Listing.source == source)
        if min_score is not None:
            try:
                q = q.filter(Listing.score >= float(min_score))
            except (TypeError, ValueError):
                raise ValidationError("min_score must be a number")
        return q.order_by(ORDERINGS[order_by], Listing.id.desc()).limit(coerce_int(limit, "limit")).all()

    def stats(self) -> dict[str, Any]:
        by_status = {state.value: 0 for state in ListingState}
        for state, count in self.session.execute(
            select(Listing.status, func.count(Listing.id)).group_by(Listing.status)
        ).all():
            by_status[state.value] = count
        by_source = {
            source: count
            for source, count in self.session.execute(
                select(Listing.source, func.count(Listing.id)).group_by(Listing.source).order_by(Listing.source)
            ).all()
        }
        return {"total": sum(by_status.values()), "by_status": by_status, "by_source": by_source}

    def needing_follow_up(self, days: int = 2, now: Optional[datetime] = None) -> list[Listing]:
        """Contacted listings gone quiet: last outreach older than `days` with no reply since."""
        cutoff = (now or self.clock()) - timedelta(days=coerce_int(days, "days"))
        return (
            self.session.query(Listing)
            .filter(
                Listing.status.in_(FOLLOW_UP_STATES),
                Listing.last_contacted_at.isnot(None),
                Listing.last_contacted_at < cutoff,
                or_(
                    Listing.last_seller_response_at.is_(None),
                    Listing.last_seller_response_at < Listing.last_contacted_at,
                ),
            )
            .order_by(Listing.last_contacted_at.asc(), Listing.id.asc())
            .all()
        )

    def price_history(self, listing_id: int) -> list[PriceObservation]:
        listing = self.require(listing_id)
        return (
            self.session.query(PriceObservation)
            .filter(PriceObservation.listing_id == listing.id)
            .order_by(PriceObservation.recorded_at.desc(), PriceObservation.id.desc())
            .all()
        )

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def ingest(self, data: Mapping[str, Any]) -> tuple[Listing, bool]:
        """
        Upsert on (source, source_id).

        Existing rows: non-null incoming values replace, nulls never clear,
        description only grows, source_url always follows the latest sighting.
        A price change is appended to price history.
        """
        bundle = normalize_bundle(data)
        require_fields(bundle, ("source", "source_id"))
        now = self.clock()

        try:
            listing = (
                self.session.query(Listing)
                .filter(Listing.source == bundle["source"], Listing.source_id == bundle["source_id"])
                .one_or_none()
            )
            if listing is None:
                require_fields(bundle, REQUIRED_ON_CREATE)
                listing = Listing(
                    status=ListingState.DISCOVERED,
                    info_status=InfoStatus.PENDING,
                    discovered_at=now,
                    updated_at=now,
                    **bundle,
                )
                self.session.add(listing)
                self.session.flush()
                if listing.price is not None:
                    self.session.add(PriceObservation(listing_id=listing.id, price=listing.price, recorded_at=now))
                self.audit.append(
                    action=AuditAction.LISTING_DISCOVERED,
                    listing_id=listing.id,
                    to_state=ListingState.DISCOVERED,
                    description=f"Discovered {listing.vehicle} on {listing.source}",
                    context={"source_url": listing.source_url},
                )
                created = True
            else:
                self._merge(listing, bundle, now)
                created = False
            self.session.commit()
        except SQLAlchemyError:
            self.session.rollback()
            raise
        return listing, created

    def _merge(self, listing: Listing, bundle: dict[str, Any], now: datetime) -> None:
        if bundle["source_url"]:
            listing.source_url = bundle["source_url"]

        new_price = bundle["price"]
        if new_price is not None and new_price != listing.price:
            self.session.add(PriceObservation(listing_id=listing.id, price=new_price, recorded_at=now))

        for name in MERGE_FIELDS:
            value = bundle[name]
            if value is not None:
                setattr(listing, name, value)

        description = bundle["description"]
        if description and len(description) > len(listing.description or ""):
            listing.description = description

    def _finish(self, listing: Listing) -> Listing:
        try:
            self.session.commit()
        except SQLAlchemyError:
            self.session.rollback()
            raise
        return listing

    def record_analysis(
        self,
        listing_id: int,
        analysis: Mapping[str, Any],
        *,
        triggered_by: TriggeredBy | str = TriggeredBy.CLAUDE,
    ) -> Listing:
        """Store the analysis verbatim, lift out score / red_flags, and move discovered -> analyzed."""
        analysis = json_object(analysis, "analysis")
        if analysis is None:
            raise ValidationError("analysis is required")
        listing = self.require(listing_id)

        score = analysis.get("score")
        if score is not None:
            try:
                score = float(score)
            except (TypeError, ValueError):
                raise ValidationError("analysis.score must be a number")
        red_flags = analysis.get("red_flags") or analysis.get("redFlags") or []
        if not isinstance(red_flags, list):
            raise ValidationError("analysis.red_flags must be a list")

        try:
            listing.ai_analysis = dict(analysis)
            listing.score = score
            listing.red_flags = [str(flag) for flag in red_flags]
            self.audit.append(
                action=AuditAction.ANALYSIS_RECORDED,
                listing_id=listing.id,
                description=f"Analysis recorded (score {score if score is not None else 'n/a'})",
                reasoning=analysis.get("summary"),
                context={"red_flags": len(red_flags)},
                triggered_by=triggered_by,
            )
            if listing.status == ListingState.DISCOVERED:
                self.machine.transition(
                    listing.id,
                    ListingState.ANALYZED,
                    triggered_by=triggered_by,
                    reasoning="Analysis completed",
                    commit=False,
                )
        except SQLAlchemyError:
            self.session.rollback()
            raise
        return self._finish(listing)

    def record_message(
        self,
        listing_id: int,
        data: Mapping[str, Any],
        *,
        triggered_by: TriggeredBy | str = TriggeredBy.SYSTEM,
    ) -> Listing:
        """
        Append to the conversation and stamp the contact timestamps.

        An inbound reply while contacted/awaiting_response walks the listing to
        negotiating. An outbound message while analyzed moves it to contacted.
        If that walk is refused (someone moved the listing concurrently) the
        message is still recorded and the state is left as the winner set it.
        """
        now = self.clock()
        message = parse_message(data, default_timestamp=now)
        listing = self.require(listing_id)
        inbound = message.direction == MessageDirection.INBOUND

        target = None
        if inbound and listing.status in REPLY_ADVANCES_FROM:
            target = ListingState.NEGOTIATING
        elif not inbound and listing.status == ListingState.ANALYZED:
            target = ListingState.CONTACTED

        try:
            if target is not None:
                moved = self.machine.transition_path(
                    listing.id,
                    target,
                    triggered_by=triggered_by,
                    reasoning="Seller replied" if inbound else "Outreach sent",
                    context={"channel": message.channel.value},
                    commit=False,
                )
                if not moved.ok:
                    self.session.rollback()
                    listing = self.require(listing_id)

            listing.conversation = [*(listing.conversation or []), message]
            # Back-filled messages never move a stamp backwards
            stamp = message.timestamp
            if inbound:
                listing.first_response_at = _earlier(listing.first_response_at, stamp)
                listing.last_seller_response_at = _later(listing.last_seller_response_at, stamp)
            else:
                listing.last_our_response_at = _later(listing.last_our_response_at, stamp)
                listing.last_contacted_at = _later(listing.last_contacted_at, stamp)
                listing.contact_attempts = (listing.contact_attempts or 0) + 1

            self.audit.append(
                action=AuditAction.MESSAGE_RECEIVED if inbound else AuditAction.MESSAGE_SENT,
                listing_id=listing.id,
                description=(
                    f"{'Received' if inbound else 'Sent'} {message.channel.value}"
                    + (f": {message.subject}" if message.subject else "")
                ),
                context={"channel": message.channel.value, "timestamp": to_utc_z(message.timestamp)},
                triggered_by=triggered_by,
            )
        except SQLAlchemyError:
            self.session.rollback()
            raise
        return self._finish(listing)

    def record_vehicle_history(
        self,
        listing_id: int,
        report: Mapping[str, Any],
        *,
        triggered_by: TriggeredBy | str = TriggeredBy.SYSTEM,
    ) -> Listing:
        if not isinstance(report, Mapping):
            raise ValidationError("vehicle history must be a JSON object")
        accidents = _optional_int(report, "accident_count")
        owners = _optional_int(report, "owner_count")
        services = _optional_int(report, "service_record_count")
        for name, value in (("accident_count", accidents), ("owner_count", owners), ("service_record_count", services)):
            if value is not None and value < 0:
                raise ValidationError(f"{name} cannot be negative")
        listing = self.require(listing_id)

        try:
            listing.carfax_received = True
            listing.accident_count = accidents
            listing.owner_count = owners
            listing.service_record_count = services
            listing.carfax_summary = _optional_str(report, "summary")
            listing.info_status = InfoStatus.CARFAX_RECEIVED
            self.audit.append(
                action=AuditAction.VEHICLE_HISTORY_RECEIVED,
                listing_id=listing.id,
                description=(
                    "Vehicle history received "
                    f"({accidents if accidents is not None else 'unknown'} accidents, "
                    f"{owners if owners is not None else 'unknown'} owners)"
                ),
                triggered_by=triggered_by,
            )
        except SQLAlchemyError:
            self.session.rollback()
            raise
        return self._finish(listing)

    def record_negotiated_price(
        self,
        listing_id: int,
        price: int,
        *,
        triggered_by: TriggeredBy | str = TriggeredBy.USER,
    ) -> Listing:
        price = coerce_amount(price, "negotiated_price")
        listing = self.require(listing_id)
        try:
            previous = listing.negotiated_price
            listing.negotiated_price = price
            listing.price_negotiated = True
            self.audit.append(
                action=AuditAction.PRICE_NEGOTIATED,
                listing_id=listing.id,
                description=f"Negotiated price ${price:,}",
                context={"previous": previous, "asking": listing.price},
                triggered_by=triggered_by,
            )
        except SQLAlchemyError:
            self.session.rollback()
            raise
        return self._finish(listing)

    def set_info_status(self, listing_id: int, info_status: InfoStatus | str) -> Listing:
        """Secondary progress flag; never checked against the lifecycle graph."""
        info_status = coerce_enum(InfoStatus, info_status, "info_status")
        listing = self.require(listing_id)
        listing.info_status = info_status
        return self._finish(listing)
