from __future__ import annotations

from sqlalchemy.orm import validates

from ..extensions import db
from ..time_utils import to_utc_z, utcnow
from .enums import InfoStatus, ListingState, SellerType
from .types import ConversationLog, StringList


def _enum_column(enum_cls, **kwargs):
    """Store enum *values* ("awaiting_response"), not member names."""
    return db.Column(
        db.Enum(
            enum_cls,
            native_enum=False,
            length=32,
            values_callable=lambda members: [m.value for m in members],
            validate_strings=True,
        ),
        **kwargs,
    )


class Listing(db.Model):
    """
    A purchase candidate discovered on a listing site.

    DEDUP: (source, source_id) is unique; ingest upserts on it.

    STATUS: only ListingState.DISCOVERED may be assigned through the ORM (on
    creation). Every later status write goes through ListingStateMachine, which
    uses a conditional UPDATE so the validity check and the write are atomic.
    """
    __tablename__ = "listings"
    __table_args__ = (
        db.UniqueConstraint("source", "source_id", name="uq_listings_source_source_id"),
        db.Index("ix_listings_status", "status"),
        db.Index("ix_listings_score", "score"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # Source
    source = db.Column(db.String(32), nullable=False, index=True)
    source_id = db.Column(db.String(128), nullable=False)
    source_url = db.Column(db.String(1024), nullable=False)

    # Vehicle
    vin = db.Column(db.String(17), nullable=True, index=True)
    year = db.Column(db.Integer, nullable=False)
    make = db.Column(db.String(64), nullable=False)
    model = db.Column(db.String(64), nullable=False)
    trim = db.Column(db.String(64), nullable=True)
    mileage_km = db.Column(db.Integer, nullable=True)
    price = db.Column(db.Integer, nullable=True)  # asking price, whole CAD

    # Seller
    seller_type = _enum_column(SellerType, nullable=True)
    seller_name = db.Column(db.String(255), nullable=True)
    seller_phone = db.Column(db.String(32), nullable=True)
    seller_email = db.Column(db.String(255), nullable=True)
    dealer_rating = db.Column(db.Float, nullable=True)

    # Location
    city = db.Column(db.String(128), nullable=True)
    province = db.Column(db.String(8), nullable=True)
    postal_code = db.Column(db.String(16), nullable=True)
    distance_km = db.Column(db.Integer, nullable=True)

    description = db.Column(db.Text, nullable=True)

    # Lifecycle
    status = _enum_column(ListingState, nullable=False, default=ListingState.DISCOVERED)
    info_status = _enum_column(InfoStatus, nullable=False, default=InfoStatus.PENDING)

    # Analysis (opaque to the engine apart from score / red_flags)
    score = db.Column(db.Float, nullable=True)
    red_flags = db.Column(StringList, nullable=True)
    ai_analysis = db.Column(db.JSON, nullable=True)

    # Vehicle history report
    carfax_received = db.Column(db.Boolean, nullable=False, default=False)
    accident_count = db.Column(db.Integer, nullable=True)
    owner_count = db.Column(db.Integer, nullable=True)
    service_record_count = db.Column(db.Integer, nullable=True)
    carfax_summary = db.Column(db.Text, nullable=True)

    # Communication
    last_contacted_at = db.Column(db.DateTime, nullable=True)
    contact_attempts = db.Column(db.Integer, nullable=False, default=0)
    first_response_at = db.Column(db.DateTime, nullable=True)
    last_seller_response_at = db.Column(db.DateTime, nullable=True)
    last_our_response_at = db.Column(db.DateTime, nullable=True)
    viewing_scheduled_for = db.Column(db.DateTime, nullable=True)
    conversation = db.Column(ConversationLog, nullable=False, default=lambda: [])

    # Negotiation / readiness
    readiness_score = db.Column(db.Integer, nullable=True)  # cache only, never read back by the scorer
    price_negotiated = db.Column(db.Boolean, nullable=False, default=False)
    negotiated_price = db.Column(db.Integer, nullable=True)

    notes = db.Column(db.Text, nullable=True)

    # Timestamps (set once, never cleared)
    discovered_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    analyzed_at = db.Column(db.DateTime, nullable=True)
    contacted_at = db.Column(db.DateTime, nullable=True)
    updated_at = db.Column(db.DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    cost_breakdown = db.relationship("CostBreakdown", uselist=False, back_populates="listing")

    @validates("status")
    def _guard_status(self, key, value):
        if value not in (ListingState.DISCOVERED, ListingState.DISCOVERED.value):
            raise ValueError(
                "Listing.status cannot be assigned directly; use ListingStateMachine.transition()"
            )
        return ListingState.DISCOVERED

    @property
    def vehicle(self) -> str:
        parts = [str(self.year), self.make, self.model]
        if self.trim:
            parts.append(self.trim)
        return " ".join(parts)

    def __repr__(self) -> str:
        return f"<Listing id={self.id} {self.vehicle!r} status={self.status}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "source": self.source,
            "source_id": self.source_id,
            "source_url": self.source_url,
            "vin": self.vin,
            "year": self.year,
            "make": self.make,
            "model": self.model,
            "trim": self.trim,
            "mileage_km": self.mileage_km,
            "price": self.price,
            "seller_type": self.seller_type.value if self.seller_type else None,
            "seller_name": self.seller_name,
            "seller_phone": self.seller_phone,
            "seller_email": self.seller_email,
            "dealer_rating": self.dealer_rating,
            "city": self.city,
            "province": self.province,
            "postal_code": self.postal_code,
            "distance_km": self.distance_km,
            "description": self.description,
            "status": self.status.value,
            "info_status": self.info_status.value,
            "score": self.score,
            "red_flags": self.red_flags or [],
            "carfax_received": self.carfax_received,
            "accident_count": self.accident_count,
            "owner_count": self.owner_count,
            "service_record_count": self.service_record_count,
            "carfax_summary": self.carfax_summary,
            "last_contacted_at": to_utc_z(self.last_contacted_at),
            "contact_attempts": self.contact_attempts,
            "first_response_at": to_utc_z(self.first_response_at),
            "last_seller_response_at": to_utc_z(self.last_seller_response_at),
            "last_our_response_at": to_utc_z(self.last_our_response_at),
            "viewing_scheduled_for": to_utc_z(self.viewing_scheduled_for),
            "conversation": [message.to_dict() for message in (self.conversation or [])],
            "readiness_score": self.readiness_score,
            "price_negotiated": self.price_negotiated,
            "negotiated_price": self.negotiated_price,
            "notes": self.notes,
            "discovered_at": to_utc_z(self.discovered_at),
            "analyzed_at": to_utc_z(self.analyzed_at),
            "contacted_at": to_utc_z(self.contacted_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class PriceObservation(db.Model):
    """Asking-price history. Append-only; one row per observed change."""
    __tablename__ = "price_history"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    listing_id = db.Column(db.Integer, db.ForeignKey("listings.id"), nullable=False, index=True)
    price = db.Column(db.Integer, nullable=False)
    recorded_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "listing_id": self.listing_id,
            "price": self.price,
            "recorded_at": to_utc_z(self.recorded_at),
        }
