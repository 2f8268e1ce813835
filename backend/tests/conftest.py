"""
Pytest fixtures for the carsearch backend tests.

Provides an in-memory database, a per-test table wipe, a controllable clock
and a listing factory that only ever reaches a state through the state machine.
"""

from datetime import datetime, timedelta
from itertools import count

import pytest

from carsearch import create_app
from carsearch.extensions import db
from carsearch.models.enums import ListingState
from carsearch.services.listing_service import ListingService
from carsearch.services.state_machine import ListingStateMachine


class FrozenClock:
    """Callable clock for services; advance() moves it forward."""

    def __init__(self, start=None):
        self.now = start or datetime(2026, 3, 2, 15, 0, 0)

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'BUYER_BUDGET': 18000,
        'TAX_RATE': '0.13',
        'CHECKPOINTS_ENABLED': True,
        'OFFER_APPROVAL_THRESHOLD': 15000,
        'VIEWING_REQUIRES_APPROVAL': True,
        'MAX_AUTO_FOLLOWUPS': 2,
        'PORTFOLIO_EXPOSURE_ALERT': 40000,
        'APPROVAL_TTL_HOURS': 48,
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Core deletes bypass the audit table's ORM guards
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        db.session.rollback()


@pytest.fixture(scope='function')
def clock():
    return FrozenClock()


_source_ids = count(1)


@pytest.fixture(scope='function')
def make_listing(db_session):
    """
    Factory: make_listing(status="negotiating", price=15000, ...).

    Non-initial states are reached by walking the real transition graph.
    """
    def _make(status=None, **overrides):
        n = next(_source_ids)
        bundle = {
            "source": "autotrader",
            "source_id": f"AT-{n:05d}",
            "source_url": f"https://www.autotrader.ca/a/{n}",
            "year": 2019,
            "make": "Dodge",
            "model": "Grand Caravan",
            "trim": "GT",
            "mileage_km": 98000,
            "price": 15000,
            "seller_type": "dealer",
        }
        bundle.update(overrides)
        listing, _ = ListingService(db_session).ingest(bundle)
        if status is not None and ListingState(status) != listing.status:
            result = ListingStateMachine(db_session).transition_path(listing.id, status, reasoning="fixture")
            assert result.ok, result.error
        return db_session.get(type(listing), listing.id)

    return _make
