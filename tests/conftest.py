"""Pytest configuration and shared fixtures."""

import os
import sys
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

import pytest

# In-memory database for every test run, must be set before db.py is imported
os.environ["DATABASE_URL"] = "sqlite://"

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))


@pytest.fixture
def db():
    import models  # noqa: F401
    from db import Base, SessionLocal, engine

    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def session_factory(db):
    from db import SessionLocal

    return SessionLocal


@pytest.fixture
def no_sleep():
    """Collects requested delays instead of sleeping."""
    delays: List[float] = []

    def _sleep(seconds: float) -> None:
        delays.append(seconds)

    _sleep.delays = delays
    return _sleep


# ── Factories ────────────────────────────────────────────────────────


def make_user(db, external_id: str = "user-1", email: Optional[str] = "traveler@example.com"):
    from models import AppUser

    user = AppUser(external_id=external_id, email=email)
    db.add(user)
    db.commit()
    return user


def make_alert(db, user_id: str = "user-1", **overrides):
    from models import Alert

    values: Dict[str, Any] = {
        "user_id": user_id,
        "alert_type": "daily",
        "status": "active",
        "origin": "SFO",
        "destination": "NRT",
        "date_from": datetime(2025, 10, 15).date(),
        "date_to": None,
        "cabin": "ECONOMY",
        "stops": "ANY",
        "airlines": None,
        "max_price": None,
        "alert_end": None,
    }
    values.update(overrides)
    alert = Alert(**values)
    db.add(alert)
    db.commit()
    return alert


def make_flight(price: float = 500.0, **overrides):
    from schemas.search import FlightOption

    values: Dict[str, Any] = {
        "airline": "United",
        "airlineCode": "UA",
        "airlineCodes": ["UA"],
        "price": price,
        "currency": "USD",
        "departureDate": "2025-10-15",
        "stops": 0,
        "origin": "SFO",
        "destination": "NRT",
    }
    values.update(overrides)
    return FlightOption(**values)


def make_trip(trip_id: str = "T1", **overrides) -> Dict[str, Any]:
    trip: Dict[str, Any] = {
        "ID": trip_id,
        "RouteID": "route-1",
        "AvailabilityID": "avail-1",
        "TotalDuration": 660,
        "Stops": 0,
        "Carriers": "UA",
        "RemainingSeats": 4,
        "MileageCost": 35000,
        "TotalTaxes": 56.1,
        "TaxesCurrency": "USD",
        "TaxesCurrencySymbol": "$",
        "TotalSegmentDistance": 5130,
        "OriginAirport": "SFO",
        "DestinationAirport": "NRT",
        "Aircraft": ["789"],
        "FlightNumbers": "UA837",
        "DepartsAt": "2025-10-15T11:25:00Z",
        "ArrivesAt": "2025-10-16T14:55:00Z",
        "Cabin": "economy",
        "CreatedAt": "2025-10-01T00:00:00Z",
        "UpdatedAt": "2025-10-01T00:00:00Z",
        "Source": "united",
    }
    trip.update(overrides)
    return trip


def make_search_request(db, origin="SFO", destination="NRT", start="2025-10-15", end="2025-10-22", **overrides):
    from models import SeatsAeroSearchRequest

    row = SeatsAeroSearchRequest(
        origin_airport=origin,
        destination_airport=destination,
        search_start_date=datetime.fromisoformat(start).date(),
        search_end_date=datetime.fromisoformat(end).date(),
        status=overrides.pop("status", "pending"),
        processed_count=overrides.pop("processed_count", 0),
        **overrides,
    )
    db.add(row)
    db.commit()
    return row


class FakeSeatsAeroClient:
    """Returns canned pages in order and records every call's keyword arguments."""

    def __init__(self, pages: List[Dict[str, Any]]):
        self.pages = list(pages)
        self.calls: List[Dict[str, Any]] = []

    def search(self, **kwargs):
        from schemas.seats_aero import SeatsAeroSearchResponse

        self.calls.append(kwargs)
        if not self.pages:
            raise AssertionError("No more pages configured")
        page = self.pages.pop(0)
        if isinstance(page, Exception):
            raise page
        return SeatsAeroSearchResponse.model_validate(page)


def seats_page(count: int, has_more: bool, cursor: Optional[int], trips: List[Dict[str, Any]]) -> Dict[str, Any]:
    return {
        "count": count,
        "hasMore": has_more,
        "cursor": cursor,
        "data": [{"AvailabilityTrips": trips}] if trips else [],
    }
