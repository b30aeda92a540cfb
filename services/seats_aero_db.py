"""
services/seats_aero_db.py

Persistence for the seats.aero cache:
- search request rows (natural key: origin, destination, start, end) and their pagination state
- idempotent bulk upsert of availability trips keyed on the API trip id
- read helper for cached trips
"""

import re
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional

from pydantic import ValidationError
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.orm import Session

from models import SeatsAeroAvailabilityTrip, SeatsAeroSearchRequest, _new_id
from schemas.seats_aero import AvailabilityTrip, SearchRequestKey


TERMINAL_SEARCH_STATUSES = ("completed", "failed")

# Cabin strings seen in API payloads, mapped to the stored cabin_class
CABIN_CLASS_ALIASES = {
    "economy": "economy",
    "y": "economy",
    "premium_economy": "premium_economy",
    "premium": "premium_economy",
    "w": "premium_economy",
    "business": "business",
    "j": "business",
    "first": "first",
    "f": "first",
}

_FLIGHT_NUMBER_RE = re.compile(r"^([A-Z0-9]{2})(\d+)$")


# =====================================================================
# SECTION: SEARCH REQUEST STORE
# =====================================================================

def _key_filter(query, key: SearchRequestKey):
    return query.filter(
        SeatsAeroSearchRequest.origin_airport == key.originAirport,
        SeatsAeroSearchRequest.destination_airport == key.destinationAirport,
        SeatsAeroSearchRequest.search_start_date == key.searchStartDate,
        SeatsAeroSearchRequest.search_end_date == key.searchEndDate,
    )


def get_search_request(db: Session, key: SearchRequestKey) -> Optional[SeatsAeroSearchRequest]:
    """Latest search request for the key, whatever its status."""
    return (
        _key_filter(db.query(SeatsAeroSearchRequest), key)
        .order_by(SeatsAeroSearchRequest.created_at.desc())
        .first()
    )


def get_search_request_by_id(db: Session, request_id: str) -> Optional[SeatsAeroSearchRequest]:
    return db.query(SeatsAeroSearchRequest).filter(SeatsAeroSearchRequest.id == request_id).first()


def create_search_request(db: Session, key: SearchRequestKey) -> SeatsAeroSearchRequest:
    now = datetime.utcnow()
    row = SeatsAeroSearchRequest(
        origin_airport=key.originAirport,
        destination_airport=key.destinationAirport,
        search_start_date=key.searchStartDate,
        search_end_date=key.searchEndDate,
        status="pending",
        processed_count=0,
        created_at=now,
        updated_at=now,
    )
    db.add(row)
    db.commit()
    db.refresh(row)
    print(
        f"[seats_aero] search request created id={row.id} "
        f"route={key.originAirport}-{key.destinationAirport} "
        f"window={key.searchStartDate}..{key.searchEndDate}"
    )
    return row


def get_or_create_search_request(db: Session, key: SearchRequestKey) -> SeatsAeroSearchRequest:
    """
    Reuse the latest non-terminal request for the key.
    A completed or failed request is never resumed, a fresh row is created instead.
    """
    existing = (
        _key_filter(db.query(SeatsAeroSearchRequest), key)
        .filter(SeatsAeroSearchRequest.status.notin_(TERMINAL_SEARCH_STATUSES))
        .order_by(SeatsAeroSearchRequest.created_at.desc())
        .first()
    )
    if existing:
        return existing
    return create_search_request(db, key)


def mark_search_request_processing(db: Session, request_id: str) -> None:
    now = datetime.utcnow()
    (
        db.query(SeatsAeroSearchRequest)
        .filter(
            SeatsAeroSearchRequest.id == request_id,
            SeatsAeroSearchRequest.status == "pending",
        )
        .update({"status": "processing", "updated_at": now}, synchronize_session=False)
    )
    db.commit()


def update_search_request_progress(
    db: Session,
    request_id: str,
    cursor: Optional[int],
    has_more: bool,
    processed_count: int,
) -> None:
    """
    Persist pagination state after a page.
    cursor is written only while the stored value is unset, processed_count never goes backwards.
    """
    row = get_search_request_by_id(db, request_id)
    if row is None:
        raise ValueError(f"Search request not found: {request_id}")

    if row.cursor is None and cursor is not None:
        row.cursor = cursor

    row.has_more = bool(has_more)
    row.processed_count = max(int(row.processed_count or 0), int(processed_count))
    row.updated_at = datetime.utcnow()
    db.commit()


def complete_search_request(db: Session, request_id: str) -> None:
    now = datetime.utcnow()
    (
        db.query(SeatsAeroSearchRequest)
        .filter(
            SeatsAeroSearchRequest.id == request_id,
            SeatsAeroSearchRequest.status.notin_(TERMINAL_SEARCH_STATUSES),
        )
        .update(
            {
                "status": "completed",
                "has_more": False,
                "completed_at": now,
                "updated_at": now,
            },
            synchronize_session=False,
        )
    )
    db.commit()


def fail_search_request(db: Session, request_id: str, error_message: str) -> None:
    now = datetime.utcnow()
    updated = (
        db.query(SeatsAeroSearchRequest)
        .filter(
            SeatsAeroSearchRequest.id == request_id,
            SeatsAeroSearchRequest.status.notin_(TERMINAL_SEARCH_STATUSES),
        )
        .update(
            {
                "status": "failed",
                "error_message": error_message,
                "completed_at": now,
                "updated_at": now,
            },
            synchronize_session=False,
        )
    )
    db.commit()
    print(f"[seats_aero] search request failed id={request_id} updated={updated} error={error_message}")


# =====================================================================
# SECTION: ROW MAPPING
# =====================================================================

def parse_flight_numbers(flight_numbers: str) -> List[str]:
    """'UA2076, F91234' -> ['UA 2076', 'F9 1234']"""
    out: List[str] = []
    for part in (flight_numbers or "").split(","):
        part = part.strip()
        if not part:
            continue
        out.append(_FLIGHT_NUMBER_RE.sub(r"\1 \2", part))
    return out


def normalize_cabin_class(cabin: Optional[str]) -> str:
    return CABIN_CLASS_ALIASES.get((cabin or "").strip().lower(), "economy")


def format_taxes(value: float) -> str:
    # 56.1 -> "56.1", 5600.0 -> "5600"
    return format(Decimal(str(value)).normalize(), "f")


def _trip_to_row(search_request_id: str, trip: AvailabilityTrip, raw: Dict[str, Any], now: datetime) -> Dict[str, Any]:
    return {
        "id": _new_id(),
        "search_request_id": search_request_id,
        "api_trip_id": trip.ID,
        "api_route_id": trip.RouteID or None,
        "api_availability_id": trip.AvailabilityID or None,
        "origin_airport": trip.OriginAirport.upper(),
        "destination_airport": trip.DestinationAirport.upper(),
        "travel_date": datetime.fromisoformat(trip.DepartsAt[:10]).date(),
        "flight_numbers": parse_flight_numbers(trip.FlightNumbers),
        "carriers": trip.Carriers,
        "aircraft_types": trip.Aircraft,
        "departure_time": trip.DepartsAt,
        "arrival_time": trip.ArrivesAt,
        "duration_minutes": trip.TotalDuration,
        "stops": trip.Stops,
        "total_distance_miles": trip.TotalSegmentDistance,
        "cabin_class": normalize_cabin_class(trip.Cabin),
        "mileage_cost": trip.MileageCost,
        "remaining_seats": trip.RemainingSeats,
        "total_taxes": format_taxes(trip.TotalTaxes),
        "taxes_currency": trip.TaxesCurrency or None,
        "taxes_currency_symbol": trip.TaxesCurrencySymbol or None,
        "source": trip.Source,
        "api_created_at": trip.CreatedAt,
        "api_updated_at": trip.UpdatedAt,
        "raw_data": raw,
        "created_at": now,
        "updated_at": now,
    }


def _insert_for(db: Session):
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        return pg_insert
    if dialect == "sqlite":
        return sqlite_insert
    raise RuntimeError(f"Unsupported database dialect for upsert: {dialect}")


# =====================================================================
# SECTION: UPSERT
# =====================================================================

# Columns kept from the first insert on conflict
_PRESERVED_ON_CONFLICT = ("id", "api_trip_id", "created_at")


def upsert_availability_trips(db: Session, search_request_id: str, trips: Iterable[Any]) -> int:
    """
    Validate, map and bulk upsert raw trip records in one statement.
    Invalid records are skipped. Returns the number of rows written.
    """
    now = datetime.utcnow()
    rows_by_trip_id: Dict[str, Dict[str, Any]] = {}
    skipped = 0

    for raw in trips:
        try:
            trip = AvailabilityTrip.model_validate(raw)
        except (ValidationError, ValueError) as e:
            skipped += 1
            trip_id = raw.get("ID") if isinstance(raw, dict) else None
            print(f"[seats_aero] skipping invalid trip search_request_id={search_request_id} trip_id={trip_id} error={e}")
            continue

        # One statement cannot touch the same conflict key twice, keep the last occurrence
        rows_by_trip_id[trip.ID] = _trip_to_row(search_request_id, trip, raw, now)

    rows = list(rows_by_trip_id.values())
    if not rows:
        if skipped:
            print(f"[seats_aero] upsert no-op search_request_id={search_request_id} skipped={skipped}")
        return 0

    insert = _insert_for(db)
    stmt = insert(SeatsAeroAvailabilityTrip).values(rows)
    update_cols = {
        col.name: stmt.excluded[col.name]
        for col in SeatsAeroAvailabilityTrip.__table__.columns
        if col.name not in _PRESERVED_ON_CONFLICT
    }
    stmt = stmt.on_conflict_do_update(index_elements=["api_trip_id"], set_=update_cols)

    db.execute(stmt)
    db.commit()

    print(f"[seats_aero] upserted trips search_request_id={search_request_id} rows={len(rows)} skipped={skipped}")
    return len(rows)


# =====================================================================
# SECTION: READS
# =====================================================================

def get_availability_trips(
    db: Session,
    key: SearchRequestKey,
    cabin_class: Optional[str] = None,
) -> List[SeatsAeroAvailabilityTrip]:
    q = db.query(SeatsAeroAvailabilityTrip).filter(
        SeatsAeroAvailabilityTrip.origin_airport == key.originAirport,
        SeatsAeroAvailabilityTrip.destination_airport == key.destinationAirport,
        SeatsAeroAvailabilityTrip.travel_date >= key.searchStartDate,
        SeatsAeroAvailabilityTrip.travel_date <= key.searchEndDate,
    )
    if cabin_class:
        q = q.filter(SeatsAeroAvailabilityTrip.cabin_class == normalize_cabin_class(cabin_class))

    return (
        q.order_by(
            SeatsAeroAvailabilityTrip.travel_date.asc(),
            SeatsAeroAvailabilityTrip.mileage_cost.asc(),
        )
        .all()
    )
