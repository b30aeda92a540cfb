"""
services/alert_flight_fetcher.py

Flight lookups for daily alerts:
- build_search_for_alert: translates an Alert row into a provider query
- filter_flights_for_alert: max price / airline allow-list / max stops
- fetch_flights_for_alerts: one provider call per alert, in parallel
"""

from concurrent.futures import ThreadPoolExecutor, as_completed
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Tuple

from config import FLIGHT_FETCH_WORKERS
from providers.flights import FlightSearchClient
from schemas.alerts import AlertWithFlights
from schemas.search import (
    MAX_STOPS_BY_FILTER,
    CabinClass,
    DateRange,
    FlightOption,
    FlightSearchFilters,
    PriceLimit,
    StopsFilter,
    TripType,
)


MAX_FLIGHTS_PER_ALERT = 5


# =====================================================================
# SECTION: QUERY BUILDING
# =====================================================================

def _cabin_for(alert: Any) -> CabinClass:
    try:
        return CabinClass((alert.cabin or "ECONOMY").upper())
    except ValueError:
        return CabinClass.ECONOMY


def _stops_for(alert: Any) -> StopsFilter:
    try:
        return StopsFilter((alert.stops or "ANY").upper())
    except ValueError:
        return StopsFilter.ANY


def _airlines_for(alert: Any) -> Optional[List[str]]:
    codes = [str(c).strip().upper() for c in (alert.airlines or []) if str(c).strip()]
    return codes or None


def build_search_for_alert(alert: Any, today: Optional[datetime] = None) -> Tuple[DateRange, FlightSearchFilters]:
    today_date = (today or datetime.utcnow()).date()

    start = alert.date_from or today_date
    end = alert.date_to or alert.date_from or today_date

    trip_type = TripType.ROUND_TRIP if alert.date_to and alert.date_to != alert.date_from else TripType.ONE_WAY

    filters = FlightSearchFilters(
        tripType=trip_type,
        seatType=_cabin_for(alert),
        stops=_stops_for(alert),
        airlines=_airlines_for(alert),
        priceLimit=PriceLimit(amount=alert.max_price) if alert.max_price else None,
    )
    return DateRange(start=start, end=end), filters


# =====================================================================
# SECTION: FILTERING
# =====================================================================

def filter_flights_for_alert(flights: Sequence[FlightOption], filters: FlightSearchFilters) -> List[FlightOption]:
    max_price = filters.priceLimit.amount if filters.priceLimit else None
    allowed = set(filters.airlines or [])
    max_stops = MAX_STOPS_BY_FILTER.get(filters.stops)

    out: List[FlightOption] = []
    for flight in flights:
        if max_price is not None and flight.price > max_price:
            continue

        if allowed:
            codes = {c.upper() for c in (flight.airlineCodes or [])}
            if flight.airlineCode:
                codes.add(flight.airlineCode.upper())
            if not codes & allowed:
                continue

        if max_stops is not None and flight.stops > max_stops:
            continue

        out.append(flight)
    return out


# =====================================================================
# SECTION: PARALLEL FETCH
# =====================================================================

def fetch_flights_for_alerts(
    alerts: Sequence[Any],
    max_per_alert: int = MAX_FLIGHTS_PER_ALERT,
    client: Optional[Any] = None,
    max_workers: int = FLIGHT_FETCH_WORKERS,
) -> List[AlertWithFlights]:
    """
    Returns alerts that still have flights after capping and filtering, in input order.
    A failed provider call drops that alert only.
    """
    if not alerts:
        return []

    client = client or FlightSearchClient()

    # Queries are built up front so worker threads never touch ORM state
    jobs: List[Tuple[int, Any, str, str, DateRange, FlightSearchFilters]] = []
    for idx, alert in enumerate(alerts):
        date_range, filters = build_search_for_alert(alert)
        jobs.append((idx, alert, alert.origin, alert.destination, date_range, filters))

    def _fetch_one(origin: str, destination: str, date_range: DateRange, filters: FlightSearchFilters) -> List[FlightOption]:
        flights = client.search(origin, destination, date_range, filters) or []
        return filter_flights_for_alert(list(flights)[:max_per_alert], filters)

    results: Dict[int, AlertWithFlights] = {}

    with ThreadPoolExecutor(max_workers=max(1, min(max_workers, len(jobs)))) as executor:
        futures = {
            executor.submit(_fetch_one, origin, destination, date_range, filters): (idx, alert)
            for idx, alert, origin, destination, date_range, filters in jobs
        }
        for future in as_completed(futures):
            idx, alert = futures[future]
            try:
                flights = future.result()
            except Exception as e:
                print(f"[fetcher] alert fetch failed alert_id={alert.id} error={e}")
                continue

            if flights:
                results[idx] = AlertWithFlights(alert=alert, flights=flights)

    print(f"[fetcher] fetched alerts={len(alerts)} with_flights={len(results)}")
    return [results[i] for i in sorted(results)]
