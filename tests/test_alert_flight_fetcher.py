"""Tests for alert flight fetching, capping and criteria filters."""

from datetime import date
from types import SimpleNamespace

from conftest import make_flight
from schemas.search import CabinClass, StopsFilter, TripType
from services.alert_flight_fetcher import (
    MAX_FLIGHTS_PER_ALERT,
    build_search_for_alert,
    fetch_flights_for_alerts,
)


def _alert(alert_id: str = "a1", **overrides):
    values = {
        "id": alert_id,
        "origin": "SFO",
        "destination": "NRT",
        "date_from": date(2025, 10, 15),
        "date_to": None,
        "cabin": "BUSINESS",
        "stops": "ANY",
        "airlines": None,
        "max_price": None,
    }
    values.update(overrides)
    return SimpleNamespace(**values)


class FakeFlightClient:
    def __init__(self, results=None, failing=None):
        self.results = results or {}
        self.failing = set(failing or [])
        self.calls = []

    def search(self, origin, destination, date_range, filters):
        self.calls.append((origin, destination, date_range, filters))
        if (origin, destination) in self.failing:
            raise RuntimeError("provider timeout")
        return list(self.results.get((origin, destination), []))


# ── Query building ───────────────────────────────────────────────────


class TestBuildSearch:
    def test_one_way_when_no_return_date(self):
        date_range, filters = build_search_for_alert(_alert())
        assert filters.tripType == TripType.ONE_WAY
        assert date_range.start == date(2025, 10, 15)
        assert date_range.end == date(2025, 10, 15)

    def test_round_trip_when_dates_differ(self):
        date_range, filters = build_search_for_alert(_alert(date_to=date(2025, 10, 22)))
        assert filters.tripType == TripType.ROUND_TRIP
        assert date_range.end == date(2025, 10, 22)

    def test_criteria_are_carried(self):
        _, filters = build_search_for_alert(
            _alert(cabin="FIRST", stops="NONSTOP", airlines=["ua", "NH"], max_price=900)
        )
        assert filters.seatType == CabinClass.FIRST
        assert filters.stops == StopsFilter.NONSTOP
        assert filters.airlines == ["UA", "NH"]
        assert filters.priceLimit.amount == 900
        assert filters.priceLimit.currency == "USD"

    def test_unknown_values_fall_back(self):
        _, filters = build_search_for_alert(_alert(cabin="LUXURY", stops="MANY"))
        assert filters.seatType == CabinClass.ECONOMY
        assert filters.stops == StopsFilter.ANY


# ── Fetch ────────────────────────────────────────────────────────────


class TestFetchFlightsForAlerts:
    def test_caps_flights_per_alert(self):
        flights = [make_flight(price=100 + i) for i in range(10)]
        client = FakeFlightClient({("SFO", "NRT"): flights})

        result = fetch_flights_for_alerts([_alert()], max_per_alert=5, client=client)

        assert len(result) == 1
        assert len(result[0].flights) == 5
        assert [f.price for f in result[0].flights] == [100, 101, 102, 103, 104]

    def test_default_cap(self):
        assert MAX_FLIGHTS_PER_ALERT == 5

    def test_drops_flights_above_max_price(self):
        client = FakeFlightClient({("SFO", "NRT"): [make_flight(400), make_flight(950), make_flight(800)]})

        result = fetch_flights_for_alerts([_alert(max_price=800)], client=client)

        assert [f.price for f in result[0].flights] == [400, 800]

    def test_airline_allow_list(self):
        client = FakeFlightClient(
            {
                ("SFO", "NRT"): [
                    make_flight(400, airline="ANA", airlineCode="NH", airlineCodes=["NH"]),
                    make_flight(450, airline="Delta", airlineCode="DL", airlineCodes=["DL"]),
                    make_flight(500, airline="Mixed", airlineCode="DL", airlineCodes=["DL", "UA"]),
                ]
            }
        )

        result = fetch_flights_for_alerts([_alert(airlines=["UA", "NH"])], client=client)

        assert [f.airline for f in result[0].flights] == ["ANA", "Mixed"]

    def test_stops_filter(self):
        client = FakeFlightClient(
            {("SFO", "NRT"): [make_flight(400, stops=0), make_flight(300, stops=1), make_flight(200, stops=2)]}
        )

        result = fetch_flights_for_alerts([_alert(stops="ONE_STOP")], client=client)

        assert [f.stops for f in result[0].flights] == [0, 1]

    def test_one_failure_does_not_abort_others(self):
        client = FakeFlightClient(
            results={("SFO", "NRT"): [make_flight(400)], ("LAX", "HND"): [make_flight(300)]},
            failing=[("JFK", "LHR")],
        )
        alerts = [
            _alert("a1"),
            _alert("a2", origin="JFK", destination="LHR"),
            _alert("a3", origin="LAX", destination="HND"),
        ]

        result = fetch_flights_for_alerts(alerts, client=client)

        assert [r.alert.id for r in result] == ["a1", "a3"]
        assert len(client.calls) == 3

    def test_alerts_without_matches_are_excluded(self):
        client = FakeFlightClient({("SFO", "NRT"): [make_flight(1200)]})

        result = fetch_flights_for_alerts([_alert(max_price=500)], client=client)

        assert result == []

    def test_no_alerts_makes_no_calls(self):
        client = FakeFlightClient()
        assert fetch_flights_for_alerts([], client=client) == []
        assert client.calls == []
