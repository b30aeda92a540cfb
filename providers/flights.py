"""
providers/flights.py

Flight option search client used by the daily alert fetcher.
POSTs {origin, destination, dateRange, filters} to FLIGHT_SEARCH_API_URL
and returns a list of FlightOption.
"""

from typing import Any, Dict, List, Optional

import requests

from config import FLIGHT_SEARCH_API_URL, FLIGHT_SEARCH_TIMEOUT_SECONDS
from schemas.search import DateRange, FlightOption, FlightSearchFilters, FlightSearchQuery


class FlightSearchError(Exception):
    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


def _extract_options(payload: Any) -> List[Dict[str, Any]]:
    # The service answers either a bare list or {"data": [...]} / {"flights": [...]}
    if isinstance(payload, list):
        return payload
    if isinstance(payload, dict):
        for key in ("data", "flights", "options"):
            value = payload.get(key)
            if isinstance(value, list):
                return value
    raise FlightSearchError("Unexpected flight search response shape")


class FlightSearchClient:
    def __init__(
        self,
        url: Optional[str] = None,
        session: Optional[requests.Session] = None,
        timeout: int = FLIGHT_SEARCH_TIMEOUT_SECONDS,
    ):
        self.url = url or FLIGHT_SEARCH_API_URL
        self.session = session or requests.Session()
        self.timeout = timeout

    def search(
        self,
        origin: str,
        destination: str,
        date_range: DateRange,
        filters: FlightSearchFilters,
    ) -> List[FlightOption]:
        query = FlightSearchQuery(
            origin=origin,
            destination=destination,
            dateRange=date_range,
            filters=filters,
        )

        try:
            resp = self.session.post(
                self.url,
                json=query.model_dump(mode="json"),
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise FlightSearchError(f"Flight search request failed: {e}") from e

        if resp.status_code >= 400:
            safe_body = (resp.text or "").replace("\n", "\\n")[:300]
            print(f"[flights] error status={resp.status_code} origin={origin} dest={destination} body={safe_body}")
            raise FlightSearchError(
                f"Flight search returned {resp.status_code}",
                status=resp.status_code,
            )

        options: List[FlightOption] = []
        for raw in _extract_options(resp.json()):
            options.append(FlightOption.model_validate(raw))

        print(f"[flights] search origin={origin} dest={destination} options={len(options)}")
        return options
