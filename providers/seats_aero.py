"""
providers/seats_aero.py

seats.aero partner API client (cached award availability search).
- GET /search with Partner-Authorization header
- Cursor + skip pagination, up to 1000 results per page
- Response envelope is validated, individual trips are validated later at upsert time
"""

from typing import Any, Dict, Optional

import requests

from config import SEATS_AERO_API_KEY, SEATS_AERO_BASE_URL, SEATS_AERO_TIMEOUT_SECONDS
from schemas.seats_aero import SeatsAeroSearchResponse


class SeatsAeroAPIError(Exception):
    def __init__(self, message: str, status: int, status_text: str = ""):
        super().__init__(message)
        self.status = status
        self.status_text = status_text


def _query_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


class SeatsAeroClient:
    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        session: Optional[requests.Session] = None,
        timeout: int = SEATS_AERO_TIMEOUT_SECONDS,
    ):
        self.api_key = api_key if api_key is not None else SEATS_AERO_API_KEY
        self.base_url = (base_url or SEATS_AERO_BASE_URL).rstrip("/")
        self.session = session or requests.Session()
        self.timeout = timeout

    def search(
        self,
        origin_airport: str,
        destination_airport: str,
        start_date: Optional[str] = None,
        end_date: Optional[str] = None,
        cursor: Optional[int] = None,
        take: int = 500,
        order_by: Optional[str] = None,
        skip: Optional[int] = None,
        include_trips: bool = False,
        only_direct_flights: bool = False,
        carriers: Optional[str] = None,
        include_filtered: bool = False,
        sources: Optional[str] = None,
        minify_trips: Optional[bool] = None,
        cabins: Optional[str] = None,
    ) -> SeatsAeroSearchResponse:
        if not self.api_key:
            raise SeatsAeroAPIError("SEATS_AERO_API_KEY is not configured", status=0)

        if not 10 <= int(take) <= 1000:
            raise ValueError(f"take must be between 10 and 1000, got {take}")

        # Order follows the API documentation, unset values are left off the query string
        ordered = [
            ("origin_airport", origin_airport),
            ("destination_airport", destination_airport),
            ("start_date", start_date),
            ("end_date", end_date),
            ("cursor", cursor),
            ("take", take),
            ("order_by", order_by),
            ("skip", skip),
            ("include_trips", include_trips),
            ("only_direct_flights", only_direct_flights),
            ("carriers", carriers),
            ("include_filtered", include_filtered),
            ("sources", sources),
            ("minify_trips", minify_trips),
            ("cabins", cabins),
        ]
        params: Dict[str, str] = {k: _query_value(v) for k, v in ordered if v is not None}

        url = f"{self.base_url}/search"
        headers = {
            "Partner-Authorization": self.api_key,
            "Accept": "application/json",
        }

        print(
            f"[seats_aero] GET search origin={origin_airport} dest={destination_airport} "
            f"start={start_date} end={end_date} cursor={cursor} skip={skip} take={take}"
        )

        resp = self.session.get(url, headers=headers, params=params, timeout=self.timeout)

        if resp.status_code >= 400:
            safe_body = (resp.text or "").replace("\n", "\\n")[:500]
            print(f"[seats_aero] error status={resp.status_code} body={safe_body}")
            raise SeatsAeroAPIError(
                f"Search request failed: {resp.reason}",
                status=resp.status_code,
                status_text=resp.reason or "",
            )

        return SeatsAeroSearchResponse.model_validate(resp.json())


def create_seats_aero_client(api_key: Optional[str] = None) -> SeatsAeroClient:
    return SeatsAeroClient(api_key=api_key)
