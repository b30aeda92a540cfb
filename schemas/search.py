"""schemas/search.py - Pydantic models for flight option searches used by alerts."""

from datetime import date
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class CabinClass(str, Enum):
    ECONOMY = "ECONOMY"
    PREMIUM_ECONOMY = "PREMIUM_ECONOMY"
    BUSINESS = "BUSINESS"
    FIRST = "FIRST"


class StopsFilter(str, Enum):
    ANY = "ANY"
    NONSTOP = "NONSTOP"
    ONE_STOP = "ONE_STOP"
    TWO_STOPS = "TWO_STOPS"


# Max stops allowed per slice for each alert stops value
MAX_STOPS_BY_FILTER = {
    StopsFilter.ANY: None,
    StopsFilter.NONSTOP: 0,
    StopsFilter.ONE_STOP: 1,
    StopsFilter.TWO_STOPS: 2,
}


class TripType(str, Enum):
    ONE_WAY = "ONE_WAY"
    ROUND_TRIP = "ROUND_TRIP"


class DateRange(BaseModel):
    start: date
    end: date


class PriceLimit(BaseModel):
    amount: int
    currency: str = "USD"


class FlightSearchFilters(BaseModel):
    tripType: TripType = TripType.ONE_WAY
    seatType: CabinClass = CabinClass.ECONOMY
    stops: StopsFilter = StopsFilter.ANY
    airlines: Optional[List[str]] = None
    priceLimit: Optional[PriceLimit] = None


class FlightSearchQuery(BaseModel):
    origin: str
    destination: str
    dateRange: DateRange
    filters: FlightSearchFilters = Field(default_factory=FlightSearchFilters)


class FlightOption(BaseModel):
    id: Optional[str] = None

    airline: str
    airlineCode: Optional[str] = None
    # Every marketing carrier across all segments, used for allow-list matching
    airlineCodes: List[str] = Field(default_factory=list)

    price: float
    currency: str = "USD"

    departureDate: str
    returnDate: Optional[str] = None

    # Max stops over outbound and return
    stops: int = 0
    durationMinutes: Optional[int] = None

    origin: Optional[str] = None
    destination: Optional[str] = None

    outboundSegments: Optional[List[Dict[str, Any]]] = None
    returnSegments: Optional[List[Dict[str, Any]]] = None

    bookingUrl: Optional[str] = None
