"""schemas/seats_aero.py - seats.aero wire models and search request payloads."""

from datetime import date
from typing import Any, List, Optional

from pydantic import BaseModel, Field, field_validator


class SearchOrderBy:
    DEFAULT = "default"
    LOWEST_MILEAGE = "lowest_mileage"


class AvailabilityTrip(BaseModel):
    """
    One bookable award itinerary as returned inside Availability.AvailabilityTrips.
    Field names mirror the API payload.
    """

    ID: str = Field(min_length=1)
    RouteID: Optional[str] = None
    AvailabilityID: Optional[str] = None

    TotalDuration: int
    Stops: int
    Carriers: str
    RemainingSeats: int
    MileageCost: int
    TotalTaxes: float
    TaxesCurrency: Optional[str] = None
    TaxesCurrencySymbol: Optional[str] = None
    TotalSegmentDistance: int

    OriginAirport: str = Field(min_length=3, max_length=3)
    DestinationAirport: str = Field(min_length=3, max_length=3)
    Aircraft: Optional[List[str]] = None
    FlightNumbers: str

    DepartsAt: str
    ArrivesAt: str
    Cabin: str

    CreatedAt: str
    UpdatedAt: str
    Source: str

    @field_validator("DepartsAt")
    @classmethod
    def _departs_at_has_date(cls, v: str) -> str:
        # travel_date is derived from this, reject anything without a leading ISO date
        date.fromisoformat(v[:10])
        return v


class Availability(BaseModel):
    # Only the nested trips matter for ingestion. Entries stay raw so one bad record
    # is skipped at upsert time instead of failing the whole page
    AvailabilityTrips: Optional[List[Any]] = None


class SeatsAeroSearchResponse(BaseModel):
    count: int = 0
    hasMore: bool = False
    cursor: Optional[int] = None
    data: List[Availability] = Field(default_factory=list)


class SearchRequestKey(BaseModel):
    originAirport: str = Field(min_length=3, max_length=3)
    destinationAirport: str = Field(min_length=3, max_length=3)
    searchStartDate: date
    searchEndDate: date

    @field_validator("originAirport", "destinationAirport")
    @classmethod
    def _upper(cls, v: str) -> str:
        return v.strip().upper()


class SeatsAeroSearchTrigger(BaseModel):
    originAirport: str
    destinationAirport: str
    startDate: date
    endDate: date

    def to_key(self) -> SearchRequestKey:
        return SearchRequestKey(
            originAirport=self.originAirport,
            destinationAirport=self.destinationAirport,
            searchStartDate=self.startDate,
            searchEndDate=self.endDate,
        )
