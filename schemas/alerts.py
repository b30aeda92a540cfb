"""schemas/alerts.py - Pydantic models for alert processing and the daily email."""

from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict

from schemas.search import FlightOption, PriceLimit


class EligibilityResult(BaseModel):
    allowed: bool
    reason: Optional[str] = None


class AlertProcessingResult(BaseModel):
    success: bool
    reason: Optional[str] = None


class AlertWithFlights(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    # models.Alert row
    alert: Any
    flights: List[FlightOption]


class AlertDescriptor(BaseModel):
    id: str
    label: str
    origin: str
    destination: str
    seatType: Optional[str] = None
    stops: Optional[str] = None
    airlines: Optional[List[str]] = None
    priceLimit: Optional[PriceLimit] = None


class DailyAlertSummary(BaseModel):
    alert: AlertDescriptor
    flights: List[FlightOption]
    generatedAt: str


class DailyPriceUpdateEmail(BaseModel):
    summaryDate: str
    alerts: List[DailyAlertSummary]
