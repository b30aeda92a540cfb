# =======================================
# SECTION: IMPORTS AND BASE
# =======================================

from datetime import datetime
from uuid import uuid4

from sqlalchemy import (
    JSON,
    BigInteger,
    Column,
    Integer,
    String,
    Boolean,
    DateTime,
    Date,
    ForeignKey,
    Text,
    UniqueConstraint,
    Index,
)

from db import Base


def _new_id() -> str:
    return str(uuid4())


# =======================================
# SECTION: ADMIN CONFIG MODEL
# =======================================

class AdminConfig(Base):
    __tablename__ = "admin_config"

    id = Column(Integer, primary_key=True, index=True)
    key = Column(String(100), unique=True, nullable=False)
    value = Column(String(255), nullable=True)
    description = Column(String(255), nullable=True)


# =======================================
# SECTION: USER MODELS
# =======================================

class AppUser(Base):
    __tablename__ = "app_users"

    id = Column(Integer, primary_key=True, index=True)

    # Auth provider user id, alerts and notifications reference this
    external_id = Column(String(100), unique=True, index=True, nullable=False)

    email = Column(String(255), index=True, nullable=True)
    first_name = Column(String(100), nullable=True)
    last_name = Column(String(100), nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(
        DateTime,
        default=datetime.utcnow,
        onupdate=datetime.utcnow,
    )


# =======================================
# SECTION: REFERENCE DATA
# =======================================

class Airport(Base):
    __tablename__ = "airports"

    id = Column(Integer, primary_key=True, index=True)
    iata = Column(String(3), unique=True, index=True, nullable=False)
    name = Column(String(255), nullable=False)
    city = Column(String(255), nullable=False)
    country = Column(String(255), nullable=True)


# =======================================
# SECTION: ALERT MODELS
# =======================================

class Alert(Base):
    __tablename__ = "alerts"

    id = Column(String, primary_key=True, index=True, default=_new_id)
    user_id = Column(String(100), index=True, nullable=False)

    # daily | price-drop
    alert_type = Column(String(20), nullable=False, default="daily")

    # active | completed | deleted
    status = Column(String(20), nullable=False, default="active", index=True)

    origin = Column(String(3), nullable=False)
    destination = Column(String(3), nullable=False)

    date_from = Column(Date, nullable=True)
    date_to = Column(Date, nullable=True)

    cabin = Column(String(20), nullable=True)  # ECONOMY | PREMIUM_ECONOMY | BUSINESS | FIRST
    stops = Column(String(20), nullable=True)  # ANY | NONSTOP | ONE_STOP | TWO_STOPS
    airlines = Column(JSON, nullable=True)
    max_price = Column(Integer, nullable=True)

    # Optional expiry, alert is completed once this passes
    alert_end = Column(DateTime, nullable=True)

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow)


class Notification(Base):
    __tablename__ = "notifications"

    id = Column(String, primary_key=True, index=True, default=_new_id)
    user_id = Column(String(100), index=True, nullable=False)

    notification_type = Column(String(20), nullable=False, default="daily")
    recipient = Column(String(255), nullable=False)
    subject = Column(Text, nullable=False)

    # sent | failed
    status = Column(String(20), nullable=False)
    error_message = Column(Text, nullable=True)

    sent_at = Column(DateTime, nullable=False, default=datetime.utcnow, index=True)


class AlertNotification(Base):
    __tablename__ = "alert_notifications"

    id = Column(String, primary_key=True, index=True, default=_new_id)
    notification_id = Column(String, ForeignKey("notifications.id"), nullable=False, index=True)
    alert_id = Column(String, ForeignKey("alerts.id"), nullable=False, index=True)

    flight_data_snapshot = Column(JSON, nullable=True)
    generated_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        Index("ix_alert_notifications_alert_generated", "alert_id", "generated_at"),
    )


# =======================================
# SECTION: SEATS.AERO CACHE MODELS
# =======================================

class SeatsAeroSearchRequest(Base):
    __tablename__ = "seats_aero_search_requests"

    id = Column(String, primary_key=True, index=True, default=_new_id)

    origin_airport = Column(String(3), nullable=False)
    destination_airport = Column(String(3), nullable=False)
    search_start_date = Column(Date, nullable=False)
    search_end_date = Column(Date, nullable=False)

    # pending | processing | completed | failed
    status = Column(String(20), nullable=False, default="pending")

    # Pagination state, cursor is captured from the first page only
    cursor = Column(BigInteger, nullable=True)
    has_more = Column(Boolean, nullable=True)
    processed_count = Column(Integer, nullable=False, default=0)

    error_message = Column(Text, nullable=True)

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    completed_at = Column(DateTime, nullable=True)

    __table_args__ = (
        Index(
            "ix_seats_aero_search_requests_key",
            "origin_airport",
            "destination_airport",
            "search_start_date",
            "search_end_date",
        ),
    )


class SeatsAeroAvailabilityTrip(Base):
    __tablename__ = "seats_aero_availability_trips"

    id = Column(String, primary_key=True, default=_new_id)
    search_request_id = Column(
        String, ForeignKey("seats_aero_search_requests.id"), nullable=True, index=True
    )

    api_trip_id = Column(String, unique=True, nullable=False)
    api_route_id = Column(String, nullable=True)
    api_availability_id = Column(String, nullable=True)

    origin_airport = Column(String(3), nullable=False)
    destination_airport = Column(String(3), nullable=False)
    travel_date = Column(Date, nullable=False, index=True)

    flight_numbers = Column(JSON, nullable=False)
    carriers = Column(String, nullable=False)
    aircraft_types = Column(JSON, nullable=True)

    departure_time = Column(String(40), nullable=False)
    arrival_time = Column(String(40), nullable=False)
    duration_minutes = Column(Integer, nullable=False)
    stops = Column(Integer, nullable=False)
    total_distance_miles = Column(Integer, nullable=False)

    cabin_class = Column(String(20), nullable=False)
    mileage_cost = Column(Integer, nullable=False)
    remaining_seats = Column(Integer, nullable=False)

    # Stored as text so repeated fetches never drift on float rounding
    total_taxes = Column(String(32), nullable=False)
    taxes_currency = Column(String(8), nullable=True)
    taxes_currency_symbol = Column(String(8), nullable=True)

    source = Column(String(50), nullable=False)
    api_created_at = Column(String(40), nullable=False)
    api_updated_at = Column(String(40), nullable=False)

    raw_data = Column(JSON, nullable=False)

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow)


# =======================================
# SECTION: WORKFLOW CHECKPOINTS
# =======================================

class WorkflowRun(Base):
    __tablename__ = "workflow_runs"

    # Deterministic instance id, doubles as the idempotency key
    id = Column(String(255), primary_key=True)
    workflow_name = Column(String(100), nullable=False, index=True)
    params = Column(JSON, nullable=False, default=dict)

    # queued | running | completed | failed
    status = Column(String(20), nullable=False, default="queued", index=True)
    result = Column(JSON, nullable=True)
    error = Column(Text, nullable=True)
    attempts = Column(Integer, nullable=False, default=0)

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    finished_at = Column(DateTime, nullable=True)


class WorkflowStepRecord(Base):
    __tablename__ = "workflow_steps"

    id = Column(String, primary_key=True, default=_new_id)
    run_id = Column(String(255), ForeignKey("workflow_runs.id"), nullable=False, index=True)
    name = Column(String(255), nullable=False)

    # completed | failed
    status = Column(String(20), nullable=False)
    attempts = Column(Integer, nullable=False, default=0)
    result = Column(JSON, nullable=True)
    error = Column(Text, nullable=True)

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint("run_id", "name", name="uq_workflow_steps_run_name"),
    )


# =======================================
# SECTION: QUEUE
# =======================================

class QueueMessage(Base):
    __tablename__ = "queue_messages"

    id = Column(String, primary_key=True, default=_new_id)
    queue_name = Column(String(100), nullable=False, index=True)
    body = Column(JSON, nullable=False)

    # pending | acked
    status = Column(String(20), nullable=False, default="pending")
    attempts = Column(Integer, nullable=False, default=0)
    visible_after = Column(DateTime, nullable=False, default=datetime.utcnow)

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        Index("ix_queue_messages_poll", "queue_name", "status", "visible_after"),
    )
