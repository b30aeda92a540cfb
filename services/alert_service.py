"""
services/alert_service.py

Daily alert engine:
- get_user_ids_with_active_alerts: fan-out query for the check workflow
- user_has_active_daily_alerts: precondition for a per-user run
- process_daily_alerts_for_user: eligibility, expiry sweep, dedup, fetch, email, record
"""

import traceback
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Sequence

from sqlalchemy import or_
from sqlalchemy.orm import Session

from alerts_email import send_daily_alert_email
from models import Airport, Alert
from schemas.alerts import (
    AlertDescriptor,
    AlertProcessingResult,
    AlertWithFlights,
    DailyAlertSummary,
    DailyPriceUpdateEmail,
)
from schemas.search import PriceLimit
from services.alert_flight_fetcher import MAX_FLIGHTS_PER_ALERT, fetch_flights_for_alerts
from services.eligibility import check_email_eligibility, has_been_processed_recently
from services.notification_service import record_notification
from services.user_service import get_user_email
from services.workflow_engine import raise_if_step_timed_out


ALERT_TYPE_DAILY = "daily"

NO_MATCHES_SUBJECT = "Daily flight alerts - No matches"
NO_MATCHES_MESSAGE = "No matching flights found"

STOPS_LABELS = {
    "NONSTOP": "Nonstop",
    "ONE_STOP": "1 stop max",
    "TWO_STOPS": "2 stops max",
}


# =====================================================================
# SECTION: QUERIES
# =====================================================================

def _active_daily_alerts_query(db: Session):
    return db.query(Alert).filter(
        Alert.status == "active",
        Alert.alert_type == ALERT_TYPE_DAILY,
    )


def get_user_ids_with_active_alerts(db: Session, now: Optional[datetime] = None) -> List[str]:
    now = now or datetime.utcnow()
    rows = (
        db.query(Alert.user_id)
        .filter(
            Alert.status == "active",
            Alert.alert_type == ALERT_TYPE_DAILY,
            or_(Alert.alert_end.is_(None), Alert.alert_end >= now),
        )
        .distinct()
        .order_by(Alert.user_id.asc())
        .all()
    )
    return [r[0] for r in rows]


def user_has_active_daily_alerts(db: Session, user_id: str) -> bool:
    row = _active_daily_alerts_query(db).filter(Alert.user_id == user_id).with_entities(Alert.id).first()
    return row is not None


def get_active_daily_alerts_for_user(db: Session, user_id: str) -> List[Alert]:
    return (
        _active_daily_alerts_query(db)
        .filter(Alert.user_id == user_id)
        .order_by(Alert.created_at.asc())
        .all()
    )


def expire_alerts(db: Session, alerts: Sequence[Alert], now: datetime) -> List[Alert]:
    """Mark alerts past alert_end as completed in one write, return the ones still live."""
    expired_ids = [a.id for a in alerts if a.alert_end is not None and a.alert_end <= now]
    if expired_ids:
        (
            db.query(Alert)
            .filter(Alert.id.in_(expired_ids))
            .update({"status": "completed", "updated_at": now}, synchronize_session=False)
        )
        db.commit()
        print(f"[alerts] expired alerts count={len(expired_ids)} ids={expired_ids}")

    expired = set(expired_ids)
    return [a for a in alerts if a.id not in expired]


# =====================================================================
# SECTION: EMAIL DESCRIPTORS
# =====================================================================

def _airport_labels(db: Session, codes: Sequence[str]) -> Dict[str, str]:
    wanted = sorted({c.upper() for c in codes if c})
    if not wanted:
        return {}
    rows = db.query(Airport).filter(Airport.iata.in_(wanted)).all()
    return {r.iata.upper(): f"{r.city} ({r.iata.upper()})" for r in rows}


def _seat_type_label(cabin: Optional[str]) -> Optional[str]:
    if not cabin:
        return None
    return " ".join(word.capitalize() for word in cabin.split("_"))


def build_alert_descriptor(alert: Any, labels: Dict[str, str]) -> AlertDescriptor:
    origin = labels.get((alert.origin or "").upper(), alert.origin)
    destination = labels.get((alert.destination or "").upper(), alert.destination)

    return AlertDescriptor(
        id=str(alert.id),
        label=f"{origin} to {destination}",
        origin=origin,
        destination=destination,
        seatType=_seat_type_label(alert.cabin),
        stops=STOPS_LABELS.get((alert.stops or "").upper(), "Any stops") if alert.stops else None,
        airlines=list(alert.airlines) if alert.airlines else None,
        priceLimit=PriceLimit(amount=alert.max_price) if alert.max_price else None,
    )


def build_daily_email_payload(
    db: Session,
    alerts_with_flights: Sequence[AlertWithFlights],
    now: datetime,
) -> DailyPriceUpdateEmail:
    codes: List[str] = []
    for item in alerts_with_flights:
        codes.extend([item.alert.origin, item.alert.destination])
    labels = _airport_labels(db, codes)

    generated_at = now.isoformat()
    summaries = [
        DailyAlertSummary(
            alert=build_alert_descriptor(item.alert, labels),
            flights=list(item.flights),
            generatedAt=generated_at,
        )
        for item in alerts_with_flights
    ]
    return DailyPriceUpdateEmail(summaryDate=now.date().isoformat(), alerts=summaries)


# =====================================================================
# SECTION: PROCESS ONE USER
# =====================================================================

def process_daily_alerts_for_user(
    db: Session,
    user_id: str,
    now: Optional[datetime] = None,
    fetch_flights: Callable[..., List[AlertWithFlights]] = fetch_flights_for_alerts,
    send_email: Callable[[str, DailyPriceUpdateEmail], str] = send_daily_alert_email,
) -> AlertProcessingResult:
    now = now or datetime.utcnow()
    print(f"[alerts] process user START user_id={user_id} now={now.isoformat()}")

    # ---- Eligibility ----
    eligibility = check_email_eligibility(db, user_id, now)
    if not eligibility.allowed:
        return AlertProcessingResult(success=True, reason=eligibility.reason)

    # ---- Recipient ----
    email = get_user_email(db, user_id)
    if not email:
        print(f"[alerts] no email for user user_id={user_id}")
        return AlertProcessingResult(success=False, reason="no-email")

    # ---- Alerts ----
    alerts = get_active_daily_alerts_for_user(db, user_id)
    if not alerts:
        return AlertProcessingResult(success=True, reason="no-alerts")

    live = expire_alerts(db, alerts, now)
    if not live:
        return AlertProcessingResult(success=True, reason="all-expired")

    candidates = [a for a in live if not has_been_processed_recently(db, a.id, now=now)]
    if not candidates:
        print(f"[alerts] all alerts recently processed user_id={user_id} alerts={len(live)}")
        return AlertProcessingResult(success=True, reason="all-recently-processed")

    # ---- Flights ----
    alerts_with_flights = fetch_flights(candidates, MAX_FLIGHTS_PER_ALERT)
    if not alerts_with_flights:
        record_notification(
            db,
            user_id=user_id,
            recipient=email,
            subject=NO_MATCHES_SUBJECT,
            status="failed",
            error_message=NO_MATCHES_MESSAGE,
            now=now,
        )
        return AlertProcessingResult(success=True, reason="no-flights")

    # ---- Email ----
    payload = build_daily_email_payload(db, alerts_with_flights, now)
    subject = f"Daily flight alerts for {payload.summaryDate}"

    raise_if_step_timed_out()
    try:
        subject = send_email(email, payload) or subject
    except Exception as e:
        print(f"[alerts] email send failed user_id={user_id} error={e}")
        record_notification(
            db,
            user_id=user_id,
            recipient=email,
            subject=subject,
            status="failed",
            error_message=str(e) or "Email send failed",
            alerts=alerts_with_flights,
            now=now,
        )
        return AlertProcessingResult(success=False, reason="email-failed")

    # The email is out, a failed write here must not cause a retry that re-sends it
    try:
        record_notification(
            db,
            user_id=user_id,
            recipient=email,
            subject=subject,
            status="sent",
            alerts=alerts_with_flights,
            now=now,
        )
    except Exception as e:
        db.rollback()
        print(f"[alerts] failed to record sent notification user_id={user_id} error={e}")
        traceback.print_exc()

    print(f"[alerts] process user DONE user_id={user_id} alerts={len(alerts_with_flights)}")
    return AlertProcessingResult(success=True)
