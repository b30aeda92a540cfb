"""
services/eligibility.py

Send gate for the daily alert email:
- can_send_now: time window + per-user cooldown
- has_been_processed_recently: per-alert dedup window
- check_email_eligibility: loads the last notification and applies the gate
"""

from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.orm import Session

from models import AlertNotification
from schemas.alerts import EligibilityResult
from services.notification_service import get_last_notification_for_user


# =====================================================================
# SECTION: POLICY CONSTANTS
# =====================================================================

# Emails only go out in [18:00, 22:00) UTC
SEND_WINDOW_START_HOUR = 18
SEND_WINDOW_END_HOUR = 22

# At most one email per user per 24h
USER_COOLDOWN_HOURS = 24

# Per-alert window, one hour under the cooldown
DEDUPLICATION_HOURS = 23


# =====================================================================
# SECTION: GATE
# =====================================================================

def can_send_now(now: datetime, last_notification_sent_at: Optional[datetime]) -> EligibilityResult:
    hour = now.hour
    if hour < SEND_WINDOW_START_HOUR or hour >= SEND_WINDOW_END_HOUR:
        return EligibilityResult(
            allowed=False,
            reason=f"outside-time-window (current hour: {hour} UTC)",
        )

    if last_notification_sent_at is not None:
        elapsed = now - last_notification_sent_at
        if elapsed < timedelta(hours=USER_COOLDOWN_HOURS):
            hours_ago = int(elapsed.total_seconds() // 3600)
            return EligibilityResult(
                allowed=False,
                reason=f"email-sent-recently ({hours_ago}h ago)",
            )

    return EligibilityResult(allowed=True)


def check_email_eligibility(db: Session, user_id: str, now: Optional[datetime] = None) -> EligibilityResult:
    now = now or datetime.utcnow()
    last = get_last_notification_for_user(db, user_id)
    result = can_send_now(now, last.sent_at if last else None)
    if not result.allowed:
        print(f"[eligibility] blocked user_id={user_id} reason={result.reason}")
    return result


def has_been_processed_recently(
    db: Session,
    alert_id: str,
    window_hours: int = DEDUPLICATION_HOURS,
    now: Optional[datetime] = None,
) -> bool:
    now = now or datetime.utcnow()
    cutoff = now - timedelta(hours=window_hours)

    row = (
        db.query(AlertNotification.id)
        .filter(
            AlertNotification.alert_id == alert_id,
            AlertNotification.generated_at >= cutoff,
        )
        .first()
    )
    return row is not None
