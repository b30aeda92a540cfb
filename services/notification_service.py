"""
services/notification_service.py

Notification store:
- record_notification: one row per send attempt, plus alert joins with flight snapshots
- get_last_notification_for_user: feeds the per-user cooldown
"""

from datetime import datetime
from typing import List, Optional, Sequence

from sqlalchemy.orm import Session

from models import AlertNotification, Notification
from schemas.alerts import AlertWithFlights


NOTIFICATION_TYPE_DAILY = "daily"


def get_last_notification_for_user(db: Session, user_id: str) -> Optional[Notification]:
    return (
        db.query(Notification)
        .filter(Notification.user_id == user_id)
        .order_by(Notification.sent_at.desc())
        .first()
    )


def record_notification(
    db: Session,
    user_id: str,
    recipient: str,
    subject: str,
    status: str,
    error_message: Optional[str] = None,
    alerts: Optional[Sequence[AlertWithFlights]] = None,
    now: Optional[datetime] = None,
) -> Notification:
    now = now or datetime.utcnow()

    notification = Notification(
        user_id=user_id,
        notification_type=NOTIFICATION_TYPE_DAILY,
        recipient=recipient,
        subject=subject,
        status=status,
        error_message=error_message,
        sent_at=now,
    )
    db.add(notification)
    db.flush()

    joins: List[AlertNotification] = []
    for item in alerts or []:
        joins.append(
            AlertNotification(
                notification_id=notification.id,
                alert_id=item.alert.id,
                flight_data_snapshot=[f.model_dump(mode="json") for f in item.flights],
                generated_at=now,
            )
        )
    if joins:
        db.add_all(joins)

    db.commit()

    print(
        f"[alerts] notification recorded id={notification.id} user_id={user_id} "
        f"status={status} alerts={len(joins)}"
    )
    return notification
