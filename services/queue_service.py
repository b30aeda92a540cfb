"""
services/queue_service.py

Database-backed work queue for {userId} fan-out messages.
- send_batch: at most QUEUE_BATCH_SIZE bodies per call
- receive_batch: visible pending messages, oldest first
- QueuedMessage.ack / retry(delay_seconds)
"""

from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy.orm import Session

from models import QueueMessage


# Hard ceiling on one enqueue call
QUEUE_BATCH_SIZE = 100


class QueueBatchTooLargeError(Exception):
    def __init__(self, size: int):
        super().__init__(f"Batch of {size} messages exceeds the limit of {QUEUE_BATCH_SIZE}")
        self.size = size


class QueuedMessage:
    def __init__(self, db: Session, message_id: str, body: Dict[str, Any], attempts: int):
        self.db = db
        self.id = message_id
        self.body = body
        self.attempts = attempts

    def ack(self) -> None:
        now = datetime.utcnow()
        (
            self.db.query(QueueMessage)
            .filter(QueueMessage.id == self.id)
            .update({"status": "acked", "updated_at": now}, synchronize_session=False)
        )
        self.db.commit()

    def retry(self, delay_seconds: int = 60) -> None:
        now = datetime.utcnow()
        (
            self.db.query(QueueMessage)
            .filter(QueueMessage.id == self.id)
            .update(
                {
                    "status": "pending",
                    "visible_after": now + timedelta(seconds=delay_seconds),
                    "updated_at": now,
                },
                synchronize_session=False,
            )
        )
        self.db.commit()


def send_batch(db: Session, queue_name: str, bodies: Sequence[Dict[str, Any]]) -> int:
    if len(bodies) > QUEUE_BATCH_SIZE:
        raise QueueBatchTooLargeError(len(bodies))
    if not bodies:
        return 0

    now = datetime.utcnow()
    db.add_all(
        [
            QueueMessage(
                queue_name=queue_name,
                body=dict(body),
                status="pending",
                attempts=0,
                visible_after=now,
                created_at=now,
                updated_at=now,
            )
            for body in bodies
        ]
    )
    db.commit()

    print(f"[queue] sent batch queue={queue_name} size={len(bodies)}")
    return len(bodies)


def receive_batch(
    db: Session,
    queue_name: str,
    max_messages: int = 10,
    visibility_timeout_seconds: int = 600,
    now: Optional[datetime] = None,
) -> List[QueuedMessage]:
    """
    Claim up to max_messages visible messages. Claimed messages stay hidden for
    visibility_timeout_seconds, an un-acked message is redelivered after that.
    """
    now = now or datetime.utcnow()

    query = (
        db.query(QueueMessage)
        .filter(
            QueueMessage.queue_name == queue_name,
            QueueMessage.status == "pending",
            QueueMessage.visible_after <= now,
        )
        .order_by(QueueMessage.visible_after.asc(), QueueMessage.created_at.asc())
        .limit(max_messages)
    )
    if db.get_bind().dialect.name == "postgresql":
        query = query.with_for_update(skip_locked=True)

    rows = query.all()

    claimed: List[QueuedMessage] = []
    for row in rows:
        row.attempts = (row.attempts or 0) + 1
        row.visible_after = now + timedelta(seconds=visibility_timeout_seconds)
        row.updated_at = now
        claimed.append(QueuedMessage(db, row.id, dict(row.body or {}), row.attempts))
    db.commit()

    return claimed
