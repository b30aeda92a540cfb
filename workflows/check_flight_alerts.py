"""
workflows/check_flight_alerts.py

CheckFlightAlertsWorkflow: finds every user with a live daily alert and
enqueues one {userId} message per user, in batches of QUEUE_BATCH_SIZE.
"""

from datetime import date
from typing import Any, Callable, Dict, List, Optional, Sequence

from sqlalchemy.orm import Session

from config import ALERTS_QUEUE_NAME
from services.alert_service import get_user_ids_with_active_alerts
from services.queue_service import QUEUE_BATCH_SIZE, send_batch
from services.workflow_engine import StepConfig, WorkflowStep


WORKFLOW_NAME = "CheckFlightAlertsWorkflow"

QUEUE_STEP_CONFIG = StepConfig(retries=3, delay_seconds=30, backoff="exponential", timeout_seconds=5 * 60)


def check_instance_id(day: date, manual: bool = False) -> str:
    instance_id = f"{WORKFLOW_NAME}_{day.isoformat()}"
    if manual:
        instance_id += "_manual"
    return instance_id


def chunk_user_ids(user_ids: Sequence[str], size: int = QUEUE_BATCH_SIZE) -> List[List[str]]:
    return [list(user_ids[i : i + size]) for i in range(0, len(user_ids), size)]


def queue_users_for_processing(
    db: Session,
    user_ids: Sequence[str],
    send: Callable[[Session, str, List[Dict[str, Any]]], int] = send_batch,
    queue_name: str = ALERTS_QUEUE_NAME,
) -> int:
    """Send batches in order. A failed batch raises so the step is retried."""
    queued = 0
    batches = chunk_user_ids(user_ids)
    for idx, batch in enumerate(batches, start=1):
        try:
            send(db, queue_name, [{"userId": user_id} for user_id in batch])
        except Exception as e:
            print(f"[queue] batch send failed batch={idx}/{len(batches)} size={len(batch)} error={e}")
            raise
        queued += len(batch)
    print(f"[queue] queued users total={queued} batches={len(batches)}")
    return queued


def check_flight_alerts_workflow(
    event: Dict[str, Any],
    step: WorkflowStep,
    db: Session,
    send: Optional[Callable[[Session, str, List[Dict[str, Any]]], int]] = None,
) -> Dict[str, Any]:
    user_ids = step.do(
        "fetch-user-ids-with-active-alerts",
        lambda: get_user_ids_with_active_alerts(db),
    )

    if not user_ids:
        print("[alerts] no users with active daily alerts")
        return {"queued": 0}

    queued = step.do(
        "queue-users-for-processing",
        lambda: queue_users_for_processing(db, user_ids, send=send or send_batch),
        QUEUE_STEP_CONFIG,
    )
    return {"queued": queued}
