"""
workflows/process_flight_alerts.py

ProcessFlightAlertsWorkflow: one run per user per day, keyed
ProcessFlightAlertsWorkflow_{userId}_{YYYY-MM-DD}.
"""

from datetime import date
from typing import Any, Dict

from sqlalchemy.orm import Session

from services.alert_service import process_daily_alerts_for_user, user_has_active_daily_alerts
from services.workflow_engine import NonRetryableError, StepConfig, WorkflowStep


WORKFLOW_NAME = "ProcessFlightAlertsWorkflow"

PROCESS_STEP_CONFIG = StepConfig(
    retries=5,
    delay_seconds=60,
    backoff="exponential",
    timeout_seconds=10 * 60,
)


def process_instance_id(user_id: str, day: date) -> str:
    return f"{WORKFLOW_NAME}_{user_id}_{day.isoformat()}"


def process_flight_alerts_workflow(event: Dict[str, Any], step: WorkflowStep, db: Session) -> Dict[str, Any]:
    user_id = event.get("userId")
    if not user_id:
        raise NonRetryableError("userId is required")

    has_alerts = step.do(
        "validate-user-has-active-alerts",
        lambda: user_has_active_daily_alerts(db, user_id),
    )
    if not has_alerts:
        print(f"[alerts] user has no active daily alerts user_id={user_id}")
        return {"success": False, "reason": "User has no active daily alerts"}

    return step.do(
        f"process-alerts-for-user-{user_id}",
        lambda: process_daily_alerts_for_user(db, user_id).model_dump(),
        PROCESS_STEP_CONFIG,
    )
