"""
worker.py

Background worker process:
- cron job every CHECK_ALERTS_INTERVAL_HOURS starts CheckFlightAlertsWorkflow_{date}
- queue poll job turns {userId} messages into ProcessFlightAlertsWorkflow_{userId}_{date} runs
- incomplete workflow runs are resumed on start

Run with: python worker.py
"""

import time
from datetime import date, datetime
from typing import Any, Callable, Dict, Optional, Sequence

from apscheduler.schedulers.background import BackgroundScheduler

from config import (
    ALERTS_QUEUE_NAME,
    CHECK_ALERTS_INTERVAL_HOURS,
    QUEUE_POLL_SECONDS,
    QUEUE_RECEIVE_BATCH_SIZE,
    master_alerts_enabled,
)
from db import SessionLocal
from services.queue_service import QueuedMessage, receive_batch
from services.workflow_engine import WorkflowRunner, get_runner
from workflows.check_flight_alerts import WORKFLOW_NAME as CHECK_WORKFLOW_NAME
from workflows.check_flight_alerts import check_instance_id
from workflows.process_flight_alerts import WORKFLOW_NAME as PROCESS_WORKFLOW_NAME
from workflows.process_flight_alerts import process_instance_id


CHECK_ALERTS_JOB_ID = "check_flight_alerts"
POLL_QUEUE_JOB_ID = "poll_alerts_queue"

# Redelivery delay for messages whose run could not be started
START_RETRY_DELAY_SECONDS = 60

StartRunFn = Callable[[str, str, Dict[str, Any]], Any]


# =====================================================================
# SECTION: QUEUE DISPATCH
# =====================================================================

def handle_queue_batch(
    messages: Sequence[QueuedMessage],
    start_run: StartRunFn,
    today: Optional[date] = None,
) -> Dict[str, int]:
    today = today or datetime.utcnow().date()
    started = 0
    dropped = 0
    retried = 0

    print(f"[queue] processing batch size={len(messages)}")

    for message in messages:
        user_id = (message.body or {}).get("userId")
        if not user_id:
            print(f"[queue] WARNING invalid message, missing userId message_id={message.id}")
            message.ack()
            dropped += 1
            continue

        instance_id = process_instance_id(user_id, today)
        try:
            start_run(PROCESS_WORKFLOW_NAME, instance_id, {"userId": user_id})
        except Exception as e:
            print(f"[queue] failed to start workflow user_id={user_id} instance_id={instance_id} error={e}")
            message.retry(delay_seconds=START_RETRY_DELAY_SECONDS)
            retried += 1
            continue

        message.ack()
        started += 1
        print(f"[queue] started workflow user_id={user_id} instance_id={instance_id}")

    return {"started": started, "dropped": dropped, "retried": retried}


# =====================================================================
# SECTION: SCHEDULED JOBS
# =====================================================================

def run_check_flight_alerts_job(runner: Optional[WorkflowRunner] = None, today: Optional[date] = None) -> Optional[str]:
    if not master_alerts_enabled():
        print("[worker] ALERTS_ENABLED is false, skipping check")
        return None

    runner = runner or get_runner()
    instance_id = check_instance_id(today or datetime.utcnow().date())
    runner.start(CHECK_WORKFLOW_NAME, instance_id, {})
    print(f"[worker] check triggered instance_id={instance_id}")
    return instance_id


def poll_alerts_queue_job(runner: Optional[WorkflowRunner] = None) -> Dict[str, int]:
    runner = runner or get_runner()
    db = SessionLocal()
    try:
        messages = receive_batch(db, ALERTS_QUEUE_NAME, max_messages=QUEUE_RECEIVE_BATCH_SIZE)
        if not messages:
            return {"started": 0, "dropped": 0, "retried": 0}
        return handle_queue_batch(messages, runner.start)
    finally:
        db.close()


def build_scheduler(runner: WorkflowRunner) -> BackgroundScheduler:
    # The check job fires every few hours but its instance id is per UTC day, so later
    # ticks return the completed run and users are fanned out once a day at 00:00 UTC
    scheduler = BackgroundScheduler(timezone="UTC")
    scheduler.add_job(
        run_check_flight_alerts_job,
        "cron",
        hour=f"*/{CHECK_ALERTS_INTERVAL_HOURS}",
        minute=0,
        id=CHECK_ALERTS_JOB_ID,
        kwargs={"runner": runner},
        max_instances=1,
        coalesce=True,
    )
    scheduler.add_job(
        poll_alerts_queue_job,
        "interval",
        seconds=QUEUE_POLL_SECONDS,
        id=POLL_QUEUE_JOB_ID,
        kwargs={"runner": runner},
        max_instances=1,
        coalesce=True,
    )
    return scheduler


def main() -> None:
    import models  # noqa: F401
    from db import Base, engine

    Base.metadata.create_all(bind=engine)

    runner = get_runner()
    runner.resume_incomplete_runs()

    scheduler = build_scheduler(runner)
    scheduler.start()
    print(
        f"[worker] READY check_every_hours={CHECK_ALERTS_INTERVAL_HOURS} "
        f"queue_poll_seconds={QUEUE_POLL_SECONDS}"
    )

    try:
        while True:
            time.sleep(1)
    except (KeyboardInterrupt, SystemExit):
        print("[worker] shutting down")
        scheduler.shutdown(wait=False)
        runner.shutdown(wait=False)


if __name__ == "__main__":
    main()
