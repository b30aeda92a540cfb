"""routers/triggers.py - Health check and authenticated manual workflow triggers."""

import hmac
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Request

from config import manual_triggers_enabled, worker_api_key
from db import SessionLocal
from schemas.seats_aero import SeatsAeroSearchTrigger
from services.seats_aero_db import get_or_create_search_request
from services.workflow_engine import WorkflowRunner, get_runner
from workflows.check_flight_alerts import WORKFLOW_NAME as CHECK_WORKFLOW_NAME
from workflows.check_flight_alerts import check_instance_id
from workflows.process_seats_aero_search import WORKFLOW_NAME as SEATS_AERO_WORKFLOW_NAME
from workflows.process_seats_aero_search import build_event, seats_aero_instance_id

router = APIRouter()


# =====================================================================
# SECTION: AUTH
# =====================================================================

def _client_ip(request: Request) -> str:
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


def require_worker_api_key(
    request: Request,
    authorization: Optional[str] = Header(None),
) -> None:
    client_ip = _client_ip(request)
    user_agent = request.headers.get("User-Agent") or "unknown"

    if not manual_triggers_enabled():
        print(f"[triggers] rejected, manual triggers disabled ip={client_ip}")
        raise HTTPException(status_code=403, detail="Manual triggers are disabled")

    expected = (worker_api_key() or "").strip()
    if not expected:
        raise HTTPException(status_code=500, detail="WORKER_API_KEY is not configured on the server")

    if not authorization:
        print(f"[triggers] unauthorized reason=missing_header ip={client_ip} ua={user_agent}")
        raise HTTPException(status_code=401, detail="Missing Authorization header")

    parts = authorization.strip().split(" ")
    if len(parts) != 2 or parts[0] != "Bearer" or not parts[1]:
        print(f"[triggers] unauthorized reason=bad_format ip={client_ip} ua={user_agent}")
        raise HTTPException(
            status_code=401,
            detail="Invalid Authorization header format. Expected: Bearer <token>",
        )

    if not hmac.compare_digest(parts[1].encode("utf-8"), expected.encode("utf-8")):
        print(f"[triggers] unauthorized reason=invalid_key ip={client_ip} ua={user_agent}")
        raise HTTPException(status_code=401, detail="Invalid API key")


def runner_dependency() -> WorkflowRunner:
    return get_runner()


# =====================================================================
# SECTION: ROUTES
# =====================================================================

@router.get("/health")
def health():
    return {"status": "ok", "timestamp": datetime.utcnow().isoformat() + "Z"}


@router.post("/trigger/check-alerts", dependencies=[Depends(require_worker_api_key)])
def trigger_check_alerts(runner: WorkflowRunner = Depends(runner_dependency)):
    instance_id = check_instance_id(datetime.utcnow().date(), manual=True)
    status = runner.start(CHECK_WORKFLOW_NAME, instance_id, {"manual": True})

    print(f"[triggers] manual check-alerts instance_id={instance_id} status={status}")
    return {"success": True, "instanceId": instance_id, "status": status}


@router.post("/trigger/seats-aero-search", dependencies=[Depends(require_worker_api_key)])
def trigger_seats_aero_search(
    payload: SeatsAeroSearchTrigger,
    runner: WorkflowRunner = Depends(runner_dependency),
):
    if payload.endDate < payload.startDate:
        raise HTTPException(status_code=400, detail="endDate must be on or after startDate")

    try:
        key = payload.to_key()
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    db = SessionLocal()
    try:
        search_request = get_or_create_search_request(db, key)
        search_request_id = search_request.id
    finally:
        db.close()

    instance_id = seats_aero_instance_id(key, search_request_id)
    status = runner.start(SEATS_AERO_WORKFLOW_NAME, instance_id, build_event(key, search_request_id))

    print(f"[triggers] manual seats-aero-search instance_id={instance_id} status={status}")
    return {
        "success": True,
        "instanceId": instance_id,
        "searchRequestId": search_request_id,
        "status": status,
    }
