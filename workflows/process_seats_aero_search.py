"""
workflows/process_seats_aero_search.py

ProcessSeatsAeroSearch workflow: validates the search request, paginates it to
exhaustion, then finalizes it as completed. Any unrecoverable error marks the
request failed, which is terminal.
"""

from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from providers.seats_aero import create_seats_aero_client
from schemas.seats_aero import SearchRequestKey
from services.seats_aero_db import (
    TERMINAL_SEARCH_STATUSES,
    complete_search_request,
    fail_search_request,
    get_search_request,
    get_search_request_by_id,
    mark_search_request_processing,
)
from services.workflow_engine import WorkflowStep
from workflows.seats_aero_pagination import (
    SearchRequestNotFoundError,
    SearchRequestTerminalError,
    paginate_search_request,
)


WORKFLOW_NAME = "ProcessSeatsAeroSearch"


def seats_aero_instance_id(key: SearchRequestKey, search_request_id: str) -> str:
    return (
        f"{WORKFLOW_NAME}_{key.originAirport}_{key.destinationAirport}_"
        f"{key.searchStartDate.isoformat()}_{key.searchEndDate.isoformat()}_{search_request_id}"
    )


def build_event(key: SearchRequestKey, search_request_id: str) -> Dict[str, Any]:
    return {
        "originAirport": key.originAirport,
        "destinationAirport": key.destinationAirport,
        "searchStartDate": key.searchStartDate.isoformat(),
        "searchEndDate": key.searchEndDate.isoformat(),
        "searchRequestId": search_request_id,
    }


def validate_search_request(db: Session, key: SearchRequestKey, search_request_id: Optional[str] = None) -> str:
    row = get_search_request_by_id(db, search_request_id) if search_request_id else get_search_request(db, key)

    if row is None:
        raise SearchRequestNotFoundError(
            f"Search request not found for {key.originAirport}-{key.destinationAirport} "
            f"{key.searchStartDate}..{key.searchEndDate}"
        )
    if row.status in TERMINAL_SEARCH_STATUSES:
        raise SearchRequestTerminalError(f"Search request {row.id} is already {row.status}")

    mark_search_request_processing(db, row.id)
    return row.id


def process_seats_aero_search_workflow(
    event: Dict[str, Any],
    step: WorkflowStep,
    db: Session,
    client: Optional[Any] = None,
) -> Dict[str, Any]:
    key = SearchRequestKey(
        originAirport=event["originAirport"],
        destinationAirport=event["destinationAirport"],
        searchStartDate=event["searchStartDate"],
        searchEndDate=event["searchEndDate"],
    )

    search_request_id = step.do(
        "validate-search-request",
        lambda: validate_search_request(db, key, event.get("searchRequestId")),
    )

    client = client or create_seats_aero_client()

    try:
        summary = paginate_search_request(step, db, search_request_id, client)
        step.do("complete-search-request", lambda: complete_search_request(db, search_request_id))
    except Exception as e:
        db.rollback()
        fail_search_request(db, search_request_id, str(e))
        raise

    print(
        f"[seats_aero] search completed search_request_id={search_request_id} "
        f"pages={summary['pages']} processed_count={summary['processedCount']}"
    )
    return {"searchRequestId": search_request_id, **summary}
