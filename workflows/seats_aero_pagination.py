"""
workflows/seats_aero_pagination.py

Cursor + skip pagination over seats.aero /search for one search request.

Every page is its own durable step. A page step re-reads the search request row,
so skip always comes from the persisted processed_count and the cursor from the
first response, never from loop variables.
"""

from typing import Any, Callable, Dict, Iterable, Iterator, List, Optional, Set

from sqlalchemy.orm import Session

from schemas.seats_aero import Availability, SearchOrderBy
from services.seats_aero_db import (
    get_search_request_by_id,
    update_search_request_progress,
    upsert_availability_trips,
)
from services.workflow_engine import NonRetryableError, StepConfig, WorkflowStep, raise_if_step_timed_out


PAGE_SIZE = 1000
UPSERT_BATCH_SIZE = 200

PAGE_STEP_CONFIG = StepConfig(
    retries=3,
    delay_seconds=30,
    backoff="constant",
    timeout_seconds=10 * 60,
)


class SearchRequestNotFoundError(NonRetryableError):
    pass


class SearchRequestTerminalError(NonRetryableError):
    pass


UpsertFn = Callable[[Session, str, List[Dict[str, Any]]], int]
ProgressFn = Callable[..., None]


def iter_trip_batches(
    data: Iterable[Availability],
    batch_size: int = UPSERT_BATCH_SIZE,
) -> Iterator[List[Dict[str, Any]]]:
    """Flatten AvailabilityTrips across a page, drop repeated trip IDs, yield fixed-size batches."""
    seen: Set[str] = set()
    batch: List[Dict[str, Any]] = []

    for availability in data:
        for trip in availability.AvailabilityTrips or []:
            trip_id = trip.get("ID") if isinstance(trip, dict) else None
            if trip_id:
                if trip_id in seen:
                    continue
                seen.add(trip_id)

            batch.append(trip)
            if len(batch) >= batch_size:
                yield batch
                batch = []

    if batch:
        yield batch


def fetch_and_store_page(
    db: Session,
    search_request_id: str,
    client: Any,
    upsert: Optional[UpsertFn] = None,
    update_progress: Optional[ProgressFn] = None,
) -> Dict[str, Any]:
    upsert = upsert or upsert_availability_trips
    update_progress = update_progress or update_search_request_progress

    row = get_search_request_by_id(db, search_request_id)
    if row is None:
        raise SearchRequestNotFoundError(f"Search request not found: {search_request_id}")

    skip = int(row.processed_count or 0)
    stored_cursor = row.cursor
    first_page = stored_cursor is None

    response = client.search(
        origin_airport=row.origin_airport,
        destination_airport=row.destination_airport,
        start_date=row.search_start_date.isoformat(),
        end_date=row.search_end_date.isoformat(),
        cursor=stored_cursor,
        take=PAGE_SIZE,
        order_by=SearchOrderBy.LOWEST_MILEAGE,
        skip=skip,
        include_trips=True,
        only_direct_flights=False,
        carriers=None,
        include_filtered=False,
        sources=None,
        minify_trips=None,
        cabins=None,
    )

    raise_if_step_timed_out()

    upserted = 0
    batches = 0
    for batch in iter_trip_batches(response.data):
        batches += 1
        upserted += upsert(db, search_request_id, batch) or 0

    processed_count = skip + int(response.count or 0)
    update_progress(
        db,
        search_request_id,
        cursor=response.cursor if first_page else None,
        has_more=bool(response.hasMore),
        processed_count=processed_count,
    )

    print(
        f"[seats_aero] page stored search_request_id={search_request_id} skip={skip} "
        f"count={response.count} has_more={response.hasMore} sent_cursor={stored_cursor} "
        f"batches={batches} upserted={upserted}"
    )

    return {
        "firstPage": first_page,
        "count": int(response.count or 0),
        "hasMore": bool(response.hasMore),
        "cursor": response.cursor,
        "processedCount": processed_count,
        "upserted": upserted,
    }


def paginate_search_request(
    step: WorkflowStep,
    db: Session,
    search_request_id: str,
    client: Any,
    upsert: Optional[UpsertFn] = None,
    update_progress: Optional[ProgressFn] = None,
    page_config: Optional[StepConfig] = None,
) -> Dict[str, Any]:
    page_config = page_config or PAGE_STEP_CONFIG

    page = 0
    total_upserted = 0
    processed_count = 0

    while True:
        page += 1
        result = step.do(
            f"fetch-page-{page}",
            lambda: fetch_and_store_page(db, search_request_id, client, upsert, update_progress),
            page_config,
        )
        total_upserted += result.get("upserted", 0)
        processed_count = result.get("processedCount", processed_count)

        if not result.get("hasMore"):
            break

        if result.get("firstPage") and result.get("cursor") is None:
            print(
                f"[seats_aero] WARNING first page has more results but no cursor, stopping "
                f"search_request_id={search_request_id} processed_count={processed_count}"
            )
            break

    return {
        "pages": page,
        "processedCount": processed_count,
        "upserted": total_upserted,
    }
