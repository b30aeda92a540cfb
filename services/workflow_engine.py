"""
services/workflow_engine.py

Durable, checkpointed workflow runs on top of the database.

- A run is keyed by a deterministic instance id, creating it twice reuses the first row
- Each named step persists its JSON result once completed, a re-executed run
  returns the stored result instead of doing the work again
- Steps retry on failure according to their StepConfig, NonRetryableError stops immediately
- A timed out attempt is fenced off from side effects and must return before the next
  attempt starts, attempts never share the session concurrently
- WorkflowRunner executes runs on a bounded thread pool, each run gets its own session
"""

import threading
import time
import traceback
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeoutError, wait
from datetime import datetime
from typing import Any, Callable, Dict, List, Literal, Optional

from pydantic import BaseModel
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from models import WorkflowRun, WorkflowStepRecord


TERMINAL_RUN_STATUSES = ("completed", "failed")


# =====================================================================
# SECTION: ERRORS
# =====================================================================

class NonRetryableError(Exception):
    """Raised inside a step when retrying cannot change the outcome."""


class StepTimeoutError(Exception):
    def __init__(self, step_name: str, timeout_seconds: float):
        super().__init__(f"Step {step_name} timed out after {timeout_seconds}s")
        self.step_name = step_name
        self.timeout_seconds = timeout_seconds


class StepFailedError(Exception):
    def __init__(self, step_name: str, attempts: int, cause: BaseException):
        super().__init__(f"Step {step_name} failed after {attempts} attempt(s): {cause}")
        self.step_name = step_name
        self.attempts = attempts
        self.cause = cause


class WorkflowNotFoundError(Exception):
    pass


# =====================================================================
# SECTION: STEP POLICY
# =====================================================================

class StepConfig(BaseModel):
    # Retry limit after the first attempt
    retries: int = 0
    delay_seconds: float = 0
    backoff: Literal["constant", "exponential"] = "constant"
    timeout_seconds: Optional[float] = None

    def delay_for(self, retry_number: int) -> float:
        """Delay before retry N (1-based)."""
        if self.backoff == "exponential":
            return self.delay_seconds * (2 ** (retry_number - 1))
        return self.delay_seconds


DEFAULT_STEP_CONFIG = StepConfig()


class _AttemptFence:
    def __init__(self, step_name: str, timeout_seconds: float):
        self.step_name = step_name
        self.timeout_seconds = timeout_seconds
        self.timed_out = threading.Event()


_attempt_local = threading.local()


def _run_fenced(fence: _AttemptFence, fn: Callable[[], Any]) -> Any:
    _attempt_local.fence = fence
    try:
        return fn()
    finally:
        _attempt_local.fence = None


def raise_if_step_timed_out() -> None:
    """
    Called by step bodies right before a side effect (sending, writing a page).
    Raises inside an attempt whose step already timed out, no-op everywhere else.
    """
    fence = getattr(_attempt_local, "fence", None)
    if fence is not None and fence.timed_out.is_set():
        raise StepTimeoutError(fence.step_name, fence.timeout_seconds)


def _run_with_timeout(step_name: str, fn: Callable[[], Any], timeout_seconds: Optional[float]) -> Any:
    if not timeout_seconds:
        return fn()

    fence = _AttemptFence(step_name, timeout_seconds)
    pool = ThreadPoolExecutor(max_workers=1, thread_name_prefix="workflow-step")
    try:
        future = pool.submit(_run_fenced, fence, fn)
        try:
            return future.result(timeout=timeout_seconds)
        except FutureTimeoutError:
            fence.timed_out.set()
            print(f"[workflow] step timed out step={step_name} timeout_seconds={timeout_seconds}")
            # The attempt shares the caller's session, nothing else may touch it until it returns
            wait([future])
            raise StepTimeoutError(step_name, timeout_seconds)
    finally:
        pool.shutdown(wait=False)


# =====================================================================
# SECTION: STEP CONTEXT
# =====================================================================

class WorkflowStep:
    def __init__(self, db: Session, run_id: str, sleep: Callable[[float], None] = time.sleep):
        self.db = db
        self.run_id = run_id
        self.sleep = sleep

    def _get_record(self, name: str) -> Optional[WorkflowStepRecord]:
        return (
            self.db.query(WorkflowStepRecord)
            .filter(
                WorkflowStepRecord.run_id == self.run_id,
                WorkflowStepRecord.name == name,
            )
            .first()
        )

    def _save(self, name: str, status: str, attempts: int, result: Any = None, error: Optional[str] = None) -> None:
        now = datetime.utcnow()
        record = self._get_record(name)
        if record is None:
            record = WorkflowStepRecord(run_id=self.run_id, name=name, created_at=now)
            self.db.add(record)
        record.status = status
        record.attempts = (record.attempts or 0) + attempts
        record.result = result
        record.error = error
        record.updated_at = now
        self.db.commit()

    def do(self, name: str, fn: Callable[[], Any], config: Optional[StepConfig] = None) -> Any:
        config = config or DEFAULT_STEP_CONFIG

        record = self._get_record(name)
        if record is not None and record.status == "completed":
            print(f"[workflow] step cached run_id={self.run_id} step={name}")
            return record.result

        attempt = 0
        while True:
            attempt += 1
            try:
                result = _run_with_timeout(name, fn, config.timeout_seconds)
            except NonRetryableError as e:
                self.db.rollback()
                print(f"[workflow] step non-retryable run_id={self.run_id} step={name} error={e}")
                self._save(name, "failed", attempt, error=str(e))
                raise
            except Exception as e:
                self.db.rollback()
                if attempt > config.retries:
                    print(
                        f"[workflow] step failed run_id={self.run_id} step={name} "
                        f"attempts={attempt} error={e}"
                    )
                    self._save(name, "failed", attempt, error=str(e))
                    raise StepFailedError(name, attempt, e) from e

                delay = config.delay_for(attempt)
                print(
                    f"[workflow] step retry run_id={self.run_id} step={name} "
                    f"attempt={attempt} delay_seconds={delay} error={e}"
                )
                self.sleep(delay)
                continue

            self._save(name, "completed", attempt, result=result)
            return result


# =====================================================================
# SECTION: RUN LIFECYCLE
# =====================================================================

def create_workflow_instance(
    db: Session,
    workflow_name: str,
    instance_id: str,
    params: Dict[str, Any],
) -> WorkflowRun:
    """Create the run for instance_id, or return the existing one."""
    existing = db.get(WorkflowRun, instance_id)
    if existing is not None:
        print(f"[workflow] instance exists id={instance_id} status={existing.status}")
        return existing

    now = datetime.utcnow()
    run = WorkflowRun(
        id=instance_id,
        workflow_name=workflow_name,
        params=params,
        status="queued",
        attempts=0,
        created_at=now,
        updated_at=now,
    )
    db.add(run)
    try:
        db.commit()
    except IntegrityError:
        # Another process created it first
        db.rollback()
        existing = db.get(WorkflowRun, instance_id)
        if existing is None:
            raise
        return existing

    print(f"[workflow] instance created id={instance_id} workflow={workflow_name}")
    return run


def execute_workflow_instance(
    session_factory: Callable[[], Session],
    instance_id: str,
    sleep: Callable[[float], None] = time.sleep,
) -> Any:
    """Run or resume a workflow run. Terminal runs return their stored result."""
    from workflows.registry import get_workflow

    db = session_factory()
    try:
        run = db.get(WorkflowRun, instance_id)
        if run is None:
            raise WorkflowNotFoundError(f"Workflow run not found: {instance_id}")

        if run.status in TERMINAL_RUN_STATUSES:
            print(f"[workflow] instance already {run.status} id={instance_id}")
            return run.result

        workflow_fn = get_workflow(run.workflow_name)
        if workflow_fn is None:
            raise WorkflowNotFoundError(f"Unknown workflow: {run.workflow_name}")

        params = dict(run.params or {})
        run.status = "running"
        run.attempts = (run.attempts or 0) + 1
        run.updated_at = datetime.utcnow()
        db.commit()

        print(f"[workflow] START id={instance_id} workflow={run.workflow_name} attempt={run.attempts}")
        step = WorkflowStep(db, instance_id, sleep=sleep)

        try:
            result = workflow_fn(params, step, db)
        except Exception as e:
            db.rollback()
            now = datetime.utcnow()
            run = db.get(WorkflowRun, instance_id)
            run.status = "failed"
            run.error = str(e)
            run.updated_at = now
            run.finished_at = now
            db.commit()
            print(f"[workflow] FAILED id={instance_id} error={e}")
            raise

        now = datetime.utcnow()
        run = db.get(WorkflowRun, instance_id)
        run.status = "completed"
        run.result = result
        run.error = None
        run.updated_at = now
        run.finished_at = now
        db.commit()

        print(f"[workflow] DONE id={instance_id}")
        return result
    finally:
        db.close()


def list_incomplete_runs(db: Session) -> List[str]:
    rows = (
        db.query(WorkflowRun.id)
        .filter(WorkflowRun.status.in_(("queued", "running")))
        .order_by(WorkflowRun.created_at.asc())
        .all()
    )
    return [r[0] for r in rows]


# =====================================================================
# SECTION: RUNNER
# =====================================================================

class WorkflowRunner:
    def __init__(self, session_factory: Callable[[], Session], max_workers: int = 4):
        self.session_factory = session_factory
        self.pool = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="workflow")
        self._active = set()
        self._lock = threading.Lock()

    def _execute(self, instance_id: str) -> Any:
        try:
            return execute_workflow_instance(self.session_factory, instance_id)
        except Exception:
            print(f"[workflow] run crashed id={instance_id}")
            traceback.print_exc()
            raise
        finally:
            with self._lock:
                self._active.discard(instance_id)

    def submit(self, instance_id: str):
        """Schedule a run unless this runner is already executing it."""
        with self._lock:
            if instance_id in self._active:
                print(f"[workflow] already executing id={instance_id}")
                return None
            self._active.add(instance_id)
        return self.pool.submit(self._execute, instance_id)

    def start(self, workflow_name: str, instance_id: str, params: Dict[str, Any]) -> str:
        """
        Create (or reuse) the run and schedule it, returns the run status at start time.
        Raises if the run row cannot be written.
        """
        db = self.session_factory()
        try:
            run = create_workflow_instance(db, workflow_name, instance_id, params)
            status = run.status
        finally:
            db.close()

        if status not in TERMINAL_RUN_STATUSES:
            self.submit(instance_id)
        return status

    def resume_incomplete_runs(self) -> int:
        db = self.session_factory()
        try:
            ids = list_incomplete_runs(db)
        finally:
            db.close()

        for instance_id in ids:
            self.submit(instance_id)

        if ids:
            print(f"[workflow] resumed incomplete runs count={len(ids)}")
        return len(ids)

    def shutdown(self, wait: bool = True) -> None:
        self.pool.shutdown(wait=wait)


_runner: Optional[WorkflowRunner] = None
_runner_lock = threading.Lock()


def get_runner() -> WorkflowRunner:
    """Process-wide runner bound to SessionLocal."""
    global _runner
    with _runner_lock:
        if _runner is None:
            from config import WORKFLOW_MAX_WORKERS
            from db import SessionLocal

            _runner = WorkflowRunner(SessionLocal, max_workers=WORKFLOW_MAX_WORKERS)
        return _runner
