"""Tests for checkpointed workflow steps, run lifecycle and the runner."""

import time

import pytest

from models import WorkflowRun, WorkflowStepRecord
from services.workflow_engine import (
    NonRetryableError,
    StepConfig,
    StepFailedError,
    StepTimeoutError,
    WorkflowNotFoundError,
    WorkflowRunner,
    WorkflowStep,
    create_workflow_instance,
    execute_workflow_instance,
    list_incomplete_runs,
    raise_if_step_timed_out,
)
from workflows import registry


class Flaky:
    """Fails the first `failures` calls, then returns `value`."""

    def __init__(self, failures, value="ok", error=RuntimeError):
        self.failures = failures
        self.value = value
        self.error = error
        self.calls = 0

    def __call__(self):
        self.calls += 1
        if self.calls <= self.failures:
            raise self.error(f"failure {self.calls}")
        return self.value


@pytest.fixture
def step(db, no_sleep):
    create_workflow_instance(db, "TestWorkflow", "run-1", {})
    return WorkflowStep(db, "run-1", sleep=no_sleep)


@pytest.fixture
def registered():
    """Register throwaway workflows and remove them afterwards."""
    names = []

    def _register(name, fn):
        names.append(name)
        registry.register(name, fn)

    yield _register
    for name in names:
        registry._workflows.pop(name, None)


# ── Step policy ──────────────────────────────────────────────────────


class TestStepConfig:
    def test_constant_delay(self):
        config = StepConfig(retries=3, delay_seconds=30)
        assert [config.delay_for(n) for n in (1, 2, 3)] == [30, 30, 30]

    def test_exponential_delay(self):
        config = StepConfig(retries=5, delay_seconds=60, backoff="exponential")
        assert [config.delay_for(n) for n in (1, 2, 3, 4, 5)] == [60, 120, 240, 480, 960]


# ── Step execution ───────────────────────────────────────────────────


class TestWorkflowStep:
    def test_result_is_stored(self, db, step):
        assert step.do("compute", lambda: {"value": 42}) == {"value": 42}

        record = db.query(WorkflowStepRecord).filter_by(run_id="run-1", name="compute").one()
        assert record.status == "completed"
        assert record.attempts == 1
        assert record.result == {"value": 42}

    def test_completed_step_is_not_run_again(self, db, step, no_sleep):
        fn = Flaky(0, value=[1, 2])
        step.do("compute", fn)

        again = WorkflowStep(db, "run-1", sleep=no_sleep).do("compute", fn)

        assert again == [1, 2]
        assert fn.calls == 1

    def test_retries_then_succeeds(self, step, no_sleep):
        fn = Flaky(2)

        assert step.do("flaky", fn, StepConfig(retries=3, delay_seconds=30)) == "ok"
        assert fn.calls == 3
        assert no_sleep.delays == [30, 30]

    def test_exponential_backoff_between_attempts(self, step, no_sleep):
        fn = Flaky(3)

        step.do("flaky", fn, StepConfig(retries=5, delay_seconds=60, backoff="exponential"))

        assert no_sleep.delays == [60, 120, 240]

    def test_gives_up_after_retry_limit(self, db, step, no_sleep):
        fn = Flaky(10)

        with pytest.raises(StepFailedError) as exc_info:
            step.do("flaky", fn, StepConfig(retries=3, delay_seconds=30))

        assert fn.calls == 4
        assert exc_info.value.attempts == 4
        assert isinstance(exc_info.value.cause, RuntimeError)
        record = db.query(WorkflowStepRecord).filter_by(name="flaky").one()
        assert record.status == "failed"
        assert record.error == "failure 4"

    def test_no_retries_by_default(self, step, no_sleep):
        fn = Flaky(1)

        with pytest.raises(StepFailedError):
            step.do("once", fn)

        assert fn.calls == 1
        assert no_sleep.delays == []

    def test_non_retryable_stops_immediately(self, step, no_sleep):
        fn = Flaky(5, error=NonRetryableError)

        with pytest.raises(NonRetryableError):
            step.do("bad-input", fn, StepConfig(retries=3, delay_seconds=30))

        assert fn.calls == 1
        assert no_sleep.delays == []

    def test_timeout_counts_as_failure(self, step):
        def slow():
            time.sleep(0.5)
            return "late"

        with pytest.raises(StepFailedError) as exc_info:
            step.do("slow", slow, StepConfig(timeout_seconds=0.05))

        assert isinstance(exc_info.value.cause, StepTimeoutError)

    def test_timed_out_attempt_finishes_before_retry(self, step, no_sleep):
        spans = []

        def slow_then_fast():
            started = time.monotonic()
            if not spans:
                time.sleep(0.3)
            spans.append((started, time.monotonic()))
            return "done"

        result = step.do("slow-once", slow_then_fast, StepConfig(retries=1, delay_seconds=5, timeout_seconds=0.1))

        assert result == "done"
        assert len(spans) == 2
        first_end = spans[0][1]
        second_start = spans[1][0]
        assert second_start >= first_end
        assert no_sleep.delays == [5]

    def test_timed_out_attempt_is_fenced_from_side_effects(self, step, no_sleep):
        effects = []
        calls = []

        def slow_then_effect():
            calls.append(1)
            if len(calls) == 1:
                time.sleep(0.3)
            raise_if_step_timed_out()
            effects.append(len(calls))
            return len(calls)

        assert step.do("fenced", slow_then_effect, StepConfig(retries=1, timeout_seconds=0.1)) == 2
        assert effects == [2]

    def test_fence_is_a_no_op_outside_timed_steps(self, step):
        raise_if_step_timed_out()
        assert step.do("plain", lambda: raise_if_step_timed_out() or "ok") == "ok"
        assert step.do("timed", lambda: raise_if_step_timed_out() or "ok", StepConfig(timeout_seconds=5)) == "ok"


# ── Run lifecycle ────────────────────────────────────────────────────


class TestRunLifecycle:
    def test_create_is_idempotent(self, db):
        first = create_workflow_instance(db, "TestWorkflow", "run-x", {"userId": "u1"})
        second = create_workflow_instance(db, "TestWorkflow", "run-x", {"userId": "other"})

        assert first.id == second.id
        assert second.params == {"userId": "u1"}
        assert db.query(WorkflowRun).count() == 1

    def test_execute_runs_registered_workflow(self, db, session_factory, registered):
        def echo(event, step, wf_db):
            doubled = step.do("double", lambda: event["n"] * 2)
            return {"doubled": doubled}

        registered("EchoWorkflow", echo)
        create_workflow_instance(db, "EchoWorkflow", "echo-1", {"n": 21})

        assert execute_workflow_instance(session_factory, "echo-1") == {"doubled": 42}

        db.expire_all()
        run = db.get(WorkflowRun, "echo-1")
        assert run.status == "completed"
        assert run.result == {"doubled": 42}
        assert run.attempts == 1
        assert run.finished_at is not None

    def test_terminal_run_returns_stored_result(self, db, session_factory, registered):
        calls = []
        registered("CountingWorkflow", lambda event, step, wf_db: calls.append(1) or {"n": len(calls)})
        create_workflow_instance(db, "CountingWorkflow", "count-1", {})

        execute_workflow_instance(session_factory, "count-1")
        assert execute_workflow_instance(session_factory, "count-1") == {"n": 1}
        assert calls == [1]

    def test_failed_run_is_recorded(self, db, session_factory, registered):
        def broken(event, step, wf_db):
            raise NonRetryableError("userId is required")

        registered("BrokenWorkflow", broken)
        create_workflow_instance(db, "BrokenWorkflow", "broken-1", {})

        with pytest.raises(NonRetryableError):
            execute_workflow_instance(session_factory, "broken-1")

        db.expire_all()
        run = db.get(WorkflowRun, "broken-1")
        assert run.status == "failed"
        assert run.error == "userId is required"

    def test_unknown_run(self, session_factory):
        with pytest.raises(WorkflowNotFoundError):
            execute_workflow_instance(session_factory, "missing")

    def test_unknown_workflow_name(self, db, session_factory):
        create_workflow_instance(db, "NoSuchWorkflow", "orphan-1", {})
        with pytest.raises(WorkflowNotFoundError):
            execute_workflow_instance(session_factory, "orphan-1")

    def test_list_incomplete_runs(self, db):
        create_workflow_instance(db, "TestWorkflow", "a", {})
        create_workflow_instance(db, "TestWorkflow", "b", {})
        done = create_workflow_instance(db, "TestWorkflow", "c", {})
        done.status = "completed"
        db.commit()

        assert sorted(list_incomplete_runs(db)) == ["a", "b"]

    def test_registry_has_alert_and_search_workflows(self):
        assert {
            "CheckFlightAlertsWorkflow",
            "ProcessFlightAlertsWorkflow",
            "ProcessSeatsAeroSearch",
        } <= set(registry.workflow_names())


# ── Runner ───────────────────────────────────────────────────────────


class TestWorkflowRunner:
    def test_start_executes_once(self, db, session_factory, registered):
        calls = []
        registered("RunnerWorkflow", lambda event, step, wf_db: calls.append(event["k"]) or "done")
        runner = WorkflowRunner(session_factory, max_workers=1)
        try:
            assert runner.start("RunnerWorkflow", "runner-1", {"k": "v"}) == "queued"
            runner.shutdown(wait=True)
        finally:
            runner.shutdown(wait=False)

        assert calls == ["v"]
        db.expire_all()
        assert db.get(WorkflowRun, "runner-1").status == "completed"

    def test_start_on_terminal_run_does_not_submit(self, db, session_factory):
        run = create_workflow_instance(db, "TestWorkflow", "done-1", {})
        run.status = "completed"
        db.commit()

        runner = WorkflowRunner(session_factory, max_workers=1)
        submitted = []
        runner.submit = submitted.append
        try:
            assert runner.start("TestWorkflow", "done-1", {}) == "completed"
        finally:
            runner.shutdown()

        assert submitted == []

    def test_resume_incomplete_runs(self, db, session_factory):
        create_workflow_instance(db, "TestWorkflow", "r-1", {})
        create_workflow_instance(db, "TestWorkflow", "r-2", {})

        runner = WorkflowRunner(session_factory, max_workers=1)
        submitted = []
        runner.submit = submitted.append
        try:
            assert runner.resume_incomplete_runs() == 2
        finally:
            runner.shutdown()

        assert sorted(submitted) == ["r-1", "r-2"]

    def test_submit_ignores_run_already_executing(self, session_factory):
        runner = WorkflowRunner(session_factory, max_workers=1)
        runner._active.add("busy-1")
        try:
            assert runner.submit("busy-1") is None
        finally:
            runner.shutdown()
