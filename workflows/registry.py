"""
Workflow registry: maps workflow names to their entry functions for the engine.
Entry functions take (event, step, db) and return a JSON-serializable result.
"""

from typing import Any, Callable, Dict, List, Optional

from workflows.check_flight_alerts import WORKFLOW_NAME as CHECK_WORKFLOW_NAME
from workflows.check_flight_alerts import check_flight_alerts_workflow
from workflows.process_flight_alerts import WORKFLOW_NAME as PROCESS_WORKFLOW_NAME
from workflows.process_flight_alerts import process_flight_alerts_workflow
from workflows.process_seats_aero_search import WORKFLOW_NAME as SEATS_AERO_WORKFLOW_NAME
from workflows.process_seats_aero_search import process_seats_aero_search_workflow

WorkflowFn = Callable[..., Any]

_workflows: Dict[str, WorkflowFn] = {}


def register(name: str, fn: WorkflowFn) -> None:
    """Register a workflow entry function."""
    _workflows[name] = fn


def get_workflow(name: str) -> Optional[WorkflowFn]:
    """Return the entry function for the given name, or None."""
    return _workflows.get(name)


def workflow_names() -> List[str]:
    return list(_workflows.keys())


register(CHECK_WORKFLOW_NAME, check_flight_alerts_workflow)
register(PROCESS_WORKFLOW_NAME, process_flight_alerts_workflow)
register(SEATS_AERO_WORKFLOW_NAME, process_seats_aero_search_workflow)
