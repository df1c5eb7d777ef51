"""Stage and dispatch-branch definitions shared by the live pipeline and exported workflows."""

from typing import NamedTuple, Optional

from src.schema import Severity, Stage


class StageDefinition(NamedTuple):
    id: str
    name: str
    task_id: str


class DispatchBranch(NamedTuple):
    """Action taken at dispatch for a decided severity.

    ``severity`` is None for the default branch.
    """

    severity: Optional[Severity]
    action_id: str
    node: str


INGEST = StageDefinition("1", "Ingest Logs", "1_ingest_telemetry")
SUMMARIZE = StageDefinition("2", "Summarize", "2_summarize_telemetry")
RETRIEVE = StageDefinition("3", "Fetch Protocol", "3_rag_retrieval")
DECIDE = StageDefinition("4", "AI Decision", "4_ai_decision_maker")
DISPATCH = StageDefinition("5", "Dispatch", "5_dispatch_resources")

STAGE_DEFINITIONS: tuple[StageDefinition, ...] = (INGEST, SUMMARIZE, RETRIEVE, DECIDE, DISPATCH)

DISPATCH_BRANCHES: tuple[DispatchBranch, ...] = (
    DispatchBranch(Severity.CRITICAL, "alert_national_guard", "dispatch_critical"),
    DispatchBranch(Severity.HIGH, "alert_emergency_services", "dispatch_high"),
)
DEFAULT_BRANCH = DispatchBranch(None, "log_monitor", "dispatch_standard")


def branch_for(severity: Severity) -> DispatchBranch:
    """Pick the dispatch branch for a decided severity."""
    for branch in DISPATCH_BRANCHES:
        if branch.severity == severity:
            return branch
    return DEFAULT_BRANCH


def initial_stages() -> list[Stage]:
    """Fresh IDLE stage records in pipeline order."""
    return [Stage(id=d.id, name=d.name, task_id=d.task_id) for d in STAGE_DEFINITIONS]
