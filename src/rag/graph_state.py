"""Pipeline state schema for the LangGraph response workflow."""

from datetime import datetime
from typing import Optional, TypedDict

from src.schema import Decision, Incident, RetrievalResult


class PipelineState(TypedDict):
    """State flowing through the five-stage response graph."""

    # Input
    incident: Incident

    # Ingest
    received_at: Optional[datetime]

    # Summarize
    sitrep: Optional[str]
    summary_degraded: bool

    # Retrieve
    retrieval: Optional[RetrievalResult]

    # Decide
    decision: Optional[Decision]
    decision_degraded: bool

    # Dispatch
    branch: Optional[str]
    dispatched: Optional[Incident]


def initial_state(incident: Incident) -> PipelineState:
    return {
        "incident": incident,
        "received_at": None,
        "sitrep": None,
        "summary_degraded": False,
        "retrieval": None,
        "decision": None,
        "decision_degraded": False,
        "branch": None,
        "dispatched": None,
    }
