"""LangGraph response workflow: ingest, summarize, retrieve, decide, dispatch."""

import asyncio
from typing import TYPE_CHECKING

from langgraph.graph import END, StateGraph

from src.errors import IntelligenceUnavailable
from src.rag.graph_state import PipelineState
from src.rag.intelligence import FALLBACK_DECISION, FALLBACK_SITREP
from src.schema import LogSource
from src.stages import (
    DECIDE,
    DEFAULT_BRANCH,
    DISPATCH,
    DISPATCH_BRANCHES,
    INGEST,
    RETRIEVE,
    SUMMARIZE,
    DispatchBranch,
    branch_for,
)

if TYPE_CHECKING:
    from src.rag.pipeline import PipelineRunner

DEGRADED_PREFIX = "[DEGRADED]"


def _preview(text: str, length: int) -> str:
    return f"{text[:length]}..."


def _make_ingest_node(runner: "PipelineRunner"):
    """Create the ingest node function bound to the runner."""

    async def ingest(state: PipelineState) -> dict:
        incident = state["incident"]
        runner.stage_started(INGEST)
        runner.log(LogSource.ORCHESTRATOR, f"Trigger: External System Webhook ({incident.id})")
        runner.log(
            LogSource.ORCHESTRATOR,
            f"Ingesting Raw Telemetry: {_preview(incident.raw_telemetry, 30)}",
        )
        await runner.wait(runner.settings.ingest_delay_seconds)
        runner.stage_succeeded(INGEST)
        return {"received_at": runner.clock()}

    return ingest


def _make_summarize_node(runner: "PipelineRunner"):
    """Create the summarize node function bound to the runner."""

    async def summarize(state: PipelineState) -> dict:
        runner.stage_started(SUMMARIZE)
        runner.log(LogSource.ORCHESTRATOR, f"Executing Task: {SUMMARIZE.task_id}")
        runner.log(LogSource.INTELLIGENCE, "Processing unstructured sensor data...")

        try:
            sitrep = await runner.intelligence.summarize(state["incident"].raw_telemetry)
            degraded = False
            runner.log(LogSource.INTELLIGENCE, f'SITREP Generated: "{_preview(sitrep, 45)}"')
        except IntelligenceUnavailable as e:
            sitrep = FALLBACK_SITREP
            degraded = True
            runner.log(
                LogSource.SYSTEM,
                f"{DEGRADED_PREFIX} Summarization unavailable ({e}); using fallback SITREP",
                degraded=True,
            )

        runner.stage_succeeded(SUMMARIZE)
        return {"sitrep": sitrep, "summary_degraded": degraded}

    return summarize


def _make_retrieve_node(runner: "PipelineRunner"):
    """Create the retrieve node function bound to the runner.

    Retrieval runs on the SITREP, never on the operator description.
    """

    async def retrieve(state: PipelineState) -> dict:
        sitrep = state["sitrep"]
        runner.stage_started(RETRIEVE)
        runner.log(LogSource.ORCHESTRATOR, f"Executing Task: {RETRIEVE.task_id}")
        runner.log(LogSource.SYSTEM, f'Protocol Query: "{_preview(sitrep, 30)}"')

        result = runner.retriever.retrieve(sitrep)

        runner.log(LogSource.SYSTEM, f"Protocol Match: [{result.protocol.name.value}]")
        runner.log(LogSource.SYSTEM, f"Confidence Score: {result.confidence:.2f}")
        runner.log(LogSource.ORCHESTRATOR, f'Retrieved Protocol: "{result.protocol.title}"')
        await runner.wait(runner.settings.retrieval_delay_seconds)
        runner.stage_succeeded(RETRIEVE)
        return {"retrieval": result}

    return retrieve


def _make_decide_node(runner: "PipelineRunner"):
    """Create the decide node function bound to the runner."""

    async def decide(state: PipelineState) -> dict:
        runner.stage_started(DECIDE)
        runner.log(LogSource.ORCHESTRATOR, f"Executing Task: {DECIDE.task_id}")
        runner.log(LogSource.INTELLIGENCE, "Contextualizing SITREP with protocol data...")

        try:
            decision = await runner.intelligence.decide(
                state["sitrep"], state["retrieval"].protocol.body
            )
            degraded = False
        except IntelligenceUnavailable as e:
            decision = FALLBACK_DECISION.model_copy(deep=True)
            degraded = True
            runner.log(
                LogSource.SYSTEM,
                f"{DEGRADED_PREFIX} Decision engine unavailable ({e}); "
                f"applying fail-safe {decision.severity.value} decision",
                degraded=True,
            )

        runner.stage_succeeded(DECIDE)
        runner.log(
            LogSource.SYSTEM if degraded else LogSource.INTELLIGENCE,
            f"Decision: {decision.severity.value} SEVERITY",
            degraded=degraded,
        )
        return {"decision": decision, "decision_degraded": degraded}

    return decide


def _make_dispatch_node(runner: "PipelineRunner", branch: DispatchBranch):
    """Create a dispatch node for one severity branch."""

    async def dispatch(state: PipelineState) -> dict:
        decision = state["decision"]
        runner.stage_started(DISPATCH)
        runner.log(
            LogSource.ORCHESTRATOR,
            f"Branching Flow: {decision.severity.value} Response path ({branch.action_id})",
        )
        runner.log(
            LogSource.SYSTEM,
            f"Dispatching: {', '.join(decision.resources) or 'no resources'}",
        )
        await runner.wait(runner.settings.dispatch_delay_seconds)

        try:
            dispatched = await runner.commit_dispatch(state["incident"].id, decision)
        except asyncio.CancelledError:
            # The write landed before the cancel was delivered
            runner.stage_succeeded(DISPATCH)
            runner.log(LogSource.ORCHESTRATOR, "Workflow completed successfully.")
            raise

        runner.stage_succeeded(DISPATCH)
        runner.log(LogSource.ORCHESTRATOR, "Workflow completed successfully.")
        return {"branch": branch.action_id, "dispatched": dispatched}

    return dispatch


def route_dispatch(state: PipelineState) -> str:
    """Pick the dispatch node for the decided severity."""
    return branch_for(state["decision"].severity).node


def build_pipeline_graph(runner: "PipelineRunner"):
    """Build and compile the response workflow graph.

    Args:
        runner: PipelineRunner whose collaborators and stage bookkeeping the
            nodes use.

    Returns:
        Compiled LangGraph StateGraph.
    """
    graph = StateGraph(PipelineState)
    branches = (*DISPATCH_BRANCHES, DEFAULT_BRANCH)

    graph.add_node("ingest", _make_ingest_node(runner))
    graph.add_node("summarize", _make_summarize_node(runner))
    graph.add_node("retrieve", _make_retrieve_node(runner))
    graph.add_node("decide", _make_decide_node(runner))
    for branch in branches:
        graph.add_node(branch.node, _make_dispatch_node(runner, branch))

    graph.set_entry_point("ingest")
    graph.add_edge("ingest", "summarize")
    graph.add_edge("summarize", "retrieve")
    graph.add_edge("retrieve", "decide")

    # decide → one dispatch branch per severity case
    graph.add_conditional_edges(
        "decide",
        route_dispatch,
        {branch.node: branch.node for branch in branches},
    )

    for branch in branches:
        graph.add_edge(branch.node, END)

    return graph.compile()
