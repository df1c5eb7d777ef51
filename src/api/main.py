"""FastAPI application exposing incidents, pipeline runs and workflow exports."""

import asyncio
from contextlib import asynccontextmanager
from typing import Literal, Optional

import structlog
from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse, StreamingResponse

from src import __version__
from src.api.models import (
    AnalyzeResponse,
    CancelResponse,
    HealthResponse,
    IncidentListResponse,
    IncidentResponse,
)
from src.config import get_settings
from src.data.incident_store import IncidentStore
from src.logging_config import configure_logging
from src.rag.intelligence import IntelligenceAdapter
from src.rag.pipeline import PipelineRunner
from src.schema import RunRejection, RunSnapshot
from src.workflow.generator import WORKFLOW_FILENAME, generate_workflow_yaml

logger = structlog.get_logger(__name__)

# Snapshots buffered per event-stream client; older ones are dropped first
EVENT_QUEUE_SIZE = 16

# Global instances
store: Optional[IncidentStore] = None
intelligence: Optional[IntelligenceAdapter] = None
runner: Optional[PipelineRunner] = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize components on startup."""
    global store, intelligence, runner

    settings = get_settings()
    configure_logging(settings)

    if store is None:
        store = IncidentStore(settings.incidents_file)
    if intelligence is None:
        intelligence = IntelligenceAdapter()
    if runner is None:
        runner = PipelineRunner(store=store, intelligence=intelligence)

    logger.info("api_started", incidents=len(store.get_all()), provider=settings.llm_provider.value)

    yield

    if runner.active:
        await runner.cancel()
    logger.info("api_stopped")


app = FastAPI(
    title="ResQ Orchestrator API",
    description="Incident-response pipeline with protocol-grounded dispatch decisions",
    version=__version__,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def offer_latest(queue: asyncio.Queue, snapshot: RunSnapshot) -> None:
    """Enqueue a snapshot, evicting the oldest one when the queue is full."""
    if queue.full():
        queue.get_nowait()
    queue.put_nowait(snapshot)


def _require_components() -> tuple[IncidentStore, PipelineRunner]:
    if store is None or runner is None:
        raise HTTPException(status_code=503, detail="Pipeline not initialized")
    return store, runner


@app.get("/health", response_model=HealthResponse)
async def health_check():
    """Health check endpoint."""
    settings = get_settings()

    return HealthResponse(
        status="healthy",
        version=__version__,
        incident_count=len(store.get_all()) if store else 0,
        pipeline_active=runner.active if runner else False,
        llm_provider=settings.llm_provider.value,
    )


@app.get("/incidents", response_model=IncidentListResponse)
async def list_incidents():
    """List incidents, newest first."""
    incident_store, _ = _require_components()
    return IncidentListResponse(
        incidents=incident_store.get_all(),
        stats=incident_store.get_stats(),
    )


@app.get("/incidents/{incident_id}", response_model=IncidentResponse)
async def get_incident(incident_id: str):
    """Get an incident by ID."""
    incident_store, _ = _require_components()
    incident = incident_store.get_by_id(incident_id)
    if incident is None:
        return IncidentResponse(success=False, error=f"Incident not found: {incident_id}")
    return IncidentResponse(success=True, incident=incident)


@app.post("/incidents/scan", response_model=IncidentResponse)
async def scan_for_incident():
    """Generate a synthetic incident and add it to the store."""
    incident_store, _ = _require_components()
    if intelligence is None:
        raise HTTPException(status_code=503, detail="Intelligence adapter not initialized")

    incident = await intelligence.generate_incident()
    if incident is None:
        raise HTTPException(status_code=502, detail="No signal: incident generation failed")

    return IncidentResponse(success=True, incident=incident_store.add(incident))


@app.post("/incidents/clear", response_model=IncidentListResponse)
async def clear_incidents():
    """Reset incidents to the initial set and forget the last run."""
    incident_store, pipeline = _require_components()
    if pipeline.active:
        await pipeline.cancel()
    pipeline.reset()
    return IncidentListResponse(
        incidents=incident_store.clear(),
        stats=incident_store.get_stats(),
    )


@app.post("/incidents/{incident_id}/analyze", response_model=AnalyzeResponse)
async def analyze_incident(incident_id: str):
    """Start a pipeline run for an incident.

    Returns 202 when the run was started and 409 when the request was ignored
    (another run active, or the incident already dispatched), 404 for unknown IDs.
    """
    _, pipeline = _require_components()
    request = pipeline.start(incident_id)

    body = AnalyzeResponse(
        request=request,
        run_id=pipeline.snapshot().run_id if request.accepted else None,
    )
    if request.accepted:
        status_code = 202
    elif request.rejection == RunRejection.UNKNOWN_INCIDENT:
        status_code = 404
    else:
        status_code = 409
    return JSONResponse(status_code=status_code, content=body.model_dump(mode="json"))


@app.get("/incidents/{incident_id}/workflow", response_class=PlainTextResponse)
async def export_workflow(incident_id: str):
    """Export the workflow definition for an incident as YAML."""
    incident_store, _ = _require_components()
    incident = incident_store.get_by_id(incident_id)
    if incident is None:
        raise HTTPException(status_code=404, detail=f"Incident not found: {incident_id}")

    return PlainTextResponse(
        generate_workflow_yaml(incident),
        media_type="text/yaml",
        headers={"Content-Disposition": f'attachment; filename="{WORKFLOW_FILENAME}"'},
    )


@app.get("/pipeline", response_model=RunSnapshot)
async def get_pipeline(order: Literal["oldest", "newest"] = "oldest"):
    """Current (or last) run: stage statuses, log entries and active flag."""
    _, pipeline = _require_components()
    snapshot = pipeline.snapshot()
    if order == "newest":
        snapshot = snapshot.model_copy(update={"logs": snapshot.newest_first()})
    return snapshot


@app.get("/pipeline/events")
async def stream_pipeline_events():
    """Server-sent events: one snapshot per stage transition or log entry."""
    _, pipeline = _require_components()
    queue: asyncio.Queue[RunSnapshot] = asyncio.Queue(maxsize=EVENT_QUEUE_SIZE)
    unsubscribe = pipeline.subscribe(lambda snapshot: offer_latest(queue, snapshot))

    async def event_stream():
        try:
            yield f"data: {pipeline.snapshot().model_dump_json()}\n\n"
            while True:
                snapshot = await queue.get()
                yield f"data: {snapshot.model_dump_json()}\n\n"
        finally:
            unsubscribe()

    return StreamingResponse(event_stream(), media_type="text/event-stream")


@app.post("/pipeline/cancel", response_model=CancelResponse)
async def cancel_pipeline():
    """Cancel the active run, if any."""
    _, pipeline = _require_components()
    return CancelResponse(cancelled=await pipeline.cancel())
