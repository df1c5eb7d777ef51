"""Pipeline state machine driving one incident at a time through the response graph."""

import asyncio
import uuid
from datetime import datetime
from typing import Awaitable, Callable, Optional

import structlog

from src.config import Settings, get_settings
from src.data.incident_store import IncidentStore
from src.errors import InvalidStageTransition
from src.protocols.catalog import ProtocolCatalog, get_catalog
from src.rag.graph import build_pipeline_graph
from src.rag.graph_state import initial_state
from src.rag.intelligence import IntelligenceAdapter
from src.rag.retriever import ProtocolRetriever
from src.schema import (
    Decision,
    Incident,
    IncidentStatus,
    LogEntry,
    LogSource,
    RunRejection,
    RunRequest,
    RunSnapshot,
    RunState,
    Stage,
    StageStatus,
)
from src.stages import DISPATCH, StageDefinition, initial_stages

logger = structlog.get_logger(__name__)

Observer = Callable[[RunSnapshot], None]

ALLOWED_TRANSITIONS: dict[StageStatus, frozenset[StageStatus]] = {
    StageStatus.IDLE: frozenset({StageStatus.RUNNING}),
    StageStatus.RUNNING: frozenset({StageStatus.SUCCESS, StageStatus.FAILED}),
    StageStatus.SUCCESS: frozenset(),
    StageStatus.FAILED: frozenset(),
}


class PipelineRun:
    """Stages and operator log of one run, bound to a single incident."""

    def __init__(self, incident: Incident, started_at: datetime):
        self.run_id = uuid.uuid4().hex[:12]
        self.incident_id = incident.id
        self.stages: list[Stage] = initial_stages()
        self.logs: list[LogEntry] = []
        self.state = RunState.ACTIVE
        self.started_at = started_at
        self.finished_at: Optional[datetime] = None
        self.error: Optional[str] = None

    def stage(self, stage_id: str) -> Stage:
        for stage in self.stages:
            if stage.id == stage_id:
                return stage
        raise KeyError(stage_id)

    @property
    def current_stage(self) -> Optional[Stage]:
        """The RUNNING stage, if any."""
        for stage in self.stages:
            if stage.status == StageStatus.RUNNING:
                return stage
        return None

    def transition(self, stage_id: str, status: StageStatus) -> None:
        stage = self.stage(stage_id)
        if status not in ALLOWED_TRANSITIONS[stage.status]:
            raise InvalidStageTransition(
                f"Stage {stage.id} ({stage.name}) cannot move {stage.status.value} -> {status.value}"
            )
        if status == StageStatus.RUNNING and self.current_stage is not None:
            raise InvalidStageTransition(
                f"Stage {stage.id} cannot start while stage {self.current_stage.id} is running"
            )
        stage.status = status


class PipelineRunner:
    """Runs incidents through the five response stages, one run at a time.

    Observers either poll ``snapshot()`` or ``subscribe()`` to receive a fresh
    snapshot after every stage transition and log entry.

    Usage:
        runner = PipelineRunner(store=IncidentStore(path))
        request = await runner.analyze("INC-2025-001")
    """

    def __init__(
        self,
        store: IncidentStore,
        intelligence: Optional[IntelligenceAdapter] = None,
        catalog: Optional[ProtocolCatalog] = None,
        retriever: Optional[ProtocolRetriever] = None,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
        clock: Optional[Callable[[], datetime]] = None,
        settings: Optional[Settings] = None,
    ):
        """Initialize the runner.

        Args:
            store: Incident store the dispatch stage writes to
            intelligence: Summarize/decide capability
            catalog: Protocol catalog (process-wide catalog if not specified)
            retriever: Protocol retriever (built over ``catalog`` if not specified)
            sleep: Coroutine function used for the simulated stage latency
            clock: Time source for log entries
            settings: Settings providing stage delays
        """
        self.settings = settings or get_settings()
        self.store = store
        self.intelligence = intelligence or IntelligenceAdapter()
        self.catalog = catalog if catalog is not None else get_catalog()
        self.retriever = retriever or ProtocolRetriever(self.catalog)
        self.sleep = sleep or asyncio.sleep
        self.clock = clock or datetime.now

        self._run: Optional[PipelineRun] = None
        self._task: Optional[asyncio.Task] = None
        self._committing = False
        self._observers: list[Observer] = []
        self._graph = build_pipeline_graph(self)

    # Observation

    @property
    def active(self) -> bool:
        return self._run is not None and self._run.state == RunState.ACTIVE

    def snapshot(self) -> RunSnapshot:
        """Copy of the current (or last) run."""
        run = self._run
        if run is None:
            return RunSnapshot(stages=initial_stages())

        if run.state == RunState.ACTIVE:
            incident_status = IncidentStatus.ANALYZING
        else:
            incident = self.store.get_by_id(run.incident_id)
            incident_status = incident.status if incident else None

        return RunSnapshot(
            run_id=run.run_id,
            incident_id=run.incident_id,
            incident_status=incident_status,
            state=run.state,
            active=run.state == RunState.ACTIVE,
            stages=[stage.model_copy() for stage in run.stages],
            logs=[entry.model_copy() for entry in run.logs],
            started_at=run.started_at,
            finished_at=run.finished_at,
            error=run.error,
        )

    def subscribe(self, observer: Observer) -> Callable[[], None]:
        """Register an observer. Returns a function that unsubscribes it."""
        self._observers.append(observer)

        def unsubscribe() -> None:
            if observer in self._observers:
                self._observers.remove(observer)

        return unsubscribe

    def _notify(self) -> None:
        if not self._observers:
            return
        snapshot = self.snapshot()
        for observer in list(self._observers):
            try:
                observer(snapshot)
            except Exception:
                logger.exception("observer_failed", run_id=snapshot.run_id)

    # Stage bookkeeping used by the graph nodes

    def log(self, source: LogSource, message: str, degraded: bool = False) -> None:
        run = self._require_run()
        run.logs.append(
            LogEntry(timestamp=self.clock(), source=source, message=message, degraded=degraded)
        )
        logger.info(
            "pipeline_log",
            run_id=run.run_id,
            incident_id=run.incident_id,
            source=source.value,
            message=message,
            degraded=degraded,
        )
        self._notify()

    def stage_started(self, definition: StageDefinition) -> None:
        self._require_run().transition(definition.id, StageStatus.RUNNING)
        self._notify()

    def stage_succeeded(self, definition: StageDefinition) -> None:
        self._require_run().transition(definition.id, StageStatus.SUCCESS)
        self._notify()

    async def wait(self, seconds: float) -> None:
        await self.sleep(seconds)

    async def commit_dispatch(self, incident_id: str, decision: Decision) -> Incident:
        """Record a dispatch decision in the store from a worker thread.

        Once started the write always completes; ``cancel()`` waits for it
        instead of interrupting the run.
        """
        write = asyncio.ensure_future(
            asyncio.to_thread(self.store.mark_dispatched, incident_id, decision)
        )
        self._committing = True
        try:
            return await asyncio.shield(write)
        except asyncio.CancelledError:
            await write
            raise
        finally:
            self._committing = False

    def _require_run(self) -> PipelineRun:
        if self._run is None:
            raise RuntimeError("No pipeline run is bound")
        return self._run

    # Run lifecycle

    def start(self, incident_id: str) -> RunRequest:
        """Admit a run for an incident and schedule it on the running event loop.

        Rejected requests are no-ops: nothing about the current run changes.
        """
        rejection = self._admission_check(incident_id)
        if rejection is not None:
            logger.info("run_rejected", incident_id=incident_id, reason=rejection.value)
            return RunRequest(incident_id=incident_id, accepted=False, rejection=rejection)

        incident = self.store.get_by_id(incident_id)
        run = PipelineRun(incident, started_at=self.clock())
        self._run = run
        logger.info("run_started", run_id=run.run_id, incident_id=incident_id)
        self._notify()

        self._task = asyncio.get_running_loop().create_task(self._execute(run, incident))
        return RunRequest(incident_id=incident_id, accepted=True)

    async def analyze(self, incident_id: str) -> RunRequest:
        """Start a run and wait for it to reach a terminal state."""
        request = self.start(incident_id)
        if request.accepted:
            await self._task
        return request

    async def cancel(self) -> bool:
        """Cancel the active run.

        Returns False if there was nothing to cancel: no active run, or its
        dispatch is already being recorded, in which case the run is allowed
        to finish.
        """
        task = self._task
        run = self._run
        if task is None or task.done() or run is None:
            return False

        if self._committing:
            await asyncio.shield(task)
            return False

        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

        if run.state == RunState.ACTIVE:
            self._settle_cancelled(run)
        return True

    def reset(self) -> None:
        """Forget the last run. Has no effect while a run is active."""
        if self.active:
            return
        self._run = None
        self._task = None
        self._notify()

    def _admission_check(self, incident_id: str) -> Optional[RunRejection]:
        if self.active:
            return RunRejection.CONCURRENT_RUN
        incident = self.store.get_by_id(incident_id)
        if incident is None:
            return RunRejection.UNKNOWN_INCIDENT
        if incident.status == IncidentStatus.DISPATCHED:
            return RunRejection.ALREADY_DISPATCHED
        return None

    async def _execute(self, run: PipelineRun, incident: Incident) -> None:
        try:
            await self._graph.ainvoke(initial_state(incident))
        except asyncio.CancelledError:
            self._settle_cancelled(run)
            raise
        except Exception as e:
            logger.exception("run_failed", run_id=run.run_id, incident_id=run.incident_id)
            self._abort(run, f"{type(e).__name__}: {e}")
            return

        self._complete(run)

    def _dispatched(self, run: PipelineRun) -> bool:
        return run.stage(DISPATCH.id).status == StageStatus.SUCCESS

    def _settle_cancelled(self, run: PipelineRun) -> None:
        """Close a cancelled run: TERMINAL if dispatch already committed, FAILED otherwise."""
        if self._dispatched(run):
            self._complete(run)
        else:
            self._abort(run, "Run cancelled by operator")

    def _complete(self, run: PipelineRun) -> None:
        run.state = RunState.TERMINAL
        run.finished_at = self.clock()
        logger.info("run_completed", run_id=run.run_id, incident_id=run.incident_id)
        self._notify()

    def _abort(self, run: PipelineRun, reason: str) -> None:
        stage = run.current_stage
        if stage is not None:
            self.log(LogSource.SYSTEM, f"Stage {stage.id} ({stage.name}) failed: {reason}")
            run.transition(stage.id, StageStatus.FAILED)
        else:
            self.log(LogSource.SYSTEM, f"Run aborted: {reason}")
        run.state = RunState.FAILED
        run.error = reason
        run.finished_at = self.clock()
        self._notify()
