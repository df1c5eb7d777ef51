"""Tests for the pipeline state machine."""

import asyncio
import threading
import time
from datetime import datetime
from unittest.mock import MagicMock

import pytest

from src.data.incident_store import IncidentStore
from src.errors import IntelligenceUnavailable, InvalidStageTransition
from src.protocols.catalog import EMERGENCY_PROTOCOLS, ProtocolCatalog
from src.rag.pipeline import PipelineRun, PipelineRunner
from src.schema import (
    Decision,
    IncidentStatus,
    LogSource,
    ProtocolName,
    RunRejection,
    RunState,
    Severity,
    StageStatus,
)

STATUS_RANK = {
    StageStatus.IDLE: 0,
    StageStatus.RUNNING: 1,
    StageStatus.SUCCESS: 2,
    StageStatus.FAILED: 2,
}


async def no_sleep(seconds: float) -> None:
    return None


class BlockingSleep:
    """Sleep that parks the run until released."""

    def __init__(self):
        self.started = asyncio.Event()
        self.release = asyncio.Event()

    async def __call__(self, seconds: float) -> None:
        self.started.set()
        await self.release.wait()


@pytest.fixture
def make_runner(store, intelligence, settings):
    def _make(**overrides):
        kwargs = {
            "store": store,
            "intelligence": intelligence,
            "sleep": no_sleep,
            "clock": lambda: datetime(2025, 1, 15, 11, 0, 0),
            "settings": settings,
        }
        kwargs.update(overrides)
        return PipelineRunner(**kwargs)

    return _make


def messages(snapshot) -> list[str]:
    return [entry.message for entry in snapshot.logs]


class TestPipelineRun:
    """Tests for stage transitions on a single run."""

    def test_forward_transitions(self, store):
        run = PipelineRun(store.get_by_id("INC-2025-001"), started_at=datetime.now())
        run.transition("1", StageStatus.RUNNING)
        assert run.current_stage.id == "1"
        run.transition("1", StageStatus.SUCCESS)
        assert run.current_stage is None

    def test_backward_transition_rejected(self, store):
        run = PipelineRun(store.get_by_id("INC-2025-001"), started_at=datetime.now())
        run.transition("1", StageStatus.RUNNING)
        run.transition("1", StageStatus.SUCCESS)
        with pytest.raises(InvalidStageTransition):
            run.transition("1", StageStatus.RUNNING)

    def test_skip_running_rejected(self, store):
        run = PipelineRun(store.get_by_id("INC-2025-001"), started_at=datetime.now())
        with pytest.raises(InvalidStageTransition):
            run.transition("2", StageStatus.SUCCESS)

    def test_single_running_stage(self, store):
        run = PipelineRun(store.get_by_id("INC-2025-001"), started_at=datetime.now())
        run.transition("1", StageStatus.RUNNING)
        with pytest.raises(InvalidStageTransition):
            run.transition("2", StageStatus.RUNNING)


class TestSuccessfulRun:
    """Tests for a run where every stage succeeds."""

    @pytest.mark.asyncio
    async def test_run_reaches_terminal(self, make_runner, store):
        runner = make_runner()

        request = await runner.analyze("INC-2025-001")

        assert request.accepted is True
        snapshot = runner.snapshot()
        assert snapshot.state == RunState.TERMINAL
        assert snapshot.active is False
        assert snapshot.error is None
        assert all(stage.status == StageStatus.SUCCESS for stage in snapshot.stages)
        assert snapshot.incident_status == IncidentStatus.DISPATCHED

        incident = store.get_by_id("INC-2025-001")
        assert incident.status == IncidentStatus.DISPATCHED
        assert incident.severity == Severity.CRITICAL
        assert incident.resources == ["Heavy Rescue", "Seismic Team", "Medical"]
        assert incident.ai_analysis.startswith("Per PROTOCOL-ALPHA-9")

    @pytest.mark.asyncio
    async def test_log_narrative(self, make_runner):
        runner = make_runner()
        await runner.analyze("INC-2025-001")

        logs = messages(runner.snapshot())
        assert logs[0] == "Trigger: External System Webhook (INC-2025-001)"
        assert logs[1].startswith("Ingesting Raw Telemetry: [SYSTEM_LOG_V4]")
        assert "Executing Task: 2_summarize_telemetry" in logs
        assert "Protocol Match: [STRUCTURAL]" in logs
        assert "Confidence Score: 0.98" in logs
        assert 'Retrieved Protocol: "PROTOCOL-ALPHA-9: STRUCTURAL FAILURE"' in logs
        assert "Decision: CRITICAL SEVERITY" in logs
        assert "Branching Flow: CRITICAL Response path (alert_national_guard)" in logs
        assert logs[-1] == "Workflow completed successfully."
        assert not runner.snapshot().degraded

    @pytest.mark.asyncio
    async def test_high_severity_branch(self, make_runner, intelligence, store):
        intelligence.decide.return_value = Decision(
            severity="HIGH", resources=["Hazmat"], rationale="HAZMAT-4"
        )
        runner = make_runner()
        await runner.analyze("INC-2025-002")

        assert "Branching Flow: HIGH Response path (alert_emergency_services)" in messages(
            runner.snapshot()
        )
        assert store.get_by_id("INC-2025-002").severity == Severity.HIGH

    @pytest.mark.asyncio
    async def test_default_branch(self, make_runner, intelligence):
        intelligence.decide.return_value = Decision(
            severity="LOW", resources=[], rationale="Monitor."
        )
        runner = make_runner()
        await runner.analyze("INC-2025-003")

        logs = messages(runner.snapshot())
        assert "Branching Flow: LOW Response path (log_monitor)" in logs
        assert "Dispatching: no resources" in logs

    @pytest.mark.asyncio
    async def test_stage_invariants_seen_by_observer(self, make_runner):
        runner = make_runner()
        snapshots = []
        runner.subscribe(snapshots.append)

        await runner.analyze("INC-2025-001")

        assert snapshots
        for snapshot in snapshots:
            assert len(snapshot.running_stages) <= 1
        for earlier, later in zip(snapshots, snapshots[1:]):
            for before, after in zip(earlier.stages, later.stages):
                assert STATUS_RANK[after.status] >= STATUS_RANK[before.status]
        # Stages start in order
        first_running = {}
        for i, snapshot in enumerate(snapshots):
            for stage in snapshot.running_stages:
                first_running.setdefault(stage.id, i)
        assert list(first_running) == ["1", "2", "3", "4", "5"]

    @pytest.mark.asyncio
    async def test_retrieval_uses_sitrep(self, make_runner, intelligence):
        # Traffic incident, but the SITREP describes a structural collapse
        runner = make_runner()
        await runner.analyze("INC-2025-003")

        assert "Protocol Match: [STRUCTURAL]" in messages(runner.snapshot())
        protocol_body = intelligence.decide.call_args.args[1]
        assert protocol_body == EMERGENCY_PROTOCOLS[ProtocolName.STRUCTURAL]

    @pytest.mark.asyncio
    async def test_single_store_mutation(self, make_runner, store):
        store.mark_dispatched = MagicMock(wraps=store.mark_dispatched)
        store.add = MagicMock(wraps=store.add)
        runner = make_runner()

        await runner.analyze("INC-2025-001")

        store.mark_dispatched.assert_called_once()
        store.add.assert_not_called()

    @pytest.mark.asyncio
    async def test_unsubscribe(self, make_runner):
        runner = make_runner()
        seen = []
        unsubscribe = runner.subscribe(seen.append)
        unsubscribe()

        await runner.analyze("INC-2025-001")

        assert seen == []

    @pytest.mark.asyncio
    async def test_failing_observer_does_not_break_run(self, make_runner):
        runner = make_runner()
        runner.subscribe(MagicMock(side_effect=RuntimeError("observer down")))

        await runner.analyze("INC-2025-001")

        assert runner.snapshot().state == RunState.TERMINAL


class TestDegradedRun:
    """Tests for intelligence failures recovered with fallback values."""

    @pytest.mark.asyncio
    async def test_summarize_failure(self, make_runner, intelligence):
        intelligence.summarize.side_effect = IntelligenceUnavailable("timeout")
        runner = make_runner()

        await runner.analyze("INC-2025-002")

        snapshot = runner.snapshot()
        assert snapshot.state == RunState.TERMINAL
        assert snapshot.degraded
        degraded = [e for e in snapshot.logs if e.degraded]
        assert degraded[0].source == LogSource.SYSTEM
        assert degraded[0].message.startswith("[DEGRADED]")
        # The fallback SITREP carries no protocol keywords
        assert "Protocol Match: [DEFAULT]" in messages(snapshot)
        assert intelligence.decide.call_args.args[0] == "CRITICAL ERROR: Telemetry ingestion failed."

    @pytest.mark.asyncio
    async def test_decide_failure_uses_fail_safe(self, make_runner, intelligence, store):
        intelligence.decide.side_effect = IntelligenceUnavailable("bad json")
        runner = make_runner()

        await runner.analyze("INC-2025-003")

        snapshot = runner.snapshot()
        assert snapshot.state == RunState.TERMINAL
        assert all(stage.status == StageStatus.SUCCESS for stage in snapshot.stages)
        assert "Branching Flow: CRITICAL Response path (alert_national_guard)" in messages(snapshot)

        incident = store.get_by_id("INC-2025-003")
        assert incident.status == IncidentStatus.DISPATCHED
        assert incident.severity == Severity.CRITICAL
        assert incident.resources == ["Manual Intervention"]
        assert incident.ai_analysis == "AI Connection Lost"

    @pytest.mark.asyncio
    async def test_both_failures(self, make_runner, intelligence, store):
        intelligence.summarize.side_effect = IntelligenceUnavailable("down")
        intelligence.decide.side_effect = IntelligenceUnavailable("down")
        runner = make_runner()

        await runner.analyze("INC-2025-001")

        assert runner.snapshot().state == RunState.TERMINAL
        assert store.get_by_id("INC-2025-001").resources == ["Manual Intervention"]


class TestFailedRun:
    """Tests for failures that abort the run."""

    @pytest.mark.asyncio
    async def test_unknown_protocol_fails_retrieval(self, make_runner, store):
        catalog = ProtocolCatalog({ProtocolName.DEFAULT: EMERGENCY_PROTOCOLS[ProtocolName.DEFAULT]})
        runner = make_runner(catalog=catalog)

        await runner.analyze("INC-2025-001")

        snapshot = runner.snapshot()
        assert snapshot.state == RunState.FAILED
        assert [s.status for s in snapshot.stages] == [
            StageStatus.SUCCESS,
            StageStatus.SUCCESS,
            StageStatus.FAILED,
            StageStatus.IDLE,
            StageStatus.IDLE,
        ]
        assert "Unknown protocol: STRUCTURAL" in snapshot.error
        assert any(m.startswith("Stage 3 (Fetch Protocol) failed") for m in messages(snapshot))

        incident = store.get_by_id("INC-2025-001")
        assert incident.status == IncidentStatus.PENDING
        assert incident.resources is None
        assert snapshot.incident_status == IncidentStatus.PENDING

    @pytest.mark.asyncio
    async def test_persistence_failure_fails_dispatch(self, make_runner, tmp_path):
        store = IncidentStore(tmp_path / "incidents.jsonl")
        store.loader.save_jsonl = MagicMock(side_effect=OSError("disk full"))
        runner = make_runner(store=store)

        await runner.analyze("INC-2025-001")

        snapshot = runner.snapshot()
        assert snapshot.state == RunState.FAILED
        assert snapshot.stages[4].status == StageStatus.FAILED
        assert all(s.status == StageStatus.SUCCESS for s in snapshot.stages[:4])
        assert "disk full" in snapshot.error
        assert store.get_by_id("INC-2025-001").status == IncidentStatus.PENDING

    @pytest.mark.asyncio
    async def test_failed_incident_can_run_again(self, make_runner, intelligence, store):
        intelligence.summarize.side_effect = [RuntimeError("boom"), "Structural collapse."]
        runner = make_runner()

        await runner.analyze("INC-2025-001")
        assert runner.snapshot().state == RunState.FAILED
        assert runner.snapshot().stages[1].status == StageStatus.FAILED

        request = await runner.analyze("INC-2025-001")
        assert request.accepted
        assert runner.snapshot().state == RunState.TERMINAL


class TestAdmission:
    """Tests for run admission and rejection."""

    @pytest.mark.asyncio
    async def test_unknown_incident(self, make_runner):
        runner = make_runner()
        request = runner.start("INC-NOPE")
        assert request.accepted is False
        assert request.rejection == RunRejection.UNKNOWN_INCIDENT
        assert runner.snapshot().run_id is None

    @pytest.mark.asyncio
    async def test_already_dispatched(self, make_runner):
        runner = make_runner()
        await runner.analyze("INC-2025-001")
        last_run = runner.snapshot()

        request = await runner.analyze("INC-2025-001")

        assert request.rejection == RunRejection.ALREADY_DISPATCHED
        assert runner.snapshot() == last_run

    @pytest.mark.asyncio
    async def test_concurrent_run_rejected(self, make_runner, store):
        sleep = BlockingSleep()
        runner = make_runner(sleep=sleep)

        first = asyncio.create_task(runner.analyze("INC-2025-001"))
        await sleep.started.wait()

        in_progress = runner.snapshot()
        assert in_progress.active is True
        assert in_progress.incident_status == IncidentStatus.ANALYZING
        assert store.get_by_id("INC-2025-001").status == IncidentStatus.PENDING

        for incident_id in ("INC-2025-001", "INC-2025-002"):
            request = runner.start(incident_id)
            assert request.accepted is False
            assert request.rejection == RunRejection.CONCURRENT_RUN
        assert runner.snapshot() == in_progress

        sleep.release.set()
        await first

        assert runner.snapshot().state == RunState.TERMINAL
        assert runner.snapshot().incident_id == "INC-2025-001"
        assert store.get_by_id("INC-2025-002").status == IncidentStatus.PENDING

    @pytest.mark.asyncio
    async def test_new_run_replaces_last(self, make_runner):
        runner = make_runner()
        await runner.analyze("INC-2025-001")
        first_run = runner.snapshot().run_id

        await runner.analyze("INC-2025-002")

        snapshot = runner.snapshot()
        assert snapshot.run_id != first_run
        assert snapshot.incident_id == "INC-2025-002"
        assert messages(snapshot)[0] == "Trigger: External System Webhook (INC-2025-002)"


class TestCancelAndReset:
    """Tests for cancelling and resetting runs."""

    @pytest.mark.asyncio
    async def test_cancel_active_run(self, make_runner, store):
        sleep = BlockingSleep()
        runner = make_runner(sleep=sleep)

        runner.start("INC-2025-001")
        await sleep.started.wait()

        assert await runner.cancel() is True

        snapshot = runner.snapshot()
        assert snapshot.state == RunState.FAILED
        assert snapshot.stages[0].status == StageStatus.FAILED
        assert "cancelled" in snapshot.error
        assert store.get_by_id("INC-2025-001").status == IncidentStatus.PENDING

    @pytest.mark.asyncio
    async def test_cancel_without_run(self, make_runner):
        assert await make_runner().cancel() is False

    @pytest.mark.asyncio
    async def test_reset_ignored_while_active(self, make_runner):
        sleep = BlockingSleep()
        runner = make_runner(sleep=sleep)
        runner.start("INC-2025-001")
        await sleep.started.wait()

        runner.reset()
        assert runner.snapshot().active is True

        await runner.cancel()
        runner.reset()
        snapshot = runner.snapshot()
        assert snapshot.run_id is None
        assert snapshot.state == RunState.IDLE
        assert all(s.status == StageStatus.IDLE for s in snapshot.stages)


class TestCancelAfterDispatch:
    """Tests for cancels that arrive once the incident is dispatched."""

    @pytest.mark.asyncio
    async def test_cancel_after_completion_keeps_run_terminal(self, make_runner, store):
        runner = make_runner()
        cancels = []

        def cancel_on_completion(snapshot):
            last = snapshot.logs[-1].message if snapshot.logs else None
            if not cancels and last == "Workflow completed successfully.":
                cancels.append(asyncio.ensure_future(runner.cancel()))

        runner.subscribe(cancel_on_completion)
        runner.start("INC-2025-001")
        for _ in range(500):
            if cancels and cancels[0].done():
                break
            await asyncio.sleep(0.01)

        assert cancels and cancels[0].done()
        snapshot = runner.snapshot()
        assert snapshot.state == RunState.TERMINAL
        assert snapshot.error is None
        assert all(stage.status == StageStatus.SUCCESS for stage in snapshot.stages)
        assert not any(m.startswith("Run aborted") for m in messages(snapshot))
        assert store.get_by_id("INC-2025-001").status == IncidentStatus.DISPATCHED

    @pytest.mark.asyncio
    async def test_cancel_during_store_write(self, make_runner, store):
        write_started = threading.Event()
        real_mark_dispatched = store.mark_dispatched

        def slow_mark_dispatched(incident_id, decision):
            write_started.set()
            time.sleep(0.05)
            return real_mark_dispatched(incident_id, decision)

        store.mark_dispatched = slow_mark_dispatched
        runner = make_runner()
        runner.start("INC-2025-001")
        for _ in range(500):
            if write_started.is_set():
                break
            await asyncio.sleep(0.01)
        assert write_started.is_set()

        assert await runner.cancel() is False

        snapshot = runner.snapshot()
        assert snapshot.state == RunState.TERMINAL
        assert snapshot.error is None
        assert snapshot.stages[4].status == StageStatus.SUCCESS
        assert messages(snapshot)[-1] == "Workflow completed successfully."
        assert store.get_by_id("INC-2025-001").status == IncidentStatus.DISPATCHED

    @pytest.mark.asyncio
    async def test_store_write_runs_off_event_loop(self, make_runner, store):
        threads = []
        real_mark_dispatched = store.mark_dispatched

        def recording_mark_dispatched(incident_id, decision):
            threads.append(threading.get_ident())
            return real_mark_dispatched(incident_id, decision)

        store.mark_dispatched = recording_mark_dispatched
        runner = make_runner()

        await runner.analyze("INC-2025-001")

        assert runner.snapshot().state == RunState.TERMINAL
        assert threads and threads[0] != threading.get_ident()
