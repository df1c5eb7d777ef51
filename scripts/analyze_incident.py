#!/usr/bin/env python3
"""Run one incident through the response pipeline and print its log."""

import argparse
import asyncio
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from src.config import get_settings
from src.data.incident_store import IncidentStore
from src.errors import IntelligenceUnavailable
from src.logging_config import configure_logging
from src.rag.intelligence import IntelligenceAdapter
from src.rag.pipeline import PipelineRunner


class OfflineIntelligence(IntelligenceAdapter):
    """Adapter that is always unavailable, exercising the fallback path."""

    def __init__(self):
        pass

    async def summarize(self, raw_telemetry: str) -> str:
        raise IntelligenceUnavailable("offline mode")

    async def decide(self, sitrep: str, protocol_body: str):
        raise IntelligenceUnavailable("offline mode")

    async def generate_incident(self):
        return None


async def no_delay(seconds: float) -> None:
    return None


def main():
    parser = argparse.ArgumentParser(description="Analyze an incident")
    parser.add_argument("incident_id", help="Incident ID, e.g. INC-2025-001")
    parser.add_argument(
        "--store",
        type=Path,
        default=None,
        help="Incidents JSONL file (default: from settings)",
    )
    parser.add_argument(
        "--no-delay",
        action="store_true",
        help="Skip the simulated stage latency",
    )
    parser.add_argument(
        "--offline",
        action="store_true",
        help="Do not call the LLM; run on fallback values",
    )

    args = parser.parse_args()

    settings = get_settings()
    configure_logging(settings)

    store = IncidentStore(args.store or settings.incidents_file)
    runner = PipelineRunner(
        store=store,
        intelligence=OfflineIntelligence() if args.offline else IntelligenceAdapter(),
        sleep=no_delay if args.no_delay else None,
    )

    request = asyncio.run(runner.analyze(args.incident_id))
    if not request.accepted:
        print(f"Run rejected: {request.rejection.value}")
        return 1

    snapshot = runner.snapshot()
    print(f"\nRun {snapshot.run_id} for {snapshot.incident_id}: {snapshot.state.value}")
    print("=" * 60)
    for stage in snapshot.stages:
        print(f"  [{stage.status.value:<7}] {stage.id}. {stage.name}")

    print("\nLog:")
    for entry in snapshot.logs:
        print(f"  {entry.timestamp:%H:%M:%S} {entry.source.value:<12} {entry.message}")

    incident = store.get_by_id(args.incident_id)
    print("\nIncident:")
    print(f"  Status: {incident.status.value}")
    print(f"  Severity: {incident.severity.value}")
    if incident.resources is not None:
        print(f"  Resources: {', '.join(incident.resources)}")
        print(f"  Rationale: {incident.ai_analysis}")

    return 0 if snapshot.error is None else 1


if __name__ == "__main__":
    sys.exit(main())
