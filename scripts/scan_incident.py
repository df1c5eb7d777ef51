#!/usr/bin/env python3
"""Generate a synthetic incident and add it to the store."""

import asyncio
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from src.config import get_settings
from src.data.incident_store import IncidentStore
from src.logging_config import configure_logging
from src.rag.intelligence import IntelligenceAdapter


def main():
    settings = get_settings()
    configure_logging(settings)

    print("Scanning for signal...")
    incident = asyncio.run(IntelligenceAdapter().generate_incident())
    if incident is None:
        print("No signal: incident generation failed")
        return 1

    store = IncidentStore(settings.incidents_file)
    store.add(incident)

    print(f"Added {incident.id}")
    print(f"  Location: {incident.location}")
    print(f"  Severity: {incident.severity.value}")
    print(f"  Description: {incident.description}")
    print(f"  Telemetry: {incident.raw_telemetry[:100]}...")
    return 0


if __name__ == "__main__":
    sys.exit(main())
