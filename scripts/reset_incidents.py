#!/usr/bin/env python3
"""Reset the incident store to the initial incident set."""

import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from src.config import get_settings
from src.data.incident_store import IncidentStore


def main():
    path = get_settings().incidents_file
    incidents = IncidentStore(path).clear()
    print(f"Reset {path} to {len(incidents)} incidents:")
    for incident in incidents:
        print(f"  {incident.id}  {incident.severity.value:<8} {incident.location}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
