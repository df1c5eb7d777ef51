#!/usr/bin/env python3
"""Export the workflow definition YAML for an incident."""

import argparse
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from src.config import LLMProvider, get_settings
from src.data.incident_store import IncidentStore
from src.workflow.generator import WORKFLOW_FILENAME, generate_workflow_yaml


def main():
    parser = argparse.ArgumentParser(description="Export workflow YAML for an incident")
    parser.add_argument("incident_id", help="Incident ID, e.g. INC-2025-001")
    parser.add_argument(
        "--output",
        type=Path,
        default=Path(WORKFLOW_FILENAME),
        help="Output path for the YAML file ('-' for stdout)",
    )
    parser.add_argument(
        "--provider",
        choices=[p.value for p in LLMProvider],
        help="LLM provider for the chat tasks (default: from settings)",
    )

    args = parser.parse_args()

    store = IncidentStore(get_settings().incidents_file)
    incident = store.get_by_id(args.incident_id)
    if incident is None:
        print(f"Incident not found: {args.incident_id}")
        return 1

    provider = LLMProvider(args.provider) if args.provider else None
    text = generate_workflow_yaml(incident, provider=provider)

    if str(args.output) == "-":
        print(text)
    else:
        args.output.parent.mkdir(parents=True, exist_ok=True)
        args.output.write_text(text)
        print(f"Saved workflow for {incident.id} to {args.output}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
