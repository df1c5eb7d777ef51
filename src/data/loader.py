"""JSONL persistence for incident records."""

import json
import os
import tempfile
from pathlib import Path

from src.schema import Incident


class IncidentLoader:
    """Read and write incident lists as JSONL files."""

    def load_jsonl(self, path: Path) -> list[Incident]:
        """Load incidents from a JSONL file, skipping blank lines."""
        incidents = []
        with open(path) as f:
            for line in f:
                line = line.strip()
                if line:
                    incidents.append(Incident(**json.loads(line)))
        return incidents

    def save_jsonl(self, incidents: list[Incident], path: Path) -> None:
        """Save incidents to a JSONL file.

        Writes to a temporary file in the same directory and renames it over
        ``path``, so readers never see a half-written list.
        """
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w") as f:
                for incident in incidents:
                    f.write(incident.model_dump_json() + "\n")
            os.replace(tmp_name, path)
        except BaseException:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise
