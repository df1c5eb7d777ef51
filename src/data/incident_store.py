"""Incident storage persisted as JSONL on every mutation."""

import threading
from collections import Counter
from pathlib import Path
from typing import Optional

import structlog

from src.data.loader import IncidentLoader
from src.data.seed import INITIAL_INCIDENTS
from src.schema import STATUS_ORDER, Decision, Incident, IncidentStatus

logger = structlog.get_logger(__name__)


class IncidentStore:
    """Ordered incident list, newest first, with whole-list persistence.

    Every mutation writes the full list to ``path`` before it becomes visible
    in memory, so a failed write leaves the store unchanged. With
    ``path=None`` the store lives in memory only.
    """

    def __init__(
        self,
        path: Optional[Path] = None,
        seed: Optional[list[Incident]] = None,
    ):
        """Initialize store and load its incidents.

        Args:
            path: JSONL file backing the store. In-memory only if None.
            seed: Incidents used when no file exists yet and on ``clear()``.
        """
        self.path = path
        self.loader = IncidentLoader()
        self._seed = seed if seed is not None else INITIAL_INCIDENTS
        self._incidents: list[Incident] = []
        self._lock = threading.Lock()
        self.load()

    def load(self) -> list[Incident]:
        """Load incidents from disk, or from the seed set if there is no file."""
        with self._lock:
            if self.path is not None and self.path.exists():
                self._incidents = self.loader.load_jsonl(self.path)
                logger.info("incidents_loaded", path=str(self.path), count=len(self._incidents))
            else:
                self._incidents = self._seed_copy()
        return self.get_all()

    def _seed_copy(self) -> list[Incident]:
        return [incident.model_copy(deep=True) for incident in self._seed]

    def _persist(self, incidents: list[Incident]) -> None:
        if self.path is not None:
            self.loader.save_jsonl(incidents, self.path)

    def _index_of(self, incident_id: str) -> int:
        for i, incident in enumerate(self._incidents):
            if incident.id == incident_id:
                return i
        raise KeyError(f"Incident not found: {incident_id}")

    def get_by_id(self, incident_id: str) -> Optional[Incident]:
        """Get a copy of an incident by ID."""
        with self._lock:
            for incident in self._incidents:
                if incident.id == incident_id:
                    return incident.model_copy(deep=True)
        return None

    def get_all(self) -> list[Incident]:
        """Get copies of all incidents, newest first."""
        with self._lock:
            return [incident.model_copy(deep=True) for incident in self._incidents]

    def add(self, incident: Incident) -> Incident:
        """Add an incident at the head of the list.

        Raises:
            ValueError: if an incident with the same ID already exists
        """
        with self._lock:
            if any(existing.id == incident.id for existing in self._incidents):
                raise ValueError(f"Duplicate incident id: {incident.id}")
            stored = incident.model_copy(deep=True)
            incidents = [stored, *self._incidents]
            self._persist(incidents)
            self._incidents = incidents
        logger.info("incident_added", incident_id=incident.id)
        return stored.model_copy(deep=True)

    def mark_dispatched(self, incident_id: str, decision: Decision) -> Incident:
        """Apply a dispatch decision: status, severity, resources and rationale together.

        Raises:
            KeyError: if the incident does not exist
            ValueError: if the incident is already DISPATCHED
        """
        with self._lock:
            index = self._index_of(incident_id)
            current = self._incidents[index]
            if STATUS_ORDER[current.status] >= STATUS_ORDER[IncidentStatus.DISPATCHED]:
                raise ValueError(f"Incident {incident_id} is already {current.status.value}")

            updated = Incident.model_validate(
                {
                    **current.model_dump(),
                    "status": IncidentStatus.DISPATCHED,
                    "severity": decision.severity,
                    "resources": list(decision.resources),
                    "ai_analysis": decision.rationale,
                }
            )
            incidents = list(self._incidents)
            incidents[index] = updated
            self._persist(incidents)
            self._incidents = incidents

        logger.info(
            "incident_dispatched",
            incident_id=incident_id,
            severity=decision.severity.value,
            resources=decision.resources,
        )
        return updated.model_copy(deep=True)

    def clear(self) -> list[Incident]:
        """Reset to the seed set and persist it."""
        with self._lock:
            incidents = self._seed_copy()
            self._persist(incidents)
            self._incidents = incidents
        logger.info("incidents_cleared", count=len(incidents))
        return self.get_all()

    def get_stats(self) -> dict:
        """Get statistics about stored incidents."""
        incidents = self.get_all()

        if not incidents:
            return {"total": 0}

        statuses = Counter(i.status.value for i in incidents)
        severities = Counter(i.severity.value for i in incidents)

        return {
            "total": len(incidents),
            "by_status": dict(statuses),
            "by_severity": dict(severities),
            "active": sum(1 for i in incidents if i.status != IncidentStatus.DISPATCHED),
        }
