"""Incident storage module."""

from src.data.incident_store import IncidentStore
from src.data.loader import IncidentLoader
from src.data.seed import INITIAL_INCIDENTS

__all__ = ["IncidentStore", "IncidentLoader", "INITIAL_INCIDENTS"]
