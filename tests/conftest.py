"""Shared fixtures."""

from unittest.mock import AsyncMock

import pytest

from src.config import Settings
from src.data.incident_store import IncidentStore
from src.rag.intelligence import IntelligenceAdapter
from src.schema import Decision, Severity


@pytest.fixture
def settings() -> Settings:
    """Settings with the LLM pointed nowhere and no persistence path."""
    return Settings(_env_file=None, anthropic_api_key="test-key", openai_api_key="test-key")


@pytest.fixture
def store() -> IncidentStore:
    """In-memory store holding the initial incidents."""
    return IncidentStore(path=None)


@pytest.fixture
def intelligence() -> AsyncMock:
    """Intelligence adapter that answers with a fixed SITREP and decision."""
    adapter = AsyncMock(spec=IntelligenceAdapter)
    adapter.summarize.return_value = "Structural collapse with falling debris; people trapped."
    adapter.decide.return_value = Decision(
        severity=Severity.CRITICAL,
        resources=["Heavy Rescue", "Seismic Team", "Medical"],
        rationale="Per PROTOCOL-ALPHA-9: Establish 500m exclusion zone.",
    )
    adapter.generate_incident.return_value = None
    return adapter
