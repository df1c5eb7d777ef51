"""Pydantic models for incidents, protocols and pipeline runs."""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class Severity(str, Enum):
    """Incident severity levels."""

    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


class IncidentStatus(str, Enum):
    """Incident lifecycle. Only ever moves forward."""

    PENDING = "PENDING"
    ANALYZING = "ANALYZING"
    DISPATCHED = "DISPATCHED"


STATUS_ORDER = {
    IncidentStatus.PENDING: 0,
    IncidentStatus.ANALYZING: 1,
    IncidentStatus.DISPATCHED: 2,
}


def _upper(value):
    if isinstance(value, str):
        return value.strip().upper()
    return value


class Incident(BaseModel):
    """An incoming incident with raw sensor telemetry."""

    id: str = Field(..., min_length=1, description="Unique incident identifier")
    timestamp: datetime = Field(default_factory=datetime.now, description="Time the signal arrived")
    location: str = Field(..., description="Sector or site of the incident")
    description: str = Field(..., description="Operator-facing description")
    raw_telemetry: str = Field(..., description="Raw sensor/system output")
    severity: Severity = Field(default=Severity.MEDIUM, description="Severity level")
    status: IncidentStatus = Field(default=IncidentStatus.PENDING)
    resources: Optional[list[str]] = Field(None, description="Resources dispatched")
    ai_analysis: Optional[str] = Field(None, description="Decision rationale")

    @field_validator("severity", "status", mode="before")
    @classmethod
    def normalize_case(cls, value):
        return _upper(value)

    @model_validator(mode="after")
    def check_dispatch_outcome(self) -> "Incident":
        dispatched = self.status == IncidentStatus.DISPATCHED
        has_outcome = self.resources is not None and self.ai_analysis is not None
        has_any = self.resources is not None or self.ai_analysis is not None
        if dispatched and not has_outcome:
            raise ValueError("a DISPATCHED incident needs both resources and ai_analysis")
        if not dispatched and has_any:
            raise ValueError("resources and ai_analysis are only set once DISPATCHED")
        return self


class ProtocolName(str, Enum):
    """Names of the fixed safety protocols."""

    STRUCTURAL = "STRUCTURAL"
    CHEMICAL = "CHEMICAL"
    TRAFFIC = "TRAFFIC"
    DEFAULT = "DEFAULT"


class Protocol(BaseModel):
    """A named safety procedure used to ground a dispatch decision."""

    model_config = ConfigDict(frozen=True)

    name: ProtocolName
    body: str

    @property
    def title(self) -> str:
        """First line of the body, e.g. ``PROTOCOL-ALPHA-9: STRUCTURAL FAILURE``."""
        return self.body.split("\n", 1)[0]

    @property
    def directives(self) -> list[str]:
        return [line.strip() for line in self.body.split("\n")[1:] if line.strip()]


class RetrievalResult(BaseModel):
    """Protocol matched for a situation report."""

    protocol: Protocol
    confidence: float = Field(..., ge=0.0, le=1.0)


class Decision(BaseModel):
    """Severity, resources and rationale decided for an incident."""

    severity: Severity
    resources: list[str] = Field(default_factory=list)
    rationale: str

    @field_validator("severity", mode="before")
    @classmethod
    def normalize_case(cls, value):
        return _upper(value)


class StageStatus(str, Enum):
    IDLE = "IDLE"
    RUNNING = "RUNNING"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"


class Stage(BaseModel):
    """One of the five ordered steps of a pipeline run."""

    id: str
    name: str
    task_id: str
    status: StageStatus = StageStatus.IDLE


class LogSource(str, Enum):
    ORCHESTRATOR = "ORCHESTRATOR"
    INTELLIGENCE = "INTELLIGENCE"
    SYSTEM = "SYSTEM"


class LogEntry(BaseModel):
    """A single entry of a run's operator log."""

    timestamp: datetime
    source: LogSource
    message: str
    degraded: bool = False


class RunState(str, Enum):
    IDLE = "IDLE"
    ACTIVE = "ACTIVE"
    TERMINAL = "TERMINAL"
    FAILED = "FAILED"


class RunSnapshot(BaseModel):
    """Read-only view of the current (or last) pipeline run."""

    run_id: Optional[str] = None
    incident_id: Optional[str] = None
    incident_status: Optional[IncidentStatus] = None
    state: RunState = RunState.IDLE
    active: bool = False
    stages: list[Stage] = Field(default_factory=list)
    logs: list[LogEntry] = Field(default_factory=list)
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    error: Optional[str] = None

    @property
    def running_stages(self) -> list[Stage]:
        return [s for s in self.stages if s.status == StageStatus.RUNNING]

    @property
    def degraded(self) -> bool:
        return any(entry.degraded for entry in self.logs)

    def newest_first(self) -> list[LogEntry]:
        """Log entries in display order."""
        return list(reversed(self.logs))


class RunRejection(str, Enum):
    """Why a run request was ignored."""

    CONCURRENT_RUN = "CONCURRENT_RUN"
    ALREADY_DISPATCHED = "ALREADY_DISPATCHED"
    UNKNOWN_INCIDENT = "UNKNOWN_INCIDENT"


class RunRequest(BaseModel):
    """Outcome of asking the pipeline to analyze an incident."""

    incident_id: str
    accepted: bool
    rejection: Optional[RunRejection] = None
