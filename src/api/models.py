"""API request and response models."""

from typing import Optional

from pydantic import BaseModel, Field

from src.schema import Incident, RunRequest


class HealthResponse(BaseModel):
    """Response body for /health endpoint."""

    status: str
    version: str
    incident_count: int
    pipeline_active: bool
    llm_provider: str


class IncidentListResponse(BaseModel):
    """Response body for /incidents endpoint."""

    incidents: list[Incident]
    stats: dict = Field(default_factory=dict)


class IncidentResponse(BaseModel):
    """Response body for single-incident endpoints."""

    success: bool
    incident: Optional[Incident] = None
    error: Optional[str] = None


class AnalyzeResponse(BaseModel):
    """Response body for /incidents/{id}/analyze endpoint."""

    request: RunRequest
    run_id: Optional[str] = None


class CancelResponse(BaseModel):
    """Response body for /pipeline/cancel endpoint."""

    cancelled: bool
