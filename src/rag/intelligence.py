"""Adapter around the LLM for summarization, decisions and synthetic incidents."""

import uuid
from datetime import date, datetime, time
from typing import Optional

import structlog
from pydantic import ValidationError

from src.errors import IntelligenceUnavailable
from src.rag.llm_client import LLMClient
from src.schema import Decision, Incident, IncidentStatus, Severity

logger = structlog.get_logger(__name__)

EMPTY_SITREP = "Data stream inconclusive."
FALLBACK_SITREP = "CRITICAL ERROR: Telemetry ingestion failed."
FALLBACK_DECISION = Decision(
    severity=Severity.CRITICAL,
    resources=["Manual Intervention"],
    rationale="AI Connection Lost",
)

COMMANDER_SYSTEM_PROMPT = """You are the brain of ResQ-AI, an autonomous disaster response agent.
Your input will be a situation report AND a specific Safety Protocol.

Your task is to:
1. ANALYZE the severity.
2. DETERMINE resources based on the PROTOCOL provided.
3. Provide a rationale that EXPLICITLY QUOTES the protocol used."""

SUMMARIZE_PROMPT = """You are a Data Ingestion Agent for ResQ-AI.

TASK:
Summarize the following RAW TELEMETRY DATA from external sensors/systems.
Convert technical logs into a concise, human-readable Situation Report (SITREP).
Focus strictly on facts: confirmed hazards, casualty counts, and structural status.

RAW DATA:
{raw_telemetry}

OUTPUT:
A single paragraph summary (max 30 words)."""

DECIDE_PROMPT = """SITUATION REPORT (SITREP):
{sitrep}

=== MANDATORY SAFETY PROTOCOL ===
{protocol}
================================

ACT AS INCIDENT COMMANDER.
Based on the SITREP and the PROTOCOL above:
1. Determine the Severity (LOW, MEDIUM, HIGH, CRITICAL).
2. List 3 key resources to dispatch.
3. Provide a rationale that EXPLICITLY QUOTES the protocol used.

Output strictly in JSON format:
{{
    "severity": "...",
    "resources": ["...", "..."],
    "rationale": "..."
}}"""

GENERATE_INCIDENT_PROMPT = """Generate a realistic disaster scenario with TWO parts:
1. A general description.
2. "Raw Telemetry" which looks like technical log data, sensor readings, or code output that defines the disaster.

Output JSON:
{
    "location": "Sector name...",
    "description": "Short description...",
    "rawTelemetry": "String containing logs/sensor data...",
    "severity": "LOW|MEDIUM|HIGH|CRITICAL",
    "timestamp": "HH:MM:SS"
}"""


def new_incident_id(today: Optional[date] = None) -> str:
    year = (today or date.today()).year
    return f"INC-{year}-{uuid.uuid4().hex[:6].upper()}"


def _parse_clock_time(value) -> datetime:
    """Combine an ``HH:MM:SS`` reading with today's date, or fall back to now."""
    if isinstance(value, str):
        try:
            return datetime.combine(date.today(), time.fromisoformat(value.strip()))
        except ValueError:
            pass
    return datetime.now()


class IntelligenceAdapter:
    """Text-in/text-out intelligence capability consumed by the pipeline.

    ``summarize`` and ``decide`` raise ``IntelligenceUnavailable`` on any failure;
    substituting fallback values is the caller's job.
    """

    def __init__(self, llm_client: Optional[LLMClient] = None):
        self.llm_client = llm_client or LLMClient()

    async def summarize(self, raw_telemetry: str) -> str:
        """Turn raw telemetry into a short SITREP."""
        try:
            text = await self.llm_client.generate(
                prompt=SUMMARIZE_PROMPT.format(raw_telemetry=raw_telemetry),
                temperature=0.3,
            )
        except Exception as e:
            logger.warning("summarize_failed", error=str(e))
            raise IntelligenceUnavailable(f"Summarization failed: {e}") from e

        return text.strip() or EMPTY_SITREP

    async def decide(self, sitrep: str, protocol_body: str) -> Decision:
        """Decide severity and resources for a SITREP under a protocol."""
        try:
            data = await self.llm_client.generate_json(
                prompt=DECIDE_PROMPT.format(sitrep=sitrep, protocol=protocol_body),
                system_prompt=COMMANDER_SYSTEM_PROMPT,
                temperature=0.2,
            )
        except Exception as e:
            logger.warning("decide_failed", error=str(e))
            raise IntelligenceUnavailable(f"Decision failed: {e}") from e

        try:
            return Decision(
                severity=data.get("severity"),
                resources=data.get("resources") or [],
                rationale=data.get("rationale", ""),
            )
        except ValidationError as e:
            logger.warning("decide_invalid_response", error=str(e))
            raise IntelligenceUnavailable(f"Decision response failed validation: {e}") from e

    async def generate_incident(self) -> Optional[Incident]:
        """Generate a synthetic PENDING incident. Returns None on any failure."""
        try:
            data = await self.llm_client.generate_json(
                prompt=GENERATE_INCIDENT_PROMPT,
                temperature=0.9,
            )
            incident = Incident(
                id=new_incident_id(),
                timestamp=_parse_clock_time(data.get("timestamp")),
                location=data["location"],
                description=data["description"],
                raw_telemetry=data.get("rawTelemetry") or data["raw_telemetry"],
                severity=data.get("severity", Severity.HIGH),
                status=IncidentStatus.PENDING,
            )
        except Exception as e:
            logger.warning("generate_incident_failed", error=str(e))
            return None

        logger.info("incident_generated", incident_id=incident.id, location=incident.location)
        return incident
