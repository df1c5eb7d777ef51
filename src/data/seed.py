"""Initial incident set the store starts from and resets to."""

from datetime import datetime

from src.schema import Incident, IncidentStatus, Severity

INITIAL_INCIDENTS: list[Incident] = [
    Incident(
        id="INC-2025-001",
        timestamp=datetime(2025, 1, 15, 10, 42, 15),
        location="Sector 4 - Downtown Metro",
        description="Structural collapse at central station.",
        raw_telemetry="""[SYSTEM_LOG_V4] SOURCE: STRUCTURAL_MONITOR_04
> VIBRATION_SENSOR_X: 8.4 (CRITICAL)
> DUST_PARTICLE_PM2.5: 4500 (HAZARDOUS)
> AUDIO_INPUT: "Help... trapped... falling debris..."
> THERMAL_CAM_02: MULTIPLE_HEAT_SIGNATURES_DETECTED_UNDER_RUBBLE""",
        severity=Severity.CRITICAL,
        status=IncidentStatus.PENDING,
    ),
    Incident(
        id="INC-2025-002",
        timestamp=datetime(2025, 1, 15, 10, 45, 30),
        location="Sector 7 - Industrial Zone",
        description="Chemical leak detected.",
        raw_telemetry="""[IOT_SENSOR_NET_7]
{ "sensor_id": "CHEM_44", "type": "CHLORINE", "ppm": 450, "threshold": 50 }
{ "wind_direction": "SE", "wind_speed": "12km/h", "impact_zone": "RESIDENTIAL_BLOCK_B" }
ALERT: TOXICITY_LEVEL_EXCEEDS_SAFETY_LIMITS""",
        severity=Severity.HIGH,
        status=IncidentStatus.PENDING,
    ),
    Incident(
        id="INC-2025-003",
        timestamp=datetime(2025, 1, 15, 10, 48, 10),
        location="Sector 2 - North Highway",
        description="Traffic collision.",
        raw_telemetry="""[TRAFFIC_CAM_NET]
EVENT: COLLISION_DETECTED
VEHICLES: 3
LANE_STATUS: BLOCKED_ALL_LANES
INJURY_PROBABILITY: MODERATE
AIRBAG_DEPLOYMENT: CONFIRMED_VEHICLE_1""",
        severity=Severity.MEDIUM,
        status=IncidentStatus.PENDING,
    ),
]
