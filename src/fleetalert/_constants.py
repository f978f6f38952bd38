"""Internal constants shared across the library."""

from enum import StrEnum

API_URL = "https://api.navixy.com"
WS_URL = "wss://api.navixy.com/v2/event/subscription"
WHATSAPP_GRAPH_URL = "https://graph.facebook.com/v22.0"


class IncidentCode(StrEnum):
    """Telemetry event codes treated as safety incidents."""

    POWER_CUT = "12"
    OVERSPEED = "33"
    PANIC = "42"
    HARSH_ACCELERATION = "46"
    HARSH_BRAKING = "47"


INCIDENT_NAMES: dict[str, str] = {
    IncidentCode.PANIC: "Panic button",
    IncidentCode.OVERSPEED: "Overspeed",
    IncidentCode.POWER_CUT: "Power cut",
    IncidentCode.HARSH_ACCELERATION: "Harsh acceleration",
    IncidentCode.HARSH_BRAKING: "Harsh braking",
}

DEFAULT_TRACKED_CODES: frozenset[str] = frozenset(code.value for code in IncidentCode)

# Rendering used for the human-readable incident date.
EVENT_DATE_FORMAT = "%d %B %Y, %H:%M:%S"


def incident_name(code: str) -> str:
    """Display name for *code*, falling back to the raw code."""
    return INCIDENT_NAMES.get(code, f"Event {code}")
