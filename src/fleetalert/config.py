"""Service configuration for fleetalert."""

from __future__ import annotations

import dataclasses
import os
from typing import Any

from fleetalert._constants import API_URL, DEFAULT_TRACKED_CODES, WHATSAPP_GRAPH_URL, WS_URL
from fleetalert.correlation.policy import ThresholdPolicy
from fleetalert.exceptions import FleetConfigError


def _env_number(env: dict[str, str], key: str, cast: type[float] | type[int]) -> float | int | None:
    raw = env.get(key)
    if raw is None:
        return None
    try:
        return cast(raw)
    except ValueError as exc:
        raise FleetConfigError(f"{key} must be numeric, got {raw!r}") from exc


def _parse_codes(raw: str) -> frozenset[str]:
    return frozenset(part.strip() for part in raw.split(",") if part.strip())


def parse_recipients(raw: str) -> tuple[Recipient, ...]:
    """Parse ``"5212227086105:David,5212213508906"`` into recipients."""
    recipients: list[Recipient] = []
    for chunk in raw.split(","):
        chunk = chunk.strip()
        if not chunk:
            continue
        number, _, name = chunk.partition(":")
        number = number.strip()
        if not number.isdigit():
            raise FleetConfigError(f"Invalid recipient phone number: {number!r}")
        recipients.append(Recipient(number=number, contact_name=name.strip()))
    return tuple(recipients)


@dataclasses.dataclass(frozen=True)
class Recipient:
    """WhatsApp alert recipient in international format (no ``+``)."""

    number: str
    contact_name: str = ""


@dataclasses.dataclass(frozen=True)
class AggregationSettings:
    """Sliding-window correlation settings.

    Parameters
    ----------
    window_seconds : float
        Length of the per-vehicle sliding window. Also the cooldown
        after a flush.
    grace_seconds : float
        Debounce delay between reaching the threshold and evaluating
        the flush.
    required_unique_events : int
        Number of distinct incident codes forming a qualifying pattern.
    threshold_policy : ThresholdPolicy
        Whether the distinct-code count must equal the requirement
        exactly or merely reach it.
    """

    window_seconds: float = 5 * 60.0
    grace_seconds: float = 30.0
    required_unique_events: int = 3
    threshold_policy: ThresholdPolicy = ThresholdPolicy.EXACT

    def __post_init__(self) -> None:
        if self.window_seconds <= 0:
            raise FleetConfigError("window_seconds must be positive")
        if self.grace_seconds < 0:
            raise FleetConfigError("grace_seconds must not be negative")
        if self.required_unique_events < 1:
            raise FleetConfigError("required_unique_events must be at least 1")


@dataclasses.dataclass(frozen=True)
class DedupSettings:
    """Repeat-delivery suppression settings.

    ``distance_tolerance`` is expressed in degrees of latitude/longitude.
    """

    window_seconds: float = 10.0
    distance_tolerance: float = 0.001
    retention_seconds: float = 60.0
    sweep_interval_seconds: float = 30.0

    def __post_init__(self) -> None:
        if self.retention_seconds < self.window_seconds:
            raise FleetConfigError("dedup retention must cover the dedup window")


@dataclasses.dataclass(frozen=True)
class FleetAlertConfig:
    """Service configuration.

    Parameters
    ----------
    login : str
        Fleet platform account login.
    password : str
        Fleet platform account password.
    api_url : str
        Fleet platform REST base URL.
    ws_url : str
        Telemetry event subscription URL.
    ws_origin : str or None
        ``Origin`` header sent on the websocket handshake.
    ws_rate_limit : str
        Rate limit requested for the ``state_batch`` subscription.
    ws_reconnect_delay : float
        Seconds to wait before reconnecting a closed telemetry stream.
    company_id : int
        Company identifier written with every persisted incident.
    tracked_codes : frozenset of str
        Incident codes considered by the classifier.
    overspeed_threshold_kmh : float
        Overspeed incidents at or below this speed are not admitted.
    time_zone : str
        IANA zone used to render incident dates.
    aggregation : AggregationSettings
        Sliding window settings.
    dedup : DedupSettings
        Repeat suppression settings.
    whatsapp_phone_number_id : str or None
        WhatsApp Cloud API sender id. Notifications are disabled when unset.
    whatsapp_access_token : str or None
        WhatsApp Cloud API bearer token.
    whatsapp_api_url : str
        Graph API base URL.
    alert_template_name : str
        Approved WhatsApp template used for alerts.
    alert_language : str
        Template language code.
    alert_recipients : tuple of Recipient
        Phones receiving consolidated alerts.
    database_path : str or None
        SQLite file for the incident log. Persistence is disabled when unset.
    """

    login: str
    password: str
    api_url: str = API_URL
    ws_url: str = WS_URL
    ws_origin: str | None = None
    ws_rate_limit: str = "5s"
    ws_reconnect_delay: float = 5.0
    company_id: int = 0
    tracked_codes: frozenset[str] = DEFAULT_TRACKED_CODES
    overspeed_threshold_kmh: float = 80.0
    time_zone: str = "America/Mexico_City"
    aggregation: AggregationSettings = dataclasses.field(default_factory=AggregationSettings)
    dedup: DedupSettings = dataclasses.field(default_factory=DedupSettings)
    whatsapp_phone_number_id: str | None = None
    whatsapp_access_token: str | None = None
    whatsapp_api_url: str = WHATSAPP_GRAPH_URL
    alert_template_name: str = "alerta_siniestro"
    alert_language: str = "es_MX"
    alert_recipients: tuple[Recipient, ...] = ()
    database_path: str | None = None

    @property
    def notifications_enabled(self) -> bool:
        return bool(self.whatsapp_phone_number_id and self.whatsapp_access_token and self.alert_recipients)

    @classmethod
    def from_env(cls, **overrides: Any) -> FleetAlertConfig:
        """Create configuration from environment variables.

        Reads ``FLEETALERT_LOGIN``, ``FLEETALERT_PASSWORD`` and optional
        ``FLEETALERT_*`` variables. Explicit keyword arguments override
        environment values.

        Raises
        ------
        FleetConfigError
            When a required variable is missing or a value cannot be parsed.
        """
        env = dict(os.environ)

        _ENV_CONFIG_MAP = {
            "FLEETALERT_LOGIN": "login",
            "FLEETALERT_PASSWORD": "password",
            "FLEETALERT_API_URL": "api_url",
            "FLEETALERT_WS_URL": "ws_url",
            "FLEETALERT_WS_ORIGIN": "ws_origin",
            "FLEETALERT_WS_RATE_LIMIT": "ws_rate_limit",
            "FLEETALERT_TIME_ZONE": "time_zone",
            "FLEETALERT_WA_PHONE_NUMBER_ID": "whatsapp_phone_number_id",
            "FLEETALERT_WA_ACCESS_TOKEN": "whatsapp_access_token",
            "FLEETALERT_WA_API_URL": "whatsapp_api_url",
            "FLEETALERT_ALERT_TEMPLATE": "alert_template_name",
            "FLEETALERT_ALERT_LANGUAGE": "alert_language",
            "FLEETALERT_DATABASE_PATH": "database_path",
        }
        config_kwargs: dict[str, Any] = {}
        for env_key, field_name in _ENV_CONFIG_MAP.items():
            val = env.get(env_key)
            if val is not None:
                config_kwargs[field_name] = val

        _ENV_NUMERIC_MAP: dict[str, tuple[str, type[float] | type[int]]] = {
            "FLEETALERT_WS_RECONNECT_DELAY": ("ws_reconnect_delay", float),
            "FLEETALERT_COMPANY_ID": ("company_id", int),
            "FLEETALERT_OVERSPEED_THRESHOLD_KMH": ("overspeed_threshold_kmh", float),
        }
        for env_key, (field_name, cast) in _ENV_NUMERIC_MAP.items():
            number = _env_number(env, env_key, cast)
            if number is not None:
                config_kwargs[field_name] = number

        codes_env = env.get("FLEETALERT_TRACKED_CODES")
        if codes_env is not None:
            config_kwargs["tracked_codes"] = _parse_codes(codes_env)

        recipients_env = env.get("FLEETALERT_ALERT_RECIPIENTS")
        if recipients_env is not None:
            config_kwargs["alert_recipients"] = parse_recipients(recipients_env)

        if "aggregation" not in overrides:
            aggregation_kwargs: dict[str, Any] = {}
            for env_key, field_name, cast in (
                ("FLEETALERT_WINDOW_SECONDS", "window_seconds", float),
                ("FLEETALERT_GRACE_SECONDS", "grace_seconds", float),
                ("FLEETALERT_REQUIRED_UNIQUE_EVENTS", "required_unique_events", int),
            ):
                number = _env_number(env, env_key, cast)
                if number is not None:
                    aggregation_kwargs[field_name] = number
            policy_env = env.get("FLEETALERT_THRESHOLD_POLICY")
            if policy_env is not None:
                try:
                    aggregation_kwargs["threshold_policy"] = ThresholdPolicy(policy_env.strip().lower())
                except ValueError as exc:
                    raise FleetConfigError(f"Unknown threshold policy: {policy_env!r}") from exc
            config_kwargs["aggregation"] = AggregationSettings(**aggregation_kwargs)

        if "dedup" not in overrides:
            dedup_kwargs: dict[str, Any] = {}
            for env_key, field_name in (
                ("FLEETALERT_DEDUP_WINDOW_SECONDS", "window_seconds"),
                ("FLEETALERT_DEDUP_DISTANCE_TOLERANCE", "distance_tolerance"),
                ("FLEETALERT_DEDUP_RETENTION_SECONDS", "retention_seconds"),
            ):
                number = _env_number(env, env_key, float)
                if number is not None:
                    dedup_kwargs[field_name] = number
            config_kwargs["dedup"] = DedupSettings(**dedup_kwargs)

        config_kwargs.update(overrides)

        for required in ("login", "password"):
            if not config_kwargs.get(required):
                raise FleetConfigError(f"Missing required setting: FLEETALERT_{required.upper()}")

        return cls(**config_kwargs)
