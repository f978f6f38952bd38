"""fleetalert - Async correlation engine for fleet telemetry safety alerts."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("fleetalert")
except PackageNotFoundError:
    __version__ = "0+local"
from fleetalert.config import AggregationSettings, DedupSettings, FleetAlertConfig, Recipient
from fleetalert.correlation.aggregator import (
    BufferState,
    FlushOutcome,
    FlushResult,
    RecordOutcome,
    WindowAggregator,
)
from fleetalert.correlation.dedup import Deduplicator
from fleetalert.correlation.dispatcher import DispatchReport, FlushDispatcher, ListenerFailure
from fleetalert.correlation.policy import ThresholdPolicy
from fleetalert.correlation.scheduler import LoopScheduler, Scheduler
from fleetalert.exceptions import (
    FleetAlertError,
    FleetApiError,
    FleetAuthenticationError,
    FleetConfigError,
    FleetNotificationError,
    FleetSessionExpiredError,
    FleetTransportError,
)
from fleetalert.ingestion.classifier import EventClassifier
from fleetalert.models import Incident, IncidentRecord, SourceState, StateBatchMessage, Tracker
from fleetalert.service import FleetAlertService, IngestOutcome, IngestResult

__all__ = [
    "__version__",
    "AggregationSettings",
    "BufferState",
    "DedupSettings",
    "Deduplicator",
    "DispatchReport",
    "EventClassifier",
    "FleetAlertConfig",
    "FleetAlertError",
    "FleetAlertService",
    "FleetApiError",
    "FleetAuthenticationError",
    "FleetConfigError",
    "FleetNotificationError",
    "FleetSessionExpiredError",
    "FleetTransportError",
    "FlushDispatcher",
    "FlushOutcome",
    "FlushResult",
    "Incident",
    "IncidentRecord",
    "IngestOutcome",
    "IngestResult",
    "ListenerFailure",
    "LoopScheduler",
    "Recipient",
    "RecordOutcome",
    "Scheduler",
    "SourceState",
    "StateBatchMessage",
    "ThresholdPolicy",
    "Tracker",
    "WindowAggregator",
]
