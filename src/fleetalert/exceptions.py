"""Custom exception hierarchy for fleetalert."""

from __future__ import annotations


class FleetAlertError(Exception):
    """Base exception for all fleetalert errors."""


class FleetConfigError(FleetAlertError):
    """Invalid or missing configuration."""


class FleetTransportError(FleetAlertError):
    """HTTP-level failure (network, non-200, invalid JSON)."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        endpoint: str = "",
    ) -> None:
        self.status_code = status_code
        self.endpoint = endpoint
        super().__init__(message)


class FleetApiError(FleetAlertError):
    """Fleet platform answered with ``success: false`` or an unusable body."""

    def __init__(
        self,
        message: str,
        *,
        code: str = "",
        endpoint: str = "",
    ) -> None:
        self.code = code
        self.endpoint = endpoint
        super().__init__(message)


class FleetAuthenticationError(FleetApiError):
    """Login against the fleet platform failed."""


class FleetNotificationError(FleetAlertError):
    """Outbound alert delivery failed.

    Raised by notifiers for a single recipient; the notifier itself
    decides whether to continue with the remaining recipients.
    """

    def __init__(self, message: str, *, recipient: str = "") -> None:
        self.recipient = recipient
        super().__init__(message)


class FleetSessionExpiredError(FleetAuthenticationError):
    """Session hash rejected by the platform.

    The service catches this internally to re-authenticate once and
    retry the call.
    """
