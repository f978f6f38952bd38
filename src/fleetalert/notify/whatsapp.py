"""WhatsApp Cloud API notifier."""

from __future__ import annotations

import logging
from typing import Any

import aiohttp

from fleetalert._redact import redact_for_log
from fleetalert.config import FleetAlertConfig, Recipient
from fleetalert.exceptions import FleetConfigError, FleetNotificationError
from fleetalert.notify.alert import AlertMessage

_logger = logging.getLogger(__name__)

# Placeholder for the map button when no incident carried a position fix.
_NO_COORDS = "0,0"


def build_template_body(config: FleetAlertConfig, recipient: Recipient, alert: AlertMessage) -> dict[str, Any]:
    """Template message: vehicle label, date and incident names in the body,
    coordinates as the map button parameter.

    The template has one slot per required incident type; an AT_LEAST
    snapshot with more names is cut to the first ones recorded.
    """
    slots = config.aggregation.required_unique_events
    names = alert.event_names[:slots]
    if len(alert.event_names) > slots:
        _logger.debug(
            "Alert for %s lists %d incident types; sending first %d", alert.vehicle_id, len(alert.event_names), slots
        )
    body_parameters = [
        {"type": "text", "text": alert.label},
        {"type": "text", "text": alert.event_date},
        *({"type": "text", "text": name} for name in names),
    ]
    return {
        "messaging_product": "whatsapp",
        "to": recipient.number,
        "type": "template",
        "template": {
            "name": config.alert_template_name,
            "language": {"code": config.alert_language},
            "components": [
                {"type": "body", "parameters": body_parameters},
                {
                    "type": "button",
                    "sub_type": "url",
                    "index": "0",
                    "parameters": [{"type": "text", "text": alert.coords or _NO_COORDS}],
                },
            ],
        },
    }


class WhatsAppNotifier:
    """Send one template message per configured recipient."""

    def __init__(self, config: FleetAlertConfig, http_session: aiohttp.ClientSession) -> None:
        if not config.whatsapp_phone_number_id or not config.whatsapp_access_token:
            raise FleetConfigError("WhatsApp phone number id and access token are required")
        self._config = config
        self._http = http_session
        self._url = f"{config.whatsapp_api_url.rstrip('/')}/{config.whatsapp_phone_number_id}/messages"
        self._headers = {
            "Authorization": f"Bearer {config.whatsapp_access_token}",
            "Content-Type": "application/json",
        }

    async def send(self, recipient: Recipient, alert: AlertMessage) -> dict[str, Any]:
        body = build_template_body(self._config, recipient, alert)
        _logger.debug("WhatsApp POST body=%s", redact_for_log(body))
        try:
            async with self._http.post(self._url, json=body, headers=self._headers) as resp:
                payload: Any = await resp.json(content_type=None)
                if resp.status >= 400:
                    error = payload.get("error", {}) if isinstance(payload, dict) else {}
                    message = error.get("message") if isinstance(error, dict) else None
                    raise FleetNotificationError(
                        f"WhatsApp API HTTP {resp.status}: {message or payload!r}",
                        recipient=recipient.number,
                    )
        except FleetNotificationError:
            raise
        except (aiohttp.ClientError, TimeoutError, ValueError) as exc:
            raise FleetNotificationError(f"WhatsApp request failed: {exc}", recipient=recipient.number) from exc
        return payload if isinstance(payload, dict) else {}

    async def send_alert(self, alert: AlertMessage) -> int:
        """Deliver *alert* to every recipient; return the number delivered.

        A failure for one recipient is logged and does not stop the others.
        """
        delivered = 0
        for recipient in self._config.alert_recipients:
            try:
                await self.send(recipient, alert)
            except FleetNotificationError:
                _logger.error(
                    "WhatsApp alert to %s failed",
                    recipient.contact_name or "recipient",
                    exc_info=True,
                )
                continue
            delivered += 1
            _logger.info("WhatsApp alert sent to %s", recipient.contact_name or "recipient")
        return delivered
