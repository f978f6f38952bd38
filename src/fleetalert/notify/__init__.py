"""Outbound alert formatting and delivery."""

from fleetalert.notify.alert import AlertMessage, build_alert, last_valid_coords
from fleetalert.notify.whatsapp import WhatsAppNotifier

__all__ = ["AlertMessage", "WhatsAppNotifier", "build_alert", "last_valid_coords"]
