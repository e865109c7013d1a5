"""Outbound patient notifications (SMS).

Notifications are fire-and-forget: a failed SMS must never undo or fail
the booking that triggered it, so handlers go through
:func:`notify_safely`, which logs and swallows delivery errors.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod

import httpx

from sahay.config import TWILIO_ACCOUNT_SID, TWILIO_AUTH_TOKEN, TWILIO_FROM_NUMBER

logger = logging.getLogger(__name__)

TWILIO_API_BASE = "https://api.twilio.com/2010-04-01"
SEND_TIMEOUT_SECONDS = 10.0


class Notifier(ABC):
    """Delivery channel interface."""

    @abstractmethod
    def send(self, destination: str, message: str) -> None:
        ...

    def close(self) -> None:
        """Release any connection held by the channel."""


class LogNotifier(Notifier):
    """Writes the message to the log instead of sending it (local dev)."""

    def send(self, destination: str, message: str) -> None:
        logger.info("SMS to %s: %s", destination, message)


class TwilioNotifier(Notifier):
    """Sends SMS through the Twilio Messages REST API."""

    def __init__(self, account_sid: str, auth_token: str, from_number: str):
        self._from = from_number
        self._client = httpx.Client(
            base_url=f"{TWILIO_API_BASE}/Accounts/{account_sid}",
            auth=(account_sid, auth_token),
            timeout=SEND_TIMEOUT_SECONDS,
        )

    def send(self, destination: str, message: str) -> None:
        response = self._client.post(
            "/Messages.json",
            data={"To": destination, "From": self._from, "Body": message},
        )
        response.raise_for_status()
        logger.info("SMS queued for %s (sid=%s)", destination, response.json().get("sid"))

    def close(self) -> None:
        self._client.close()


def notify_safely(notifier: Notifier | None, destination: str | None, message: str) -> bool:
    """Send *message*, logging instead of raising on failure.  Returns delivery success."""
    if notifier is None or not destination:
        return False
    try:
        notifier.send(destination, message)
        return True
    except Exception:
        logger.warning("Notification to %s failed", destination, exc_info=True)
        return False


def create_notifier() -> Notifier:
    """Pick Twilio when credentials are configured, the log sink otherwise."""
    if TWILIO_ACCOUNT_SID and TWILIO_AUTH_TOKEN and TWILIO_FROM_NUMBER:
        return TwilioNotifier(TWILIO_ACCOUNT_SID, TWILIO_AUTH_TOKEN, TWILIO_FROM_NUMBER)
    logger.info("Twilio not configured; SMS notifications will only be logged")
    return LogNotifier()
