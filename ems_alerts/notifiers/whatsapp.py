"""
WhatsApp gateway transport.
"""

import logging
import re

import requests

from .base import MessageTransport, SendResult, TransportStatus

logger = logging.getLogger(__name__)

_RECIPIENT_PATTERN = re.compile(r"^\d{10,15}$")


class WhatsAppTransport(MessageTransport):
    """Sends messages through a WhatsApp HTTP gateway."""

    def __init__(self, api_url: str, timeout: float = 10.0):
        """
        Initialize WhatsApp transport.

        Args:
            api_url: Base URL of the gateway, e.g. http://localhost:3001
            timeout: Seconds to wait for the gateway before giving up
        """
        self.api_url = api_url.rstrip("/")
        self.timeout = timeout

    def send_message(self, to: str, message: str) -> SendResult:
        """Send a message; timeouts and HTTP errors come back as failed results."""
        if not to or not message:
            return SendResult(success=False, error="Missing required fields: to, message")

        if not _RECIPIENT_PATTERN.match(to):
            return SendResult(
                success=False,
                error="Invalid phone number format. Must be 10-15 digits only.",
            )

        try:
            response = requests.post(
                f"{self.api_url}/api/send",
                json={"to": to, "message": message},
                headers={"Accept": "application/json"},
                timeout=self.timeout,
            )

            if not response.ok:
                return SendResult(
                    success=False,
                    error=f"WhatsApp API error: HTTP {response.status_code}: {response.text}",
                )

            data = self._json(response)
            if data.get("success") is False:
                return SendResult(
                    success=False,
                    error=data.get("error") or "WhatsApp API rejected the message",
                )
            return SendResult(success=True, id=data.get("id"))

        except requests.exceptions.Timeout:
            return SendResult(
                success=False,
                error=f"WhatsApp API timed out after {self.timeout:g}s",
            )
        except requests.exceptions.ConnectionError as e:
            return SendResult(success=False, error=f"Connection error: {str(e)}")
        except requests.exceptions.RequestException as e:
            return SendResult(success=False, error=str(e))

    def get_status(self) -> TransportStatus:
        """Query gateway readiness. Any failure reads as not ready."""
        try:
            response = requests.get(
                f"{self.api_url}/api/status",
                headers={"Accept": "application/json"},
                timeout=self.timeout,
            )
        except requests.exceptions.RequestException as e:
            logger.warning(f"WhatsApp status check failed: {e}")
            return TransportStatus(ready=False, has_qr=False)

        if not response.ok:
            return TransportStatus(ready=False, has_qr=False)

        data = self._json(response)
        return TransportStatus(
            ready=data.get("ready") is True,
            has_qr=data.get("hasQR") is True,
        )

    def _json(self, response: requests.Response) -> dict:
        """Decode a JSON object body, treating anything else as empty."""
        try:
            data = response.json()
        except ValueError:
            return {}
        return data if isinstance(data, dict) else {}


class LoggingTransport(MessageTransport):
    """Logs messages instead of sending them. Used for dry runs."""

    def send_message(self, to: str, message: str) -> SendResult:
        logger.info(f"[dry-run] message to {to}:\n{message}")
        return SendResult(success=True, id="dry-run")
