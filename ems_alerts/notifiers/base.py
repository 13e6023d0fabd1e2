"""
Base transport classes.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Optional


@dataclass
class SendResult:
    """Result of a single message send."""

    success: bool
    id: Optional[str] = None
    error: Optional[str] = None


@dataclass
class TransportStatus:
    """Connection state reported by the messaging gateway."""

    ready: bool
    has_qr: bool = False


class MessageTransport(ABC):
    """Abstract base class for message transports."""

    @abstractmethod
    def send_message(self, to: str, message: str) -> SendResult:
        """
        Send a text message.

        Args:
            to: Recipient phone number in international digit form
            message: Message body

        Returns:
            SendResult indicating success or failure. Implementations report
            failures and timeouts here instead of raising.
        """
        pass

    def get_status(self) -> TransportStatus:
        """Report whether the transport can currently deliver messages."""
        return TransportStatus(ready=True)


class TransportFactory:
    """Factory for creating transport instances."""

    @staticmethod
    def create(config: dict[str, Any]) -> MessageTransport:
        """
        Create a transport from configuration.

        Args:
            config: Transport configuration dict

        Returns:
            Appropriate MessageTransport instance

        Raises:
            ValueError: If transport type is unknown
        """
        transport_type = config.get("type", "whatsapp")

        if transport_type == "whatsapp":
            from .whatsapp import WhatsAppTransport

            return WhatsAppTransport(
                api_url=config.get("api_url", ""),
                timeout=config.get("timeout_seconds", 10.0),
            )

        elif transport_type == "log":
            from .whatsapp import LoggingTransport

            return LoggingTransport()

        else:
            raise ValueError(f"Unknown transport type: {transport_type}")
