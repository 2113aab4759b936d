"""Abstract base class for channel adapters."""

from abc import ABC, abstractmethod
from typing import Any

from src.models import IncomingMessage, OutgoingMessage


class ChannelAdapter(ABC):
    """Abstract base class for communication channel adapters.

    Each channel (WhatsApp, ...) implements this interface.
    """

    @property
    @abstractmethod
    def channel_name(self) -> str:
        """Get the channel name identifier."""
        ...

    @abstractmethod
    async def parse_webhook(self, tenant_id: str, payload: dict[str, Any]) -> IncomingMessage | None:
        """Parse incoming webhook payload into a normalized message.

        Args:
            tenant_id: Tenant resolved from the webhook route
            payload: Raw webhook payload from the channel

        Returns:
            IncomingMessage or None if not a message event
        """
        ...

    @abstractmethod
    async def send_message(self, message: OutgoingMessage) -> dict[str, Any]:
        """Send a message through the channel.

        Args:
            message: OutgoingMessage to send

        Returns:
            Response dict with channel-specific info (message ID, status, etc.)
        """
        ...

    @abstractmethod
    def validate_webhook(self, url: str, params: dict[str, Any], signature: str) -> bool:
        """Validate webhook signature for security.

        Args:
            url: Full URL the provider called
            params: Form parameters of the request
            signature: Signature header value

        Returns:
            True if valid, False otherwise
        """
        ...

    async def send_text(self, recipient_id: str, text: str) -> dict[str, Any]:
        """Convenience method to send a simple text message."""
        message = OutgoingMessage(
            content=text,
            recipient_id=recipient_id,
        )
        return await self.send_message(message)
