"""Twilio WhatsApp channel adapter."""

import asyncio
from typing import Any

import structlog
from twilio.base.exceptions import TwilioRestException
from twilio.request_validator import RequestValidator
from twilio.rest import Client as TwilioClient

from src.core.config import settings
from src.core.exceptions import ChannelError
from src.models import ChannelType, IncomingMessage, OutgoingMessage
from src.services.channels.base import ChannelAdapter

logger = structlog.get_logger()


class TwilioWhatsAppAdapter(ChannelAdapter):
    """Twilio WhatsApp channel adapter.

    Handles:
    - Webhook parsing for incoming WhatsApp messages
    - Sending text and media messages via Twilio API
    - Webhook signature validation
    """

    def __init__(
        self,
        account_sid: str | None = None,
        auth_token: str | None = None,
        whatsapp_number: str | None = None,
    ) -> None:
        self.account_sid = account_sid or settings.twilio_account_sid
        self.auth_token = auth_token or settings.twilio_auth_token
        self.whatsapp_number = whatsapp_number or settings.twilio_whatsapp_number

        self._client: TwilioClient | None = None

        if self.account_sid and self.auth_token:
            self._client = TwilioClient(self.account_sid, self.auth_token)
            logger.info("Twilio WhatsApp adapter initialized")
        else:
            logger.warning("Twilio credentials not configured")

    @property
    def channel_name(self) -> str:
        return "whatsapp"

    def _get_client(self) -> TwilioClient:
        """Get Twilio client, raising error if not configured."""
        if self._client is None:
            raise ChannelError(
                "Twilio client not configured",
                channel="whatsapp",
                details={"reason": "missing_credentials"},
            )
        return self._client

    async def parse_webhook(self, tenant_id: str, payload: dict[str, Any]) -> IncomingMessage | None:
        """Parse Twilio WhatsApp webhook payload.

        Twilio sends form-urlencoded data with fields like:
        - From: whatsapp:+1234567890
        - To: whatsapp:+0987654321
        - Body: Message text
        - MessageSid: Unique message ID
        - ProfileName: Sender's WhatsApp profile name
        """
        # Check if this is a message event
        message_sid = payload.get("MessageSid")
        if not message_sid:
            logger.debug("Webhook is not a message event", payload_keys=list(payload.keys()))
            return None

        from_number = payload.get("From", "")
        if not from_number.startswith("whatsapp:"):
            logger.warning("Invalid WhatsApp sender format", from_number=from_number)
            return None

        phone = from_number.replace("whatsapp:", "")
        body = payload.get("Body", "").strip()
        if not body:
            logger.info("Ignoring WhatsApp message without text", message_sid=message_sid)
            return None

        incoming_message = IncomingMessage(
            tenant_id=tenant_id,
            sender_phone=phone,
            text=body,
            channel_address=from_number,
            sender_name=payload.get("ProfileName"),
            channel=ChannelType.WHATSAPP,
            raw_payload=payload,
        )

        logger.info(
            "Parsed WhatsApp message",
            tenant_id=tenant_id,
            message_sid=message_sid,
        )

        return incoming_message

    async def send_message(self, message: OutgoingMessage) -> dict[str, Any]:
        """Send a WhatsApp message via Twilio.

        Args:
            message: OutgoingMessage to send

        Returns:
            Dict with message SID and status
        """
        client = self._get_client()

        # Format recipient as WhatsApp number
        to_number = message.recipient_id
        if not to_number.startswith("whatsapp:"):
            to_number = f"whatsapp:{to_number}"

        params: dict[str, Any] = {
            "from_": self.whatsapp_number,
            "to": to_number,
            "body": message.content,
        }
        if message.media_url:
            params["media_url"] = [message.media_url]

        try:
            # The Twilio client is synchronous
            twilio_message = await asyncio.to_thread(client.messages.create, **params)
        except TwilioRestException as e:
            logger.error(
                "Failed to send WhatsApp message",
                error=str(e),
                error_code=e.code,
                to=to_number,
            )
            raise ChannelError(
                f"Failed to send WhatsApp message: {e.msg}",
                channel="whatsapp",
                details={"error_code": e.code, "recipient": to_number},
            ) from e

        logger.info(
            "Sent WhatsApp message",
            message_sid=twilio_message.sid,
            status=twilio_message.status,
        )

        return {
            "message_sid": twilio_message.sid,
            "status": twilio_message.status,
            "to": to_number,
        }

    def validate_webhook(self, url: str, params: dict[str, Any], signature: str) -> bool:
        """Validate the X-Twilio-Signature of a webhook request.

        Twilio signs the full request URL plus the sorted POST parameters
        with HMAC-SHA1 using the account auth token.
        """
        if not self.auth_token:
            logger.warning("Cannot validate webhook: auth token not configured")
            return False
        if not signature:
            return False

        return RequestValidator(self.auth_token).validate(url, params, signature)


# Singleton instance
_whatsapp_adapter: TwilioWhatsAppAdapter | None = None


def get_whatsapp_adapter() -> TwilioWhatsAppAdapter:
    """Get or create the WhatsApp adapter singleton."""
    global _whatsapp_adapter
    if _whatsapp_adapter is None:
        _whatsapp_adapter = TwilioWhatsAppAdapter()
    return _whatsapp_adapter
