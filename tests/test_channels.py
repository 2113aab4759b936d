"""Tests for the WhatsApp adapter and outbound delivery."""

import asyncio
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest
from twilio.request_validator import RequestValidator

from conftest import PHONE, RecordingChannel
from src.core.exceptions import ChannelError
from src.models import ChannelType, OutgoingMessage
from src.services.channels.delivery import DeliveryDispatcher
from src.services.channels.whatsapp import TwilioWhatsAppAdapter


@pytest.fixture
def adapter():
    return TwilioWhatsAppAdapter(account_sid="", auth_token="", whatsapp_number="whatsapp:+14155238886")


@pytest.mark.asyncio
async def test_parse_message(adapter):
    incoming = await adapter.parse_webhook("t1", {
        "MessageSid": "SM1",
        "From": f"whatsapp:{PHONE}",
        "Body": "  Olá  ",
        "ProfileName": "Ana",
    })

    assert incoming.tenant_id == "t1"
    assert incoming.sender_phone == PHONE
    assert incoming.channel_address == f"whatsapp:{PHONE}"
    assert incoming.text == "Olá"
    assert incoming.sender_name == "Ana"
    assert incoming.channel == ChannelType.WHATSAPP


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "payload",
    [
        {"MessageStatus": "delivered"},
        {"MessageSid": "SM1", "From": PHONE, "Body": "oi"},
        {"MessageSid": "SM1", "From": f"whatsapp:{PHONE}", "Body": "   "},
    ],
)
async def test_non_message_payloads_are_ignored(adapter, payload):
    assert await adapter.parse_webhook("t1", payload) is None


@pytest.mark.asyncio
async def test_send_message_with_media(adapter):
    client = MagicMock()
    client.messages.create.return_value = SimpleNamespace(sid="SM9", status="queued")
    adapter._client = client

    result = await adapter.send_message(
        OutgoingMessage(content="Foto", recipient_id=PHONE, media_url="https://cdn.example.com/1.jpg")
    )

    assert result == {"message_sid": "SM9", "status": "queued", "to": f"whatsapp:{PHONE}"}
    client.messages.create.assert_called_once_with(
        from_="whatsapp:+14155238886",
        to=f"whatsapp:{PHONE}",
        body="Foto",
        media_url=["https://cdn.example.com/1.jpg"],
    )


@pytest.mark.asyncio
async def test_send_without_credentials_raises(adapter):
    with pytest.raises(ChannelError):
        await adapter.send_message(OutgoingMessage(content="oi", recipient_id=PHONE))


def test_webhook_signature_validation():
    adapter = TwilioWhatsAppAdapter(account_sid="AC123", auth_token="secret-token")
    url = "https://example.com/webhooks/whatsapp/t1"
    params = {"MessageSid": "SM1", "Body": "oi"}
    signature = RequestValidator("secret-token").compute_signature(url, params)

    assert adapter.validate_webhook(url, params, signature)
    assert not adapter.validate_webhook(url, {**params, "Body": "tchau"}, signature)
    assert not adapter.validate_webhook(url, params, "")


# ==================== Delivery ====================

@pytest.mark.asyncio
async def test_delivery_failure_is_reported_not_raised():
    dispatcher = DeliveryDispatcher(RecordingChannel(fail=True), timeout_seconds=1)

    assert await dispatcher.deliver(OutgoingMessage(content="oi", recipient_id=PHONE)) is False


@pytest.mark.asyncio
async def test_slow_delivery_times_out():
    class SlowChannel(RecordingChannel):
        async def send_message(self, message):
            await asyncio.sleep(1)

    dispatcher = DeliveryDispatcher(SlowChannel(), timeout_seconds=0.05)

    assert await dispatcher.deliver(OutgoingMessage(content="oi", recipient_id=PHONE)) is False


@pytest.mark.asyncio
async def test_background_deliveries_drain(channel):
    dispatcher = DeliveryDispatcher(channel, timeout_seconds=1)

    for i in range(3):
        dispatcher.deliver_in_background(OutgoingMessage(content=f"m{i}", recipient_id=PHONE))
    await dispatcher.drain()

    assert [m.content for m in channel.sent] == ["m0", "m1", "m2"]


@pytest.mark.asyncio
async def test_no_channel_means_no_delivery():
    dispatcher = DeliveryDispatcher(None)

    assert dispatcher.deliver_in_background(OutgoingMessage(content="oi", recipient_id=PHONE)) is None
    assert await dispatcher.deliver(OutgoingMessage(content="oi", recipient_id=PHONE)) is False
