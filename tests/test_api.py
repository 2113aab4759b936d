"""Tests for the HTTP surface: agent endpoints and webhooks."""

from datetime import timedelta

import pytest

from conftest import OTHER_TENANT_ID, PHONE, TENANT_ID, plan_calls
from src.core.config import settings
from src.core.messages import get_message
from src.core.timeutils import utc_now

HEADERS = {"X-Tenant-Id": TENANT_ID, "X-User-Id": "user-1"}


def message_body(text: str = "Quero 2 quartos para 4 pessoas", **overrides) -> dict:
    body = {"senderPhone": PHONE, "text": text}
    body.update(overrides)
    return body


# ==================== Agent ====================

@pytest.mark.asyncio
async def test_process_message(client, planner, catalogue):
    planner.script(plan_calls("Vou procurar!", search_properties={"bedrooms": 2, "maxGuests": 4}))

    response = await client.post("/agent/messages", json=message_body(), headers=HEADERS)

    assert response.status_code == 200
    data = response.json()
    assert data["reply"].startswith("Vou procurar!")
    assert data["conversationId"]
    assert data["clientId"]
    result = data["functionResults"][0]
    assert result["function"] == "search_properties"
    assert result["result"]["success"] is True
    assert result["result"]["functionName"] == "search_properties"
    assert len(result["result"]["data"]["properties"]) == 3


@pytest.mark.asyncio
async def test_missing_principal_is_rejected(client):
    response = await client.post("/agent/messages", json=message_body())

    assert response.status_code == 401
    assert response.json()["error"] == "UNAUTHORIZED"


@pytest.mark.asyncio
async def test_body_tenant_must_match_principal(client):
    response = await client.post(
        "/agent/messages",
        json=message_body(tenantId=OTHER_TENANT_ID),
        headers=HEADERS,
    )

    assert response.status_code == 401


@pytest.mark.asyncio
async def test_invalid_body_is_a_400(client):
    response = await client.post("/agent/messages", json={"senderPhone": PHONE, "text": ""}, headers=HEADERS)

    assert response.status_code == 400
    body = response.json()
    assert body["error"] == "VALIDATION_ERROR"
    assert any(e["field"] == "text" for e in body["details"]["errors"])


@pytest.mark.asyncio
async def test_rate_limited_sender_gets_429(client):
    for _ in range(settings.inbound_rate_limit_requests):
        response = await client.post("/agent/messages", json=message_body("oi"), headers=HEADERS)
        assert response.status_code == 200

    response = await client.post("/agent/messages", json=message_body("oi"), headers=HEADERS)

    assert response.status_code == 429
    assert response.json()["message"] == get_message("rate_limited")
    assert int(response.headers["Retry-After"]) >= 1
    assert response.headers["X-RateLimit-Limit"] == str(settings.inbound_rate_limit_requests)
    assert response.headers["X-RateLimit-Remaining"] == "0"
    assert "X-RateLimit-Reset" in response.headers


@pytest.mark.asyncio
async def test_get_conversation(client):
    created = await client.post("/agent/messages", json=message_body("oi"), headers=HEADERS)
    conversation_id = created.json()["conversationId"]

    response = await client.get(f"/agent/conversations/{conversation_id}", headers=HEADERS)

    assert response.status_code == 200
    data = response.json()
    assert data["conversation"]["id"] == conversation_id
    assert data["conversation"]["tenantId"] == TENANT_ID
    assert [m["from"] for m in data["messages"]] == ["client", "agent"]


@pytest.mark.asyncio
async def test_conversation_of_another_tenant_is_not_found(client):
    created = await client.post("/agent/messages", json=message_body("oi"), headers=HEADERS)
    conversation_id = created.json()["conversationId"]

    response = await client.get(
        f"/agent/conversations/{conversation_id}",
        headers={"X-Tenant-Id": OTHER_TENANT_ID, "X-User-Id": "user-2"},
    )

    assert response.status_code == 404


@pytest.mark.asyncio
async def test_close_conversation_starts_a_new_one(client):
    created = await client.post("/agent/messages", json=message_body("oi"), headers=HEADERS)
    conversation_id = created.json()["conversationId"]

    response = await client.post(
        f"/agent/conversations/{conversation_id}/close", json={"reason": "handoff"}, headers=HEADERS
    )
    followup = await client.post("/agent/messages", json=message_body("oi de novo"), headers=HEADERS)

    assert response.status_code == 200
    assert response.json()["conversation"]["isActive"] is False
    assert response.json()["conversation"]["closedReason"] == "handoff"
    assert followup.json()["conversationId"] != conversation_id


@pytest.mark.asyncio
async def test_close_conversation_of_another_tenant_is_not_found(client):
    created = await client.post("/agent/messages", json=message_body("oi"), headers=HEADERS)
    conversation_id = created.json()["conversationId"]

    response = await client.post(
        f"/agent/conversations/{conversation_id}/close",
        headers={"X-Tenant-Id": OTHER_TENANT_ID, "X-User-Id": "user-2"},
    )

    assert response.status_code == 404


# ==================== WhatsApp Webhook ====================

@pytest.mark.asyncio
async def test_whatsapp_webhook_replies_through_channel(client, engine, planner, channel):
    planner.script(plan_calls("Olá! Como posso ajudar?"))

    response = await client.post(
        f"/webhooks/whatsapp/{TENANT_ID}",
        data={"MessageSid": "SM123", "From": f"whatsapp:{PHONE}", "Body": "oi", "ProfileName": "Ana"},
    )
    await engine.drain()

    assert response.status_code == 200
    assert [(m.content, m.recipient_id) for m in channel.sent] == [("Olá! Como posso ajudar?", f"whatsapp:{PHONE}")]


@pytest.mark.asyncio
async def test_whatsapp_status_event_is_acknowledged(client, channel):
    response = await client.post(f"/webhooks/whatsapp/{TENANT_ID}", data={"MessageStatus": "delivered"})

    assert response.status_code == 200
    assert channel.sent == []


@pytest.mark.asyncio
async def test_whatsapp_rate_limited_sender_is_told_to_wait(client, engine, channel):
    form = {"MessageSid": "SM1", "From": f"whatsapp:{PHONE}", "Body": "oi"}
    for _ in range(settings.inbound_rate_limit_requests + 1):
        response = await client.post(f"/webhooks/whatsapp/{TENANT_ID}", data=form)
        assert response.status_code == 200
    await engine.drain()

    assert channel.sent[-1].content == get_message("rate_limited")


# ==================== Payments Webhook ====================

def payment_event(**overrides) -> dict:
    event = {
        "event": "billing.paid",
        "timestamp": utc_now().isoformat(),
        "devMode": False,
        "data": {"id": "pix_char_123", "status": "PAID", "metadata": {"tenantId": TENANT_ID}},
    }
    event.update(overrides)
    return event


async def _seed_transaction(storage) -> None:
    await storage.create(TENANT_ID, "transactions", {
        "id": "t1",
        "tenant_id": TENANT_ID,
        "amount": 76.0,
        "description": "Entrada",
        "status": "pending",
        "provider_payment_id": "pix_char_123",
    })


@pytest.mark.asyncio
async def test_payment_webhook_marks_transaction_paid(client, storage, monkeypatch):
    monkeypatch.setattr(settings, "payment_webhook_secret", "s3cret")
    await _seed_transaction(storage)

    response = await client.post(
        "/webhooks/payments",
        json=payment_event(),
        headers={"X-Webhook-Secret": "s3cret"},
    )

    assert response.status_code == 200
    assert response.json() == {"received": True, "transactionId": "t1", "status": "paid"}


@pytest.mark.asyncio
async def test_payment_webhook_accepts_query_secret(client, storage, monkeypatch):
    monkeypatch.setattr(settings, "payment_webhook_secret", "s3cret")
    await _seed_transaction(storage)

    response = await client.post("/webhooks/payments?webhookSecret=s3cret", json=payment_event())

    assert response.status_code == 200


@pytest.mark.asyncio
async def test_payment_webhook_rejects_bad_secret(client, storage, monkeypatch):
    monkeypatch.setattr(settings, "payment_webhook_secret", "s3cret")
    await _seed_transaction(storage)

    response = await client.post("/webhooks/payments", json=payment_event(), headers={"X-Webhook-Secret": "nope"})

    assert response.status_code == 401
    transaction = await storage.get(TENANT_ID, "transactions", "t1")
    assert transaction["status"] == "pending"


@pytest.mark.asyncio
async def test_payment_webhook_rejects_stale_event(client, storage, monkeypatch):
    monkeypatch.setattr(settings, "payment_webhook_secret", "s3cret")
    stale = payment_event(timestamp=(utc_now() - timedelta(hours=1)).isoformat())

    response = await client.post("/webhooks/payments", json=stale, headers={"X-Webhook-Secret": "s3cret"})

    assert response.status_code == 400


@pytest.mark.asyncio
async def test_payment_webhook_unknown_transaction(client, monkeypatch):
    monkeypatch.setattr(settings, "payment_webhook_secret", "s3cret")

    response = await client.post("/webhooks/payments", json=payment_event(), headers={"X-Webhook-Secret": "s3cret"})

    assert response.status_code == 200
    assert response.json()["transactionId"] is None
