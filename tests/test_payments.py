"""Tests for the payment provider client and webhook reconciliation."""

import json
from datetime import timedelta

import httpx
import pytest

from conftest import TENANT_ID
from src.core.exceptions import PaymentProviderError, ValidationError
from src.core.timeutils import utc_now
from src.models import TransactionStatus
from src.services.payments.provider import PaymentProvider, map_provider_status
from src.services.payments.reconciliation import PaymentEvent, PaymentReconciler

PIX_RESPONSE = {
    "data": {
        "id": "pix_char_123",
        "amount": 50000,
        "status": "PENDING",
        "brCode": "00020101021226950014br.gov.bcb.pix",
        "brCodeBase64": "data:image/png;base64,iVBORw0KGgo=",
        "expiresAt": "2030-03-04T12:30:00Z",
    },
    "error": None,
}


def provider_with(handler) -> PaymentProvider:
    return PaymentProvider(
        api_key="test_key",
        base_url="https://api.example.com/v1",
        transport=httpx.MockTransport(handler),
    )


# ==================== Provider ====================

@pytest.mark.asyncio
async def test_create_pix_qr_code():
    requests = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(200, json=PIX_RESPONSE)

    charge = await provider_with(handler).create_pix_qr_code(
        amount_cents=50000,
        description="Entrada",
        metadata={"tenantId": TENANT_ID, "externalId": "key-1"},
    )

    assert charge.id == "pix_char_123"
    assert charge.expires_at.year == 2030
    sent = json.loads(requests[0].content)
    assert requests[0].url.path == "/v1/pixQrCode/create"
    assert requests[0].headers["Authorization"] == "Bearer test_key"
    assert sent["amount"] == 50000
    assert sent["expiresIn"] == 30
    assert sent["metadata"]["externalId"] == "key-1"


@pytest.mark.asyncio
async def test_rejected_request_raises():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(400, json={"data": None, "error": "invalid amount"})

    with pytest.raises(PaymentProviderError, match="invalid amount"):
        await provider_with(handler).create_pix_qr_code(amount_cents=50000, description="Entrada")


@pytest.mark.asyncio
async def test_transient_failure_is_retried():
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        if len(calls) == 1:
            return httpx.Response(503, json={"error": "unavailable"})
        return httpx.Response(200, json=PIX_RESPONSE)

    charge = await provider_with(handler).create_pix_qr_code(amount_cents=50000, description="Entrada")

    assert charge.id == "pix_char_123"
    assert len(calls) == 2


@pytest.mark.asyncio
async def test_amount_out_of_range_is_rejected_locally():
    def handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError("no request expected")

    with pytest.raises(PaymentProviderError):
        await provider_with(handler).create_pix_qr_code(amount_cents=50, description="Entrada")


@pytest.mark.asyncio
async def test_unconfigured_provider_raises():
    provider = PaymentProvider(api_key="", base_url="https://api.example.com/v1")

    with pytest.raises(PaymentProviderError):
        await provider.create_pix_qr_code(amount_cents=50000, description="Entrada")


@pytest.mark.parametrize(
    "status, expected",
    [
        ("PAID", TransactionStatus.PAID),
        ("paid", TransactionStatus.PAID),
        ("EXPIRED", TransactionStatus.CANCELLED),
        ("REFUNDED", TransactionStatus.REFUNDED),
        ("SOMETHING_NEW", TransactionStatus.PENDING),
        (None, TransactionStatus.PENDING),
    ],
)
def test_status_mapping(status, expected):
    assert map_provider_status(status) == expected


# ==================== Reconciliation ====================

def paid_event(provider_payment_id: str = "pix_char_123", tenant_id: str = TENANT_ID, **overrides) -> PaymentEvent:
    body = {
        "event": "billing.paid",
        "timestamp": utc_now().isoformat(),
        "devMode": False,
        "data": {"id": provider_payment_id, "status": "PAID", "metadata": {"tenantId": tenant_id}},
    }
    body.update(overrides)
    return PaymentEvent.model_validate(body)


async def _seed_ledger(storage, amount: float = 760.0) -> None:
    await storage.create(TENANT_ID, "reservations", {
        "id": "r1",
        "tenant_id": TENANT_ID,
        "property_id": "p1",
        "client_id": "client-1",
        "code": "ABCD1234",
        "status": "pending",
        "check_in": "2030-03-04",
        "check_out": "2030-03-06",
        "guests": 2,
        "total_amount": 760.0,
    })
    await storage.create(TENANT_ID, "transactions", {
        "id": "t1",
        "tenant_id": TENANT_ID,
        "amount": amount,
        "description": "Entrada",
        "status": "pending",
        "reservation_id": "r1",
        "provider_payment_id": "pix_char_123",
    })


@pytest.mark.asyncio
async def test_paid_event_settles_reservation(storage):
    await _seed_ledger(storage)

    transaction = await PaymentReconciler(storage).apply(paid_event())

    assert transaction.status == TransactionStatus.PAID
    assert transaction.paid_at is not None
    reservation = await storage.get(TENANT_ID, "reservations", "r1")
    assert reservation["status"] == "paid"
    assert reservation["paid_amount"] == 760.0


@pytest.mark.asyncio
async def test_partial_payment_confirms_reservation(storage):
    await _seed_ledger(storage, amount=76.0)

    await PaymentReconciler(storage).apply(paid_event())

    reservation = await storage.get(TENANT_ID, "reservations", "r1")
    assert reservation["status"] == "confirmed"


@pytest.mark.asyncio
async def test_repeated_event_is_applied_once(storage):
    await _seed_ledger(storage, amount=76.0)
    reconciler = PaymentReconciler(storage)

    await reconciler.apply(paid_event())
    await reconciler.apply(paid_event())

    reservation = await storage.get(TENANT_ID, "reservations", "r1")
    assert reservation["paid_amount"] == 76.0


@pytest.mark.asyncio
async def test_concurrent_delivery_reading_a_stale_status_is_applied_once(storage, monkeypatch):
    await _seed_ledger(storage, amount=76.0)
    stale = await storage.query(TENANT_ID, "transactions")
    reconciler = PaymentReconciler(storage)
    await reconciler.apply(paid_event())

    async def query_before_first_delivery_landed(*args, **kwargs):
        return stale

    monkeypatch.setattr(storage, "query", query_before_first_delivery_landed)
    transaction = await reconciler.apply(paid_event())

    assert transaction.status == TransactionStatus.PAID
    reservation = await storage.get(TENANT_ID, "reservations", "r1")
    assert reservation["paid_amount"] == 76.0


@pytest.mark.asyncio
async def test_event_status_inferred_from_event_name(storage):
    await _seed_ledger(storage)
    event = paid_event(event="pix.expired")
    event.data.status = None

    transaction = await PaymentReconciler(storage).apply(event)

    assert transaction.status == TransactionStatus.CANCELLED


@pytest.mark.asyncio
async def test_unknown_transaction_is_ignored(storage):
    assert await PaymentReconciler(storage).apply(paid_event("pix_unknown")) is None


@pytest.mark.asyncio
async def test_event_without_tenant_is_rejected(storage):
    event = paid_event()
    event.data.metadata = {}

    with pytest.raises(ValidationError):
        await PaymentReconciler(storage).apply(event)


def test_stale_event_is_rejected(storage):
    reconciler = PaymentReconciler(storage, max_age_seconds=300)
    event = paid_event(timestamp=(utc_now() - timedelta(minutes=10)).isoformat())

    with pytest.raises(ValidationError):
        reconciler.check_freshness(event)

    reconciler.check_freshness(paid_event())
