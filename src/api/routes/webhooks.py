"""Webhook endpoints for channel and payment integrations."""

import hmac
from typing import Annotated, Any

import structlog
from fastapi import APIRouter, Header, Request, Response, status

from src.api.dependencies import EngineDep, ReconcilerDep, TwilioAuthDep, WhatsAppDep
from src.core.config import settings
from src.core.exceptions import AppException, AuthenticationError, RateLimitError
from src.core.messages import get_message
from src.models import OutgoingMessage
from src.services.payments.reconciliation import PaymentEvent

logger = structlog.get_logger()

router = APIRouter(prefix="/webhooks", tags=["Webhooks"])


@router.post("/whatsapp/{tenant_id}")
async def whatsapp_webhook(
    tenant_id: str,
    request: Request,
    engine: EngineDep,
    whatsapp: WhatsAppDep,
    _verified: TwilioAuthDep,
) -> Response:
    """Handle incoming WhatsApp messages via Twilio webhook.

    Twilio expects a TwiML response or empty 200. The reply is delivered
    through the outbound channel, so errors never turn into a non-200 that
    would make Twilio retry the message.
    """
    try:
        # Parse the form data into dict for adapter
        form_data = await request.form()
        incoming = await whatsapp.parse_webhook(tenant_id, dict(form_data))

        if not incoming:
            # Not a message event (could be status callback)
            return Response(status_code=status.HTTP_200_OK)

        try:
            await engine.process_message(incoming)
        except RateLimitError:
            _notify(engine, incoming.address, get_message("rate_limited", settings.default_locale))
        except AppException as e:
            logger.error(
                "WhatsApp turn failed",
                tenant_id=tenant_id,
                code=e.code,
                error=e.message,
            )
            _notify(engine, incoming.address, get_message("generic_failure", settings.default_locale))

        return Response(status_code=status.HTTP_200_OK)

    except Exception as e:
        logger.error("Error processing WhatsApp webhook", tenant_id=tenant_id, error=str(e), exc_info=True)
        # Return 200 to prevent Twilio from retrying on our errors
        return Response(status_code=status.HTTP_200_OK)


def _notify(engine, address: str, text: str) -> None:
    if engine.delivery is not None:
        engine.delivery.deliver_in_background(OutgoingMessage(content=text, recipient_id=address))


@router.post("/whatsapp/{tenant_id}/status")
async def whatsapp_status_callback(
    tenant_id: str,
    request: Request,
) -> Response:
    """Acknowledge Twilio delivery status callbacks."""
    form_data = await request.form()
    logger.debug(
        "WhatsApp status callback",
        tenant_id=tenant_id,
        message_sid=form_data.get("MessageSid"),
        status=form_data.get("MessageStatus"),
    )
    return Response(status_code=status.HTTP_200_OK)


def _verify_payment_secret(provided: str | None) -> None:
    expected = settings.payment_webhook_secret
    if not expected:
        if settings.is_development:
            return
        raise AuthenticationError("Payment webhook secret is not configured")
    if not provided or not hmac.compare_digest(provided, expected):
        raise AuthenticationError("Invalid payment webhook secret")


@router.post("/payments")
async def payment_webhook(
    event: PaymentEvent,
    request: Request,
    reconciler: ReconcilerDep,
    x_webhook_secret: Annotated[str | None, Header()] = None,
) -> dict[str, Any]:
    """Apply a payment-provider status update to the ledger.

    The shared secret comes in the ``X-Webhook-Secret`` header or the
    ``webhookSecret`` query parameter. Stale events are rejected.
    """
    _verify_payment_secret(x_webhook_secret or request.query_params.get("webhookSecret"))
    reconciler.check_freshness(event)

    transaction = await reconciler.apply(event)

    logger.info(
        "Payment webhook processed",
        event=event.event,
        provider_payment_id=event.data.id,
        matched=transaction is not None,
    )

    return {
        "received": True,
        "transactionId": transaction.id if transaction else None,
        "status": transaction.status.value if transaction else None,
    }
