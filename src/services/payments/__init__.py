"""Payments - PIX provider client and status reconciliation."""

from src.services.payments.provider import (
    PaymentProvider,
    PixCharge,
    ProviderStatus,
    get_payment_provider,
    map_provider_status,
)
from src.services.payments.reconciliation import PaymentEvent, PaymentReconciler

__all__ = [
    "PaymentProvider",
    "PixCharge",
    "ProviderStatus",
    "get_payment_provider",
    "map_provider_status",
    "PaymentEvent",
    "PaymentReconciler",
]
