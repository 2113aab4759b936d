"""Applies asynchronous payment-provider status updates to the ledger."""

from datetime import datetime, timedelta
from typing import Any

import structlog
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from src.core.config import settings
from src.core.exceptions import ValidationError
from src.core.timeutils import ensure_utc, utc_now
from src.models import ReservationStatus, Transaction, TransactionStatus
from src.services.payments.provider import map_provider_status
from src.storage.base import StorageBackend

logger = structlog.get_logger()

TRANSACTIONS = "transactions"
RESERVATIONS = "reservations"


class PaymentEventData(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    id: str
    status: str | None = None
    amount: int | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class PaymentEvent(BaseModel):
    """Provider webhook body: ``{event, timestamp, devMode, data}``."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    event: str
    timestamp: datetime
    dev_mode: bool = False
    data: PaymentEventData

    @property
    def provider_status(self) -> str | None:
        # Events like "pix.paid" imply the status when data omits it
        if self.data.status:
            return self.data.status
        return self.event.rsplit(".", 1)[-1].upper() if "." in self.event else None

    @property
    def tenant_id(self) -> str | None:
        return self.data.metadata.get("tenantId")


class PaymentReconciler:
    """Maps provider events onto transactions and their reservations."""

    def __init__(self, storage: StorageBackend, max_age_seconds: int | None = None) -> None:
        self.storage = storage
        self.max_age = timedelta(seconds=max_age_seconds or settings.payment_webhook_max_age_seconds)

    def check_freshness(self, event: PaymentEvent, now: datetime | None = None) -> None:
        age = (now or utc_now()) - ensure_utc(event.timestamp)
        if age > self.max_age:
            raise ValidationError(
                f"Payment event too old: {int(age.total_seconds())}s",
                field="timestamp",
            )

    async def apply(self, event: PaymentEvent) -> Transaction | None:
        """Apply one provider event.

        Returns:
            The updated transaction, or None when no transaction matches
        """
        tenant_id = event.tenant_id
        if not tenant_id:
            raise ValidationError("Payment event carries no tenantId metadata", field="metadata.tenantId")

        docs = await self.storage.query(
            tenant_id,
            TRANSACTIONS,
            [("provider_payment_id", "==", event.data.id)],
            limit=1,
        )
        if not docs:
            logger.warning(
                "Payment event for unknown transaction",
                tenant_id=tenant_id,
                provider_payment_id=event.data.id,
                payment_event=event.event,
            )
            return None

        transaction = Transaction.model_validate(docs[0])
        new_status = map_provider_status(event.provider_status)
        previous: dict[str, str | None] = {}

        def _transition(doc: dict[str, Any]) -> dict[str, Any] | None:
            # Runs against the stored document, so only one delivery wins
            previous["status"] = doc.get("status")
            if doc.get("status") == new_status.value:
                return None
            now = utc_now()
            fields: dict[str, Any] = {
                "status": new_status.value,
                "provider_status": event.provider_status,
                "updated_at": now,
            }
            if new_status == TransactionStatus.PAID:
                fields["paid_at"] = now
            return fields

        doc = await self.storage.update_atomic(tenant_id, TRANSACTIONS, transaction.id, _transition)
        if doc is None:
            logger.warning(
                "Transaction disappeared during reconciliation",
                tenant_id=tenant_id,
                transaction_id=transaction.id,
            )
            return None
        updated = Transaction.model_validate(doc)

        if previous.get("status") == new_status.value:
            logger.info(
                "Payment event already applied",
                tenant_id=tenant_id,
                transaction_id=transaction.id,
                status=new_status.value,
            )
            return updated

        logger.info(
            "Transaction status updated from payment event",
            tenant_id=tenant_id,
            transaction_id=transaction.id,
            old_status=previous.get("status"),
            new_status=new_status.value,
        )

        if new_status == TransactionStatus.PAID and updated.reservation_id:
            await self._record_reservation_payment(tenant_id, updated)

        return updated

    async def _record_reservation_payment(self, tenant_id: str, transaction: Transaction) -> None:
        def _add_payment(doc: dict[str, Any]) -> dict[str, Any]:
            paid = round(float(doc.get("paid_amount", 0.0)) + transaction.amount, 2)
            total = float(doc.get("total_amount", 0.0))
            status = ReservationStatus.PAID if paid >= total else ReservationStatus.CONFIRMED
            return {"paid_amount": paid, "status": status.value, "updated_at": utc_now()}

        doc = await self.storage.update_atomic(tenant_id, RESERVATIONS, transaction.reservation_id, _add_payment)
        if doc is None:
            logger.warning(
                "Paid transaction references a missing reservation",
                tenant_id=tenant_id,
                reservation_id=transaction.reservation_id,
            )
            return

        logger.info(
            "Reservation payment recorded",
            tenant_id=tenant_id,
            reservation_id=transaction.reservation_id,
            status=doc.get("status"),
        )
