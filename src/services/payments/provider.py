"""PIX payment provider client (AbacatePay-compatible HTTP API)."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

import httpx
import structlog
from tenacity import retry, retry_if_exception, stop_after_attempt, wait_exponential

from src.core.config import settings
from src.core.exceptions import PaymentProviderError
from src.models import TransactionStatus

logger = structlog.get_logger()

MIN_AMOUNT_CENTS = 100
MAX_AMOUNT_CENTS = 10_000_000
DEFAULT_EXPIRES_MINUTES = 30
MAX_EXPIRES_MINUTES = 1440


class ProviderStatus(str, Enum):
    """Status values reported by the payment provider."""

    PENDING = "PENDING"
    PAID = "PAID"
    EXPIRED = "EXPIRED"
    CANCELLED = "CANCELLED"
    REFUNDED = "REFUNDED"


_STATUS_MAP = {
    ProviderStatus.PENDING.value: TransactionStatus.PENDING,
    ProviderStatus.PAID.value: TransactionStatus.PAID,
    ProviderStatus.EXPIRED.value: TransactionStatus.CANCELLED,
    ProviderStatus.CANCELLED.value: TransactionStatus.CANCELLED,
    ProviderStatus.REFUNDED.value: TransactionStatus.REFUNDED,
}


def map_provider_status(status: str | None) -> TransactionStatus:
    """Map a provider status onto the internal transaction status.

    Unknown values map to ``pending`` and are logged, so a new provider
    status never silently drops an update.
    """
    mapped = _STATUS_MAP.get((status or "").upper())
    if mapped is None:
        logger.warning("Unknown payment provider status, treating as pending", status=status)
        return TransactionStatus.PENDING
    return mapped


@dataclass
class PixCharge:
    """A PIX QR-code charge as returned by the provider."""

    id: str
    amount_cents: int
    status: str
    br_code: str
    br_code_base64: str = ""
    expires_at: datetime | None = None
    raw: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_payload(cls, data: dict[str, Any]) -> "PixCharge":
        expires_at = data.get("expiresAt")
        return cls(
            id=data["id"],
            amount_cents=int(data.get("amount", 0)),
            status=data.get("status", ProviderStatus.PENDING.value),
            br_code=data.get("brCode", ""),
            br_code_base64=data.get("brCodeBase64", ""),
            expires_at=datetime.fromisoformat(expires_at.replace("Z", "+00:00")) if expires_at else None,
            raw=data,
        )


def _is_transient(exc: BaseException) -> bool:
    if isinstance(exc, httpx.TransportError):
        return True
    if isinstance(exc, PaymentProviderError):
        status_code = exc.details.get("provider_status_code") or 0
        return status_code == 429 or status_code >= 500
    return False


class PaymentProvider:
    """HTTP client for the payment provider.

    Creation requests carry an ``externalId`` derived from the caller's
    idempotency key, so retrying them is safe.
    """

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str | None = None,
        timeout_seconds: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.api_key = api_key or settings.payment_api_key
        self.base_url = (base_url or settings.payment_base_url).rstrip("/")
        self.timeout_seconds = timeout_seconds or settings.payment_timeout_seconds
        self._transport = transport

        if not self.api_key:
            logger.warning("Payment provider API key not configured")

    @retry(
        retry=retry_if_exception(_is_transient),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.5, min=0.5, max=4),
        reraise=True,
    )
    async def _request(self, method: str, path: str, **kwargs: Any) -> dict[str, Any]:
        if not self.api_key:
            raise PaymentProviderError("Payment provider is not configured")

        async with httpx.AsyncClient(
            base_url=self.base_url,
            timeout=httpx.Timeout(self.timeout_seconds, connect=5.0),
            headers={"Authorization": f"Bearer {self.api_key}"},
            transport=self._transport,
        ) as client:
            response = await client.request(method, path, **kwargs)

        try:
            body = response.json()
        except ValueError:
            body = {}

        if response.is_error or body.get("error"):
            logger.error(
                "Payment provider error response",
                path=path,
                status_code=response.status_code,
                error=body.get("error"),
            )
            raise PaymentProviderError(
                f"Payment provider rejected request: {body.get('error') or response.status_code}",
                status_code=response.status_code,
            )

        data = body.get("data")
        if not isinstance(data, dict):
            raise PaymentProviderError("Payment provider returned no data", status_code=response.status_code)
        return data

    async def create_pix_qr_code(
        self,
        amount_cents: int,
        description: str,
        expires_in_minutes: int = DEFAULT_EXPIRES_MINUTES,
        customer: dict[str, str] | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> PixCharge:
        """Create a PIX QR-code charge.

        Args:
            amount_cents: Amount in cents, between R$1.00 and R$100,000.00
            description: Shown to the payer
            expires_in_minutes: Minutes until the charge expires
            customer: Optional payer data (name, cellphone, email, taxId)
            metadata: Must carry ``tenantId`` and ``externalId``

        Returns:
            PixCharge with the copy-and-paste BR code and QR image
        """
        if not MIN_AMOUNT_CENTS <= amount_cents <= MAX_AMOUNT_CENTS:
            raise PaymentProviderError(f"Amount out of range: {amount_cents} cents")
        if not 1 <= expires_in_minutes <= MAX_EXPIRES_MINUTES:
            raise PaymentProviderError(f"Expiry out of range: {expires_in_minutes} minutes")

        payload: dict[str, Any] = {
            "amount": amount_cents,
            "expiresIn": expires_in_minutes,
            "description": description,
            "metadata": metadata or {},
        }
        if customer:
            payload["customer"] = customer

        data = await self._request("POST", "/pixQrCode/create", json=payload)
        charge = PixCharge.from_payload(data)

        logger.info(
            "PIX QR code created",
            pix_id=charge.id,
            amount_cents=charge.amount_cents,
            status=charge.status,
        )
        return charge


# Singleton instance
_payment_provider: PaymentProvider | None = None


def get_payment_provider() -> PaymentProvider:
    """Get or create the payment provider singleton."""
    global _payment_provider
    if _payment_provider is None:
        _payment_provider = PaymentProvider()
    return _payment_provider
