"""Inventory, reservation and ledger models."""

from datetime import date, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_serializer
from pydantic.alias_generators import to_camel

from src.core.timeutils import utc_now


class PropertyMedia(BaseModel):
    """Photo or video attached to a property."""

    url: str
    caption: str | None = None
    order: int = 0


class Property(BaseModel):
    """Rental property in a tenant's catalogue."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: str
    tenant_id: str
    title: str
    description: str = ""
    category: str = "apartment"

    # Location
    address: str = ""
    neighborhood: str = ""
    city: str = ""

    # Capacity
    bedrooms: int = 1
    bathrooms: int = 1
    max_guests: int = 2
    capacity: int | None = None  # guests included in the base price

    # Pricing
    base_price: float = 0.0
    price_per_extra_guest: float = 0.0
    cleaning_fee: float = 0.0
    minimum_nights: int = 1
    weekend_surcharge: float = 0.0  # percent
    december_surcharge: float = 0.0  # percent
    high_season_surcharge: float = 0.0  # percent
    high_season_months: list[int] = Field(default_factory=list)
    custom_pricing: dict[str, float] = Field(default_factory=dict)  # YYYY-MM-DD -> price
    advance_payment_percentage: float | None = None

    amenities: list[str] = Field(default_factory=list)
    photos: list[PropertyMedia] = Field(default_factory=list)
    videos: list[PropertyMedia] = Field(default_factory=list)
    unavailable_dates: list[str] = Field(default_factory=list)

    is_active: bool = True
    created_at: datetime = Field(default_factory=utc_now)

    @property
    def location(self) -> str:
        return ", ".join(part for part in (self.neighborhood, self.city) if part)

    @property
    def included_guests(self) -> int:
        return self.capacity or self.max_guests or 2

    def summary(self) -> dict[str, Any]:
        """Compact representation returned to the planner and composer."""
        return {
            "id": self.id,
            "name": self.title,
            "location": self.location,
            "bedrooms": self.bedrooms,
            "bathrooms": self.bathrooms,
            "maxGuests": self.max_guests,
            "pricePerNight": self.base_price,
            "amenities": self.amenities[:5],
            "description": self.description[:200],
        }


class ReservationStatus(str, Enum):
    """Lifecycle of a reservation."""

    PENDING = "pending"
    PARTIAL_PAYMENT_PENDING = "partial_payment_pending"
    CONFIRMED = "confirmed"
    PAID = "paid"
    CANCELLED = "cancelled"


class Reservation(BaseModel):
    """A booking of a property by a client."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: str
    tenant_id: str
    property_id: str
    client_id: str
    conversation_id: str | None = None
    code: str

    status: ReservationStatus = ReservationStatus.PENDING
    check_in: date
    check_out: date
    guests: int
    total_amount: float
    paid_amount: float = 0.0

    source: str = "whatsapp_ai"
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @field_serializer("check_in", "check_out")
    def _serialize_date(self, value: date) -> str:
        return value.isoformat()

    @property
    def nights(self) -> int:
        return (self.check_out - self.check_in).days


class TransactionStatus(str, Enum):
    """Internal ledger status. Provider statuses are mapped onto this."""

    PENDING = "pending"
    PAID = "paid"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"


class PaymentMethod(str, Enum):
    PIX = "pix"
    CREDIT_CARD = "credit_card"
    DEBIT_CARD = "debit_card"
    BANK_TRANSFER = "bank_transfer"
    CASH = "cash"


class Transaction(BaseModel):
    """Ledger entry, optionally backed by a provider payment request."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: str
    tenant_id: str
    amount: float
    description: str
    type: str = "income"
    category: str = "reservation"
    status: TransactionStatus = TransactionStatus.PENDING
    payment_method: PaymentMethod = PaymentMethod.PIX

    reservation_id: str | None = None
    client_id: str | None = None
    property_id: str | None = None
    conversation_id: str | None = None
    due_date: date | None = None

    # Payment provider
    provider: str | None = None
    provider_payment_id: str | None = None
    provider_status: str | None = None
    br_code: str | None = None
    qr_code_image: str | None = None
    expires_at: datetime | None = None
    paid_at: datetime | None = None

    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @field_serializer("due_date")
    def _serialize_due_date(self, value: date | None) -> str | None:
        return value.isoformat() if value else None


class NightlyRate(BaseModel):
    date: str
    price: float
    reason: str


class PriceQuote(BaseModel):
    """Price breakdown for a stay."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    property_id: str
    property_name: str
    check_in: str
    check_out: str
    nights: int
    guests: int
    base_price: float
    nightly_rates: list[NightlyRate] = Field(default_factory=list)
    subtotal: float
    extra_guests: int = 0
    extra_guest_fee: float = 0.0
    cleaning_fee: float = 0.0
    service_fee: float = 0.0
    total: float
    average_per_night: float
    currency: str = "BRL"
