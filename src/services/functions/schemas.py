"""Typed argument models, one per registered function.

Planner output is loosely typed; each handler receives one of these models
only after validation succeeds. Field names are camelCase on the wire.
"""

from datetime import date
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from src.models import PaymentMethod


class FunctionArgs(BaseModel):
    """Base for all argument models."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
        str_strip_whitespace=True,
    )


class StayDates(FunctionArgs):
    check_in: date = Field(..., description="Check-in date (YYYY-MM-DD)")
    check_out: date = Field(..., description="Check-out date (YYYY-MM-DD)")

    @model_validator(mode="after")
    def _check_order(self) -> "StayDates":
        if self.check_out <= self.check_in:
            raise ValueError("checkOut must be after checkIn")
        return self


class PropertyRef(FunctionArgs):
    """Identifies a property by ID or by (partial) name."""

    property_id: str | None = Field(default=None, description="Property ID from a previous search")
    property_name: str | None = Field(default=None, description="Property name, e.g. 'Casa da Praia'")

    @model_validator(mode="after")
    def _require_reference(self) -> "PropertyRef":
        if not self.property_id and not self.property_name:
            raise ValueError("propertyId or propertyName is required")
        return self


class SearchPropertiesArgs(FunctionArgs):
    location: str | None = Field(default=None, description="City, neighborhood or address")
    max_guests: int | None = Field(default=None, ge=1, le=50, description="Number of guests")
    bedrooms: int | None = Field(default=None, ge=0, le=20, description="Minimum bedrooms")
    max_price: float | None = Field(default=None, gt=0, description="Maximum price per night")
    property_type: str | None = Field(default=None, description="apartment, house, ...")
    amenities: list[str] = Field(default_factory=list, description="Desired amenities")
    check_in: date | None = Field(default=None, description="Check-in date (YYYY-MM-DD)")
    check_out: date | None = Field(default=None, description="Check-out date (YYYY-MM-DD)")

    @model_validator(mode="after")
    def _check_dates(self) -> "SearchPropertiesArgs":
        if (self.check_in is None) != (self.check_out is None):
            raise ValueError("checkIn and checkOut must be given together")
        if self.check_in and self.check_out and self.check_out <= self.check_in:
            raise ValueError("checkOut must be after checkIn")
        return self


class GetPropertyDetailsArgs(PropertyRef):
    pass


class CalculatePriceArgs(PropertyRef, StayDates):
    guests: int = Field(default=2, ge=1, le=50, description="Number of guests")


class CheckAvailabilityArgs(PropertyRef, StayDates):
    pass


class SendPropertyMediaArgs(PropertyRef):
    media_type: Literal["photos", "videos", "all"] = Field(default="all", description="Media to send")


class RegisterClientArgs(FunctionArgs):
    name: str = Field(..., min_length=2, max_length=100, description="Full name")
    email: str | None = Field(default=None, max_length=200, description="Email address")
    document: str | None = Field(default=None, max_length=30, description="CPF or other document")

    @field_validator("email")
    @classmethod
    def _check_email(cls, value: str | None) -> str | None:
        if value and ("@" not in value or "." not in value.split("@")[-1]):
            raise ValueError("invalid email address")
        return value.lower() if value else value


class CreateReservationArgs(PropertyRef, StayDates):
    guests: int = Field(..., ge=1, le=50, description="Number of guests")


class GeneratePixPaymentArgs(FunctionArgs):
    amount: float = Field(..., ge=1.0, le=100_000.0, description="Amount in BRL")
    description: str = Field(..., min_length=3, max_length=200, description="Shown to the payer")
    expires_in_minutes: int = Field(default=30, ge=1, le=1440, description="Minutes until expiry")
    reservation_id: str | None = Field(default=None, description="Reservation being paid")


class CreateTransactionArgs(FunctionArgs):
    reservation_id: str | None = Field(default=None, description="Reservation ID; defaults to the pending one")
    total_amount: float | None = Field(default=None, gt=0, description="Reservation total")
    payment_method: PaymentMethod = Field(default=PaymentMethod.PIX, description="Payment method")
    advance_payment_percentage: float | None = Field(
        default=None, gt=0, le=100, description="Down payment percentage, e.g. 10"
    )
    notes: str | None = Field(default=None, max_length=500)
