"""Client (customer) model."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from src.core.timeutils import utc_now


class Client(BaseModel):
    """A customer record, unique per (tenant, phone)."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: str = Field(..., description="Unique client identifier")
    tenant_id: str = Field(..., description="Tenant this client belongs to")
    phone: str = Field(..., description="Phone number, unique within the tenant")
    name: str = "Cliente WhatsApp"
    email: str | None = None
    document: str | None = None

    # Free-form key/value preferences surfaced to the planner
    preferences: dict[str, Any] = Field(default_factory=dict)

    source: str = "whatsapp"
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
