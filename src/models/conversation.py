"""Conversation models for session and context management."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from src.core.timeutils import utc_now


class PendingReservation(BaseModel):
    """Reservation created during the conversation and awaiting payment."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    reservation_id: str
    property_id: str
    property_name: str | None = None
    check_in: str
    check_out: str
    guests: int
    total_amount: float
    status: str = "pending"


class ConversationContext(BaseModel):
    """Structured state carried from one turn to the next."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    # Last validated search filters, camelCase keys as the planner sends them
    current_search_filters: dict[str, Any] | None = None
    interested_property_ids: list[str] = Field(default_factory=list)
    pending_reservation: PendingReservation | None = None

    def is_empty(self) -> bool:
        return (
            not self.current_search_filters
            and not self.interested_property_ids
            and self.pending_reservation is None
        )


class ConversationPatch(BaseModel):
    """Partial update to a ConversationContext.

    Only fields present in ``model_fields_set`` are written, so a patch never
    clobbers keys another turn has written concurrently.
    """

    current_search_filters: dict[str, Any] | None = None
    add_interested_property_ids: list[str] = Field(default_factory=list)
    pending_reservation: PendingReservation | None = None

    def is_empty(self) -> bool:
        return not self.model_fields_set

    def apply(self, context: ConversationContext) -> ConversationContext:
        """Return a new context with this patch merged in."""
        updated = context.model_copy(deep=True)
        if "current_search_filters" in self.model_fields_set:
            updated.current_search_filters = dict(self.current_search_filters or {})
        if "add_interested_property_ids" in self.model_fields_set:
            for property_id in self.add_interested_property_ids:
                if property_id not in updated.interested_property_ids:
                    updated.interested_property_ids.append(property_id)
        if "pending_reservation" in self.model_fields_set:
            updated.pending_reservation = self.pending_reservation
        return updated


class Conversation(BaseModel):
    """One ongoing exchange with a client over a channel."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: str = Field(..., description="Unique conversation identifier")
    tenant_id: str = Field(..., description="Tenant this conversation belongs to")
    client_id: str = Field(..., description="Client on the other end")
    channel_address: str = Field(..., description="Channel-specific address, e.g. whatsapp:+55...")
    channel: str = "whatsapp"

    is_active: bool = True
    context: ConversationContext = Field(default_factory=ConversationContext)

    # Timestamps
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
    last_message_at: datetime = Field(default_factory=utc_now)

    # Set by external collaborators (handoff, timeout)
    closed_reason: str | None = None
