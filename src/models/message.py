"""Message models for the conversation log and channels."""

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from src.core.timeutils import utc_now


class ChannelType(str, Enum):
    """Supported communication channels."""

    WHATSAPP = "whatsapp"
    API = "api"


class MessageSender(str, Enum):
    """Who authored a message."""

    CLIENT = "client"
    AGENT = "agent"


class Message(BaseModel):
    """Immutable turn record. Append-only, ordered by timestamp."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: str = Field(..., description="Unique message identifier")
    conversation_id: str = Field(..., description="Parent conversation ID")
    tenant_id: str = Field(..., description="Tenant ID")

    sender: MessageSender = Field(..., alias="from")
    content: str = Field(..., description="Message text content")
    timestamp: datetime = Field(default_factory=utc_now)
    is_read: bool = False

    # Processing info (model used, function names executed)
    metadata: dict[str, Any] = Field(default_factory=dict)

    def to_llm_message(self) -> dict[str, str]:
        """Convert to LLM message format for context."""
        if self.sender == MessageSender.CLIENT:
            return {"role": "user", "content": self.content}
        return {"role": "assistant", "content": self.content}


class IncomingMessage(BaseModel):
    """Normalized inbound message handed to the pipeline."""

    tenant_id: str
    sender_phone: str
    text: str
    channel_address: str | None = None
    sender_name: str | None = None
    channel: ChannelType = ChannelType.API
    is_test: bool = False

    # Channel-specific data
    raw_payload: dict[str, Any] = Field(default_factory=dict)

    @property
    def address(self) -> str:
        return self.channel_address or self.sender_phone


class OutgoingMessage(BaseModel):
    """Message to be sent to user."""

    content: str
    recipient_id: str

    # Optional media
    media_url: str | None = None

    metadata: dict[str, Any] = Field(default_factory=dict)
