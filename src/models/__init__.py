"""Data models for the application."""

from src.models.client import Client
from src.models.commerce import (
    NightlyRate,
    PaymentMethod,
    PriceQuote,
    Property,
    PropertyMedia,
    Reservation,
    ReservationStatus,
    Transaction,
    TransactionStatus,
)
from src.models.conversation import (
    Conversation,
    ConversationContext,
    ConversationPatch,
    PendingReservation,
)
from src.models.functions import FunctionCall, FunctionErrorCode, FunctionResult, Plan
from src.models.message import (
    ChannelType,
    IncomingMessage,
    Message,
    MessageSender,
    OutgoingMessage,
)
from src.models.tenant import TenantConfig

__all__ = [
    # Tenant
    "TenantConfig",
    # Client
    "Client",
    # Conversation
    "Conversation",
    "ConversationContext",
    "ConversationPatch",
    "PendingReservation",
    # Message
    "ChannelType",
    "IncomingMessage",
    "Message",
    "MessageSender",
    "OutgoingMessage",
    # Functions
    "FunctionCall",
    "FunctionErrorCode",
    "FunctionResult",
    "Plan",
    # Commerce
    "NightlyRate",
    "PaymentMethod",
    "PriceQuote",
    "Property",
    "PropertyMedia",
    "Reservation",
    "ReservationStatus",
    "Transaction",
    "TransactionStatus",
]
