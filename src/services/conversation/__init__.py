"""Conversation service - the agent message-processing pipeline."""

from src.services.conversation.composer import compose_reply
from src.services.conversation.context import PlanningInput, assemble_context
from src.services.conversation.context_updater import merge_context
from src.services.conversation.engine import (
    ConversationEngine,
    TurnResult,
    TurnState,
    get_conversation_engine,
    reset_conversation_engine,
)
from src.services.conversation.guard import DuplicateCallGuard
from src.services.conversation.store import ConversationStore

__all__ = [
    "ConversationEngine",
    "ConversationStore",
    "DuplicateCallGuard",
    "PlanningInput",
    "TurnResult",
    "TurnState",
    "assemble_context",
    "compose_reply",
    "get_conversation_engine",
    "merge_context",
    "reset_conversation_engine",
]
