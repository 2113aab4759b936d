"""Context assembler - builds the bounded planning input for one turn."""

from dataclasses import dataclass, field
from typing import Any

from src.core.config import settings
from src.models import Conversation, Message, MessageSender


@dataclass
class PlanningInput:
    """Everything the planner sees for one turn."""

    message: str
    transcript: list[dict[str, str]]
    context: dict[str, Any]
    tenant_id: str
    conversation_id: str
    client_id: str
    metadata: dict[str, Any] = field(default_factory=dict)


ROLE_BY_SENDER = {
    MessageSender.CLIENT: "user",
    MessageSender.AGENT: "assistant",
}


def assemble_context(
    conversation: Conversation,
    messages: list[Message],
    message_text: str,
    current_message_id: str | None = None,
    client_preferences: dict[str, Any] | None = None,
    window: int | None = None,
) -> PlanningInput:
    """Build the planner input from already-fetched data.

    Args:
        conversation: Conversation whose structured context is passed through
        messages: Recent messages, oldest first
        message_text: The inbound message being answered
        current_message_id: ID of the inbound message, excluded from the transcript
        client_preferences: Customer preferences stored on the client record
        window: Transcript size, defaults to ``context_window_messages``

    Returns:
        PlanningInput with at most ``window`` transcript entries, oldest first
    """
    size = window if window is not None else settings.context_window_messages
    history = [m for m in messages if m.id != current_message_id]
    history = history[-size:] if size > 0 else []

    transcript = [
        {"role": ROLE_BY_SENDER[MessageSender(m.sender)], "content": m.content}
        for m in history
    ]

    context = conversation.context.model_dump(by_alias=True)
    context["clientPreferences"] = dict(client_preferences or {})

    return PlanningInput(
        message=message_text,
        transcript=transcript,
        context=context,
        tenant_id=conversation.tenant_id,
        conversation_id=conversation.id,
        client_id=conversation.client_id,
    )
