"""Agent endpoints - process a message and read a conversation back."""

from typing import Any

import structlog
from fastapi import APIRouter
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from src.api.dependencies import EngineDep, PrincipalDep, StoreDep
from src.core.exceptions import AuthenticationError
from src.models import ChannelType, IncomingMessage

logger = structlog.get_logger()

router = APIRouter(prefix="/agent", tags=["Agent"])


class AgentMessageRequest(BaseModel):
    """Inbound message body. Field names are camelCase on the wire."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, str_strip_whitespace=True)

    tenant_id: str | None = None
    channel_address: str | None = None
    sender_phone: str = Field(..., min_length=5, max_length=32)
    text: str = Field(..., min_length=1, max_length=4000)
    sender_name: str | None = Field(default=None, max_length=100)
    is_test: bool = False


@router.post("/messages")
async def process_message(
    body: AgentMessageRequest,
    principal: PrincipalDep,
    engine: EngineDep,
) -> dict[str, Any]:
    """Run one turn of the agent pipeline for the caller's tenant."""
    if body.tenant_id and body.tenant_id != principal.tenant_id:
        logger.warning(
            "Tenant mismatch between principal and body",
            principal_tenant=principal.tenant_id,
            body_tenant=body.tenant_id,
        )
        raise AuthenticationError("Tenant does not match the authenticated principal")

    incoming = IncomingMessage(
        tenant_id=principal.tenant_id,
        sender_phone=body.sender_phone,
        text=body.text,
        channel_address=body.channel_address,
        sender_name=body.sender_name,
        channel=ChannelType.API,
        is_test=body.is_test,
    )

    result = await engine.process_message(incoming, bypass_rate_limit=body.is_test)

    return {
        "reply": result.reply,
        "functionResults": [
            {"function": r.function_name, "result": r.model_dump(mode="json", by_alias=True)}
            for r in result.function_results
        ],
        "conversationId": result.conversation_id,
        "clientId": result.client_id,
    }


@router.get("/conversations/{conversation_id}")
async def get_conversation(
    conversation_id: str,
    principal: PrincipalDep,
    store: StoreDep,
) -> dict[str, Any]:
    """Conversation and its message log, scoped to the caller's tenant."""
    conversation, messages = await store.get_conversation_with_messages(principal.tenant_id, conversation_id)
    return {
        "conversation": conversation.model_dump(mode="json", by_alias=True),
        "messages": [m.model_dump(mode="json", by_alias=True) for m in messages],
    }


class CloseConversationRequest(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, str_strip_whitespace=True)

    reason: str = Field(default="closed", min_length=1, max_length=64)


@router.post("/conversations/{conversation_id}/close")
async def close_conversation(
    conversation_id: str,
    principal: PrincipalDep,
    engine: EngineDep,
    body: CloseConversationRequest | None = None,
) -> dict[str, Any]:
    """Deactivate a conversation, e.g. on human handoff; the next message opens a new one."""
    conversation = await engine.close_conversation(
        principal.tenant_id,
        conversation_id,
        reason=body.reason if body else "closed",
    )
    return {"conversation": conversation.model_dump(mode="json", by_alias=True)}
