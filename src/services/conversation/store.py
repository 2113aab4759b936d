"""Conversation store adapter - clients, conversations and the message log."""

import asyncio
from collections.abc import Awaitable
from typing import Any, TypeVar
from uuid import uuid4

import structlog
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from src.core.config import settings
from src.core.exceptions import DuplicateDocumentError, NotFoundError, StorageError
from src.core.timeutils import utc_now
from src.models import (
    Client,
    Conversation,
    ConversationContext,
    ConversationPatch,
    Message,
    MessageSender,
    TenantConfig,
)
from src.storage.base import StorageBackend

logger = structlog.get_logger()

T = TypeVar("T")

CLIENTS = "clients"
CONVERSATIONS = "conversations"
MESSAGES = "messages"
SETTINGS = "settings"

_CLIENT_DEFAULT_FIELDS = {"name", "email", "document", "preferences", "source"}


def _retryable_storage_call():
    return retry(
        retry=retry_if_exception_type(StorageError),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.1, min=0.1, max=1),
        reraise=True,
    )


class ConversationStore:
    """Tenant-scoped persistence for the turn pipeline.

    Every storage call is bounded by ``storage_timeout_seconds``; timeouts
    and backend failures surface as StorageError. The two get-or-create
    operations tolerate losing a creation race by re-reading the winner.
    """

    def __init__(self, storage: StorageBackend, timeout_seconds: float | None = None) -> None:
        self.storage = storage
        self.timeout_seconds = timeout_seconds or settings.storage_timeout_seconds

    async def _call(self, operation: str, awaitable: Awaitable[T]) -> T:
        try:
            return await asyncio.wait_for(awaitable, timeout=self.timeout_seconds)
        except StorageError:
            raise
        except asyncio.TimeoutError as e:
            raise StorageError(f"Storage operation timed out: {operation}", operation=operation) from e
        except Exception as e:
            raise StorageError(f"Storage operation failed: {operation}: {e}", operation=operation) from e

    # ==================== Clients ====================

    async def find_client_by_phone(self, tenant_id: str, phone: str) -> Client | None:
        docs = await self._call(
            "find_client",
            self.storage.query(tenant_id, CLIENTS, [("phone", "==", phone)], limit=1),
        )
        return Client.model_validate(docs[0]) if docs else None

    async def get_client(self, tenant_id: str, client_id: str) -> Client | None:
        doc = await self._call("get_client", self.storage.get(tenant_id, CLIENTS, client_id))
        return Client.model_validate(doc) if doc else None

    @_retryable_storage_call()
    async def get_or_create_client(
        self,
        tenant_id: str,
        phone: str,
        defaults: dict[str, Any] | None = None,
    ) -> Client:
        """Return the tenant's client for a phone number, creating it on first contact.

        Args:
            tenant_id: Tenant ID
            phone: Sender phone number, unique within the tenant
            defaults: Field values for a newly created client (name, email...)

        Returns:
            The existing client, the newly created one, or the concurrent
            creator's record when another turn won the race
        """
        existing = await self.find_client_by_phone(tenant_id, phone)
        if existing:
            return existing

        initial = {k: v for k, v in (defaults or {}).items() if k in _CLIENT_DEFAULT_FIELDS and v}
        client = Client(id=str(uuid4()), tenant_id=tenant_id, phone=phone, **initial)

        try:
            doc = await self._call(
                "create_client",
                self.storage.create(
                    tenant_id,
                    CLIENTS,
                    client.model_dump(),
                    doc_id=client.id,
                    unique_key=f"phone:{phone}",
                ),
            )
        except DuplicateDocumentError as e:
            winner = None
            if e.existing_id:
                winner = await self.get_client(tenant_id, e.existing_id)
            winner = winner or await self.find_client_by_phone(tenant_id, phone)
            if winner is None:
                raise StorageError(
                    "Client creation collided but no winner was found",
                    operation="get_or_create_client",
                ) from e
            logger.info("Client creation race resolved", tenant_id=tenant_id, client_id=winner.id)
            return winner

        logger.info("Created new client", tenant_id=tenant_id, client_id=client.id)
        return Client.model_validate(doc)

    # ==================== Conversations ====================

    async def find_active_conversation(self, tenant_id: str, channel_address: str) -> Conversation | None:
        docs = await self._call(
            "find_active_conversation",
            self.storage.query(
                tenant_id,
                CONVERSATIONS,
                [("channel_address", "==", channel_address), ("is_active", "==", True)],
                limit=1,
            ),
        )
        return Conversation.model_validate(docs[0]) if docs else None

    async def get_conversation(self, tenant_id: str, conversation_id: str) -> Conversation | None:
        doc = await self._call(
            "get_conversation", self.storage.get(tenant_id, CONVERSATIONS, conversation_id)
        )
        return Conversation.model_validate(doc) if doc else None

    @_retryable_storage_call()
    async def get_or_create_active_conversation(
        self,
        tenant_id: str,
        client_id: str,
        channel_address: str,
    ) -> Conversation:
        """Return the single active conversation for a channel address.

        An existing conversation has its activity timestamps refreshed.
        Creation claims the ``active:{channel_address}`` unique key, so two
        concurrent first turns converge on one conversation.
        """
        existing = await self.find_active_conversation(tenant_id, channel_address)
        if existing:
            now = utc_now()
            doc = await self._call(
                "touch_conversation",
                self.storage.update(
                    tenant_id,
                    CONVERSATIONS,
                    existing.id,
                    {"last_message_at": now, "updated_at": now},
                ),
            )
            return Conversation.model_validate(doc) if doc else existing

        conversation = Conversation(
            id=str(uuid4()),
            tenant_id=tenant_id,
            client_id=client_id,
            channel_address=channel_address,
        )

        try:
            doc = await self._call(
                "create_conversation",
                self.storage.create(
                    tenant_id,
                    CONVERSATIONS,
                    conversation.model_dump(),
                    doc_id=conversation.id,
                    unique_key=f"active:{channel_address}",
                ),
            )
        except DuplicateDocumentError as e:
            winner = None
            if e.existing_id:
                winner = await self.get_conversation(tenant_id, e.existing_id)
            if winner is None or not winner.is_active:
                winner = await self.find_active_conversation(tenant_id, channel_address)
            if winner is None:
                raise StorageError(
                    "Conversation creation collided but no active conversation was found",
                    operation="get_or_create_active_conversation",
                ) from e
            logger.info(
                "Conversation creation race resolved",
                tenant_id=tenant_id,
                conversation_id=winner.id,
            )
            return winner

        logger.info(
            "Created new conversation",
            tenant_id=tenant_id,
            conversation_id=conversation.id,
            client_id=client_id,
        )
        return Conversation.model_validate(doc)

    async def apply_context_patch(
        self,
        tenant_id: str,
        conversation_id: str,
        patch: ConversationPatch,
    ) -> ConversationContext | None:
        """Merge a partial context update into the stored context.

        The merge runs inside one atomic read-modify-write so a field written
        by a concurrent turn (e.g. ``pending_reservation``) is never lost.
        An empty patch performs no write.
        """
        if patch.is_empty():
            return None

        def _merge(doc: dict[str, Any]) -> dict[str, Any]:
            current = ConversationContext.model_validate(doc.get("context") or {})
            return {"context": patch.apply(current).model_dump(), "updated_at": utc_now()}

        doc = await self._call(
            "apply_context_patch",
            self.storage.update_atomic(tenant_id, CONVERSATIONS, conversation_id, _merge),
        )
        if doc is None:
            raise NotFoundError("Conversation", conversation_id)
        return ConversationContext.model_validate(doc["context"])

    async def deactivate_conversation(
        self,
        tenant_id: str,
        conversation_id: str,
        reason: str = "closed",
    ) -> Conversation:
        """Mark a conversation inactive and free its channel address.

        Used by collaborators outside the turn pipeline (human handoff,
        inactivity timeout). The next inbound message starts a new one.
        """
        doc = await self._call(
            "deactivate_conversation",
            self.storage.update(
                tenant_id,
                CONVERSATIONS,
                conversation_id,
                {"is_active": False, "closed_reason": reason, "updated_at": utc_now()},
            ),
        )
        if doc is None:
            raise NotFoundError("Conversation", conversation_id)

        conversation = Conversation.model_validate(doc)
        await self._call(
            "release_active_key",
            self.storage.release_unique(
                tenant_id, CONVERSATIONS, f"active:{conversation.channel_address}"
            ),
        )
        logger.info(
            "Conversation deactivated",
            tenant_id=tenant_id,
            conversation_id=conversation_id,
            reason=reason,
        )
        return conversation

    # ==================== Messages ====================

    async def append_message(
        self,
        tenant_id: str,
        conversation_id: str,
        sender: MessageSender,
        content: str,
        metadata: dict[str, Any] | None = None,
    ) -> Message:
        message = Message(
            id=str(uuid4()),
            conversation_id=conversation_id,
            tenant_id=tenant_id,
            sender=sender,
            content=content,
            is_read=sender == MessageSender.AGENT,
            metadata=metadata or {},
        )
        await self._call(
            "append_message",
            self.storage.create(tenant_id, MESSAGES, message.model_dump(), doc_id=message.id),
        )
        return message

    async def recent_messages(
        self,
        tenant_id: str,
        conversation_id: str,
        limit: int | None = None,
    ) -> list[Message]:
        """Most recent messages, oldest first."""
        docs = await self._call(
            "recent_messages",
            self.storage.query(
                tenant_id,
                MESSAGES,
                [("conversation_id", "==", conversation_id)],
                order_by="timestamp",
                descending=True,
                limit=limit or settings.context_window_messages,
            ),
        )
        # Reverse to get chronological order
        return [Message.model_validate(doc) for doc in reversed(docs)]

    async def get_conversation_with_messages(
        self,
        tenant_id: str,
        conversation_id: str,
        limit: int = 200,
    ) -> tuple[Conversation, list[Message]]:
        """Fetch a conversation and its log, scoped by tenant."""
        conversation = await self.get_conversation(tenant_id, conversation_id)
        if conversation is None:
            raise NotFoundError("Conversation", conversation_id)
        messages = await self.recent_messages(tenant_id, conversation_id, limit=limit)
        return conversation, messages

    # ==================== Tenant Settings ====================

    async def get_tenant_config(self, tenant_id: str) -> TenantConfig:
        """Tenant agent settings; defaults when none are stored."""
        doc = await self._call("get_tenant_config", self.storage.get(tenant_id, SETTINGS, "agent"))
        if not doc:
            return TenantConfig()
        return TenantConfig.model_validate(doc)
