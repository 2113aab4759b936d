"""Main conversation engine - runs one inbound message through the agent pipeline."""

import asyncio
from dataclasses import dataclass, field
from enum import Enum

import structlog

from src.core.config import settings
from src.core.exceptions import PlannerError, RateLimitError, StorageError
from src.core.messages import get_message
from src.models import (
    ChannelType,
    Conversation,
    FunctionResult,
    IncomingMessage,
    MessageSender,
    OutgoingMessage,
)
from src.services.channels.delivery import DeliveryDispatcher
from src.services.channels.whatsapp import get_whatsapp_adapter
from src.services.conversation.composer import compose_reply
from src.services.conversation.context import assemble_context
from src.services.conversation.context_updater import merge_context
from src.services.conversation.guard import DuplicateCallGuard
from src.services.conversation.store import ConversationStore
from src.services.functions import FunctionContext, FunctionRegistry, build_function_registry
from src.services.llm.planner import Planner, get_planner
from src.services.payments.provider import get_payment_provider
from src.services.ratelimit.limiter import INBOUND_MESSAGE_POLICY, RateLimiter, get_rate_limiter
from src.storage.base import StorageBackend

logger = structlog.get_logger()


class TurnState(str, Enum):
    """Stages a turn passes through, plus its terminal failure states."""

    ADMITTED = "admitted"
    CONTEXT_LOADED = "context_loaded"
    PLANNED = "planned"
    DISPATCHED = "dispatched"
    COMPOSED = "composed"
    PERSISTED = "persisted"

    RATE_LIMITED = "rate_limited"
    STORAGE_FAILED = "storage_failed"
    PLANNER_FAILED = "planner_failed"


@dataclass
class TurnResult:
    """Outcome of one processed message."""

    reply: str
    conversation_id: str
    client_id: str
    function_results: list[FunctionResult] = field(default_factory=list)
    state: TurnState = TurnState.PERSISTED
    context_updated: bool = False


class ConversationEngine:
    """Orchestrates admission, context, planning, dispatch and persistence.

    Handles:
    - Admission control per (tenant, sender)
    - Race-safe client and conversation get-or-create
    - Planning with graceful degradation
    - Duplicate suppression and function dispatch
    - Reply composition, persistence and context merge
    """

    def __init__(
        self,
        store: ConversationStore,
        planner: Planner,
        registry: FunctionRegistry,
        guard: DuplicateCallGuard | None = None,
        rate_limiter: RateLimiter | None = None,
        delivery: DeliveryDispatcher | None = None,
    ) -> None:
        self.store = store
        self.planner = planner
        self.registry = registry
        self.guard = guard or DuplicateCallGuard()
        self.rate_limiter = rate_limiter or get_rate_limiter()
        self.delivery = delivery
        self._inflight: set[asyncio.Task] = set()

    async def process_message(self, incoming: IncomingMessage, bypass_rate_limit: bool = False) -> TurnResult:
        """Process an inbound message and produce the reply.

        The turn runs to completion even if the caller goes away: once
        admitted, it is detached from the caller's cancellation.

        Args:
            incoming: Normalized inbound message
            bypass_rate_limit: Skip admission control; honoured only when
                test mode is enabled

        Returns:
            TurnResult with the reply and one result per requested call

        Raises:
            RateLimitError: The sender exceeded the inbound policy
            StorageError: Client, conversation or message log unavailable
        """
        log = logger.bind(tenant_id=incoming.tenant_id, channel=incoming.channel.value)

        if bypass_rate_limit and settings.test_mode_enabled:
            log.info("Admission control bypassed in test mode")
        else:
            if bypass_rate_limit:
                log.warning("Test-mode bypass requested but not enabled, enforcing rate limit")
            limit = await self.rate_limiter.check(incoming.tenant_id, incoming.sender_phone, INBOUND_MESSAGE_POLICY)
            if not limit.allowed:
                log.info("Turn rejected", turn_state=TurnState.RATE_LIMITED.value)
                raise RateLimitError(
                    tenant_id=incoming.tenant_id,
                    identifier=incoming.sender_phone,
                    limit=limit.limit,
                    remaining=limit.remaining,
                    reset_at=limit.reset_at,
                    retry_after=limit.retry_after,
                )

        log.debug("Turn admitted", turn_state=TurnState.ADMITTED.value)
        task = asyncio.ensure_future(self._run_turn(incoming, log))
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)
        return await asyncio.shield(task)

    async def _run_turn(self, incoming: IncomingMessage, log) -> TurnResult:
        tenant_id = incoming.tenant_id

        # ==================== Load ====================
        try:
            client = await self.store.get_or_create_client(
                tenant_id,
                incoming.sender_phone,
                defaults={"name": incoming.sender_name, "source": incoming.channel.value},
            )
            conversation = await self.store.get_or_create_active_conversation(
                tenant_id, client.id, incoming.address
            )
            inbound = await self.store.append_message(
                tenant_id,
                conversation.id,
                MessageSender.CLIENT,
                incoming.text,
                metadata={"channel": incoming.channel.value, "test": incoming.is_test},
            )
            tenant_config = await self.store.get_tenant_config(tenant_id)
            history = await self.store.recent_messages(
                tenant_id, conversation.id, limit=settings.context_window_messages + 1
            )
        except StorageError as e:
            log.error("Turn aborted", turn_state=TurnState.STORAGE_FAILED.value, error=e.message)
            raise

        log = log.bind(conversation_id=conversation.id, client_id=client.id)
        log.debug("Context loaded", turn_state=TurnState.CONTEXT_LOADED.value)
        turn = await self.guard.begin_turn(conversation.id)

        planning_input = assemble_context(
            conversation,
            history,
            incoming.text,
            current_message_id=inbound.id,
            client_preferences=client.preferences,
        )
        locale = tenant_config.locale

        # ==================== Plan ====================
        try:
            plan = await self.planner.plan(planning_input, self.registry.tool_definitions(), tenant_config)
        except PlannerError as e:
            log.error("Planner failed", turn_state=TurnState.PLANNER_FAILED.value, error=e.message)
            return await self._finish_degraded(incoming, conversation.id, client.id, conversation.channel_address, locale)
        except Exception as e:
            log.exception("Planner raised unexpectedly", turn_state=TurnState.PLANNER_FAILED.value, error=str(e))
            return await self._finish_degraded(incoming, conversation.id, client.id, conversation.channel_address, locale)

        log.debug("Turn planned", turn_state=TurnState.PLANNED.value, calls=[c.name for c in plan.function_calls])

        # ==================== Guard and Dispatch ====================
        results: list[FunctionResult | None] = [None] * len(plan.function_calls)
        if plan.function_calls:
            ctx = FunctionContext(
                tenant_id=tenant_id,
                client_id=client.id,
                conversation_id=conversation.id,
                channel_address=conversation.channel_address,
                tenant_config=tenant_config,
                pending_reservation=conversation.context.pending_reservation,
            )
            screened = await self.guard.screen(
                conversation.id,
                turn,
                plan.function_calls,
                canonicalize=lambda call: self.registry.canonical_arguments(call, ctx),
            )

            for index, call in screened.suppressed:
                results[index] = FunctionResult.already_handled(call.name)

            executed = await self.registry.dispatch([call for _, call in screened.run], ctx)

            for (index, _), result in zip(screened.run, executed):
                results[index] = result
                signature = screened.signatures.get(index)
                if not result.success and signature:
                    await self.guard.release(conversation.id, signature)

            log.debug("Turn dispatched", turn_state=TurnState.DISPATCHED.value)

        function_results = [r for r in results if r is not None]

        # ==================== Compose and Persist ====================
        reply = compose_reply(plan.reply, function_results, locale, tenant_config.currency)
        log.debug("Reply composed", turn_state=TurnState.COMPOSED.value)

        await self.store.append_message(
            tenant_id,
            conversation.id,
            MessageSender.AGENT,
            reply,
            metadata={"model": plan.model, "functions": [r.function_name for r in function_results]},
        )

        context_updated = False
        patch = merge_context(conversation.context, function_results)
        if patch is not None:
            try:
                await self.store.apply_context_patch(tenant_id, conversation.id, patch)
                context_updated = True
            except StorageError as e:
                # Reply and messages are already persisted; only the context is stale
                log.error("Context update failed", error=e.message)

        self._send(incoming, conversation.channel_address, reply)

        log.info(
            "Processed message",
            turn_state=TurnState.PERSISTED.value,
            functions=[r.function_name for r in function_results],
            suppressed=sum(1 for r in function_results if r.suppressed),
            failed=sum(1 for r in function_results if not r.success),
            context_updated=context_updated,
        )

        return TurnResult(
            reply=reply,
            conversation_id=conversation.id,
            client_id=client.id,
            function_results=function_results,
            context_updated=context_updated,
        )

    async def _finish_degraded(
        self,
        incoming: IncomingMessage,
        conversation_id: str,
        client_id: str,
        channel_address: str,
        locale: str,
    ) -> TurnResult:
        """Persist and deliver the canned apology; the context is left alone.

        The apology is delivered even when it cannot be persisted.
        """
        reply = get_message("planner_apology", locale)
        try:
            await self.store.append_message(
                incoming.tenant_id,
                conversation_id,
                MessageSender.AGENT,
                reply,
                metadata={"degraded": True},
            )
        except StorageError as e:
            logger.error(
                "Could not persist apology",
                tenant_id=incoming.tenant_id,
                conversation_id=conversation_id,
                error=e.message,
            )
        self._send(incoming, channel_address, reply)
        return TurnResult(
            reply=reply,
            conversation_id=conversation_id,
            client_id=client_id,
            state=TurnState.PLANNER_FAILED,
        )

    def _send(self, incoming: IncomingMessage, channel_address: str, reply: str) -> None:
        # API callers read the reply from the response
        if incoming.channel != ChannelType.WHATSAPP or self.delivery is None:
            return
        self.delivery.deliver_in_background(OutgoingMessage(content=reply, recipient_id=channel_address))

    async def close_conversation(
        self,
        tenant_id: str,
        conversation_id: str,
        reason: str = "closed",
    ) -> Conversation:
        """Deactivate a conversation and drop its duplicate-call history."""
        conversation = await self.store.deactivate_conversation(tenant_id, conversation_id, reason)
        self.guard.forget(conversation_id)
        return conversation

    async def drain(self) -> None:
        """Wait for in-flight turns and background deliveries."""
        if self._inflight:
            await asyncio.gather(*list(self._inflight), return_exceptions=True)
        if self.delivery is not None:
            await self.delivery.drain()


# Factory function for creating engine with storage
_engine_instance: ConversationEngine | None = None


def get_conversation_engine(storage: StorageBackend | None = None) -> ConversationEngine:
    """Get or create the conversation engine.

    Args:
        storage: Storage backend (required on first call)

    Returns:
        ConversationEngine instance
    """
    global _engine_instance

    if _engine_instance is None:
        if storage is None:
            raise ValueError("Storage backend required for first initialization")

        rate_limiter = get_rate_limiter()
        delivery = DeliveryDispatcher(get_whatsapp_adapter())
        _engine_instance = ConversationEngine(
            store=ConversationStore(storage),
            planner=get_planner(),
            registry=build_function_registry(
                storage,
                delivery=delivery,
                payments=get_payment_provider(),
                rate_limiter=rate_limiter,
            ),
            rate_limiter=rate_limiter,
            delivery=delivery,
        )

    return _engine_instance


def reset_conversation_engine() -> None:
    """Reset the conversation engine singleton (for testing)."""
    global _engine_instance
    _engine_instance = None
