"""End-to-end tests for the message-processing pipeline."""

import asyncio
from unittest.mock import AsyncMock

import pytest

from conftest import PHONE, TENANT_ID, plan_calls
from src.core.config import settings
from src.core.exceptions import PlannerError, RateLimitError, StorageError
from src.core.messages import get_message
from src.models import ChannelType, IncomingMessage, MessageSender
from src.services.conversation.engine import TurnState

SEARCH = {"bedrooms": 2, "maxGuests": 4}


def incoming(text: str = "Quero um apartamento de 2 quartos para 4 pessoas", **overrides) -> IncomingMessage:
    values = {"tenant_id": TENANT_ID, "sender_phone": PHONE, "text": text}
    values.update(overrides)
    return IncomingMessage(**values)


async def _context(engine, conversation_id: str):
    conversation = await engine.store.get_conversation(TENANT_ID, conversation_id)
    return conversation.context


@pytest.mark.asyncio
async def test_search_turn_summarizes_and_remembers_filters(engine, planner, catalogue):
    planner.script(plan_calls("Vou procurar para você!", search_properties=SEARCH))

    result = await engine.process_message(incoming())

    assert result.state == TurnState.PERSISTED
    assert result.function_results[0].success
    assert len(result.function_results[0].data["properties"]) == 3
    assert result.reply.startswith("Vou procurar para você!")
    assert result.reply.count("🏠") <= 3
    assert result.context_updated

    context = await _context(engine, result.conversation_id)
    assert context.current_search_filters == SEARCH


@pytest.mark.asyncio
async def test_repeated_search_is_suppressed(engine, planner, catalogue):
    planner.script(
        plan_calls("Vou procurar!", search_properties=SEARCH),
        plan_calls("Vou procurar!", search_properties=SEARCH),
    )

    first = await engine.process_message(incoming())
    before = await _context(engine, first.conversation_id)
    second = await engine.process_message(incoming())

    assert second.conversation_id == first.conversation_id
    assert second.function_results[0].suppressed
    assert second.reply == get_message("already_handled.search_properties")
    assert not second.context_updated
    assert await _context(engine, second.conversation_id) == before


@pytest.mark.asyncio
async def test_search_repeated_after_chat_only_turns_runs_again(engine, planner, catalogue):
    planner.script(
        plan_calls("Vou procurar!", search_properties=SEARCH),
        plan_calls("Claro!"),
        plan_calls("Entendi."),
        plan_calls("Perfeito."),
        plan_calls("Vou procurar de novo!", search_properties=SEARCH),
    )

    for text in ("busca", "obrigado", "legal", "certo"):
        await engine.process_message(incoming(text))
    again = await engine.process_message(incoming("mostra de novo"))

    assert not again.function_results[0].suppressed
    assert len(again.function_results[0].data["properties"]) == 3


@pytest.mark.asyncio
async def test_equivalent_arguments_are_suppressed(engine, planner, catalogue):
    planner.script(
        plan_calls("Vou procurar!", search_properties={"bedrooms": 2, "maxGuests": 4}),
        plan_calls("Vou procurar!", search_properties={"bedrooms": "2", "max_guests": 4}),
    )

    await engine.process_message(incoming())
    second = await engine.process_message(incoming())

    assert second.function_results[0].suppressed

@pytest.mark.asyncio
async def test_planner_sees_history_and_context(engine, planner, catalogue):
    planner.script(plan_calls("Vou procurar!", search_properties=SEARCH), plan_calls("Claro"))

    await engine.process_message(incoming())
    await engine.process_message(incoming("E o primeiro?"))

    second_input = planner.inputs[1]
    assert second_input.message == "E o primeiro?"
    assert [t["role"] for t in second_input.transcript] == ["user", "assistant"]
    assert second_input.context["currentSearchFilters"] == SEARCH


@pytest.mark.asyncio
async def test_planner_failure_sends_apology(engine, planner, catalogue):
    planner.script(PlannerError("model unavailable"))

    result = await engine.process_message(incoming())

    assert result.state == TurnState.PLANNER_FAILED
    assert result.reply == get_message("planner_apology")
    messages = await engine.store.recent_messages(TENANT_ID, result.conversation_id)
    assert [m.sender for m in messages] == [MessageSender.CLIENT, MessageSender.AGENT]
    assert messages[-1].content == result.reply
    assert (await _context(engine, result.conversation_id)).is_empty()


@pytest.mark.asyncio
async def test_unexpected_planner_exception_degrades(engine, planner):
    planner.script(RuntimeError("bug"))

    result = await engine.process_message(incoming())

    assert result.state == TurnState.PLANNER_FAILED


@pytest.mark.asyncio
async def test_apology_is_delivered_when_it_cannot_be_persisted(engine, planner, channel):
    planner.script(PlannerError("model unavailable"))
    append = engine.store.append_message

    async def append_inbound_only(tenant_id, conversation_id, sender, content, metadata=None):
        if sender == MessageSender.AGENT:
            raise StorageError("write failed", operation="append_message")
        return await append(tenant_id, conversation_id, sender, content, metadata=metadata)

    engine.store.append_message = append_inbound_only
    message = incoming("oi", channel=ChannelType.WHATSAPP, channel_address=f"whatsapp:{PHONE}")

    result = await engine.process_message(message)
    await engine.drain()

    assert result.state == TurnState.PLANNER_FAILED
    assert [m.content for m in channel.sent] == [get_message("planner_apology")]

@pytest.mark.asyncio
async def test_unknown_function_keeps_draft(engine, planner):
    planner.script(plan_calls("Olá! Como posso ajudar?", teleport={}))

    result = await engine.process_message(incoming("oi"))

    assert result.reply == "Olá! Como posso ajudar?"
    assert result.function_results[0].error == "unknown_function"


@pytest.mark.asyncio
async def test_failed_call_is_not_suppressed_on_retry(engine, planner, catalogue):
    reserve = {"propertyId": "p4", "checkIn": "2030-03-04", "checkOut": "2030-03-06", "guests": 5}
    planner.script(plan_calls("", create_reservation=reserve), plan_calls("", create_reservation=reserve))

    await engine.process_message(incoming("reserva"))
    second = await engine.process_message(incoming("reserva"))

    assert not second.function_results[0].suppressed
    assert second.function_results[0].error == "capacity"


@pytest.mark.asyncio
async def test_reservation_sets_pending_reservation(engine, planner, catalogue):
    reserve = {"propertyId": "p1", "checkIn": "2030-03-04", "checkOut": "2030-03-06", "guests": 2}
    planner.script(plan_calls("Reservando!", create_reservation=reserve))

    result = await engine.process_message(incoming("pode reservar"))

    context = await _context(engine, result.conversation_id)
    assert context.pending_reservation.property_id == "p1"
    assert context.pending_reservation.total_amount == 760.0


@pytest.mark.asyncio
async def test_whatsapp_reply_is_delivered(engine, planner, channel):
    planner.script(plan_calls("Olá!"))
    message = incoming("oi", channel=ChannelType.WHATSAPP, channel_address=f"whatsapp:{PHONE}")

    result = await engine.process_message(message)
    await engine.drain()

    assert [(m.content, m.recipient_id) for m in channel.sent] == [(result.reply, f"whatsapp:{PHONE}")]


@pytest.mark.asyncio
async def test_api_reply_is_not_pushed_to_channel(engine, planner, channel):
    await engine.process_message(incoming("oi"))
    await engine.drain()

    assert channel.sent == []


@pytest.mark.asyncio
async def test_sender_over_limit_is_rejected(engine):
    for _ in range(settings.inbound_rate_limit_requests):
        await engine.process_message(incoming("oi"))

    with pytest.raises(RateLimitError) as exc_info:
        await engine.process_message(incoming("oi"))

    assert exc_info.value.retry_after >= 1
    assert exc_info.value.remaining == 0


@pytest.mark.asyncio
async def test_bypass_requires_test_mode(engine, monkeypatch):
    monkeypatch.setattr(settings, "allow_test_mode", True)
    monkeypatch.setattr(settings, "app_env", "development")

    for _ in range(settings.inbound_rate_limit_requests + 5):
        await engine.process_message(incoming("oi", is_test=True), bypass_rate_limit=True)


@pytest.mark.asyncio
async def test_bypass_ignored_outside_test_mode(engine, monkeypatch):
    monkeypatch.setattr(settings, "allow_test_mode", False)

    for _ in range(settings.inbound_rate_limit_requests):
        await engine.process_message(incoming("oi"), bypass_rate_limit=True)

    with pytest.raises(RateLimitError):
        await engine.process_message(incoming("oi"), bypass_rate_limit=True)


@pytest.mark.asyncio
async def test_concurrent_first_messages_share_one_conversation(engine, storage):
    results = await asyncio.gather(*[engine.process_message(incoming(f"msg {i}")) for i in range(5)])

    assert len({r.conversation_id for r in results}) == 1
    assert len({r.client_id for r in results}) == 1
    assert storage.count(TENANT_ID, "clients") == 1
    assert storage.count(TENANT_ID, "conversations") == 1
    assert storage.count(TENANT_ID, "messages") == 10


@pytest.mark.asyncio
async def test_storage_outage_aborts_turn(engine, storage):
    storage.query = AsyncMock(side_effect=RuntimeError("firestore down"))

    with pytest.raises(StorageError):
        await engine.process_message(incoming("oi"))


@pytest.mark.asyncio
async def test_context_write_failure_keeps_reply(engine, planner, storage, catalogue):
    planner.script(plan_calls("Vou procurar!", search_properties=SEARCH))
    storage.update_atomic = AsyncMock(side_effect=RuntimeError("write failed"))

    result = await engine.process_message(incoming())

    assert result.state == TurnState.PERSISTED
    assert not result.context_updated
    assert "🏠" in result.reply
