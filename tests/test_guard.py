"""Tests for the duplicate/loop guard."""

import asyncio

import pytest

from src.models import FunctionCall
from src.services.conversation.guard import DuplicateCallGuard


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


def search(**arguments) -> FunctionCall:
    return FunctionCall(name="search_properties", arguments=arguments)


async def _turn(guard: DuplicateCallGuard, *calls: FunctionCall, conversation_id: str = "c1"):
    turn = await guard.begin_turn(conversation_id)
    return await guard.screen(conversation_id, turn, list(calls))


@pytest.mark.asyncio
async def test_repeat_in_next_turn_is_suppressed():
    guard = DuplicateCallGuard(window_turns=2, window_seconds=300, clock=FakeClock())

    first = await _turn(guard, search(bedrooms=2, maxGuests=4))
    second = await _turn(guard, search(maxGuests=4, bedrooms=2))

    assert len(first.run) == 1 and not first.suppressed
    assert not second.run
    assert second.suppressed[0][0] == 0


@pytest.mark.asyncio
async def test_normalized_arguments_compare_equal():
    guard = DuplicateCallGuard(clock=FakeClock())

    await _turn(guard, search(location="  Rio de Janeiro ", maxPrice=300.0, amenities=[]))
    repeated = await _turn(guard, search(location="rio de  janeiro", maxPrice=300, checkIn=None))

    assert len(repeated.suppressed) == 1


@pytest.mark.asyncio
async def test_different_arguments_run():
    guard = DuplicateCallGuard(clock=FakeClock())

    await _turn(guard, search(bedrooms=2))
    other = await _turn(guard, search(bedrooms=3))

    assert len(other.run) == 1


@pytest.mark.asyncio
async def test_turn_window_expires():
    guard = DuplicateCallGuard(window_turns=2, window_seconds=300, clock=FakeClock())

    await _turn(guard, search(bedrooms=2))
    await _turn(guard)
    await _turn(guard)
    later = await _turn(guard, search(bedrooms=2))

    assert len(later.run) == 1


@pytest.mark.asyncio
async def test_time_window_expires():
    clock = FakeClock()
    guard = DuplicateCallGuard(window_turns=2, window_seconds=300, clock=clock)

    await _turn(guard, search(bedrooms=2))
    clock.now += 301
    later = await _turn(guard, search(bedrooms=2))

    assert len(later.run) == 1


@pytest.mark.asyncio
async def test_duplicate_within_one_turn_is_suppressed():
    guard = DuplicateCallGuard(clock=FakeClock())

    screened = await _turn(guard, search(bedrooms=2), search(bedrooms=2))

    assert [i for i, _ in screened.run] == [0]
    assert [i for i, _ in screened.suppressed] == [1]


@pytest.mark.asyncio
async def test_conversations_are_independent():
    guard = DuplicateCallGuard(clock=FakeClock())

    await _turn(guard, search(bedrooms=2), conversation_id="c1")
    other = await _turn(guard, search(bedrooms=2), conversation_id="c2")

    assert len(other.run) == 1


@pytest.mark.asyncio
async def test_released_call_may_run_again():
    guard = DuplicateCallGuard(clock=FakeClock())

    first = await _turn(guard, search(bedrooms=2))
    await guard.release("c1", first.signatures[0])
    again = await _turn(guard, search(bedrooms=2))

    assert len(again.run) == 1


@pytest.mark.asyncio
async def test_unparseable_calls_are_never_suppressed():
    guard = DuplicateCallGuard(clock=FakeClock())
    broken = FunctionCall(name="search_properties", parse_error="Invalid JSON arguments")

    await _turn(guard, broken)
    again = await _turn(guard, broken)

    assert len(again.run) == 1
    assert again.signatures == {}


@pytest.mark.asyncio
async def test_concurrent_turns_let_only_one_call_through():
    guard = DuplicateCallGuard(clock=FakeClock())

    outcomes = await asyncio.gather(*[_turn(guard, search(bedrooms=2)) for _ in range(5)])

    assert sum(len(o.run) for o in outcomes) == 1
    assert sum(len(o.suppressed) for o in outcomes) == 4


@pytest.mark.asyncio
async def test_canonicalized_arguments_decide_equivalence():
    guard = DuplicateCallGuard(clock=FakeClock())

    def canonicalize(call: FunctionCall) -> dict:
        return {"bedrooms": int(call.arguments.get("bedrooms") or call.arguments.get("rooms"))}

    await guard.screen("c1", await guard.begin_turn("c1"), [search(bedrooms="2")], canonicalize)
    repeated = await guard.screen("c1", await guard.begin_turn("c1"), [search(rooms=2)], canonicalize)

    assert len(repeated.suppressed) == 1


@pytest.mark.asyncio
async def test_chat_only_conversations_are_not_retained():
    guard = DuplicateCallGuard(clock=FakeClock())

    for conversation_id in ("c1", "c2", "c3"):
        await _turn(guard, conversation_id=conversation_id)

    assert len(guard) == 0


@pytest.mark.asyncio
async def test_idle_conversations_are_evicted_after_the_time_window():
    clock = FakeClock()
    guard = DuplicateCallGuard(window_turns=2, window_seconds=300, clock=clock)

    await _turn(guard, search(bedrooms=2), conversation_id="c1")
    await _turn(guard, search(bedrooms=2), conversation_id="c2")
    assert len(guard) == 2

    clock.now += 301
    await guard.begin_turn("c3")

    assert len(guard) == 0


@pytest.mark.asyncio
async def test_forgotten_conversation_starts_fresh():
    guard = DuplicateCallGuard(clock=FakeClock())

    await _turn(guard, search(bedrooms=2))
    guard.forget("c1")
    again = await _turn(guard, search(bedrooms=2))

    assert len(again.run) == 1
