"""Duplicate/loop guard - suppresses equivalent calls repeated in quick succession."""

import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

import structlog

from src.core.config import settings
from src.core.locks import KeyedLock
from src.models import FunctionCall
from src.services.functions.signature import call_signature

logger = structlog.get_logger()

Canonicalize = Callable[[FunctionCall], dict[str, Any]]


@dataclass
class _Executed:
    signature: str
    turn: int
    at: float


@dataclass
class _ConversationLog:
    turn: int = 0
    executed: list[_Executed] = field(default_factory=list)


@dataclass
class ScreenedCalls:
    """Calls of one turn split by the guard, each keeping its request position."""

    run: list[tuple[int, FunctionCall]] = field(default_factory=list)
    suppressed: list[tuple[int, FunctionCall]] = field(default_factory=list)
    signatures: dict[int, str] = field(default_factory=dict)


class DuplicateCallGuard:
    """Per-conversation record of recently executed call signatures.

    A call is suppressed when the same function with the same normalized
    arguments ran within the last ``window_turns`` turns and
    ``window_seconds`` seconds, or was already requested earlier in the same
    turn. Every turn of a conversation must be opened with ``begin_turn``,
    whether or not it requests calls. Screening a turn is serialized per
    conversation, so two concurrent turns cannot both let the same call through.

    Conversations with nothing left inside the window are dropped, so the
    ledger only holds recently active conversations.
    """

    def __init__(
        self,
        window_turns: int | None = None,
        window_seconds: float | None = None,
        clock: Callable[[], float] | None = None,
    ) -> None:
        self.window_turns = window_turns if window_turns is not None else settings.dedup_window_turns
        self.window_seconds = window_seconds if window_seconds is not None else settings.dedup_window_seconds
        self._clock = clock or time.monotonic
        self._logs: dict[str, _ConversationLog] = {}
        self._locks = KeyedLock()
        self._last_sweep = self._clock()

    async def begin_turn(self, conversation_id: str) -> int:
        """Open a new turn for a conversation and return its number."""
        async with self._locks.hold(conversation_id):
            now = self._clock()
            self._sweep(now)
            log = self._logs.setdefault(conversation_id, _ConversationLog())
            log.turn += 1
            self._prune(log, now)
            if not log.executed:
                # Nothing to compare against; screen() recreates it at this turn
                del self._logs[conversation_id]
            return log.turn

    def _prune(self, log: _ConversationLog, now: float) -> None:
        log.executed = [
            e for e in log.executed
            if log.turn - e.turn <= self.window_turns and now - e.at <= self.window_seconds
        ]

    def _sweep(self, now: float) -> None:
        # Executions are appended in time order, so the last one is the newest
        if now - self._last_sweep < self.window_seconds:
            return
        self._last_sweep = now
        stale = [
            conversation_id
            for conversation_id, log in self._logs.items()
            if not log.executed or now - log.executed[-1].at > self.window_seconds
        ]
        for conversation_id in stale:
            del self._logs[conversation_id]
        if stale:
            logger.debug("Evicted idle conversations from duplicate guard", evicted=len(stale))

    async def screen(
        self,
        conversation_id: str,
        turn: int,
        calls: list[FunctionCall],
        canonicalize: Canonicalize | None = None,
    ) -> ScreenedCalls:
        """Split a turn's calls into those to execute and those to suppress.

        Calls that will run are recorded immediately, before they execute.
        Calls whose arguments could not be parsed are never suppressed.

        Args:
            conversation_id: Conversation the turn belongs to
            turn: Number returned by ``begin_turn``
            calls: Planner-requested calls, in request order
            canonicalize: Maps a call to the arguments that identify it;
                defaults to the raw arguments
        """
        screened = ScreenedCalls()
        if not calls:
            return screened

        async with self._locks.hold(conversation_id):
            log = self._logs.setdefault(conversation_id, _ConversationLog(turn=turn))
            now = self._clock()
            self._prune(log, now)
            recent = {e.signature for e in log.executed}

            for index, call in enumerate(calls):
                if call.parse_error:
                    screened.run.append((index, call))
                    continue

                arguments = canonicalize(call) if canonicalize else call.arguments
                signature = call_signature(call.name, arguments)
                if signature in recent:
                    screened.suppressed.append((index, call))
                    logger.info(
                        "Duplicate function call suppressed",
                        conversation_id=conversation_id,
                        function=call.name,
                        turn=turn,
                    )
                    continue

                recent.add(signature)
                log.executed.append(_Executed(signature=signature, turn=turn, at=now))
                screened.run.append((index, call))
                screened.signatures[index] = signature

        return screened

    async def release(self, conversation_id: str, signature: str) -> None:
        """Forget an executed call, e.g. because it failed and may be retried."""
        async with self._locks.hold(conversation_id):
            log = self._logs.get(conversation_id)
            if log is None:
                return
            log.executed = [e for e in log.executed if e.signature != signature]

    def forget(self, conversation_id: str) -> None:
        self._logs.pop(conversation_id, None)

    def clear(self) -> None:
        self._logs.clear()

    def __len__(self) -> int:
        return len(self._logs)
