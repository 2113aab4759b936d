"""Bounded, non-blocking outbound delivery."""

import asyncio

import structlog

from src.core.config import settings
from src.models import OutgoingMessage
from src.services.channels.base import ChannelAdapter

logger = structlog.get_logger()


class DeliveryDispatcher:
    """Sends outbound messages without letting failures reach the caller.

    Every send is bounded by a timeout and a concurrency semaphore; errors
    are logged and reported as ``False``. Background sends are tracked so
    shutdown (and tests) can wait for them.
    """

    def __init__(
        self,
        channel: ChannelAdapter | None,
        timeout_seconds: float | None = None,
        max_concurrency: int | None = None,
    ) -> None:
        self.channel = channel
        self.timeout_seconds = timeout_seconds or settings.delivery_timeout_seconds
        self._semaphore = asyncio.Semaphore(max_concurrency or settings.delivery_max_concurrency)
        self._pending: set[asyncio.Task] = set()

    async def deliver(self, message: OutgoingMessage) -> bool:
        if self.channel is None:
            logger.debug("No outbound channel configured, skipping delivery")
            return False

        try:
            async with self._semaphore:
                await asyncio.wait_for(self.channel.send_message(message), timeout=self.timeout_seconds)
            return True
        except asyncio.TimeoutError:
            logger.error(
                "Outbound delivery timed out",
                channel=self.channel.channel_name,
                timeout_seconds=self.timeout_seconds,
            )
        except Exception as e:
            logger.error(
                "Outbound delivery failed",
                channel=self.channel.channel_name,
                error=str(e),
            )
        return False

    def deliver_in_background(self, message: OutgoingMessage) -> asyncio.Task | None:
        """Schedule a delivery and return immediately."""
        if self.channel is None:
            return None
        task = asyncio.create_task(self.deliver(message))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def drain(self) -> None:
        """Wait for every background delivery to finish."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
