"""Reconnect scheduling with exponential backoff."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable

from btrelay.core.errors import BtRelayError

logger = logging.getLogger(__name__)


class ReconnectController:
    """Owns at most one pending reconnect timer for the link.

    The timer only fires while ``is_desired()`` holds. A failed attempt grows
    the delay by ``factor`` up to ``ceiling_ms`` and reschedules; ``reset()``
    brings the delay back to ``floor_ms`` once a connection succeeds.
    """

    def __init__(
        self,
        attempt: Callable[[], Awaitable[None]],
        *,
        is_desired: Callable[[], bool],
        on_error: Callable[[BtRelayError], None],
        floor_ms: int = 1000,
        ceiling_ms: int = 15000,
        factor: int = 2,
    ) -> None:
        self._attempt = attempt
        self._is_desired = is_desired
        self._on_error = on_error
        self.floor_ms = floor_ms
        self.ceiling_ms = ceiling_ms
        self.factor = factor
        self.backoff_ms = floor_ms
        self._timer: asyncio.Task[None] | None = None

    @property
    def pending(self) -> bool:
        return self._timer is not None

    def schedule(self) -> bool:
        """Arm the timer unless reconnecting is unwanted or already armed."""
        if not self._is_desired() or self._timer is not None:
            return False
        logger.info("Reconnect scheduled in %d ms", self.backoff_ms)
        self._timer = asyncio.get_running_loop().create_task(self._fire(self.backoff_ms))
        return True

    def cancel(self) -> None:
        """Drop the pending timer. An attempt already running is not interrupted."""
        timer, self._timer = self._timer, None
        if timer is not None:
            timer.cancel()

    def reset(self) -> None:
        self.backoff_ms = self.floor_ms

    async def _fire(self, delay_ms: int) -> None:
        await asyncio.sleep(delay_ms / 1000)
        self._timer = None
        try:
            await self._attempt()
        except BtRelayError as exc:
            self._on_error(exc)
            self.backoff_ms = min(self.backoff_ms * self.factor, self.ceiling_ms)
            logger.warning("Reconnect failed: %s (next delay %d ms)", exc, self.backoff_ms)
            self.schedule()
