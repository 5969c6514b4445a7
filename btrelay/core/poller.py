"""Periodic state polling while the link is up."""

from __future__ import annotations

import asyncio
import logging
import math
from collections.abc import Awaitable, Callable

from btrelay.core.errors import BtRelayError

logger = logging.getLogger(__name__)


class Poller:
    """Runs ``tick`` every ``interval_ms`` until stopped.

    An interval of 0 disables polling. While the host is hidden, ``start()``
    does nothing and the running loop is stopped; the interval value is kept.
    """

    def __init__(
        self,
        tick: Callable[[], Awaitable[None]],
        *,
        on_error: Callable[[BtRelayError], None],
        interval_ms: int = 0,
    ) -> None:
        self._tick = tick
        self._on_error = on_error
        self._interval_ms = 0
        self.interval_ms = interval_ms
        self._hidden = False
        self._task: asyncio.Task[None] | None = None

    @property
    def interval_ms(self) -> int:
        return self._interval_ms

    @interval_ms.setter
    def interval_ms(self, value: float) -> None:
        try:
            interval = math.floor(float(value))
        except (TypeError, ValueError, OverflowError):
            interval = 0
        self._interval_ms = max(0, interval)

    @property
    def running(self) -> bool:
        return self._task is not None

    @property
    def hidden(self) -> bool:
        return self._hidden

    def start(self) -> None:
        """(Re)start polling at the current interval."""
        self.stop()
        if self._interval_ms <= 0 or self._hidden:
            return
        logger.debug("Polling every %d ms", self._interval_ms)
        self._task = asyncio.get_running_loop().create_task(self._run(self._interval_ms))

    def stop(self) -> None:
        task, self._task = self._task, None
        if task is not None:
            task.cancel()

    def set_hidden(self, hidden: bool) -> None:
        """Record host visibility; hiding stops the loop, showing does not restart it."""
        self._hidden = hidden
        if hidden:
            self.stop()

    async def _run(self, interval_ms: int) -> None:
        while True:
            await asyncio.sleep(interval_ms / 1000)
            try:
                await self._tick()
            except BtRelayError as exc:
                self._on_error(exc)
                logger.warning("State poll failed: %s", exc)
