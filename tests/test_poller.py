from __future__ import annotations

import asyncio

from btrelay.core.errors import TransportSendError
from btrelay.core.poller import Poller

from conftest import eventually


def test_ticks_until_stopped() -> None:
    async def scenario() -> None:
        ticks = 0

        async def tick() -> None:
            nonlocal ticks
            ticks += 1

        poller = Poller(tick, on_error=lambda exc: None, interval_ms=5)
        poller.start()
        await eventually(lambda: ticks >= 3)
        poller.stop()
        seen = ticks
        await asyncio.sleep(0.03)
        assert ticks == seen
        assert poller.running is False

    asyncio.run(scenario())


def test_zero_interval_disables_polling() -> None:
    async def scenario() -> None:
        async def tick() -> None:
            raise AssertionError("must not tick")

        poller = Poller(tick, on_error=lambda exc: None, interval_ms=0)
        poller.start()
        assert poller.running is False
        await asyncio.sleep(0.02)

    asyncio.run(scenario())


def test_interval_is_floored_and_clamped() -> None:
    async def tick() -> None:
        return None

    poller = Poller(tick, on_error=lambda exc: None)
    poller.interval_ms = 250.9
    assert poller.interval_ms == 250
    poller.interval_ms = -40
    assert poller.interval_ms == 0
    poller.interval_ms = "junk"
    assert poller.interval_ms == 0


def test_failed_tick_is_recorded_and_polling_continues() -> None:
    async def scenario() -> None:
        ticks = 0
        errors: list[Exception] = []

        async def tick() -> None:
            nonlocal ticks
            ticks += 1
            raise TransportSendError(f"tick {ticks} failed")

        poller = Poller(tick, on_error=errors.append, interval_ms=5)
        poller.start()
        await eventually(lambda: ticks >= 3)
        poller.stop()
        assert len(errors) >= 2

    asyncio.run(scenario())


def test_hidden_host_suspends_without_losing_interval() -> None:
    async def scenario() -> None:
        ticks = 0

        async def tick() -> None:
            nonlocal ticks
            ticks += 1

        poller = Poller(tick, on_error=lambda exc: None, interval_ms=5)
        poller.start()
        poller.set_hidden(True)
        assert poller.running is False
        poller.start()
        assert poller.running is False
        assert poller.interval_ms == 5

        poller.set_hidden(False)
        assert poller.running is False
        poller.start()
        await eventually(lambda: ticks >= 1)
        poller.stop()

    asyncio.run(scenario())
