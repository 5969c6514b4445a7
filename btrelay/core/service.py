"""Service layer used by the CLI and future UI frontends."""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager

from btrelay.core.errors import BtRelayError
from btrelay.core.link import ConnectionManager
from btrelay.core.model import (
    BulkAction,
    BulkOutcome,
    DeviceIdentity,
    KnownDevice,
    LinkPhase,
    RelayProfile,
)
from btrelay.core.profile_loader import load_profiles
from btrelay.transports.base import Transport
from btrelay.transports.ble_gatt import BLEGATTTransport

logger = logging.getLogger(__name__)


class RelayService:
    """Command facade over one ``ConnectionManager``.

    Failures are written to the last-error slot and re-raised so the caller
    can react. Timer-driven work (reconnects, polls) only records them.
    """

    def __init__(
        self,
        *,
        transport: Transport | None = None,
        profile_id: str | None = None,
        manager: ConnectionManager | None = None,
    ) -> None:
        loaded = load_profiles()
        self.profiles = loaded.profiles
        self.load_warnings = loaded.warnings
        if manager is None:
            profile = loaded.get(profile_id)
            transport = transport or BLEGATTTransport(
                write_with_response=profile.gatt.write_with_response
            )
            manager = ConnectionManager(transport, profile)
        self.manager = manager

    @property
    def profile(self) -> RelayProfile:
        return self.manager.profile

    def list_profiles(self) -> list[RelayProfile]:
        return sorted(self.profiles.values(), key=lambda p: p.id)

    @contextmanager
    def _recording_errors(self) -> Iterator[None]:
        try:
            yield
        except BtRelayError as exc:
            self.manager.state.record_error(exc)
            raise

    # --- Connection ---

    async def scan(self) -> list[KnownDevice]:
        with self._recording_errors():
            return await self.manager.scan()

    async def connect_by_scan(self) -> KnownDevice:
        self.manager.want_connection()
        with self._recording_errors():
            return await self.manager.connect_new()

    async def connect_by_id(self, device_id: str) -> KnownDevice:
        """Connect to a remembered relay, scanning for one if that fails."""
        self.manager.want_connection()
        device_id = device_id.strip()
        known = device_id in self.manager.registry
        try:
            return await self.manager.connect_known(device_id)
        except BtRelayError as exc:
            self.manager.state.record_error(exc)
            if not known:
                raise
            logger.warning("Reconnecting to %s failed (%s); scanning instead", device_id, exc)
        with self._recording_errors():
            return await self.manager.connect_new()

    async def disconnect(self) -> None:
        await self.manager.disconnect()

    async def forget_current(self) -> None:
        await self.manager.disconnect(forget=True)

    async def forget_by_id(self, device_id: str) -> None:
        await self.manager.forget(device_id.strip())

    async def forget_all(self) -> None:
        await self.manager.forget_all()

    def set_auto_reconnect(self, enabled: bool) -> None:
        self.manager.set_auto_reconnect(enabled)

    def set_poll_interval(self, interval_ms: float) -> None:
        self.manager.set_poll_interval(interval_ms)

    # --- Relay commands ---

    async def relay_on(self) -> None:
        await self.send_text(BulkAction.ON.token)

    async def relay_off(self) -> None:
        await self.send_text(BulkAction.OFF.token)

    async def relay_toggle(self) -> None:
        await self.send_text(BulkAction.TOGGLE.token)

    async def read_state(self) -> None:
        await self.send_text(BulkAction.READ.token)

    async def send_text(self, text: str) -> None:
        with self._recording_errors():
            await self.manager.send(text)

    def clear_queue(self) -> None:
        self.manager.queue.clear()

    async def bulk_apply(self, ids_csv: str, action: BulkAction | str) -> list[BulkOutcome]:
        """Send one action to each listed relay in turn.

        Each id is handled on its own: a failure is recorded (the last one wins
        in the error slot) and the remaining ids still run.
        """
        self.manager.state.clear_error()
        if isinstance(action, str):
            action = BulkAction.parse(action)
        ids = [part.strip() for part in ids_csv.split(",") if part.strip()]

        outcomes: list[BulkOutcome] = []
        for device_id in ids:
            try:
                await self.manager.connect_and_send(device_id, action.token)
            except BtRelayError as exc:
                message = self.manager.state.record_error(f"ID {device_id}: {exc}")
                logger.warning("Bulk %s failed: %s", action.value, message)
                outcomes.append(BulkOutcome(id=device_id, ok=False, error=message))
            else:
                outcomes.append(BulkOutcome(id=device_id, ok=True))
        return outcomes

    # --- Edge events ---

    def consume_state_rose(self) -> bool:
        return self.manager.state.state_rose.consume()

    def consume_state_fell(self) -> bool:
        return self.manager.state.state_fell.consume()

    def consume_connected(self) -> bool:
        return self.manager.state.connection_established.consume()

    def consume_disconnected(self) -> bool:
        return self.manager.state.connection_lost.consume()

    # --- Queries ---

    @property
    def state_numeric(self) -> int:
        return self.manager.state.numeric

    @property
    def state_text(self) -> str:
        return self.manager.state.text

    @property
    def is_connected(self) -> bool:
        return self.manager.is_connected

    @property
    def phase(self) -> LinkPhase:
        return self.manager.phase

    @property
    def device_name(self) -> str:
        device = self.manager.active_device
        return device.name if device else ""

    @property
    def device_id(self) -> str:
        device = self.manager.active_device
        return device.id if device else ""

    @property
    def known_ids(self) -> str:
        return ",".join(self.manager.registry.ids())

    @property
    def known_names(self) -> str:
        return ",".join(self.manager.registry.names())

    def known_devices(self) -> list[DeviceIdentity]:
        """Remembered relays in the order they were first seen."""
        return [device.identity for device in self.manager.registry.devices()]

    @property
    def queued(self) -> tuple[str, ...]:
        return self.manager.queue.snapshot()

    @property
    def last_error(self) -> str:
        return self.manager.state.last_error

    # --- Host lifecycle ---

    def on_visibility_change(self, hidden: bool) -> None:
        self.manager.set_hidden(hidden)

    async def on_before_teardown(self) -> None:
        await self.manager.shutdown()
