"""Connection lifecycle for the single relay link.

``ConnectionManager`` owns everything that lives as long as the process: the
device registry, the state tracker, the send queue, the reconnect timer and the
poller. Every transport call for the link runs under one ``asyncio.Lock``, so a
reconnect attempt, a poll tick and a user command never touch the radio at the
same time.
"""

from __future__ import annotations

import asyncio
import functools
import logging

from btrelay.core.errors import (
    BtRelayError,
    DeviceDiscoveryError,
    NoRememberedDeviceError,
    NotConnectedError,
)
from btrelay.core.model import KnownDevice, LinkPhase, RelayProfile
from btrelay.core.poller import Poller
from btrelay.core.reconnect import ReconnectController
from btrelay.core.registry import DeviceRegistry
from btrelay.core.send_queue import SendQueue
from btrelay.core.state import StateTracker
from btrelay.transports.base import Transport

logger = logging.getLogger(__name__)

READ_STATE_TOKEN = "s"


class ConnectionManager:
    def __init__(
        self,
        transport: Transport,
        profile: RelayProfile,
        *,
        registry: DeviceRegistry | None = None,
        state: StateTracker | None = None,
    ) -> None:
        self.profile = profile
        self.registry = registry or DeviceRegistry()
        self.state = state or StateTracker()
        self.queue = SendQueue(max_size=profile.link.queue_max)
        self.reconnector = ReconnectController(
            self.reconnect,
            is_desired=lambda: self.desired_connected,
            on_error=self.state.record_error,
            floor_ms=profile.link.backoff_floor_ms,
            ceiling_ms=profile.link.backoff_ceiling_ms,
            factor=profile.link.backoff_factor,
        )
        self.poller = Poller(
            self.read_state,
            on_error=self.state.record_error,
            interval_ms=profile.link.poll_interval_ms,
        )
        self.desired_connected = False
        self._transport = transport
        self._active: KnownDevice | None = None
        self._write_channel: object | None = None
        self._connected = False
        self._connecting = False
        self._lock = asyncio.Lock()
        self._intent_generation = 0

    # --- Link status ---

    @property
    def phase(self) -> LinkPhase:
        if self._connected:
            return LinkPhase.CONNECTED
        if self._connecting:
            return LinkPhase.CONNECTING
        if self.reconnector.pending:
            return LinkPhase.RECONNECTING
        return LinkPhase.IDLE

    @property
    def is_connected(self) -> bool:
        return self._connected

    @property
    def active_device(self) -> KnownDevice | None:
        return self._active

    @property
    def backoff_ms(self) -> int:
        return self.reconnector.backoff_ms

    # --- Connecting ---

    def want_connection(self) -> None:
        """Start a fresh user intent to be connected."""
        self.state.clear_error()
        self.desired_connected = True
        self.reconnector.cancel()

    async def scan(self) -> list[KnownDevice]:
        """Remember every relay currently advertising, without connecting."""
        scan_filter = self.profile.scan
        devices = await self._transport.scan(scan_filter)
        if not devices and scan_filter.name_prefixes:
            devices = await self._transport.scan(scan_filter.broadened())
        for device in devices:
            self.registry.remember(device)
        return devices

    async def connect_new(self) -> KnownDevice:
        """Discover a relay, remember it and open a session to it.

        A disconnect that lands while discovery runs wins: the device is still
        remembered but no session is opened.
        """
        generation = self._intent_generation
        self._connecting = True
        try:
            device = await self._discover()
            self.registry.remember(device)
            if self._cancelled_since(generation):
                return device
            async with self._lock:
                if self._cancelled_since(generation):
                    return device
                await self._switch_to(device)
                if not (self._connected and self._transport.is_session_live(device.handle)):
                    await self._open_session(device)
            return device
        except BtRelayError as exc:
            self.state.record_error(exc)
            self.reconnector.schedule()
            raise
        finally:
            self._connecting = False

    async def connect_known(self, device_id: str) -> KnownDevice:
        """Connect to a remembered relay; an unknown id triggers a fresh scan instead."""
        device = self.registry.lookup(device_id)
        if device is None:
            logger.info("Device id %r is not remembered, scanning instead", device_id)
            return await self.connect_new()
        async with self._lock:
            await self._switch_to(device)
        await self.reconnect()
        return device

    async def reconnect(self) -> None:
        """Reopen the session to the active device. No-op while connecting or already live."""
        device = self._active
        if device is None:
            raise NoRememberedDeviceError("No previously connected device to reconnect to")
        if self._connecting or self._transport.is_session_live(device.handle):
            return
        generation = self._intent_generation
        self._connecting = True
        try:
            async with self._lock:
                if self._cancelled_since(generation):
                    return
                await self._open_session(device)
        finally:
            self._connecting = False

    async def connect_and_send(self, device_id: str, token: str) -> None:
        """Make ``device_id`` the live link if it is not already, then send ``token``."""
        device = self.registry.require(device_id)
        async with self._lock:
            await self._switch_to(device)
            if not self._connected:
                self._connecting = True
                try:
                    await self._open_session(device)
                finally:
                    self._connecting = False
        await self.send(token)

    # --- Disconnecting ---

    async def disconnect(self, *, forget: bool = False) -> None:
        self.desired_connected = False
        self._intent_generation += 1
        self.reconnector.cancel()
        self.poller.stop()
        async with self._lock:
            device = self._active
            if device is not None:
                await self._close_session(device)
            if forget and device is not None:
                self.registry.forget(device.id)
                self._active = None
                self.state.reset()
                self.queue.clear()
                logger.info("Forgot relay %s", device.id)

    async def forget(self, device_id: str) -> None:
        if self._active is not None and self._active.id == device_id:
            await self.disconnect(forget=True)
        else:
            self.registry.forget(device_id)

    async def forget_all(self) -> None:
        await self.disconnect(forget=True)
        self.registry.clear()

    # --- Sending ---

    async def send(self, token: str) -> None:
        """Write now when connected, queue when a reconnect is wanted, else fail."""
        async with self._lock:
            device = self._active
            if self._connected and device is not None:
                await self._write(device, token)
                return
        if self.desired_connected:
            self.queue.push(token)
            self.reconnector.schedule()
            return
        raise NotConnectedError("Not connected")

    async def read_state(self) -> None:
        await self.send(READ_STATE_TOKEN)

    # --- Settings and host lifecycle ---

    def set_auto_reconnect(self, enabled: bool) -> None:
        self.desired_connected = enabled
        if not enabled:
            self.reconnector.cancel()
        elif not self._connected:
            self.reconnector.schedule()

    def set_poll_interval(self, interval_ms: float) -> None:
        self.poller.interval_ms = interval_ms
        if self._connected:
            self.poller.start()
        else:
            self.poller.stop()

    def set_hidden(self, hidden: bool) -> None:
        self.poller.set_hidden(hidden)
        if not hidden and self._connected:
            self.poller.start()

    async def shutdown(self) -> None:
        await self.disconnect()

    # --- Internals ---

    def _cancelled_since(self, generation: int) -> bool:
        if self._intent_generation == generation:
            return False
        logger.info("Connect abandoned after an explicit disconnect")
        return True

    async def _discover(self) -> KnownDevice:
        scan_filter = self.profile.scan
        try:
            return await self._transport.discover(scan_filter)
        except DeviceDiscoveryError as exc:
            if not scan_filter.name_prefixes:
                raise
            logger.info("%s; retrying with broadened filter", exc)
        return await self._transport.discover(scan_filter.broadened())

    async def _switch_to(self, device: KnownDevice) -> None:
        current = self._active
        if current is not None and current.id != device.id:
            logger.info("Switching link from %s to %s", current.id, device.id)
            await self._close_session(current)
        self._active = device
        self._transport.on_unexpected_disconnect(
            device.handle, functools.partial(self._handle_drop, device.id)
        )

    async def _open_session(self, device: KnownDevice) -> None:
        gatt = self.profile.gatt
        logger.info("Connecting to %s (%s)", device.id, device.name)
        await self._transport.connect(device.handle)
        try:
            write_channel = self._transport.resolve_channel(
                device.handle, gatt.service_uuid, gatt.write_char_uuid
            )
            notify_channel = self._transport.resolve_channel(
                device.handle, gatt.service_uuid, gatt.notify_char_uuid
            )
            await self._transport.subscribe(device.handle, notify_channel, self.state.on_notification)
        except BtRelayError:
            await self._teardown_quietly(device)
            raise
        self._write_channel = write_channel
        await self._on_connected(device)

    async def _on_connected(self, device: KnownDevice) -> None:
        self._connected = True
        self.reconnector.cancel()
        self.reconnector.reset()
        self.state.mark_connected()
        logger.info("Connected to %s", device.id)
        self.poller.start()
        await self._drain_queue(device)

    async def _drain_queue(self, device: KnownDevice) -> None:
        while self.queue and self._connected:
            token = self.queue.pop()
            try:
                await self._write(device, token)
            except BtRelayError as exc:
                self.state.record_error(exc)
                logger.warning("Stopped draining send queue at %r: %s", token, exc)
                break

    async def _write(self, device: KnownDevice, token: str) -> None:
        await self._transport.write(device.handle, self._write_channel, token.encode("utf-8"))

    async def _close_session(self, device: KnownDevice) -> None:
        self._connected = False
        self._write_channel = None
        self.poller.stop()
        if self.state.mark_disconnected():
            logger.info("Disconnected from %s", device.id)
        await self._teardown_quietly(device)

    async def _teardown_quietly(self, device: KnownDevice) -> None:
        try:
            await self._transport.teardown(device.handle)
        except Exception as exc:
            logger.debug("Ignoring teardown error for %s: %s", device.id, exc)

    def _handle_drop(self, device_id: str) -> None:
        device = self._active
        if device is None or device.id != device_id:
            return
        logger.warning("Link to %s dropped", device_id)
        self._connected = False
        self._write_channel = None
        self.state.mark_disconnected()
        self.poller.stop()
        if self.desired_connected:
            self.reconnector.schedule()
