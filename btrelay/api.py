"""Stable public API for building tooling on top of btrelay.

This module is the supported integration surface for third-party callers.
Avoid importing from private/internal modules unless intentionally depending on
non-stable internals.
"""

from __future__ import annotations

from btrelay.core.errors import (
    BtRelayError,
    DeviceDiscoveryError,
    NoRememberedDeviceError,
    NotConnectedError,
    ProfileLoadError,
    ProfileValidationError,
    TransportConnectError,
    TransportError,
    TransportSendError,
    UnknownDeviceError,
)
from btrelay.core.link import ConnectionManager
from btrelay.core.model import (
    BulkAction,
    BulkOutcome,
    DeviceIdentity,
    KnownDevice,
    LinkPhase,
    RelayProfile,
)
from btrelay.core.service import RelayService
from btrelay.transports.base import Transport
from btrelay.transports.ble_gatt import BLEGATTTransport

__all__ = [
    "BtRelayError",
    "DeviceDiscoveryError",
    "NoRememberedDeviceError",
    "NotConnectedError",
    "ProfileLoadError",
    "ProfileValidationError",
    "TransportError",
    "TransportConnectError",
    "TransportSendError",
    "UnknownDeviceError",
    "BulkAction",
    "BulkOutcome",
    "DeviceIdentity",
    "KnownDevice",
    "LinkPhase",
    "RelayProfile",
    "ConnectionManager",
    "Transport",
    "BLEGATTTransport",
    "Client",
]


class Client:
    """Public client for driving one relay link.

    A `Client` instance wraps profile loading, the connection manager and the
    command facade behind a stable API intended for third-party tools
    (GUI/TUI/services/scripts). Coroutine methods must run on the event loop
    that owns the link.
    """

    def __init__(
        self,
        *,
        transport: Transport | None = None,
        profile_id: str | None = None,
    ) -> None:
        self._service = RelayService(transport=transport, profile_id=profile_id)

    @property
    def load_warnings(self) -> tuple[str, ...]:
        return self._service.load_warnings

    @property
    def profile(self) -> RelayProfile:
        return self._service.profile

    async def scan(self) -> list[DeviceIdentity]:
        devices = await self._service.scan()
        return [device.identity for device in devices]

    async def connect(self, device_id: str | None = None) -> DeviceIdentity:
        if device_id:
            device = await self._service.connect_by_id(device_id)
        else:
            device = await self._service.connect_by_scan()
        return device.identity

    async def disconnect(self, *, forget: bool = False) -> None:
        if forget:
            await self._service.forget_current()
        else:
            await self._service.disconnect()

    async def forget(self, device_id: str | None = None) -> None:
        if device_id is None:
            await self._service.forget_all()
        else:
            await self._service.forget_by_id(device_id)

    def set_auto_reconnect(self, enabled: bool) -> None:
        self._service.set_auto_reconnect(enabled)

    def set_poll_interval(self, interval_ms: float) -> None:
        self._service.set_poll_interval(interval_ms)

    async def apply(self, action: BulkAction | str) -> None:
        if isinstance(action, str):
            action = BulkAction.parse(action)
        await self._service.send_text(action.token)

    async def send_text(self, text: str) -> None:
        await self._service.send_text(text)

    async def bulk_apply(self, device_ids: list[str] | str, action: BulkAction | str) -> list[BulkOutcome]:
        ids_csv = device_ids if isinstance(device_ids, str) else ",".join(device_ids)
        return await self._service.bulk_apply(ids_csv, action)

    def clear_queue(self) -> None:
        self._service.clear_queue()

    def consume_state_rose(self) -> bool:
        return self._service.consume_state_rose()

    def consume_state_fell(self) -> bool:
        return self._service.consume_state_fell()

    def consume_connected(self) -> bool:
        return self._service.consume_connected()

    def consume_disconnected(self) -> bool:
        return self._service.consume_disconnected()

    @property
    def state(self) -> int:
        return self._service.state_numeric

    @property
    def state_text(self) -> str:
        return self._service.state_text

    @property
    def is_connected(self) -> bool:
        return self._service.is_connected

    @property
    def device(self) -> DeviceIdentity | None:
        if not self._service.device_id:
            return None
        return DeviceIdentity(id=self._service.device_id, name=self._service.device_name)

    @property
    def known_devices(self) -> list[DeviceIdentity]:
        return self._service.known_devices()

    @property
    def known_ids(self) -> list[str]:
        return [device.id for device in self._service.known_devices()]

    @property
    def known_names(self) -> list[str]:
        return [device.name for device in self._service.known_devices()]

    @property
    def last_error(self) -> str:
        return self._service.last_error

    def on_visibility_change(self, hidden: bool) -> None:
        self._service.on_visibility_change(hidden)

    async def close(self) -> None:
        await self._service.on_before_teardown()
