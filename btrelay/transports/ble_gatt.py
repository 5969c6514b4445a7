"""BLE GATT transport implementation on top of bleak."""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

from bleak import BleakClient, BleakScanner
from bleak.backends.device import BLEDevice
from bleak.backends.scanner import AdvertisementData

from btrelay.core.errors import (
    DeviceDiscoveryError,
    TransportConnectError,
    TransportError,
    TransportSendError,
)
from btrelay.core.model import KnownDevice, ScanFilter

logger = logging.getLogger(__name__)


def _advertised_name(device: BLEDevice, adv: AdvertisementData) -> str:
    return adv.local_name or device.name or ""


def matches_filter(device: BLEDevice, adv: AdvertisementData, scan_filter: ScanFilter) -> bool:
    if scan_filter.name_prefixes:
        name = _advertised_name(device, adv)
        return any(name.startswith(prefix) for prefix in scan_filter.name_prefixes)
    if scan_filter.service_uuid:
        advertised = {uuid.lower() for uuid in adv.service_uuids}
        return scan_filter.service_uuid.lower() in advertised
    return True


class BLEGATTTransport:
    """Single-link bleak adapter.

    Sessions are keyed by device address, one client per address. The drop
    callback for an address fires only when its tracked client goes away on
    the peer side; teardown untracks the client before disconnecting it.
    """

    def __init__(self, *, write_with_response: bool = True) -> None:
        self._write_with_response = write_with_response
        self._clients: dict[str, BleakClient] = {}
        self._drop_callbacks: dict[str, Callable[[], None]] = {}

    async def scan(self, scan_filter: ScanFilter) -> list[KnownDevice]:
        try:
            found = await BleakScanner.discover(timeout=scan_filter.timeout_s, return_adv=True)
        except Exception as exc:
            raise DeviceDiscoveryError(f"BLE scan failed: {exc}") from exc

        matched = [
            (device, adv)
            for device, adv in found.values()
            if matches_filter(device, adv, scan_filter)
        ]
        matched.sort(key=lambda pair: pair[1].rssi, reverse=True)
        return [
            KnownDevice(id=device.address, name=_advertised_name(device, adv), handle=device)
            for device, adv in matched
        ]

    async def discover(self, scan_filter: ScanFilter) -> KnownDevice:
        devices = await self.scan(scan_filter)
        if not devices:
            if scan_filter.name_prefixes:
                wanted = "name prefix " + ", ".join(repr(p) for p in scan_filter.name_prefixes)
            else:
                wanted = f"service {scan_filter.service_uuid}"
            raise DeviceDiscoveryError(f"No relay found advertising {wanted}")
        logger.info("Discovered relay %s (%s)", devices[0].id, devices[0].name)
        return devices[0]

    async def connect(self, handle: BLEDevice) -> None:
        if self.is_session_live(handle):
            logger.debug("Reusing live session to %s", handle.address)
            return
        client = BleakClient(handle, disconnected_callback=self._on_client_disconnected)
        try:
            await client.connect()
        except Exception as exc:
            raise TransportConnectError(f"BLE connect failed for {handle.address}: {exc}") from exc
        if not client.is_connected:
            raise TransportConnectError(f"BLE connect failed for {handle.address}")
        self._clients[handle.address] = client

    def resolve_channel(self, handle: BLEDevice, service_uuid: str, char_uuid: str) -> Any:
        client = self._live_client(handle, TransportConnectError)
        service = client.services.get_service(service_uuid)
        if service is None:
            raise TransportConnectError(f"Service {service_uuid} not found on {handle.address}")
        characteristic = service.get_characteristic(char_uuid)
        if characteristic is None:
            raise TransportConnectError(f"Characteristic {char_uuid} not found on {handle.address}")
        return characteristic

    async def subscribe(self, handle: BLEDevice, channel: Any, on_data: Callable[[bytes], None]) -> None:
        client = self._live_client(handle, TransportConnectError)

        def _notify_handler(_: Any, data: bytearray) -> None:
            on_data(bytes(data))

        try:
            await client.start_notify(channel, _notify_handler)
        except Exception as exc:
            raise TransportConnectError(f"Could not subscribe to notifications: {exc}") from exc

    async def write(self, handle: BLEDevice, channel: Any, payload: bytes) -> None:
        client = self._live_client(handle, TransportSendError)
        try:
            await client.write_gatt_char(channel, payload, response=self._write_with_response)
        except Exception as exc:
            raise TransportSendError(f"BLE GATT write failed: {exc}") from exc

    def on_unexpected_disconnect(self, handle: BLEDevice, callback: Callable[[], None]) -> None:
        self._drop_callbacks[handle.address] = callback

    def is_session_live(self, handle: BLEDevice) -> bool:
        client = self._clients.get(handle.address)
        return client is not None and client.is_connected

    async def teardown(self, handle: BLEDevice) -> None:
        client = self._clients.pop(handle.address, None)
        if client is None:
            return
        try:
            if client.is_connected:
                await client.disconnect()
        except Exception as exc:
            raise TransportError(f"BLE disconnect failed for {handle.address}: {exc}") from exc

    def _live_client(self, handle: BLEDevice, error: type[TransportError]) -> BleakClient:
        client = self._clients.get(handle.address)
        if client is None or not client.is_connected:
            raise error(f"No live BLE session to {handle.address}")
        return client

    def _on_client_disconnected(self, client: BleakClient) -> None:
        address = client.address
        if self._clients.get(address) is not client:
            return
        del self._clients[address]
        callback = self._drop_callbacks.get(address)
        if callback is not None:
            logger.debug("Peer %s dropped the session", address)
            callback()
