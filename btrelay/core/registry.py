"""Process-lifetime memory of relays seen by scans and connects."""

from __future__ import annotations

import logging

from btrelay.core.errors import UnknownDeviceError
from btrelay.core.model import KnownDevice

logger = logging.getLogger(__name__)


class DeviceRegistry:
    """Map of device id to the last seen name and transport handle.

    Entries are never edited in place: remembering an id again replaces the
    whole entry. Handles stay owned by the transport.
    """

    def __init__(self) -> None:
        self._devices: dict[str, KnownDevice] = {}

    def remember(self, device: KnownDevice) -> None:
        if device.id not in self._devices:
            logger.info("Remembering relay %s (%s)", device.id, device.name)
        self._devices[device.id] = device

    def lookup(self, device_id: str) -> KnownDevice | None:
        return self._devices.get(device_id)

    def require(self, device_id: str) -> KnownDevice:
        device = self._devices.get(device_id)
        if device is None:
            raise UnknownDeviceError(f"Unknown device id: {device_id}")
        return device

    def ids(self) -> list[str]:
        return list(self._devices)

    def names(self) -> list[str]:
        return [device.name for device in self._devices.values()]

    def devices(self) -> list[KnownDevice]:
        return list(self._devices.values())

    def forget(self, device_id: str) -> bool:
        return self._devices.pop(device_id, None) is not None

    def clear(self) -> None:
        self._devices.clear()

    def __contains__(self, device_id: object) -> bool:
        return device_id in self._devices

    def __len__(self) -> int:
        return len(self._devices)
