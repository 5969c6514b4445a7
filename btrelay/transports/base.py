"""Transport interfaces."""

from __future__ import annotations

from collections.abc import Callable
from typing import Any, Protocol

from btrelay.core.model import KnownDevice, ScanFilter


class Transport(Protocol):
    """One physical link at a time; every method is keyed by the device handle."""

    async def discover(self, scan_filter: ScanFilter) -> KnownDevice:
        """Return the first relay matching the filter or raise DeviceDiscoveryError."""

    async def scan(self, scan_filter: ScanFilter) -> list[KnownDevice]:
        """Return every relay matching the filter."""

    async def connect(self, handle: Any) -> None:
        """Open a session to the device or raise TransportConnectError."""

    def resolve_channel(self, handle: Any, service_uuid: str, char_uuid: str) -> Any:
        """Look up a characteristic on the live session."""

    async def subscribe(self, handle: Any, channel: Any, on_data: Callable[[bytes], None]) -> None:
        """Deliver notifications from ``channel`` to ``on_data``."""

    async def write(self, handle: Any, channel: Any, payload: bytes) -> None:
        """Write bytes or raise TransportSendError."""

    def on_unexpected_disconnect(self, handle: Any, callback: Callable[[], None]) -> None:
        """Register the callback fired when the peer drops the session."""

    def is_session_live(self, handle: Any) -> bool:
        """Whether a session to the device is currently open."""

    async def teardown(self, handle: Any) -> None:
        """Close the session; callers ignore any error."""
