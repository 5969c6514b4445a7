from __future__ import annotations

import asyncio
from collections.abc import Callable

import pytest

from btrelay.core.errors import (
    DeviceDiscoveryError,
    TransportConnectError,
    TransportError,
    TransportSendError,
)
from btrelay.core.link import ConnectionManager
from btrelay.core.model import GattSpec, KnownDevice, LinkSettings, RelayProfile, ScanFilter

NUS_SERVICE = "6e400001-b5a3-f393-e0a9-e50e24dcca9e"
NUS_RX = "6e400002-b5a3-f393-e0a9-e50e24dcca9e"
NUS_TX = "6e400003-b5a3-f393-e0a9-e50e24dcca9e"


class FakeTransport:
    """In-memory single-link transport. Handles are the device ids."""

    def __init__(self) -> None:
        self.devices: list[KnownDevice] = []
        self.service_only: list[KnownDevice] = []
        self.discover_calls: list[ScanFilter] = []
        self.connect_calls: list[str] = []
        self.writes: list[tuple[str, bytes]] = []
        self.teardowns: list[str] = []
        self.live: set[str] = set()
        self.subscribers: dict[str, Callable[[bytes], None]] = {}
        self.drop_callbacks: dict[str, Callable[[], None]] = {}
        self.fail_connect: set[str] = set()
        self.fail_subscribe = False
        self.fail_teardown = False
        self.failing_writes = 0
        self.connect_gate: asyncio.Event | None = None
        self.discover_gate: asyncio.Event | None = None

    def add_device(self, device_id: str, name: str = "BT Relay") -> KnownDevice:
        device = KnownDevice(id=device_id, name=name, handle=device_id)
        self.devices.append(device)
        return device

    def _matching(self, scan_filter: ScanFilter) -> list[KnownDevice]:
        if scan_filter.name_prefixes:
            return [
                d for d in self.devices
                if any(d.name.startswith(p) for p in scan_filter.name_prefixes)
            ]
        return list(self.service_only)

    async def scan(self, scan_filter: ScanFilter) -> list[KnownDevice]:
        return self._matching(scan_filter)

    async def discover(self, scan_filter: ScanFilter) -> KnownDevice:
        self.discover_calls.append(scan_filter)
        if self.discover_gate is not None:
            await self.discover_gate.wait()
        matching = self._matching(scan_filter)
        if not matching:
            raise DeviceDiscoveryError("No relay found")
        return matching[0]

    async def connect(self, handle: str) -> None:
        self.connect_calls.append(handle)
        if self.connect_gate is not None:
            await self.connect_gate.wait()
        if handle in self.fail_connect:
            raise TransportConnectError(f"connect failed for {handle}")
        self.live.add(handle)

    def resolve_channel(self, handle: str, service_uuid: str, char_uuid: str) -> str:
        if handle not in self.live:
            raise TransportConnectError("not connected")
        return char_uuid

    async def subscribe(self, handle: str, channel: str, on_data: Callable[[bytes], None]) -> None:
        if self.fail_subscribe:
            raise TransportConnectError("notify not supported")
        self.subscribers[handle] = on_data

    async def write(self, handle: str, channel: str, payload: bytes) -> None:
        if handle not in self.live:
            raise TransportSendError("not connected")
        if self.failing_writes:
            self.failing_writes -= 1
            raise TransportSendError(f"write of {payload!r} failed")
        self.writes.append((handle, payload))

    def on_unexpected_disconnect(self, handle: str, callback: Callable[[], None]) -> None:
        self.drop_callbacks[handle] = callback

    def is_session_live(self, handle: str) -> bool:
        return handle in self.live

    async def teardown(self, handle: str) -> None:
        self.teardowns.append(handle)
        self.live.discard(handle)
        self.subscribers.pop(handle, None)
        if self.fail_teardown:
            raise TransportError("teardown exploded")

    # Test drivers

    def notify(self, handle: str, text: str) -> None:
        self.subscribers[handle](text.encode("utf-8"))

    def drop(self, handle: str) -> None:
        self.live.discard(handle)
        self.drop_callbacks[handle]()

    def payloads(self, handle: str | None = None) -> list[str]:
        return [p.decode() for h, p in self.writes if handle is None or h == handle]


def make_profile(**link: int) -> RelayProfile:
    settings = dict(
        queue_max=20,
        backoff_floor_ms=10,
        backoff_ceiling_ms=80,
        backoff_factor=2,
        poll_interval_ms=0,
    )
    settings.update(link)
    return RelayProfile(
        id="test_relay",
        name="Test Relay",
        scan=ScanFilter(name_prefixes=("BT Relay", "BT"), service_uuid=NUS_SERVICE, timeout_s=1.0),
        gatt=GattSpec(service_uuid=NUS_SERVICE, write_char_uuid=NUS_RX, notify_char_uuid=NUS_TX),
        link=LinkSettings(**settings),
    )


async def eventually(predicate: Callable[[], bool], timeout: float = 1.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.005)


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def profile() -> RelayProfile:
    return make_profile()


@pytest.fixture
def manager(transport: FakeTransport, profile: RelayProfile) -> ConnectionManager:
    return ConnectionManager(transport, profile)
