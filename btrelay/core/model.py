"""Core data models used across the registry, link manager, service, and CLI."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any


@dataclass(frozen=True)
class DeviceIdentity:
    id: str
    name: str


@dataclass(frozen=True)
class KnownDevice:
    """A remembered relay: its identity plus the transport handle to reach it.

    The handle is owned by the transport; the registry only keeps a reference.
    """

    id: str
    name: str
    handle: Any

    @property
    def identity(self) -> DeviceIdentity:
        return DeviceIdentity(id=self.id, name=self.name)


class LinkPhase(str, Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"


class BulkAction(str, Enum):
    ON = "ON"
    OFF = "OFF"
    TOGGLE = "TOGGLE"
    READ = "READ"

    @property
    def token(self) -> str:
        return _ACTION_TOKENS[self]

    @classmethod
    def parse(cls, value: str) -> BulkAction:
        """Case-insensitive lookup; anything unrecognised reads state."""
        try:
            return cls(value.strip().upper())
        except ValueError:
            return cls.READ


_ACTION_TOKENS = {
    BulkAction.ON: "1",
    BulkAction.OFF: "0",
    BulkAction.TOGGLE: "t",
    BulkAction.READ: "s",
}


@dataclass(frozen=True)
class StateRecord:
    numeric: int = 0
    text: str = ""
    previous_numeric: int = 0


@dataclass(frozen=True)
class ScanFilter:
    name_prefixes: tuple[str, ...]
    service_uuid: str | None = None
    timeout_s: float = 10.0

    def broadened(self) -> ScanFilter:
        return ScanFilter(name_prefixes=(), service_uuid=self.service_uuid, timeout_s=self.timeout_s)


@dataclass(frozen=True)
class GattSpec:
    service_uuid: str
    write_char_uuid: str
    notify_char_uuid: str
    write_with_response: bool = True


@dataclass(frozen=True)
class LinkSettings:
    queue_max: int = 20
    backoff_floor_ms: int = 1000
    backoff_ceiling_ms: int = 15000
    backoff_factor: int = 2
    poll_interval_ms: int = 0


@dataclass(frozen=True)
class RelayProfile:
    id: str
    name: str
    scan: ScanFilter
    gatt: GattSpec
    link: LinkSettings


@dataclass(frozen=True)
class BulkOutcome:
    id: str
    ok: bool
    error: str | None = None
