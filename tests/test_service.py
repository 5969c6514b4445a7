from __future__ import annotations

import asyncio

import pytest

from btrelay.core.errors import DeviceDiscoveryError, NotConnectedError, TransportSendError
from btrelay.core.link import ConnectionManager
from btrelay.core.model import BulkAction, LinkPhase
from btrelay.core.service import RelayService

from conftest import FakeTransport, eventually


@pytest.fixture
def service(manager: ConnectionManager) -> RelayService:
    return RelayService(manager=manager)


def test_state_edges_through_facade(service: RelayService, transport: FakeTransport) -> None:
    async def scenario() -> None:
        transport.add_device("a")
        await service.connect_by_scan()
        transport.notify("a", "off")
        transport.notify("a", "on")

        assert service.consume_state_rose() is True
        assert service.consume_state_rose() is False
        assert service.consume_state_fell() is False
        assert service.state_numeric == 1
        assert service.state_text == "on"

    asyncio.run(scenario())


def test_relay_commands_write_protocol_tokens(service: RelayService, transport: FakeTransport) -> None:
    async def scenario() -> None:
        transport.add_device("a")
        await service.connect_by_scan()
        await service.relay_on()
        await service.relay_off()
        await service.relay_toggle()
        await service.read_state()
        await service.send_text("hello")
        assert transport.payloads("a") == ["1", "0", "t", "s", "hello"]

    asyncio.run(scenario())


def test_relay_on_queues_while_reconnecting(service: RelayService, transport: FakeTransport) -> None:
    async def scenario() -> None:
        transport.add_device("a")
        await service.connect_by_scan()
        transport.fail_connect.add("a")
        transport.drop("a")

        for _ in range(3):
            await service.relay_on()
        assert service.queued == ("1", "1", "1")

        transport.fail_connect.clear()
        await eventually(lambda: service.is_connected)
        assert transport.payloads("a") == ["1", "1", "1"]

    asyncio.run(scenario())


def test_send_failure_is_recorded_and_raised(service: RelayService, transport: FakeTransport) -> None:
    async def scenario() -> None:
        with pytest.raises(NotConnectedError):
            await service.relay_on()
        assert service.last_error == "Not connected"

        transport.add_device("a")
        await service.connect_by_scan()
        assert service.last_error == ""
        transport.failing_writes = 1
        with pytest.raises(TransportSendError):
            await service.relay_toggle()
        assert "failed" in service.last_error

    asyncio.run(scenario())


def test_clear_queue(service: RelayService) -> None:
    async def scenario() -> None:
        service.set_auto_reconnect(True)
        await service.relay_on()
        service.clear_queue()
        assert service.queued == ()
        service.set_auto_reconnect(False)

    asyncio.run(scenario())


def test_forget_by_id_of_active_device(service: RelayService, transport: FakeTransport) -> None:
    async def scenario() -> None:
        transport.add_device("a")
        await service.connect_by_scan()
        transport.notify("a", "on")

        await service.forget_by_id(" a ")

        assert transport.teardowns == ["a"]
        assert not service.is_connected
        assert service.known_ids == ""
        assert service.state_numeric == 0
        assert service.state_text == ""
        assert service.device_id == ""

    asyncio.run(scenario())


def test_forget_all_clears_registry(service: RelayService, transport: FakeTransport) -> None:
    async def scenario() -> None:
        transport.add_device("a", "BT Relay one")
        transport.add_device("b", "BT Relay two")
        await service.scan()
        assert service.known_ids == "a,b"
        assert service.known_names == "BT Relay one,BT Relay two"
        assert [d.id for d in service.known_devices()] == ["a", "b"]

        await service.connect_by_id("b")
        assert service.device_name == "BT Relay two"
        await service.forget_all()
        assert service.known_ids == ""
        assert service.phase is LinkPhase.IDLE

    asyncio.run(scenario())


def test_disconnect_keeps_memory(service: RelayService, transport: FakeTransport) -> None:
    async def scenario() -> None:
        transport.add_device("a")
        await service.connect_by_scan()
        assert service.consume_connected() is True
        await service.disconnect()

        assert service.consume_disconnected() is True
        assert service.consume_disconnected() is False
        assert service.known_ids == "a"
        assert service.device_id == "a"

    asyncio.run(scenario())


def test_bulk_apply_isolates_unknown_id(service: RelayService, transport: FakeTransport) -> None:
    async def scenario() -> None:
        transport.add_device("a")
        transport.add_device("c")
        await service.scan()

        outcomes = await service.bulk_apply("a, b,,c", "OFF")

        assert transport.payloads("a") == ["0"]
        assert transport.payloads("c") == ["0"]
        assert [o.ok for o in outcomes] == [True, False, True]
        assert [o.id for o in outcomes] == ["a", "b", "c"]
        assert "b" in service.last_error
        assert service.last_error.startswith("ID b:")

    asyncio.run(scenario())


def test_bulk_apply_keeps_only_last_failure(service: RelayService, transport: FakeTransport) -> None:
    async def scenario() -> None:
        service.manager.state.record_error("stale")
        outcomes = await service.bulk_apply("x,y", BulkAction.TOGGLE)
        assert [o.ok for o in outcomes] == [False, False]
        assert service.last_error.startswith("ID y:")

    asyncio.run(scenario())


def test_bulk_apply_empty_list_clears_error(service: RelayService) -> None:
    async def scenario() -> None:
        service.manager.state.record_error("stale")
        assert await service.bulk_apply(" , ", "ON") == []
        assert service.last_error == ""

    asyncio.run(scenario())


def test_bulk_unknown_action_reads_state(service: RelayService, transport: FakeTransport) -> None:
    async def scenario() -> None:
        transport.add_device("a")
        await service.scan()
        await service.bulk_apply("a", "whatever")
        assert transport.payloads("a") == ["s"]

    asyncio.run(scenario())


def test_connect_by_unknown_id_falls_back_to_scan(service: RelayService, transport: FakeTransport) -> None:
    async def scenario() -> None:
        transport.add_device("AA:01")
        device = await service.connect_by_id("never-seen")
        assert device.id == "AA:01"
        assert service.is_connected

    asyncio.run(scenario())


def test_connect_by_id_scans_when_reconnect_fails(service: RelayService, transport: FakeTransport) -> None:
    async def scenario() -> None:
        transport.add_device("a")
        transport.add_device("b")
        await service.scan()
        transport.fail_connect.add("a")
        transport.devices.reverse()

        device = await service.connect_by_id("a")

        assert device.id == "b"
        assert transport.connect_calls == ["a", "b"]
        assert service.last_error == "connect failed for a"

    asyncio.run(scenario())


def test_connect_by_scan_failure_is_raised_and_retried(service: RelayService) -> None:
    async def scenario() -> None:
        with pytest.raises(DeviceDiscoveryError):
            await service.connect_by_scan()
        assert service.last_error == "No relay found"
        assert service.phase is LinkPhase.RECONNECTING
        service.set_auto_reconnect(False)
        assert service.phase is LinkPhase.IDLE

    asyncio.run(scenario())


def test_visibility_and_teardown_hooks(transport: FakeTransport) -> None:
    from conftest import make_profile

    async def scenario() -> None:
        service = RelayService(manager=ConnectionManager(transport, make_profile()))
        transport.add_device("a")
        await service.connect_by_scan()
        service.set_poll_interval(5)
        await eventually(lambda: "s" in transport.payloads())

        service.on_visibility_change(True)
        assert not service.manager.poller.running
        service.on_visibility_change(False)
        assert service.manager.poller.running

        await service.on_before_teardown()
        assert not service.is_connected
        assert transport.live == set()

    asyncio.run(scenario())
