"""Typer CLI entrypoint."""

from __future__ import annotations

import asyncio
import logging

import typer

from btrelay.core.errors import BtRelayError
from btrelay.core.model import BulkAction
from btrelay.core.service import RelayService

app = typer.Typer(help="Bluetooth relay control over the Nordic UART Service")

_PROFILE_OPTION = typer.Option(None, "--profile", help="Relay profile ID")
_WAIT_OPTION = typer.Option(1.0, "--wait", help="Seconds to wait for the relay to report its state")


@app.callback()
def main(verbose: bool = typer.Option(False, "--verbose", "-v", help="Log link activity to stderr")) -> None:
    if verbose:
        logging.basicConfig(level=logging.INFO, format="%(asctime)s %(name)s %(levelname)s %(message)s")


def _build_service(profile_id: str | None = None) -> RelayService:
    service = RelayService(profile_id=profile_id)
    for warning in getattr(service, "load_warnings", ()):
        typer.echo(f"Warning: {warning}", err=True)
    return service


def _fail(exc: BtRelayError) -> typer.Exit:
    typer.echo(f"Error: {exc}", err=True)
    return typer.Exit(code=1)


async def _connect(service: RelayService, device_id: str) -> None:
    await service.scan()
    await service.connect_by_id(device_id)


async def _send_and_report(service: RelayService, device_id: str, token: str, wait_s: float) -> None:
    try:
        await _connect(service, device_id)
        await service.send_text(token)
        await asyncio.sleep(wait_s)
        typer.echo(f"{service.device_id} ({service.device_name}): state={service.state_numeric} text={service.state_text!r}")
    finally:
        await service.on_before_teardown()


def _run_token(device_id: str, token: str, profile: str | None, wait_s: float) -> None:
    try:
        service = _build_service(profile)
        asyncio.run(_send_and_report(service, device_id, token, wait_s))
    except BtRelayError as exc:
        raise _fail(exc) from None


@app.command("profiles")
def list_profiles() -> None:
    """List available relay profiles."""
    try:
        service = _build_service()
        for profile in service.list_profiles():
            prefixes = ", ".join(profile.scan.name_prefixes) or "<any>"
            typer.echo(f"{profile.id}: {profile.name}")
            typer.echo(f"  service: {profile.gatt.service_uuid}")
            typer.echo(f"  name prefixes: {prefixes}")
    except BtRelayError as exc:
        raise _fail(exc) from None


@app.command("devices")
def list_devices(profile: str | None = _PROFILE_OPTION) -> None:
    """Scan for relays matching the profile."""
    try:
        service = _build_service(profile)
        devices = asyncio.run(service.scan())
        if not devices:
            typer.echo("No relays found")
            return
        for device in devices:
            typer.echo(f"{device.id} {device.name}")
    except BtRelayError as exc:
        raise _fail(exc) from None


@app.command("on")
def relay_on(device_id: str, profile: str | None = _PROFILE_OPTION, wait: float = _WAIT_OPTION) -> None:
    """Switch a relay on."""
    _run_token(device_id, BulkAction.ON.token, profile, wait)


@app.command("off")
def relay_off(device_id: str, profile: str | None = _PROFILE_OPTION, wait: float = _WAIT_OPTION) -> None:
    """Switch a relay off."""
    _run_token(device_id, BulkAction.OFF.token, profile, wait)


@app.command("toggle")
def relay_toggle(device_id: str, profile: str | None = _PROFILE_OPTION, wait: float = _WAIT_OPTION) -> None:
    """Toggle a relay."""
    _run_token(device_id, BulkAction.TOGGLE.token, profile, wait)


@app.command("state")
def read_state(device_id: str, profile: str | None = _PROFILE_OPTION, wait: float = _WAIT_OPTION) -> None:
    """Ask a relay to report its state."""
    _run_token(device_id, BulkAction.READ.token, profile, wait)


@app.command("send")
def send_text(
    device_id: str,
    text: str,
    profile: str | None = _PROFILE_OPTION,
    wait: float = _WAIT_OPTION,
) -> None:
    """Send raw text to a relay."""
    _run_token(device_id, text, profile, wait)


async def _bulk(service: RelayService, ids_csv: str, action: str) -> list:
    try:
        await service.scan()
        return await service.bulk_apply(ids_csv, action)
    finally:
        await service.on_before_teardown()


@app.command("bulk")
def bulk_apply(
    ids: str = typer.Argument(..., help="Comma-separated device IDs"),
    action: str = typer.Argument("ON", help="ON, OFF, TOGGLE or READ"),
    profile: str | None = _PROFILE_OPTION,
) -> None:
    """Send one action to several relays, one after another."""
    try:
        service = _build_service(profile)
        outcomes = asyncio.run(_bulk(service, ids, action))
    except BtRelayError as exc:
        raise _fail(exc) from None

    for outcome in outcomes:
        typer.echo(f"{outcome.id}: {'ok' if outcome.ok else outcome.error}")
    if any(not outcome.ok for outcome in outcomes):
        raise typer.Exit(code=1)


async def _watch(service: RelayService, device_id: str, poll_ms: int, duration_s: float | None) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + duration_s if duration_s else None
    try:
        await _connect(service, device_id)
        service.set_auto_reconnect(True)
        service.set_poll_interval(poll_ms)
        while deadline is None or loop.time() < deadline:
            if service.consume_connected():
                typer.echo("connected")
            if service.consume_disconnected():
                typer.echo("disconnected")
            if service.consume_state_rose():
                typer.echo("on")
            if service.consume_state_fell():
                typer.echo("off")
            await asyncio.sleep(0.05)
    finally:
        await service.on_before_teardown()


@app.command("watch")
def watch(
    device_id: str,
    poll_ms: int = typer.Option(1000, "--poll-ms", help="State poll interval, 0 to disable"),
    duration: float | None = typer.Option(None, "--duration", help="Stop after this many seconds"),
    profile: str | None = _PROFILE_OPTION,
) -> None:
    """Stay connected and print connection and relay edges until interrupted."""
    try:
        service = _build_service(profile)
        asyncio.run(_watch(service, device_id, poll_ms, duration))
    except KeyboardInterrupt:
        return
    except BtRelayError as exc:
        raise _fail(exc) from None


def run() -> None:
    app()


if __name__ == "__main__":
    run()
