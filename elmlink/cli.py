"""Typer CLI entrypoint."""

from __future__ import annotations

import logging
import time

import typer

from elmlink.api import connect
from elmlink.core import at_commands
from elmlink.core.errors import ElmlinkError
from elmlink.core.model import DataReceivedEvent, SessionConfig, TransportSpec
from elmlink.core.session import ELM327
from elmlink.data.catalog import PayloadCatalog, load_payloads
from elmlink.transports.serial_port import find_serial_ports

app = typer.Typer(help="ELM327 OBD-II adapter client")

_PORT = typer.Option(None, "--port", envvar="ELMLINK_PORT", help="Serial port of the adapter")
_BAUDRATE = typer.Option(38400, "--baudrate", envvar="ELMLINK_BAUDRATE", help="Serial baud rate")
_RFCOMM = typer.Option(None, "--rfcomm", envvar="ELMLINK_RFCOMM", help="Bluetooth address for RFCOMM")
_CHANNEL = typer.Option(1, "--channel", envvar="ELMLINK_CHANNEL", help="RFCOMM channel")


@app.callback()
def main(verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging")) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _load_catalog() -> PayloadCatalog:
    catalog = load_payloads()
    for warning in catalog.warnings:
        typer.echo(f"Warning: {warning}", err=True)
    return catalog


def _transport_spec(port: str | None, baudrate: int, rfcomm: str | None, channel: int) -> TransportSpec:
    if rfcomm:
        return TransportSpec(type="rfcomm", address=rfcomm, channel=channel)
    if port:
        return TransportSpec(type="serial", port=port, baudrate=baudrate)
    ports = find_serial_ports()
    if not ports:
        raise typer.BadParameter("No serial port found; pass --port or --rfcomm")
    return TransportSpec(type="serial", port=ports[0], baudrate=baudrate)


def _connect(spec: TransportSpec) -> ELM327:
    return connect(spec, SessionConfig())


@app.command("payloads")
def list_payloads() -> None:
    """List known payloads with their mode and PID."""
    try:
        catalog = _load_catalog()
        for spec in catalog.list_specs():
            mode = f"{spec.mode:02X}" if spec.mode is not None else "--"
            unit = f" [{spec.unit}]" if spec.unit else ""
            typer.echo(f"{spec.id}: mode {mode} pid {spec.pid:02X} {spec.name}{unit}")
    except ElmlinkError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


@app.command("ports")
def list_ports() -> None:
    """List serial ports that may host an adapter."""
    ports = find_serial_ports()
    if not ports:
        typer.echo("No serial ports found")
        return
    for port in ports:
        typer.echo(port)


@app.command("query")
def query(
    payload_ids: list[str] = typer.Argument(..., help="Payload ids, see 'elmlink payloads'"),
    port: str | None = _PORT,
    baudrate: int = _BAUDRATE,
    rfcomm: str | None = _RFCOMM,
    channel: int = _CHANNEL,
) -> None:
    """Request each payload once and print the decoded value."""
    try:
        catalog = _load_catalog()
        payload_types = [(payload_id, catalog.get(payload_id)) for payload_id in payload_ids]
        session = _connect(_transport_spec(port, baudrate, rfcomm, channel))
        try:
            for payload_id, payload_type in payload_types:
                data = session.request_data_sync(payload_type)
                typer.echo(f"{payload_id}: {data if data is not None else 'no data'}")
        finally:
            session.dispose()
    except ElmlinkError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


@app.command("monitor")
def monitor(
    payload_ids: list[str] = typer.Argument(..., help="Payload ids, see 'elmlink payloads'"),
    interval: float = typer.Option(1.0, "--interval", help="Seconds between polls"),
    count: int = typer.Option(0, "--count", help="Stop after N polls (0 = until Ctrl-C)"),
    port: str | None = _PORT,
    baudrate: int = _BAUDRATE,
    rfcomm: str | None = _RFCOMM,
    channel: int = _CHANNEL,
) -> None:
    """Poll payloads and print every decoded value until interrupted."""
    try:
        catalog = _load_catalog()
        payload_types = [catalog.get(payload_id) for payload_id in payload_ids]
        session = _connect(_transport_spec(port, baudrate, rfcomm, channel))
    except ElmlinkError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None

    def _print(event: DataReceivedEvent) -> None:
        stamp = event.timestamp.strftime("%H:%M:%S.%f")[:-3]
        typer.echo(f"{stamp} {event.data.NAME or type(event.data).__name__}: {event.data}")

    session.dispatcher.subscribe_any(_print)
    polls = 0
    try:
        while count == 0 or polls < count:
            for payload_type in payload_types:
                session.request_data(payload_type)
            session.channel.wait_queue()
            polls += 1
            if count == 0 or polls < count:
                time.sleep(interval)
    except KeyboardInterrupt:
        typer.echo("Canceling output")
    except ElmlinkError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None
    finally:
        session.dispose()


@app.command("info")
def info(
    port: str | None = _PORT,
    baudrate: int = _BAUDRATE,
    rfcomm: str | None = _RFCOMM,
    channel: int = _CHANNEL,
) -> None:
    """Print adapter version, battery voltage and the negotiated protocol."""
    queries = (at_commands.VERSION, at_commands.READ_VOLTAGE, at_commands.DESCRIBE_PROTOCOL_NUMBER)
    try:
        session = _connect(_transport_spec(port, baudrate, rfcomm, channel))
        try:
            replies = [(command.name, session.send_command(command).wait()) for command in queries]
        finally:
            session.dispose()
    except ElmlinkError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None
    for name, reply in replies:
        typer.echo(f"{name}: {reply if reply is not None else 'no reply'}")


@app.command("raw")
def raw(
    command: str = typer.Argument(..., help="Command text, e.g. ATRV or 010C"),
    port: str | None = _PORT,
    baudrate: int = _BAUDRATE,
    rfcomm: str | None = _RFCOMM,
    channel: int = _CHANNEL,
) -> None:
    """Send one command and print the reply."""
    try:
        session = _connect(_transport_spec(port, baudrate, rfcomm, channel))
        try:
            reply = session.send_command(command).wait()
        finally:
            session.dispose()
        typer.echo(reply if reply is not None else "no reply")
    except ElmlinkError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


def run() -> None:
    app()


if __name__ == "__main__":
    run()
