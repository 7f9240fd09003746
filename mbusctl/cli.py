"""Typer CLI entrypoint."""

from __future__ import annotations

import logging
import signal
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path

import typer

from mbusctl.api import Client
from mbusctl.core.address import normalize_mask, parse_new_primary, parse_request_address, parse_source
from mbusctl.core.cancel import CancellationToken
from mbusctl.core.config import load_config
from mbusctl.core.errors import MbusctlError, ReassignError
from mbusctl.core.model import FULL_WILDCARD_MASK, ScanStatus
from mbusctl.transports.mbus_serial import SerialTransport

app = typer.Typer(help="M-Bus master: discover devices and manage their addresses")

_LOG_FORMAT = "%(levelname)s %(name)s: %(message)s"


@dataclass(frozen=True)
class _Options:
    device: str | None
    baud: int | None
    parity: bool | None
    config: Path | None


class _EchoHandler(logging.Handler):
    """Route log records to stderr through typer so they follow stream redirection."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            typer.echo(self.format(record), err=True)
        except Exception:
            self.handleError(record)


def _configure_logging(debug: bool) -> None:
    logger = logging.getLogger("mbusctl")
    if not any(isinstance(h, _EchoHandler) for h in logger.handlers):
        handler = _EchoHandler()
        handler.setFormatter(logging.Formatter(_LOG_FORMAT))
        logger.addHandler(handler)
    logger.setLevel(logging.DEBUG if debug else logging.WARNING)


@app.callback()
def main(
    ctx: typer.Context,
    device: str | None = typer.Option(None, "--device", "-D", help="Serial port/pty to use"),
    baud: int | None = typer.Option(None, "--baud", "-b", help="Baud rate: 300, 2400, 9600 (default 2400)"),
    parity: bool | None = typer.Option(
        None, "--parity/--no-parity", help="Even parity (M-Bus default) or no parity"
    ),
    config: Path | None = typer.Option(None, "--config", help="YAML configuration file"),
    debug: bool = typer.Option(False, "--debug", "-d", help="Enable debug messages and frame dumps"),
) -> None:
    _configure_logging(debug)
    ctx.obj = _Options(device=device, baud=baud, parity=parity, config=config)


@contextmanager
def _open_client(ctx: typer.Context) -> Iterator[Client]:
    options: _Options = ctx.obj
    parity = None if options.parity is None else ("even" if options.parity else "none")
    loaded = load_config(
        options.config,
        overrides={"device": options.device, "baudrate": options.baud, "parity": parity},
    )
    for warning in loaded.warnings:
        typer.echo(f"Warning: {warning}", err=True)
    with SerialTransport(loaded.config.serial) as transport:
        yield Client(transport, settings=loaded.config.bus)


@contextmanager
def _cancel_on_signals(token: CancellationToken) -> Iterator[None]:
    if threading.current_thread() is not threading.main_thread():
        yield
        return

    def _handler(signo: int, frame: object) -> None:
        token.cancel()

    signals = [signal.SIGINT, signal.SIGTERM]
    if hasattr(signal, "SIGHUP"):
        signals.append(signal.SIGHUP)
    previous = {signo: signal.signal(signo, _handler) for signo in signals}
    try:
        yield
    finally:
        for signo, old in previous.items():
            signal.signal(signo, old)


def _echo_outcome(address: int, status: ScanStatus) -> None:
    if status is ScanStatus.FOUND:
        typer.echo(f"found an M-Bus device at address {address}.")


@app.command("scan")
def scan_devices(ctx: typer.Context) -> None:
    """Primary address scan."""
    try:
        token = CancellationToken()
        with _open_client(ctx) as client, _cancel_on_signals(token):
            report = client.scan(cancel=token, on_outcome=_echo_outcome)

        if report.cancelled:
            typer.echo("Scan cancelled.", err=True)
        if not report.found:
            typer.echo("No M-Bus devices found")
        if report.collisions:
            addresses = ", ".join(str(a) for a in report.collisions)
            typer.echo(f"Collisions at: {addresses}")
    except MbusctlError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


@app.command("probe")
def probe_devices(
    ctx: typer.Context,
    mask: str = typer.Argument(FULL_WILDCARD_MASK, help="Secondary address mask, F is a wildcard"),
) -> None:
    """Secondary address scan."""
    try:
        mask = normalize_mask(mask)
        token = CancellationToken()
        with _open_client(ctx) as client, _cancel_on_signals(token):
            report = client.probe(mask, cancel=token)

        if report.cancelled:
            typer.echo("Probe cancelled, device list is incomplete.", err=True)
        if not report.devices:
            typer.echo("No M-Bus devices found")
            return
        for device in report.devices:
            primary = "-" if device.primary_address is None else str(device.primary_address)
            typer.echo(f"{device.secondary_address} primary={primary}")
    except MbusctlError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


@app.command("address")
def set_address(
    ctx: typer.Context,
    source: str = typer.Argument(..., metavar="MASK|ADDR", help="Secondary address or current primary address"),
    new_address: str = typer.Argument(..., metavar="NEW_ADDR", help="New primary address, 1-250"),
) -> None:
    """Set primary address."""
    try:
        resolved = parse_source(source)
        new_primary = parse_new_primary(new_address)
        with _open_client(ctx) as client:
            result = client.set_address(resolved, new_primary)
        typer.echo(f"Primary address of device {resolved} set to {result.new_primary}.")
    except ReassignError as exc:
        typer.echo(f"Error: {exc} (step: {exc.step.value})", err=True)
        raise typer.Exit(code=1) from None
    except MbusctlError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


@app.command("request")
def request_data(
    ctx: typer.Context,
    address: str = typer.Argument(..., metavar="ADDR", help="Primary or secondary address"),
) -> None:
    """Request data, print the reply header and frame."""
    try:
        target = parse_request_address(address)
        with _open_client(ctx) as client:
            result = client.request(target)

        if result.header is not None:
            typer.echo(f"secondary address: {result.header.secondary_address}")
            typer.echo(f"access number: {result.header.access_number}")
            typer.echo(f"status: 0x{result.header.status:02X}")
        typer.echo(result.frame.dump())
    except MbusctlError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


def run() -> None:
    app()


if __name__ == "__main__":
    run()
