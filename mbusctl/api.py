"""Stable public API for building tooling on top of mbusctl.

This module is the supported integration surface for third-party callers.
Avoid importing from private/internal modules unless intentionally depending on
non-stable internals.
"""

from __future__ import annotations

from mbusctl.core.cancel import CancellationToken
from mbusctl.core.errors import (
    AddressInUseError,
    ConfigError,
    InvalidArgumentError,
    MbusctlError,
    NoReplyError,
    ProtocolViolationError,
    ReassignError,
    ReassignTransportError,
    RequestError,
    SelectionCollisionError,
    SelectionError,
    SelectionNoMatchError,
    TransportError,
    TransportOpenError,
    TransportSendError,
)
from mbusctl.core.model import (
    BusSettings,
    Config,
    Device,
    Frame,
    FrameType,
    ProbeReport,
    ReassignResult,
    ReassignStep,
    RequestResult,
    ScanReport,
    ScanStatus,
    SerialSettings,
)
from mbusctl.core.registry import DeviceRegistry
from mbusctl.core.service import BusMaster, ScanCallback
from mbusctl.transports.base import Transport
from mbusctl.transports.mbus_serial import SerialTransport

__all__ = [
    "MbusctlError",
    "InvalidArgumentError",
    "ConfigError",
    "TransportError",
    "TransportOpenError",
    "TransportSendError",
    "SelectionError",
    "SelectionCollisionError",
    "SelectionNoMatchError",
    "RequestError",
    "ReassignError",
    "AddressInUseError",
    "NoReplyError",
    "ProtocolViolationError",
    "ReassignTransportError",
    "BusSettings",
    "CancellationToken",
    "Config",
    "Device",
    "DeviceRegistry",
    "Frame",
    "FrameType",
    "ProbeReport",
    "ReassignResult",
    "ReassignStep",
    "RequestResult",
    "ScanReport",
    "ScanStatus",
    "SerialSettings",
    "SerialTransport",
    "Client",
]


class Client:
    """Public client for discovering and addressing devices on one M-Bus line.

    A `Client` wraps the bus master and its device registry behind a stable
    API intended for third-party tools (GUI/TUI/services/scripts). The
    caller owns the transport and must open it before use.
    """

    def __init__(self, transport: Transport, *, settings: BusSettings | None = None) -> None:
        self._master = BusMaster(transport, settings=settings)

    @classmethod
    def from_config(cls, config: Config) -> tuple[Client, SerialTransport]:
        """Build a client on a serial transport; open the transport before use."""
        transport = SerialTransport(config.serial)
        return cls(transport, settings=config.bus), transport

    @property
    def devices(self) -> list[Device]:
        return self._master.registry.devices()

    def init_slaves(self) -> None:
        self._master.init_slaves()

    def scan(
        self,
        *,
        cancel: CancellationToken | None = None,
        on_outcome: ScanCallback | None = None,
    ) -> ScanReport:
        return self._master.scan_primary_range(cancel=cancel, on_outcome=on_outcome)

    def probe(
        self,
        mask: str | None = None,
        *,
        cancel: CancellationToken | None = None,
    ) -> ProbeReport:
        return self._master.probe_secondary(mask, cancel=cancel)

    def select(self, mask: str) -> int:
        return self._master.select_secondary(mask)

    def set_address(self, source: int | str, new_primary: int | str) -> ReassignResult:
        return self._master.reassign(source, new_primary)

    def request(self, address: int | str) -> RequestResult:
        return self._master.request(address)
