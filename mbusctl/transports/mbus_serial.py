"""M-Bus transport over a serial line using pyserial."""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

import serial

from mbusctl.core.cancel import CancellationToken
from mbusctl.core.errors import FrameError, TransportOpenError, TransportSendError
from mbusctl.core.model import RecvError, RecvInvalid, RecvOk, RecvResult, RecvTimeout, SelectOutcome, SerialSettings
from mbusctl.transports import frames, probe

LOGGER = logging.getLogger(__name__)

_PARITY = {"even": serial.PARITY_EVEN, "none": serial.PARITY_NONE}
# Slaves must answer within 330 bit times; allow 50 ms of line turnaround.
_ANSWER_BIT_TIMES = 330
_TURNAROUND_S = 0.05
# Every slave answering once, plus stray garbage.
_PURGE_MAX_FRAMES = 256


def response_timeout(baudrate: int) -> float:
    return _ANSWER_BIT_TIMES / baudrate + _TURNAROUND_S


class SerialTransport:
    """Half-duplex M-Bus line on a serial port.

    Use as a context manager; the port is opened on enter and closed on exit.
    """

    def __init__(
        self,
        settings: SerialSettings,
        *,
        serial_factory: Callable[..., Any] = serial.Serial,
    ) -> None:
        self.settings = settings
        self._serial_factory = serial_factory
        self._port: Any = None

    def __enter__(self) -> SerialTransport:
        self.open()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    @property
    def timeout_s(self) -> float:
        return self.settings.timeout_s or response_timeout(self.settings.baudrate)

    def open(self) -> None:
        parity = _PARITY.get(self.settings.parity)
        if parity is None:
            raise TransportOpenError(f"Unsupported parity '{self.settings.parity}', use 'even' or 'none'.")
        try:
            self._port = self._serial_factory(
                port=self.settings.device,
                baudrate=self.settings.baudrate,
                bytesize=serial.EIGHTBITS,
                parity=parity,
                stopbits=serial.STOPBITS_ONE,
                timeout=self.timeout_s,
            )
        except (serial.SerialException, ValueError) as exc:
            raise TransportOpenError(f"Failed opening serial port {self.settings.device}: {exc}") from exc
        LOGGER.debug(
            "opened %s at %d baud, parity %s, timeout %.3fs",
            self.settings.device,
            self.settings.baudrate,
            self.settings.parity,
            self.timeout_s,
        )

    def close(self) -> None:
        if self._port is not None:
            self._port.close()
            self._port = None

    def _require_port(self) -> Any:
        if self._port is None:
            raise TransportOpenError("Serial port is not open")
        return self._port

    def _write(self, data: bytes) -> None:
        port = self._require_port()
        LOGGER.debug("send %s", data.hex(" "))
        try:
            port.write(data)
            port.flush()
        except serial.SerialException as exc:
            raise TransportSendError(f"Failed writing to {self.settings.device}: {exc}") from exc

    def send_ping(self, address: int, *, purge_response: bool = False) -> None:
        self._write(frames.encode_ping(address))
        if purge_response:
            self.purge_frames()

    def send_request(self, address: int) -> None:
        self._write(frames.encode_request(address))

    def send_set_primary_address(self, current: int, new: int) -> None:
        self._write(frames.encode_set_primary_address(current, new))

    def send_select(self, mask: str) -> None:
        self._write(frames.encode_select(mask))

    def recv_frame(self) -> RecvResult:
        port = self._require_port()
        try:
            frame = frames.read_frame(port.read)
        except FrameError as exc:
            LOGGER.debug("recv invalid: %s", exc)
            return RecvInvalid(reason=str(exc))
        except serial.SerialException as exc:
            return RecvError(message=f"Failed reading from {self.settings.device}: {exc}")
        if frame is None:
            return RecvTimeout()
        LOGGER.debug("recv %s", frame.raw.hex(" "))
        return RecvOk(frame=frame)

    def purge_frames(self) -> bool:
        """Drain pending answers, returning True if anything was received.

        Gives up after a bounded number of frames so a jammed line cannot
        stall the master; hitting the bound counts as received.
        """
        for drained in range(_PURGE_MAX_FRAMES):
            result = self.recv_frame()
            if not isinstance(result, (RecvOk, RecvInvalid)):
                return drained > 0
        LOGGER.warning("line still busy after purging %d frames", _PURGE_MAX_FRAMES)
        return True

    def select_secondary(self, mask: str) -> SelectOutcome:
        return probe.select_secondary(self, mask)

    def probe_secondary_range(
        self,
        mask: str,
        on_found: Callable[[str], None],
        *,
        cancel: CancellationToken | None = None,
    ) -> None:
        probe.probe_secondary_range(self, mask, on_found, cancel=cancel)
