"""Domain-specific errors for mbusctl."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from mbusctl.core.model import Frame


class MbusctlError(Exception):
    """Base error for mbusctl."""


class InvalidArgumentError(MbusctlError):
    """Raised when a mask or address is malformed, before any bus I/O."""


class ConfigError(MbusctlError):
    """Raised when a configuration file does not conform to schema or semantics."""


class TransportError(MbusctlError):
    """Base transport error."""


class TransportOpenError(TransportError):
    """Raised when the serial line cannot be opened or configured."""


class TransportSendError(TransportError):
    """Raised when a frame cannot be written to the line."""


class SelectionError(MbusctlError):
    """Raised when a secondary address mask does not select exactly one device."""


class SelectionCollisionError(SelectionError):
    """Raised when a mask matches more than one device."""


class SelectionNoMatchError(SelectionError):
    """Raised when a mask matches no device."""


class RequestError(MbusctlError):
    """Raised when a data request gets no usable reply."""


class ReassignError(MbusctlError):
    """Raised when a primary address reassignment fails.

    `step` names the transaction step that failed, see `ReassignStep`.
    """

    def __init__(self, message: str, *, step: str) -> None:
        super().__init__(message)
        self.step = step


class AddressInUseError(ReassignError):
    """Raised when the new primary address already answers a ping."""


class NoReplyError(ReassignError):
    """Raised when the device never answers the set-address command."""


class ProtocolViolationError(ReassignError):
    """Raised when the device answers with something other than an ACK."""

    def __init__(self, message: str, *, step: str, frame: Frame | None = None) -> None:
        super().__init__(message, step=step)
        self.frame = frame


class ReassignTransportError(ReassignError, TransportError):
    """Raised when the line fails during a reassignment step."""


class FrameError(MbusctlError):
    """Raised when bytes on the line do not form a valid M-Bus frame."""
