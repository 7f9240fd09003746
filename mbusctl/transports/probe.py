"""Secondary address selection and the bisecting wildcard probe."""

from __future__ import annotations

import logging
from collections.abc import Callable

from mbusctl.core.cancel import CancellationToken, is_cancelled
from mbusctl.core.errors import FrameError, TransportError
from mbusctl.core.model import (
    NETWORK_LAYER,
    WILDCARD,
    FrameType,
    RecvError,
    RecvInvalid,
    RecvOk,
    RecvTimeout,
    SelectOutcome,
)
from mbusctl.transports.base import FrameLink
from mbusctl.transports.frames import secondary_address_from_frame

LOGGER = logging.getLogger(__name__)

_ID_DIGITS = 8
_BCD_CANDIDATES = "0123456789"
# F is the wildcard, so it can never be probed as a literal digit.
_HEX_CANDIDATES = "0123456789ABCDE"


def select_secondary(link: FrameLink, mask: str) -> SelectOutcome:
    link.send_select(mask)
    result = link.recv_frame()

    if isinstance(result, RecvTimeout):
        return SelectOutcome.NOTHING
    if isinstance(result, RecvInvalid):
        link.purge_frames()
        return SelectOutcome.COLLISION
    if isinstance(result, RecvError):
        LOGGER.warning("select %s failed: %s", mask, result.message)
        return SelectOutcome.ERROR
    if isinstance(result, RecvOk):
        if result.frame.type is not FrameType.ACK:
            LOGGER.warning("select %s answered with %s frame instead of ACK", mask, result.frame.type.value)
            return SelectOutcome.ERROR
        if link.purge_frames():
            return SelectOutcome.COLLISION
        return SelectOutcome.SINGLE
    raise AssertionError(f"unhandled receive result {result!r}")


def _candidates(position: int) -> str:
    return _BCD_CANDIDATES if position < _ID_DIGITS else _HEX_CANDIDATES


def _report_selected(link: FrameLink, mask: str, on_found: Callable[[str], None]) -> None:
    link.send_request(NETWORK_LAYER)
    result = link.recv_frame()
    if not isinstance(result, RecvOk):
        LOGGER.warning("no data from device selected by %s: %s", mask, result)
        return
    try:
        address = secondary_address_from_frame(result.frame)
    except FrameError as exc:
        LOGGER.warning("cannot read secondary address of device selected by %s: %s", mask, exc)
        return
    on_found(address)


def probe_secondary_range(
    link: FrameLink,
    mask: str,
    on_found: Callable[[str], None],
    *,
    cancel: CancellationToken | None = None,
) -> None:
    """Enumerate every device matching `mask`.

    The first wildcard position is narrowed digit by digit; a collision
    recurses into the next wildcard position, a single match is read back
    to learn its concrete secondary address.
    """
    _probe(link, mask.upper(), 0, on_found, cancel)


def _probe(
    link: FrameLink,
    mask: str,
    start: int,
    on_found: Callable[[str], None],
    cancel: CancellationToken | None,
) -> None:
    position = mask.find(WILDCARD, start)
    if position == -1:
        if is_cancelled(cancel):
            return
        outcome = select_secondary(link, mask)
        if outcome is SelectOutcome.SINGLE:
            _report_selected(link, mask, on_found)
        elif outcome is SelectOutcome.COLLISION:
            LOGGER.warning("several devices answer to secondary address %s", mask)
        elif outcome is SelectOutcome.ERROR:
            raise TransportError(f"secondary probe failed at mask {mask}")
        return

    for digit in _candidates(position):
        if is_cancelled(cancel):
            return
        candidate = mask[:position] + digit + mask[position + 1 :]
        LOGGER.debug("probing %s", candidate)
        outcome = select_secondary(link, candidate)
        if outcome is SelectOutcome.SINGLE:
            _report_selected(link, candidate, on_found)
        elif outcome is SelectOutcome.COLLISION:
            _probe(link, candidate, position + 1, on_found, cancel)
        elif outcome is SelectOutcome.ERROR:
            raise TransportError(f"secondary probe failed at mask {candidate}")
