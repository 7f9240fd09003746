"""Transport interfaces."""

from __future__ import annotations

from collections.abc import Callable
from typing import Protocol

from mbusctl.core.cancel import CancellationToken
from mbusctl.core.model import RecvResult, SelectOutcome


class Transport(Protocol):
    def send_ping(self, address: int, *, purge_response: bool = False) -> None:
        """Send SND_NKE to an address, optionally draining any answer."""

    def send_request(self, address: int) -> None:
        """Send REQ_UD2 to an address."""

    def send_set_primary_address(self, current: int, new: int) -> None:
        """Send the set-primary-address command from `current` to `new`."""

    def recv_frame(self) -> RecvResult:
        """Block until a frame, a timeout, a garbled reception, or a line error."""

    def purge_frames(self) -> bool:
        """Drain pending frames, returning True if anything was received."""

    def select_secondary(self, mask: str) -> SelectOutcome:
        """Select the device(s) matching a secondary address mask."""

    def probe_secondary_range(
        self,
        mask: str,
        on_found: Callable[[str], None],
        *,
        cancel: CancellationToken | None = None,
    ) -> None:
        """Enumerate devices under a wildcard mask, reporting concrete addresses."""


class FrameLink(Protocol):
    """The subset of a transport the secondary probe is built on."""

    def send_select(self, mask: str) -> None: ...

    def send_request(self, address: int) -> None: ...

    def recv_frame(self) -> RecvResult: ...

    def purge_frames(self) -> bool: ...
