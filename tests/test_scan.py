from __future__ import annotations

import pytest

from mbusctl.core.cancel import CancellationToken
from mbusctl.core.errors import TransportError, TransportSendError
from mbusctl.core.model import (
    ACK_FRAME,
    BROADCAST_NOREPLY,
    MAX_PRIMARY_SLAVES,
    NETWORK_LAYER,
    BusSettings,
    Frame,
    FrameType,
    RecvError,
    RecvInvalid,
    RecvOk,
    RecvTimeout,
    ScanStatus,
)
from mbusctl.core.service import BusMaster

ACK = RecvOk(ACK_FRAME)


class ScanBus:
    """Answers pings per address from a script; everything else is silent."""

    def __init__(self, answers: dict | None = None, extra_data: set[int] | None = None) -> None:
        self.answers = {address: list(replies) for address, replies in (answers or {}).items()}
        self.extra_data = extra_data or set()
        self.pings: list[tuple[int, bool]] = []
        self.purged: list[int] = []
        self.last: int | None = None

    def send_ping(self, address: int, *, purge_response: bool = False) -> None:
        self.pings.append((address, purge_response))
        self.last = address

    def recv_frame(self):
        replies = self.answers.get(self.last)
        if replies:
            return replies.pop(0)
        return RecvTimeout()

    def purge_frames(self) -> bool:
        self.purged.append(self.last)
        return self.last in self.extra_data

    def directed_pings(self, address: int) -> int:
        return sum(1 for a, purge in self.pings if a == address and not purge)


def test_scan_classifies_every_address() -> None:
    bus = ScanBus(answers={5: [ACK], 17: [RecvInvalid("garbled")], 42: [ACK]}, extra_data={42})
    master = BusMaster(bus, settings=BusSettings(max_search_retry=0))

    report = master.scan_primary_range()

    assert report.found == [5]
    assert report.collisions == [17, 42]
    assert not report.cancelled
    assert 17 in bus.purged


def test_scan_initializes_slaves_then_sweeps_ascending() -> None:
    bus = ScanBus()
    master = BusMaster(bus, settings=BusSettings(max_search_retry=0))

    master.scan_primary_range()

    assert bus.pings[:2] == [(NETWORK_LAYER, True), (BROADCAST_NOREPLY, True)]
    assert [a for a, _ in bus.pings[2:]] == list(range(MAX_PRIMARY_SLAVES + 1))


def test_timeouts_are_retried_up_to_max_search_retry() -> None:
    bus = ScanBus(answers={9: [RecvTimeout(), RecvTimeout(), ACK]})
    master = BusMaster(bus, settings=BusSettings(max_search_retry=2))

    report = master.scan_primary_range()

    assert report.found == [9]
    assert bus.directed_pings(9) == 3
    assert bus.directed_pings(10) == 3


def test_answer_ends_retry_loop_early() -> None:
    bus = ScanBus(answers={3: [RecvInvalid("garbled"), ACK]})
    master = BusMaster(bus, settings=BusSettings(max_search_retry=3))

    report = master.scan_primary_range()

    assert report.collisions == [3]
    assert report.found == []
    assert bus.directed_pings(3) == 1


def test_unexpected_frame_type_is_a_collision() -> None:
    bus = ScanBus(answers={8: [RecvOk(Frame(type=FrameType.SHORT, control=0x08, address=8))]})
    master = BusMaster(bus, settings=BusSettings(max_search_retry=0))

    report = master.scan_primary_range()

    assert report.collisions == [8]
    assert report.found == []


def test_line_error_aborts_the_sweep() -> None:
    bus = ScanBus(answers={1: [ACK], 3: [RecvError("device disconnected")]})
    master = BusMaster(bus, settings=BusSettings(max_search_retry=0))

    with pytest.raises(TransportError):
        master.scan_primary_range()

    assert max(a for a, purge in bus.pings if not purge) == 3


def test_init_failure_aborts_before_sweep() -> None:
    class BrokenBus(ScanBus):
        def send_ping(self, address: int, *, purge_response: bool = False) -> None:
            raise TransportSendError("write failed")

    bus = BrokenBus()
    with pytest.raises(TransportSendError):
        BusMaster(bus).scan_primary_range()


def test_cancelled_sweep_keeps_partial_discoveries() -> None:
    token = CancellationToken()

    class CancellingBus(ScanBus):
        def recv_frame(self):
            result = super().recv_frame()
            if self.last == 29:
                token.cancel()
            return result

    bus = CancellingBus(answers={5: [ACK], 100: [ACK]})
    master = BusMaster(bus, settings=BusSettings(max_search_retry=0))

    report = master.scan_primary_range(cancel=token)

    assert report.cancelled
    assert report.found == [5]
    assert max(a for a, purge in bus.pings if not purge) == 29


def test_outcome_callback_skips_silent_addresses() -> None:
    bus = ScanBus(answers={5: [ACK], 6: [RecvInvalid("garbled")]})
    master = BusMaster(bus, settings=BusSettings(max_search_retry=0))
    seen: list[tuple[int, ScanStatus]] = []

    master.scan_primary_range(on_outcome=lambda address, status: seen.append((address, status)))

    assert seen == [(5, ScanStatus.FOUND), (6, ScanStatus.COLLISION)]
