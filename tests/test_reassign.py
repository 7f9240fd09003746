from __future__ import annotations

import logging

import pytest

from mbusctl.core.errors import (
    AddressInUseError,
    InvalidArgumentError,
    NoReplyError,
    ProtocolViolationError,
    ReassignError,
    ReassignTransportError,
    SelectionCollisionError,
    TransportError,
    TransportSendError,
)
from mbusctl.core.model import (
    ACK_FRAME,
    NETWORK_LAYER,
    Frame,
    FrameType,
    ReassignStep,
    RecvInvalid,
    RecvOk,
    RecvTimeout,
    SelectOutcome,
)
from mbusctl.core.service import BusMaster

ACK = RecvOk(ACK_FRAME)
DEVICE = "12345678ABCD0107"


class ReassignBus:
    def __init__(
        self,
        *,
        ping_reply=RecvTimeout(),
        select=SelectOutcome.SINGLE,
        commit_replies=(),
    ) -> None:
        self.calls: list[tuple] = []
        self.ping_reply = ping_reply
        self.select_outcome = select
        self.commit_replies = list(commit_replies)
        self.pending: str | None = None

    def send_ping(self, address: int, *, purge_response: bool = False) -> None:
        self.calls.append(("ping", address, purge_response))
        self.pending = None if purge_response else "ping"

    def recv_frame(self):
        if self.pending == "ping":
            return self.ping_reply
        if self.pending == "commit" and self.commit_replies:
            return self.commit_replies.pop(0)
        return RecvTimeout()

    def purge_frames(self) -> bool:
        return False

    def select_secondary(self, mask: str) -> SelectOutcome:
        self.calls.append(("select", mask))
        return self.select_outcome

    def send_set_primary_address(self, current: int, new: int) -> None:
        self.calls.append(("set", current, new))
        self.pending = "commit"

    def names(self) -> list[str]:
        return [call[0] for call in self.calls]


def test_primary_source_skips_selection() -> None:
    bus = ReassignBus(commit_replies=[ACK])
    result = BusMaster(bus).reassign(5, 17)

    assert result.new_primary == 17
    assert result.attempts == 1
    assert "select" not in bus.names()
    assert bus.calls[-1] == ("set", 5, 17)
    assert ("ping", 17, False) in bus.calls


def test_secondary_source_is_selected_and_registry_updated() -> None:
    bus = ReassignBus(commit_replies=[ACK])
    master = BusMaster(bus)
    master.registry.add(DEVICE)

    result = master.reassign(DEVICE.lower(), "17")

    assert ("select", DEVICE) in bus.calls
    assert bus.calls[-1] == ("set", NETWORK_LAYER, 17)
    assert result.device is not None
    assert master.registry.get(DEVICE).primary_address == 17


def test_occupied_target_aborts_before_select_or_commit() -> None:
    bus = ReassignBus(ping_reply=ACK, commit_replies=[ACK])
    master = BusMaster(bus)

    with pytest.raises(AddressInUseError) as exc:
        master.reassign(DEVICE, 17)

    assert exc.value.step is ReassignStep.VERIFY_FREE
    assert "select" not in bus.names()
    assert "set" not in bus.names()


def test_commit_succeeds_on_third_attempt() -> None:
    bus = ReassignBus(commit_replies=[RecvTimeout(), RecvTimeout(), ACK])
    result = BusMaster(bus).reassign(5, 17)

    assert result.attempts == 3
    assert bus.names().count("set") == 3


def test_commit_without_reply_fails_after_three_attempts() -> None:
    bus = ReassignBus(commit_replies=[RecvTimeout(), RecvTimeout(), RecvTimeout(), ACK])
    master = BusMaster(bus)
    master.registry.add(DEVICE)

    with pytest.raises(NoReplyError) as exc:
        master.reassign(DEVICE, 17)

    assert exc.value.step is ReassignStep.COMMIT
    assert bus.names().count("set") == 3
    assert master.registry.get(DEVICE).primary_address is None


def test_non_ack_reply_leaves_registry_untouched(caplog: pytest.LogCaptureFixture) -> None:
    reply = Frame(type=FrameType.SHORT, control=0x08, address=NETWORK_LAYER, raw=bytes.fromhex("1008fd0516"))
    bus = ReassignBus(commit_replies=[RecvOk(reply)])
    master = BusMaster(bus)
    master.registry.add(DEVICE)

    with caplog.at_level(logging.ERROR):
        with pytest.raises(ProtocolViolationError) as exc:
            master.reassign(DEVICE, 17)

    assert exc.value.step is ReassignStep.VERIFY_ACK
    assert exc.value.frame == reply
    assert master.registry.get(DEVICE).primary_address is None
    assert "expected ACK" in caplog.text
    assert "10 08 FD 05 16" in caplog.text


def test_garbled_reply_is_a_protocol_violation() -> None:
    bus = ReassignBus(commit_replies=[RecvInvalid("checksum")])

    with pytest.raises(ProtocolViolationError) as exc:
        BusMaster(bus).reassign(5, 17)

    assert exc.value.frame is None
    assert bus.names().count("set") == 1


def test_ambiguous_mask_aborts_in_select_step() -> None:
    bus = ReassignBus(select=SelectOutcome.COLLISION, commit_replies=[ACK])

    with pytest.raises(ReassignError) as exc:
        BusMaster(bus).reassign("12345678FFFFFFFF", 17)

    assert exc.value.step is ReassignStep.SELECT
    assert isinstance(exc.value.__cause__, SelectionCollisionError)
    assert "set" not in bus.names()


def test_send_failure_reports_commit_step() -> None:
    class BrokenBus(ReassignBus):
        def send_set_primary_address(self, current: int, new: int) -> None:
            raise TransportSendError("write failed")

    with pytest.raises(ReassignTransportError) as exc:
        BusMaster(BrokenBus()).reassign(5, 17)

    assert isinstance(exc.value, TransportError)
    assert exc.value.step is ReassignStep.COMMIT


@pytest.mark.parametrize(
    ("source", "new_primary"),
    [
        (5, 0),
        (5, 251),
        (251, 17),
        ("FFFFFFFFFFFFFFF", 17),
        ("12345678ABCD01GZ", 17),
        ("not-an-address", 17),
    ],
)
def test_invalid_arguments_rejected_before_bus_io(source, new_primary) -> None:
    bus = ReassignBus()

    with pytest.raises(InvalidArgumentError):
        BusMaster(bus).reassign(source, new_primary)

    assert bus.calls == []
