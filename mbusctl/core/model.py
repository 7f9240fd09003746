"""Core data models used across transports, service, and CLI."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field

MAX_PRIMARY_SLAVES = 250
NETWORK_LAYER = 0xFD
BROADCAST_REPLY = 0xFE
BROADCAST_NOREPLY = 0xFF

SECONDARY_ADDRESS_LEN = 16
WILDCARD = "F"
FULL_WILDCARD_MASK = WILDCARD * SECONDARY_ADDRESS_LEN


class FrameType(enum.Enum):
    ACK = "ack"
    SHORT = "short"
    CONTROL = "control"
    LONG = "long"


@dataclass(frozen=True)
class Frame:
    type: FrameType
    control: int = 0
    address: int = 0
    ci: int = 0
    data: bytes = b""
    raw: bytes = b""

    def dump(self) -> str:
        """Multi-line diagnostic rendering for operator inspection."""
        lines = [f"type={self.type.value} length={len(self.raw)}"]
        if self.type is not FrameType.ACK:
            lines.append(f"control=0x{self.control:02X} address=0x{self.address:02X}")
        if self.type is FrameType.LONG or self.type is FrameType.CONTROL:
            lines.append(f"ci=0x{self.ci:02X}")
        for offset in range(0, len(self.raw), 16):
            chunk = self.raw[offset : offset + 16]
            lines.append(f"{offset:04x}  {chunk.hex(' ').upper()}")
        return "\n".join(lines)


ACK_FRAME = Frame(type=FrameType.ACK, raw=b"\xe5")


@dataclass(frozen=True)
class RecvOk:
    frame: Frame


@dataclass(frozen=True)
class RecvTimeout:
    pass


@dataclass(frozen=True)
class RecvInvalid:
    reason: str = ""


@dataclass(frozen=True)
class RecvError:
    message: str


RecvResult = RecvOk | RecvTimeout | RecvInvalid | RecvError


class SelectOutcome(enum.Enum):
    SINGLE = "single"
    COLLISION = "collision"
    NOTHING = "nothing"
    ERROR = "error"


class ScanStatus(enum.Enum):
    FOUND = "found"
    COLLISION = "collision"
    SILENT = "silent"


class ReassignStep(str, enum.Enum):
    INIT = "init"
    VERIFY_FREE = "verify-free"
    SELECT = "select"
    COMMIT = "commit"
    VERIFY_ACK = "verify-ack"


@dataclass(frozen=True)
class Device:
    secondary_address: str
    primary_address: int | None = None


@dataclass
class ProbeReport:
    devices: list[Device] = field(default_factory=list)
    cancelled: bool = False


@dataclass
class ScanReport:
    found: list[int] = field(default_factory=list)
    collisions: list[int] = field(default_factory=list)
    cancelled: bool = False


@dataclass(frozen=True)
class ReassignResult:
    source: int | str
    new_primary: int
    attempts: int
    device: Device | None = None


@dataclass(frozen=True)
class DataHeader:
    secondary_address: str
    access_number: int
    status: int


@dataclass(frozen=True)
class RequestResult:
    address: int
    frame: Frame
    header: DataHeader | None = None


@dataclass(frozen=True)
class SerialSettings:
    device: str
    baudrate: int = 2400
    parity: str = "even"
    timeout_s: float | None = None


@dataclass(frozen=True)
class BusSettings:
    max_search_retry: int = 1
    commit_attempts: int = 3
    registry_capacity: int = 250


@dataclass(frozen=True)
class Config:
    serial: SerialSettings
    bus: BusSettings = field(default_factory=BusSettings)
