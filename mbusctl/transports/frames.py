"""M-Bus (EN 13757-2) link layer frame encoding and decoding.

Four frame shapes exist on the wire:

* single character ACK: ``E5``
* short frame: ``10 C A CS 16``
* control frame: ``68 03 03 68 C A CI CS 16``
* long frame: ``68 L L 68 C A CI data... CS 16``

The checksum is the arithmetic sum of C, A, CI and data, modulo 256.
"""

from __future__ import annotations

from collections.abc import Callable

from mbusctl.core.errors import FrameError
from mbusctl.core.model import ACK_FRAME, NETWORK_LAYER, DataHeader, Frame, FrameType

ACK = 0xE5
START_SHORT = 0x10
START_LONG = 0x68
STOP = 0x16

C_SND_NKE = 0x40
C_SND_UD = 0x53
C_REQ_UD2 = 0x5B
C_RSP_UD = 0x08

CI_DATA_SEND = 0x51
CI_SELECT = 0x52
CI_RSP_VARIABLE = 0x72

DIF_8BIT_INT = 0x01
VIF_BUS_ADDRESS = 0x7A

_VARIABLE_HEADER_LEN = 12


def checksum(data: bytes) -> int:
    return sum(data) & 0xFF


def encode_short(control: int, address: int) -> bytes:
    body = bytes((control, address))
    return bytes((START_SHORT, *body, checksum(body), STOP))


def encode_long(control: int, address: int, ci: int, data: bytes = b"") -> bytes:
    body = bytes((control, address, ci)) + data
    if len(body) > 0xFF:
        raise ValueError(f"long frame payload too large ({len(data)} bytes)")
    length = len(body)
    return bytes((START_LONG, length, length, START_LONG)) + body + bytes((checksum(body), STOP))


def encode_ping(address: int) -> bytes:
    return encode_short(C_SND_NKE, address)


def encode_request(address: int) -> bytes:
    return encode_short(C_REQ_UD2, address)


def encode_set_primary_address(current: int, new: int) -> bytes:
    return encode_long(C_SND_UD, current, CI_DATA_SEND, bytes((DIF_8BIT_INT, VIF_BUS_ADDRESS, new)))


def pack_secondary_mask(mask: str) -> bytes:
    """Pack a 16 char mask into the 8 byte select payload.

    Identification number and manufacturer are sent least significant byte
    first; a wildcard digit ``F`` packs to a wildcard nibble.
    """
    return (
        bytes.fromhex(mask[0:8])[::-1]
        + bytes.fromhex(mask[8:12])[::-1]
        + bytes.fromhex(mask[12:16])
    )


def encode_select(mask: str) -> bytes:
    return encode_long(C_SND_UD, NETWORK_LAYER, CI_SELECT, pack_secondary_mask(mask))


def _read_exact(read: Callable[[int], bytes], size: int) -> bytes:
    # A short read only means the timeout elapsed mid-frame; the frame is
    # truncated once a read returns nothing at all.
    data = bytearray()
    while len(data) < size:
        chunk = read(size - len(data))
        if not chunk:
            raise FrameError(f"truncated frame, expected {size} bytes, got {len(data)}")
        data.extend(chunk)
    return bytes(data)


def read_frame(read: Callable[[int], bytes]) -> Frame | None:
    """Read one frame using `read(size)`, returning None if nothing arrived.

    `read` may return fewer bytes than asked for, as pyserial does when its
    timeout elapses; reading continues until the frame is complete or a
    read comes back empty.

    Raises FrameError when the bytes received do not form a valid frame,
    which on a multi-drop bus usually means two slaves answered at once.
    """
    first = read(1)
    if not first:
        return None

    start = first[0]
    if start == ACK:
        return ACK_FRAME

    if start == START_SHORT:
        rest = _read_exact(read, 4)
        control, address, cs, stop = rest
        if stop != STOP:
            raise FrameError("short frame missing stop byte")
        if checksum(rest[:2]) != cs:
            raise FrameError("short frame checksum mismatch")
        return Frame(type=FrameType.SHORT, control=control, address=address, raw=first + rest)

    if start == START_LONG:
        head = _read_exact(read, 3)
        length, length_copy, start_copy = head
        if length != length_copy or start_copy != START_LONG:
            raise FrameError("malformed long frame header")
        if length < 3:
            raise FrameError(f"long frame length {length} too short")
        rest = _read_exact(read, length + 2)
        body, cs, stop = rest[:length], rest[length], rest[length + 1]
        if stop != STOP:
            raise FrameError("long frame missing stop byte")
        if checksum(body) != cs:
            raise FrameError("long frame checksum mismatch")
        return Frame(
            type=FrameType.CONTROL if length == 3 else FrameType.LONG,
            control=body[0],
            address=body[1],
            ci=body[2],
            data=bytes(body[3:]),
            raw=first + head + rest,
        )

    raise FrameError(f"unexpected start byte 0x{start:02X}")


def decode_data_header(frame: Frame) -> DataHeader:
    """Decode the fixed header of a variable data response (CI 0x72)."""
    if frame.type is not FrameType.LONG or frame.ci != CI_RSP_VARIABLE:
        raise FrameError(f"not a variable data response (type={frame.type.value}, ci=0x{frame.ci:02X})")
    if len(frame.data) < _VARIABLE_HEADER_LEN:
        raise FrameError(f"variable data header truncated ({len(frame.data)} bytes)")
    data = frame.data
    secondary = (
        data[0:4][::-1].hex()
        + data[4:6][::-1].hex()
        + data[6:8].hex()
    ).upper()
    return DataHeader(secondary_address=secondary, access_number=data[8], status=data[9])


def secondary_address_from_frame(frame: Frame) -> str:
    return decode_data_header(frame).secondary_address
