"""Primary and secondary address parsing and validation."""

from __future__ import annotations

import re

from mbusctl.core.errors import InvalidArgumentError
from mbusctl.core.model import BROADCAST_REPLY, MAX_PRIMARY_SLAVES, SECONDARY_ADDRESS_LEN

_SECONDARY_RE = re.compile(r"^[0-9A-Fa-f]{16}$")
_PRIMARY_RE = re.compile(r"^[0-9]{1,3}$")


def is_secondary_address(mask: str) -> bool:
    return bool(_SECONDARY_RE.match(mask))


def normalize_mask(mask: str) -> str:
    mask = mask.strip()
    if not is_secondary_address(mask):
        raise InvalidArgumentError(
            f"Malformed secondary address mask '{mask}', must be a {SECONDARY_ADDRESS_LEN} char hex number."
        )
    return mask.upper()


def _check_range(address: int, low: int, high: int, *, context: str) -> int:
    if not low <= address <= high:
        raise InvalidArgumentError(f"Invalid {context} {address}, allowed {low}-{high}.")
    return address


def parse_primary(value: int | str, *, low: int = 0, high: int = MAX_PRIMARY_SLAVES, context: str = "primary address") -> int:
    if isinstance(value, str):
        text = value.strip()
        if not _PRIMARY_RE.match(text):
            raise InvalidArgumentError(f"Invalid {context} '{value}', expected a number {low}-{high}.")
        value = int(text)
    return _check_range(value, low, high, context=context)


def parse_source(value: int | str) -> int | str:
    """Resolve a reassignment source to a primary address or a normalized mask."""
    if isinstance(value, str) and len(value.strip()) == SECONDARY_ADDRESS_LEN:
        return normalize_mask(value)
    try:
        return parse_primary(value)
    except InvalidArgumentError:
        raise InvalidArgumentError(
            f"Invalid address '{value}', neither a secondary address nor a primary address (0-{MAX_PRIMARY_SLAVES})."
        ) from None


def parse_new_primary(value: int | str) -> int:
    return parse_primary(value, low=1, high=MAX_PRIMARY_SLAVES, context="new primary address")


def parse_request_address(value: int | str) -> int | str:
    """Resolve a request target: a secondary mask, a slave address, or the reply broadcast."""
    if isinstance(value, str) and len(value.strip()) == SECONDARY_ADDRESS_LEN:
        return normalize_mask(value)
    address = parse_primary(value, high=BROADCAST_REPLY, context="address")
    if MAX_PRIMARY_SLAVES < address < BROADCAST_REPLY:
        raise InvalidArgumentError(f"Address {address} is reserved, use 0-{MAX_PRIMARY_SLAVES} or {BROADCAST_REPLY}.")
    return address
