"""In-memory registry of devices discovered on the bus."""

from __future__ import annotations

import dataclasses
import logging
from collections.abc import Iterator

from mbusctl.core.model import Device

LOGGER = logging.getLogger(__name__)


class DeviceRegistry:
    """Ordered, deduplicated set of devices keyed by secondary address.

    Insertion order is discovery order. Entries are immutable `Device`
    values; a primary address update swaps the entry at the same position.
    """

    def __init__(self, capacity: int = 250) -> None:
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self.capacity = capacity
        self._devices: list[Device] = []
        self._index: dict[str, int] = {}

    def __len__(self) -> int:
        return len(self._devices)

    def __iter__(self) -> Iterator[Device]:
        return iter(tuple(self._devices))

    def __contains__(self, secondary_address: object) -> bool:
        return isinstance(secondary_address, str) and secondary_address.upper() in self._index

    def get(self, secondary_address: str) -> Device | None:
        position = self._index.get(secondary_address.upper())
        return None if position is None else self._devices[position]

    def devices(self) -> list[Device]:
        return list(self._devices)

    def add(self, secondary_address: str, primary_address: int | None = None) -> bool:
        """Register a device, returning False if it was already known or did not fit."""
        key = secondary_address.upper()
        if key in self._index:
            return False
        if len(self._devices) >= self.capacity:
            LOGGER.warning("device registry full (%d entries), dropping %s", self.capacity, key)
            return False
        self._index[key] = len(self._devices)
        self._devices.append(Device(secondary_address=key, primary_address=primary_address))
        return True

    def set_primary(self, secondary_address: str, primary_address: int) -> Device | None:
        position = self._index.get(secondary_address.upper())
        if position is None:
            return None
        updated = dataclasses.replace(self._devices[position], primary_address=primary_address)
        self._devices[position] = updated
        return updated

    def clear(self) -> None:
        self._devices.clear()
        self._index.clear()
