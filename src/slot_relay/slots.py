"""Fixed-capacity pool of connection slots."""

from __future__ import annotations

import socket
from collections.abc import Iterator
from dataclasses import dataclass

from loguru import logger


@dataclass
class ConnectionSlot:
    """One reusable unit of capacity. ``handle`` is set iff ``occupied``."""

    index: int
    handle: socket.socket | None = None
    occupied: bool = False


class ConnectionSlotPool:
    """
    Arena of ``capacity`` slots addressed by index.

    Slots are created once and reused; allocation always picks the lowest free
    index. The pool is also the client registry: ``client_count`` is derived
    from occupancy so it can never drift from the slots themselves.
    """

    def __init__(self, capacity: int):
        if capacity <= 0:
            raise ValueError(f"capacity must be positive, got {capacity}")
        self.capacity = capacity
        self._slots: list[ConnectionSlot] = [
            ConnectionSlot(index=i) for i in range(capacity)
        ]
        self._occupied_count = 0

    def __repr__(self) -> str:
        return f"ConnectionSlotPool({self._occupied_count}/{self.capacity})"

    def __len__(self) -> int:
        return self.capacity

    def __iter__(self) -> Iterator[ConnectionSlot]:
        return iter(self._slots)

    @property
    def client_count(self) -> int:
        return self._occupied_count

    @property
    def is_full(self) -> bool:
        return self._occupied_count >= self.capacity

    def get(self, index: int) -> ConnectionSlot:
        return self._slots[index]

    def occupied_indices(self) -> list[int]:
        return [slot.index for slot in self._slots if slot.occupied]

    def allocate(self, handle: socket.socket) -> int | None:
        """Place ``handle`` in the lowest free slot; None when the pool is full."""
        for slot in self._slots:
            if not slot.occupied:
                slot.handle = handle
                slot.occupied = True
                self._occupied_count += 1
                return slot.index
        return None

    def release(self, index: int) -> socket.socket | None:
        """Free a slot and hand back the socket it held."""
        slot = self._slots[index]
        if not slot.occupied:
            logger.debug(f"Slot {index} released while already free")
            return None

        handle = slot.handle
        slot.handle = None
        slot.occupied = False
        self._occupied_count -= 1
        return handle
