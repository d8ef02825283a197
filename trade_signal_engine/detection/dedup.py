from __future__ import annotations

from collections import OrderedDict


class ProcessedSignatures:
    """Insertion-ordered signature set with FIFO eviction at capacity."""

    def __init__(self, capacity: int = 1000):
        if capacity < 1:
            raise ValueError("capacity must be positive")
        self.capacity = capacity
        self._sigs: OrderedDict[str, None] = OrderedDict()

    def __contains__(self, signature: object) -> bool:
        return signature in self._sigs

    def __len__(self) -> int:
        return len(self._sigs)

    def add(self, signature: str) -> bool:
        """Insert a signature; returns False if it was already present."""
        if signature in self._sigs:
            return False
        self._sigs[signature] = None
        while len(self._sigs) > self.capacity:
            self._sigs.popitem(last=False)
        return True

    def snapshot(self) -> list[str]:
        return list(self._sigs)
