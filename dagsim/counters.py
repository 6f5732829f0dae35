"""Integer tallies keyed by miner id, epoch or any other hashable key."""

from __future__ import annotations

from collections import Counter
from collections.abc import Hashable, Mapping


class CountMap(Counter):
    """A tally of integer counts where missing keys read as zero."""

    def incur(self, key: Hashable, amount: int) -> None:
        """Add ``amount`` to the count stored under ``key``."""
        self[key] = self[key] + amount

    def merge(self, other: Mapping[Hashable, int]) -> None:
        """Add every count of ``other`` into this map."""
        for key, amount in other.items():
            self.incur(key, amount)

    def total(self) -> int:
        """Sum of all counts."""
        return sum(self.values())