"""Bounded best-candidate bookkeeping.

``TopN`` keeps the ``capacity`` lowest objective values seen so far, sorted
ascending, and accepts concurrent offers from worker threads. ``merge_bests``
combines two already-sorted lists, which is how per-process lists are folded
into a global ranking.
"""

from __future__ import annotations

import threading
from typing import List, NamedTuple, Sequence


class BestEntry(NamedTuple):
    value: float
    index: int


class TopN:
    """Fixed-capacity ascending list of ``(value, index)`` entries.

    ``offer`` is the only mutator and runs under a lock, so it is safe to call
    from any number of worker threads.
    """

    def __init__(self, capacity: int) -> None:
        if capacity <= 0:
            raise ValueError("capacity must be positive")
        self.capacity = int(capacity)
        self._entries: List[BestEntry] = []
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._entries)

    def offer(self, index: int, value: float) -> bool:
        """Insert ``(value, index)`` if it ranks among the best.

        Returns whether the entry was admitted. When full, only a value
        strictly lower than the current worst is admitted and the worst entry
        is evicted.
        """
        with self._lock:
            entries = self._entries
            full = len(entries) >= self.capacity
            if full and not value < entries[-1].value:
                return False
            if full:
                entries.pop()
            entries.append(BestEntry(float(value), int(index)))
            i = len(entries) - 1
            while i > 0 and entries[i].value < entries[i - 1].value:
                entries[i], entries[i - 1] = entries[i - 1], entries[i]
                i -= 1
            return True

    def entries(self) -> List[BestEntry]:
        """Snapshot of the current ranking, best first."""
        with self._lock:
            return list(self._entries)


def merge_bests(
    left: Sequence[BestEntry], right: Sequence[BestEntry], nbests: int
) -> List[BestEntry]:
    """Merge two ascending lists keeping the first ``nbests`` entries.

    Linear in ``len(left) + len(right)``. On equal values the entry from
    ``left`` comes first.
    """
    out: List[BestEntry] = []
    i = j = 0
    while len(out) < nbests and (i < len(left) or j < len(right)):
        if j >= len(right) or (i < len(left) and not right[j].value < left[i].value):
            out.append(BestEntry(float(left[i][0]), int(left[i][1])))
            i += 1
        else:
            out.append(BestEntry(float(right[j][0]), int(right[j][1])))
            j += 1
    return out


__all__ = ["BestEntry", "TopN", "merge_bests"]
