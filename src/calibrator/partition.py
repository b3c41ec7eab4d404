"""Even splitting of candidate index ranges across workers.

The same rule is applied twice: across peer processes over the full range,
then across one peer's threads over that peer's slice. Worker ``k`` of ``W``
over a range of size ``R`` starting at ``start`` receives
``[start + k*R//W, start + (k+1)*R//W)``; remainders land on later workers.
"""

from __future__ import annotations

from typing import List, Tuple

IndexRange = Tuple[int, int]


def split_range(start: int, end: int, workers: int) -> List[IndexRange]:
    """Split ``[start, end)`` into ``workers`` contiguous half-open ranges."""

    if workers <= 0:
        raise ValueError("workers must be positive")
    if end < start:
        raise ValueError("end must not precede start")
    size = end - start
    bounds = [start + k * size // workers for k in range(workers + 1)]
    return [(bounds[k], bounds[k + 1]) for k in range(workers)]


def peer_slice(nsimulations: int, rank: int, size: int) -> IndexRange:
    """Slice of ``[0, nsimulations)`` owned by peer ``rank`` of ``size``."""

    if not 0 <= rank < size:
        raise ValueError(f"rank {rank} outside [0, {size})")
    return split_range(0, nsimulations, size)[rank]


def thread_slices(peer_range: IndexRange, nthreads: int) -> List[IndexRange]:
    """Per-thread ranges inside one peer's slice."""

    return split_range(peer_range[0], peer_range[1], nthreads)


__all__ = ["IndexRange", "peer_slice", "split_range", "thread_slices"]
