from __future__ import annotations

import itertools
import random
import threading

import pytest

from calibrator.optim.bests import BestEntry, TopN, merge_bests


def _values(tracker: TopN) -> list[float]:
    return [e.value for e in tracker.entries()]


@pytest.mark.parametrize(
    "order", list(itertools.permutations([5.0, 3.0, 8.0, 1.0, 9.0, 2.0]))[::37]
)
def test_top3_independent_of_insertion_order(order: tuple[float, ...]) -> None:
    tracker = TopN(3)
    for idx, value in enumerate(order):
        tracker.offer(idx, value)
    assert _values(tracker) == [1.0, 2.0, 3.0]
    for entry in tracker.entries():
        assert order[entry.index] == entry.value


def test_full_tracker_rejects_not_strictly_better() -> None:
    tracker = TopN(2)
    assert tracker.offer(0, 1.0)
    assert tracker.offer(1, 2.0)
    assert not tracker.offer(2, 2.0)
    assert not tracker.offer(3, 5.0)
    assert tracker.offer(4, 1.5)
    assert tracker.entries() == [BestEntry(1.0, 0), BestEntry(1.5, 4)]


def test_capacity_must_be_positive() -> None:
    with pytest.raises(ValueError):
        TopN(0)


def test_concurrent_offers_keep_global_best() -> None:
    rng = random.Random(3)
    values = [rng.random() for _ in range(4000)]
    tracker = TopN(10)

    def worker(lo: int, hi: int) -> None:
        for i in range(lo, hi):
            tracker.offer(i, values[i])

    threads = [threading.Thread(target=worker, args=(k * 500, (k + 1) * 500)) for k in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    expected = sorted((v, i) for i, v in enumerate(values))[:10]
    assert [(e.value, e.index) for e in tracker.entries()] == expected


def test_merge_two_local_lists() -> None:
    left = [BestEntry(0.1, 1), BestEntry(0.4, 2)]
    right = [BestEntry(0.2, 5), BestEntry(0.5, 6)]
    merged = merge_bests(left, right, 3)
    assert [(e.index, e.value) for e in merged] == [(1, 0.1), (5, 0.2), (2, 0.4)]


def test_merge_with_empty_and_short_lists() -> None:
    left = [BestEntry(0.3, 7)]
    assert merge_bests(left, [], 3) == left
    assert merge_bests([], left, 3) == left
    assert merge_bests([], [], 3) == []