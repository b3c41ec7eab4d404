"""Calibration run orchestration.

A run generates the full candidate matrix, evaluates this peer's slice of
candidate indices on a pool of worker threads, keeps the best candidates in a
shared :class:`~calibrator.optim.bests.TopN` and finally merges the peers'
rankings on the coordinator. The same code path serves a single process and
any number of peers; only the :class:`~calibrator.peers.PeerGroup` differs.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from functools import partial
from pathlib import Path
from typing import Any, List, Optional, Tuple

import numpy as np
from numpy.typing import NDArray

from .config import CalibrationConfig
from .eval import objective
from .optim.bests import BestEntry, TopN
from .optim.generators import generate
from .partition import IndexRange, peer_slice, thread_slices
from .peers import PeerGroup, PeerReport, SoloPeers, WireReport
from .settings import cores_number

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RunOptions:
    nthreads: int = field(default_factory=cores_number)
    work_dir: Path = Path(".")
    keep_files: bool = False
    strict: bool = False


@dataclass(frozen=True)
class CalibrationResult:
    config: CalibrationConfig
    values: NDArray[np.float64]
    bests: List[BestEntry]
    evaluated: int = 0
    failed: int = 0

    @property
    def best(self) -> Optional[BestEntry]:
        return self.bests[0] if self.bests else None

    def vector(self, entry: BestEntry) -> NDArray[np.float64]:
        """Parameter vector of a ranked candidate."""
        return self.values[entry.index]

    def as_dict(self) -> dict[str, Any]:
        names = [v.name for v in self.config.variables]
        return {
            "algorithm": self.config.algorithm.value,
            "nsimulations": int(self.values.shape[0]),
            "evaluated": self.evaluated,
            "failed": self.failed,
            "bests": [
                {
                    "index": e.index,
                    "error": e.value,
                    "parameters": dict(zip(names, map(float, self.vector(e)))),
                }
                for e in self.bests
            ],
        }


def _evaluate_range(
    config: CalibrationConfig,
    values: NDArray[np.float64],
    index_range: IndexRange,
    tracker: TopN,
    options: RunOptions,
    stop: Optional[threading.Event] = None,
) -> Tuple[int, int]:
    evaluated = failed = 0
    for i in range(*index_range):
        if stop is not None and stop.is_set():
            break
        try:
            res = objective(
                config,
                values[i],
                i,
                work_dir=options.work_dir,
                keep_files=options.keep_files,
                strict=options.strict,
            )
        except Exception:
            if stop is not None:
                stop.set()
            raise
        if not res.ok:
            failed += 1
            continue
        evaluated += 1
        tracker.offer(i, res.objective)
        logger.debug("candidate %d objective=%g", i, res.objective)
    return evaluated, failed


def run_slice(
    config: CalibrationConfig,
    values: NDArray[np.float64],
    rank: int,
    size: int,
    options: RunOptions,
) -> PeerReport:
    """Evaluate peer ``rank``'s slice of candidates on ``options.nthreads`` threads."""

    tracker = TopN(config.bests)
    own = peer_slice(int(values.shape[0]), rank, size)
    nthreads = max(1, int(options.nthreads))
    logger.info(
        "rank %d/%d: candidates [%d, %d) on %d thread(s)", rank, size, own[0], own[1], nthreads
    )
    if nthreads == 1:
        counts = [_evaluate_range(config, values, own, tracker, options)]
    else:
        # A failing thread stops the others at their next candidate.
        stop = threading.Event()
        with ThreadPoolExecutor(max_workers=nthreads, thread_name_prefix="calibrator") as pool:
            futures = [
                pool.submit(_evaluate_range, config, values, r, tracker, options, stop)
                for r in thread_slices(own, nthreads)
            ]
            counts = [f.result() for f in futures]
    return PeerReport(
        entries=tracker.entries(),
        evaluated=sum(c[0] for c in counts),
        failed=sum(c[1] for c in counts),
    )


def run_peer(
    config: CalibrationConfig, options: RunOptions, rank: int, size: int
) -> WireReport:
    """Entry point for a non-coordinator peer process."""

    values = generate(config)
    return run_slice(config, values, rank, size, options).to_wire()


def calibrate(
    config: CalibrationConfig,
    *,
    options: Optional[RunOptions] = None,
    peers: Optional[PeerGroup] = None,
) -> Optional[CalibrationResult]:
    """Run a calibration; returns the global result on the coordinator only."""

    opts = options or RunOptions()
    work_dir = Path(opts.work_dir).expanduser().resolve()
    work_dir.mkdir(parents=True, exist_ok=True)
    opts = RunOptions(
        nthreads=opts.nthreads, work_dir=work_dir, keep_files=opts.keep_files, strict=opts.strict
    )
    group: PeerGroup = peers if peers is not None else SoloPeers()

    values = generate(config)
    logger.info(
        "%s: %d candidates, %d variables, %d experiments, %d best(s)",
        config.algorithm.value,
        values.shape[0],
        config.nvariables,
        config.nexperiments,
        config.bests,
    )
    group.launch(partial(run_peer, config, opts))
    try:
        try:
            local = run_slice(config, values, group.rank, group.size, opts)
        except Exception as e:
            group.fail(f"{type(e).__name__}: {e}")
            raise
        merged = group.gather(local, config.bests)
    finally:
        group.close()
    if merged is None:
        return None
    logger.info("evaluated %d candidate(s), %d failed", merged.evaluated, merged.failed)
    return CalibrationResult(
        config=config,
        values=values,
        bests=merged.entries,
        evaluated=merged.evaluated,
        failed=merged.failed,
    )


__all__ = ["CalibrationResult", "RunOptions", "calibrate", "run_peer", "run_slice"]
