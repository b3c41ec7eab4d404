"""Worker topologies and the cross-process merge of best candidates.

A run is split across ``size`` cooperating peers, each identified by its
``rank``. Every peer evaluates its own slice of candidates and produces a
:class:`PeerReport`; the coordinator (rank 0) folds the other peers' reports
into its own in ascending rank order and is the only peer left holding a
result.

Three topologies share that contract:

- :class:`SoloPeers`: a single process (threads only);
- :class:`LocalPeers`: peer processes on this machine, launched through a
  spawn-context process pool, whose return values are their messages;
- :class:`MpiPeers`: one process per MPI rank, messages sent over
  ``mpi4py``'s ``COMM_WORLD``.
"""

from __future__ import annotations

import logging
import multiprocessing
import os
from concurrent.futures import Future, ProcessPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Callable, List, Optional, Protocol, Sequence, Tuple

from .eval import EvaluationError
from .optim.bests import BestEntry, merge_bests

logger = logging.getLogger(__name__)

BESTS_TAG = 1

WireReport = Tuple[List[Tuple[float, int]], int, int, Optional[str]]

# Environment variables set by common MPI launchers (Open MPI, MPICH/Hydra).
_MPI_SIZE_VARS: Tuple[str, ...] = ("OMPI_COMM_WORLD_SIZE", "PMI_SIZE")


class PeerError(RuntimeError):
    """Raised when a peer topology cannot be established."""


@dataclass
class PeerReport:
    """Message a peer hands to the coordinator once its slice is done.

    ``error`` is set instead of results when the peer aborted its slice.
    """

    entries: List[BestEntry] = field(default_factory=list)
    evaluated: int = 0
    failed: int = 0
    error: Optional[str] = None

    def to_wire(self) -> WireReport:
        return (
            [(float(v), int(i)) for v, i in self.entries],
            self.evaluated,
            self.failed,
            self.error,
        )

    @classmethod
    def from_wire(cls, payload: Sequence[Any]) -> "PeerReport":
        raw, evaluated, failed, error = payload
        return cls(
            [BestEntry(float(v), int(i)) for v, i in raw],
            int(evaluated),
            int(failed),
            None if error is None else str(error),
        )


def combine(reports: Sequence[PeerReport], nbests: int) -> PeerReport:
    """Fold peer reports, in the given order, into one global report.

    Raises :class:`EvaluationError` if any peer reported an aborted slice.
    """

    for rank, rep in enumerate(reports):
        if rep.error is not None:
            raise EvaluationError(message=f"peer {rank} aborted: {rep.error}")
    merged = PeerReport()
    for rep in reports:
        merged.entries = merge_bests(merged.entries, rep.entries, nbests)
        merged.evaluated += rep.evaluated
        merged.failed += rep.failed
    return merged


PeerTask = Callable[[int, int], WireReport]


class PeerGroup(Protocol):
    rank: int
    size: int

    def launch(self, task: PeerTask) -> None: ...

    def gather(self, report: PeerReport, nbests: int) -> Optional[PeerReport]: ...

    def fail(self, reason: str) -> None: ...

    def close(self) -> None: ...


class SoloPeers:
    rank = 0
    size = 1

    def launch(self, task: PeerTask) -> None:
        return None

    def gather(self, report: PeerReport, nbests: int) -> Optional[PeerReport]:
        return combine([report], nbests)

    def fail(self, reason: str) -> None:
        return None

    def close(self) -> None:
        return None


class LocalPeers:
    """``size`` peers on the local machine; the caller acts as rank 0.

    ``launch`` starts ranks ``1..size-1`` in spawned processes; each returns
    its report (in wire form) as the result of its task.
    """

    rank = 0

    def __init__(self, size: int) -> None:
        if size < 1:
            raise PeerError("peer count must be positive")
        self.size = int(size)
        self._pool: Optional[ProcessPoolExecutor] = None
        self._futures: List[Future[WireReport]] = []

    def launch(self, task: PeerTask) -> None:
        if self.size <= 1:
            return
        ctx = multiprocessing.get_context("spawn")
        self._pool = ProcessPoolExecutor(max_workers=self.size - 1, mp_context=ctx)
        self._futures = [self._pool.submit(task, r, self.size) for r in range(1, self.size)]
        logger.info("launched %d local peer processes", self.size - 1)

    def gather(self, report: PeerReport, nbests: int) -> Optional[PeerReport]:
        reports = [report]
        for fut in self._futures:
            reports.append(PeerReport.from_wire(fut.result()))
        return combine(reports, nbests)

    def fail(self, reason: str) -> None:
        # Ranks still running are cancelled or awaited by close().
        logger.debug("local peers abandoned: %s", reason)

    def close(self) -> None:
        if self._pool is not None:
            self._pool.shutdown(wait=True, cancel_futures=True)
            self._pool = None
        self._futures = []


class MpiPeers:
    """One peer per MPI rank; rank 0 receives and merges the others."""

    def __init__(self, comm: Any = None) -> None:
        if comm is None:
            try:
                from mpi4py import MPI
            except ImportError as e:
                raise PeerError(
                    "mpi4py is not installed; install '.[mpi]' to run across MPI ranks"
                ) from e
            comm = MPI.COMM_WORLD
        self.comm = comm
        self.rank = int(comm.Get_rank())
        self.size = int(comm.Get_size())

    def launch(self, task: PeerTask) -> None:
        return None

    def gather(self, report: PeerReport, nbests: int) -> Optional[PeerReport]:
        if self.rank != 0:
            self.comm.send(report.to_wire(), dest=0, tag=BESTS_TAG)
            return None
        reports = [report]
        for source in range(1, self.size):
            reports.append(PeerReport.from_wire(self.comm.recv(source=source, tag=BESTS_TAG)))
        return combine(reports, nbests)

    def fail(self, reason: str) -> None:
        """Abort this rank's part of the gather without leaving rank 0 waiting.

        A non-coordinator sends an error report in place of its results; the
        coordinator still drains every other rank's message before raising.
        """
        if self.rank != 0:
            self.comm.send(PeerReport(error=reason).to_wire(), dest=0, tag=BESTS_TAG)
            return
        for source in range(1, self.size):
            self.comm.recv(source=source, tag=BESTS_TAG)

    def close(self) -> None:
        return None


def mpi_launched() -> bool:
    """Whether the process appears to run under a multi-rank MPI launcher."""
    for name in _MPI_SIZE_VARS:
        raw = os.getenv(name)
        if raw and raw.strip().isdigit() and int(raw) > 1:
            return True
    return False


def detect_peers(*, mpi: Optional[bool] = None, local: int = 1) -> PeerGroup:
    """Pick the topology for a run.

    ``mpi=None`` enables MPI only when an MPI launcher is detected.
    """
    use_mpi = mpi_launched() if mpi is None else bool(mpi)
    if use_mpi and local > 1:
        raise PeerError("--peers cannot be combined with MPI execution")
    if use_mpi:
        return MpiPeers()
    if local > 1:
        return LocalPeers(local)
    return SoloPeers()


__all__ = [
    "BESTS_TAG",
    "LocalPeers",
    "MpiPeers",
    "PeerError",
    "PeerGroup",
    "PeerReport",
    "SoloPeers",
    "WireReport",
    "combine",
    "detect_peers",
    "mpi_launched",
]
