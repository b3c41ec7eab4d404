"""Objective evaluation for one candidate.

The objective value of a candidate is the plain sum of the costs reported by
the evaluator over every experiment. A candidate whose evaluation fails for
any experiment has no objective value.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from math import nan
from pathlib import Path
from typing import Optional, Sequence

from ..config import CalibrationConfig
from .process import ExperimentResult, RunStatus, run_experiment

logger = logging.getLogger(__name__)


class EvaluationError(RuntimeError):
    """Raised in strict mode when an experiment evaluation fails.

    ``result`` is the failed experiment when it was evaluated in this process;
    failures relayed from another peer carry only their message.
    """

    def __init__(
        self, result: Optional[ExperimentResult] = None, message: Optional[str] = None
    ) -> None:
        if message is None and result is not None:
            message = (
                f"candidate {result.simulation} experiment {result.experiment}: "
                f"{result.status.value} ({result.detail or 'no detail'})"
            )
        super().__init__(message or "evaluation failed")
        self.result = result

    def __reduce__(
        self,
    ) -> tuple[type["EvaluationError"], tuple[Optional[ExperimentResult], str]]:
        # Peer processes hand this back to the coordinator pickled.
        return (type(self), (self.result, str(self)))


@dataclass(frozen=True)
class CandidateResult:
    simulation: int
    objective: float = nan
    failure: Optional[ExperimentResult] = None

    @property
    def ok(self) -> bool:
        return self.failure is None


def objective(
    config: CalibrationConfig,
    values: Sequence[float],
    simulation: int,
    *,
    work_dir: Path,
    keep_files: bool = False,
    strict: bool = False,
) -> CandidateResult:
    """Sum the experiment costs of candidate ``simulation``.

    Stops at the first failed experiment, including an input file that cannot
    be written. In strict mode that failure raises
    :class:`EvaluationError`; otherwise it is returned on the result.
    """
    total = 0.0
    for j in range(config.nexperiments):
        try:
            res = run_experiment(
                config, values, simulation, j, work_dir=work_dir, keep_files=keep_files
            )
        except OSError as e:
            res = ExperimentResult(
                simulation, j, RunStatus.PROCESS_FAILED, detail=f"cannot write input: {e}"
            )
        if not res.ok:
            if strict:
                raise EvaluationError(res)
            logger.warning(
                "candidate %d experiment %d failed: %s %s",
                simulation,
                j,
                res.status.value,
                res.detail,
            )
            return CandidateResult(simulation, failure=res)
        total += res.cost
    return CandidateResult(simulation, objective=total)


__all__ = [
    "CandidateResult",
    "EvaluationError",
    "ExperimentResult",
    "RunStatus",
    "objective",
    "run_experiment",
]
