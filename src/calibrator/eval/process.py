"""External simulator/evaluator invocation for one (candidate, experiment) pair.

Invocation contract:

- simulator: ``<simulator> <in1> <in2> <in3> <in4> <output>``; at least four
  input slots are always passed, unused ones as empty strings;
- evaluator: ``<evaluator> <output> <reference> <result>``; it writes the
  cost as a decimal number on the first line of ``<result>``.

Both calls are synchronous. The result file is read whatever the exit codes
were; failures are reported through :class:`ExperimentResult` instead of
being raised.
"""

from __future__ import annotations

import logging
import subprocess
from dataclasses import dataclass
from enum import Enum
from math import isnan, nan
from pathlib import Path
from typing import List, Optional, Sequence, Tuple

from ..config import CalibrationConfig
from .template import input_name, write_input

logger = logging.getLogger(__name__)

MIN_INPUT_SLOTS = 4


class RunStatus(str, Enum):
    OK = "ok"
    PROCESS_FAILED = "process_failed"
    MALFORMED_OUTPUT = "malformed_output"


@dataclass(frozen=True)
class ExperimentResult:
    simulation: int
    experiment: int
    status: RunStatus
    cost: float = nan
    detail: str = ""
    returncodes: Tuple[Optional[int], Optional[int]] = (None, None)

    @property
    def ok(self) -> bool:
        return self.status is RunStatus.OK


@dataclass(frozen=True)
class WorkFiles:
    """Names of the files produced for one work item."""

    inputs: Tuple[Path, ...]
    output: Path
    result: Path

    @classmethod
    def for_item(
        cls, work_dir: Path, ninputs: int, simulation: int, experiment: int
    ) -> "WorkFiles":
        return cls(
            inputs=tuple(
                work_dir / input_name(slot, simulation, experiment) for slot in range(ninputs)
            ),
            output=work_dir / f"output-{simulation}-{experiment}",
            result=work_dir / f"result-{simulation}-{experiment}",
        )

    def paths(self) -> List[Path]:
        return [*self.inputs, self.output, self.result]

    def remove(self) -> None:
        for p in self.paths():
            try:
                p.unlink()
            except OSError:
                pass


def simulator_argv(simulator: Sequence[str], files: WorkFiles) -> List[str]:
    slots = [str(p) for p in files.inputs]
    slots += [""] * max(0, MIN_INPUT_SLOTS - len(slots))
    return [*simulator, *slots, str(files.output)]


def evaluator_argv(evaluator: Sequence[str], files: WorkFiles, reference: Path) -> List[str]:
    return [*evaluator, str(files.output), str(reference), str(files.result)]


def _invoke(argv: Sequence[str], cwd: Path) -> Tuple[Optional[int], str]:
    """Run one child to completion; returns (exit code or None, detail)."""

    logger.debug("exec: %s", " ".join(argv))
    try:
        proc = subprocess.run(
            list(argv),
            cwd=str(cwd),
            stdin=subprocess.DEVNULL,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.PIPE,
            text=True,
            errors="replace",
            check=False,
        )
    except OSError as e:
        return None, f"{argv[0]}: {e}"
    stderr = (proc.stderr or "").strip()
    if stderr:
        logger.debug("%s stderr:\n%s", argv[0], stderr)
    if proc.returncode != 0:
        tail = stderr.splitlines()[-1:] or [""]
        logger.warning("%s exited with status %d %s", argv[0], proc.returncode, tail[0])
        return proc.returncode, f"{Path(argv[0]).name} exited with status {proc.returncode}"
    return 0, ""


def read_cost(path: Path) -> float:
    """Parse the first line of an evaluator result file as a float."""

    with path.open() as fh:
        line = fh.readline()
    value = float(line.strip())
    if isnan(value):
        raise ValueError("result is NaN")
    return value


def run_experiment(
    config: CalibrationConfig,
    values: Sequence[float],
    simulation: int,
    experiment: int,
    *,
    work_dir: Path,
    keep_files: bool = False,
) -> ExperimentResult:
    """Render inputs, run the simulator and evaluator, and read the cost.

    Raises ``OSError`` when an input file cannot be written; every other
    failure is returned as a non-OK :class:`ExperimentResult`.
    """
    exp = config.experiments[experiment]
    files = WorkFiles.for_item(work_dir, exp.ninputs, simulation, experiment)
    try:
        for template, path in zip(exp.templates, files.inputs):
            write_input(path, template, config.variables, values)
        sim_rc, sim_detail = _invoke(simulator_argv(config.simulator, files), work_dir)
        if sim_rc is None:
            return ExperimentResult(
                simulation, experiment, RunStatus.PROCESS_FAILED, detail=sim_detail
            )
        ev_rc, ev_detail = _invoke(evaluator_argv(config.evaluator, files, exp.name), work_dir)
        codes = (sim_rc, ev_rc)
        if ev_rc is None:
            return ExperimentResult(
                simulation,
                experiment,
                RunStatus.PROCESS_FAILED,
                detail=ev_detail,
                returncodes=codes,
            )
        try:
            cost = read_cost(files.result)
        except (OSError, ValueError) as e:
            failed = sim_rc != 0 or ev_rc != 0
            detail = "; ".join(d for d in (sim_detail, ev_detail, f"result: {e}") if d)
            status = RunStatus.PROCESS_FAILED if failed else RunStatus.MALFORMED_OUTPUT
            return ExperimentResult(
                simulation, experiment, status, detail=detail, returncodes=codes
            )
        return ExperimentResult(simulation, experiment, RunStatus.OK, cost=cost, returncodes=codes)
    finally:
        if not keep_files:
            files.remove()


__all__ = [
    "ExperimentResult",
    "MIN_INPUT_SLOTS",
    "RunStatus",
    "WorkFiles",
    "evaluator_argv",
    "read_cost",
    "run_experiment",
    "simulator_argv",
]
