"""Candidate parameter matrices.

Each generator returns an ``(nsimulations, nvariables)`` float array whose
row ``i`` is the parameter vector of candidate ``i``. The array is built once
before any evaluation and handed out read-only.
"""

from __future__ import annotations

import logging
from typing import Any, List, Sequence

import numpy as np
from numpy.typing import NDArray

from ..config import Algorithm, CalibrationConfig, Variable

logger = logging.getLogger(__name__)


def sweep_levels(index: int, counts: Sequence[int]) -> List[int]:
    """Decode a candidate index into per-variable sweep levels.

    Mixed-radix decomposition with ``counts`` as radices; variable 0 varies
    fastest.
    """
    levels: List[int] = []
    k = int(index)
    for n in counts:
        levels.append(k % n)
        k //= n
    return levels


def sweep_matrix(variables: Sequence[Variable]) -> NDArray[np.float64]:
    """Enumerate every combination of discrete levels exactly once."""

    counts = [int(v.sweeps or 0) for v in variables]
    if any(n <= 0 for n in counts):
        raise ValueError("sweep mode requires a positive sweeps number for every variable")
    total = int(np.prod(counts, dtype=np.int64)) if counts else 0
    out = np.empty((total, len(variables)), dtype=float)
    for i in range(total):
        for j, (var, level) in enumerate(zip(variables, sweep_levels(i, counts))):
            value = var.minimum
            if counts[j] > 1:
                value += level * (var.maximum - var.minimum) / (counts[j] - 1)
            out[i, j] = value
    return out


def monte_carlo_matrix(
    variables: Sequence[Variable], nsimulations: int, *, seed: int
) -> NDArray[np.float64]:
    """Uniform draws in ``[minimum, maximum)`` from a seeded generator.

    Draws are taken row by row (candidate-major) so the same seed and sample
    count always produce the same matrix.
    """
    if nsimulations < 0:
        raise ValueError("nsimulations must be non-negative")
    rng = np.random.default_rng(seed)
    lo = np.asarray([v.minimum for v in variables], dtype=float)
    hi = np.asarray([v.maximum for v in variables], dtype=float)
    u = rng.random((int(nsimulations), len(variables)))
    return lo + u * (hi - lo)


def genetic_matrix(variables: Sequence[Variable], **_: Any) -> NDArray[np.float64]:
    # TODO: implement the genetic algorithm (selection, crossover and mutation
    # over ``iterations`` generations); until then it produces no candidates.
    logger.warning("genetic algorithm is not implemented; no candidates generated")
    return np.empty((0, len(variables)), dtype=float)


def generate(config: CalibrationConfig) -> NDArray[np.float64]:
    """Build the read-only candidate matrix for ``config``."""

    if config.algorithm is Algorithm.SWEEP:
        values = sweep_matrix(config.variables)
    elif config.algorithm is Algorithm.MONTE_CARLO:
        values = monte_carlo_matrix(config.variables, config.nsimulations, seed=config.seed)
    elif config.algorithm is Algorithm.GENETIC:
        values = genetic_matrix(config.variables, iterations=config.iterations)
    else:  # pragma: no cover - exhaustive enum
        raise ValueError(f"Unknown algorithm: {config.algorithm}")
    values.setflags(write=False)
    return values


__all__ = [
    "generate",
    "genetic_matrix",
    "monte_carlo_matrix",
    "sweep_levels",
    "sweep_matrix",
]
