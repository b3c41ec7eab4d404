"""Template rendering for simulator input files.

Templates reference variables through two placeholder families, both
1-indexed:

- ``@variableK@`` is replaced by the name of variable ``K``;
- ``@valueK@`` is replaced by the candidate's value for variable ``K``,
  rendered with the variable's printf-style format.

Substitution runs for ``K = 1..nvariables`` in order, each pass working on the
output of the previous one.
"""

from __future__ import annotations

from pathlib import Path
from typing import Sequence

from ..config import TEXT_ENCODING, TEXT_ERRORS, Template, Variable


def variable_placeholder(k: int) -> str:
    return f"@variable{k}@"


def value_placeholder(k: int) -> str:
    return f"@value{k}@"


def render(text: str, variables: Sequence[Variable], values: Sequence[float]) -> str:
    """Return ``text`` with every placeholder of ``variables`` substituted."""

    if len(values) < len(variables):
        raise ValueError(
            f"parameter vector has {len(values)} values for {len(variables)} variables"
        )
    out = text
    for k, var in enumerate(variables, start=1):
        out = out.replace(variable_placeholder(k), var.name)
        out = out.replace(value_placeholder(k), var.render(float(values[k - 1])))
    return out


def input_name(slot: int, simulation: int, experiment: int) -> str:
    """Deterministic, collision-free input file name for one work item."""
    return f"input-{slot}-{simulation}-{experiment}"


def write_input(
    path: Path,
    template: Template,
    variables: Sequence[Variable],
    values: Sequence[float],
) -> Path:
    """Render ``template`` for one parameter vector into ``path``."""

    path.write_text(
        render(template.text, variables, values), encoding=TEXT_ENCODING, errors=TEXT_ERRORS
    )
    return path


__all__ = [
    "input_name",
    "render",
    "value_placeholder",
    "variable_placeholder",
    "write_input",
]
