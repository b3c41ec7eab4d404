"""Calibration configuration documents.

A configuration declares the external simulator and evaluator, the
experiments (reference data plus input templates) and the variables to
calibrate. Two encodings are accepted:

- XML (the historical format), root element ``calibrate``::

    <calibrate simulator="sim" evaluator="eval" algorithm="sweep" bests="3">
      <experiment name="ref1.dat" template1="in1.tpl" template2="in2.tpl"/>
      <variable name="alpha" minimum="0" maximum="1" format="%.3f" sweeps="5"/>
    </calibrate>

- JSON, selected by a ``.json`` suffix, with the same fields as keys and
  ``experiments``/``variables`` lists (experiment templates as a list).

Relative paths are resolved against the directory holding the document.
"""

from __future__ import annotations

import json
import shlex
import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from enum import Enum
from math import isfinite, prod
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

DEFAULT_FORMAT = "%le"
DEFAULT_SEED = 7007

# Templates are carried byte for byte; undecodable bytes survive a round trip.
TEXT_ENCODING = "utf-8"
TEXT_ERRORS = "surrogateescape"

ROOT_TAG = "calibrate"
EXPERIMENT_TAG = "experiment"
VARIABLE_TAG = "variable"


class ConfigError(ValueError):
    """Raised when a configuration document is malformed or inconsistent."""


class Algorithm(str, Enum):
    MONTE_CARLO = "monte-carlo"
    SWEEP = "sweep"
    GENETIC = "genetic"

    @classmethod
    def from_selector(cls, selector: Optional[str]) -> "Algorithm":
        """Map the document's ``algorithm`` attribute to an algorithm.

        Absent selects Monte Carlo, ``sweep`` selects Sweep and anything else
        selects the genetic algorithm.
        """
        if selector is None:
            return cls.MONTE_CARLO
        if selector == "sweep":
            return cls.SWEEP
        return cls.GENETIC


@dataclass(frozen=True)
class Variable:
    name: str
    minimum: float
    maximum: float
    format: str = DEFAULT_FORMAT
    sweeps: Optional[int] = None

    def render(self, value: float) -> str:
        """Render ``value`` with the variable's printf-style format."""
        try:
            return self.format % value
        except (TypeError, ValueError) as e:
            raise ConfigError(f"Variable {self.name!r}: bad format {self.format!r}") from e


@dataclass(frozen=True)
class Template:
    path: Path
    text: str

    @classmethod
    def load(cls, path: Path) -> "Template":
        try:
            return cls(path=path, text=path.read_text(encoding=TEXT_ENCODING, errors=TEXT_ERRORS))
        except OSError as e:
            raise ConfigError(f"Unable to read template {path}: {e}") from e


@dataclass(frozen=True)
class Experiment:
    name: Path
    templates: Tuple[Template, ...]

    @property
    def ninputs(self) -> int:
        return len(self.templates)


@dataclass(frozen=True)
class CalibrationConfig:
    simulator: Tuple[str, ...]
    evaluator: Tuple[str, ...]
    algorithm: Algorithm
    experiments: Tuple[Experiment, ...]
    variables: Tuple[Variable, ...]
    simulations: int = 0
    iterations: int = 1
    bests: int = 1
    seed: int = DEFAULT_SEED
    source: Optional[Path] = field(default=None, compare=False)

    @property
    def nvariables(self) -> int:
        return len(self.variables)

    @property
    def nexperiments(self) -> int:
        return len(self.experiments)

    @property
    def ninputs(self) -> int:
        return self.experiments[0].ninputs if self.experiments else 0

    @property
    def nsimulations(self) -> int:
        """Number of candidates the configured algorithm generates."""
        if self.algorithm is Algorithm.SWEEP:
            return prod(int(v.sweeps or 0) for v in self.variables)
        if self.algorithm is Algorithm.GENETIC:
            return 0
        return int(self.simulations)


# -------------------------------------------------------------------------
# Field coercion
# -------------------------------------------------------------------------


def _parse_int(text: str) -> int:
    try:
        return int(text, 0)
    except ValueError:
        return int(text)


def _positive_int(raw: Any, what: str, *, allow_zero: bool = False) -> int:
    if isinstance(raw, bool):
        raise ConfigError(f"{what} must be an integer")
    try:
        value = _parse_int(raw.strip()) if isinstance(raw, str) else int(raw)
    except (TypeError, ValueError):
        raise ConfigError(f"{what} must be an integer, got {raw!r}") from None
    if value < 0 or (value == 0 and not allow_zero):
        raise ConfigError(f"Null or negative {what} in the data file")
    return value


def _float(raw: Any, what: str) -> float:
    try:
        value = float(raw)
    except (TypeError, ValueError):
        raise ConfigError(f"{what} must be a number, got {raw!r}") from None
    if not isfinite(value):
        raise ConfigError(f"{what} must be finite")
    return value


def _command(raw: Any, what: str, base_dir: Path) -> Tuple[str, ...]:
    if not isinstance(raw, str) or not raw.strip():
        raise ConfigError(f"No {what} in the data file")
    argv = shlex.split(raw)
    exe = argv[0]
    candidate = Path(exe)
    if not candidate.is_absolute() and (base_dir / candidate).is_file():
        argv[0] = str((base_dir / candidate).resolve())
    return tuple(argv)


def _resolve(raw: str, base_dir: Path) -> Path:
    p = Path(raw).expanduser()
    return p if p.is_absolute() else (base_dir / p)


# -------------------------------------------------------------------------
# Document builders
# -------------------------------------------------------------------------


def _build_experiments(
    raw: Sequence[Mapping[str, Any]], base_dir: Path
) -> Tuple[Experiment, ...]:
    experiments: List[Experiment] = []
    ninputs: Optional[int] = None
    for idx, item in enumerate(raw, start=1):
        name = item.get("name")
        if not isinstance(name, str) or not name:
            raise ConfigError(f"No experiment {idx} file name")
        paths = item.get("templates") or _templates_from_attrs(item)
        if not paths:
            raise ConfigError(f"No experiment {idx} template1")
        if ninputs is None:
            ninputs = len(paths)
        elif len(paths) != ninputs:
            raise ConfigError(
                f"Experiment {idx}: bad templates number ({len(paths)}, expected {ninputs})"
            )
        templates = tuple(Template.load(_resolve(str(p), base_dir)) for p in paths)
        experiments.append(Experiment(name=_resolve(name, base_dir), templates=templates))
    if not experiments:
        raise ConfigError("No calibration experiments")
    return tuple(experiments)


def _build_variables(
    raw: Sequence[Mapping[str, Any]], algorithm: Algorithm
) -> Tuple[Variable, ...]:
    variables: List[Variable] = []
    for idx, item in enumerate(raw, start=1):
        name = item.get("name")
        if not isinstance(name, str) or not name:
            raise ConfigError(f"No variable {idx} name")
        if item.get("minimum") is None:
            raise ConfigError(f"No variable {idx} minimum range")
        if item.get("maximum") is None:
            raise ConfigError(f"No variable {idx} maximum range")
        sweeps: Optional[int] = None
        if algorithm is Algorithm.SWEEP:
            if item.get("sweeps") is None:
                raise ConfigError(f"No variable {idx} sweeps number")
            sweeps = _positive_int(item["sweeps"], f"variable {idx} sweeps number")
        fmt = item.get("format") or DEFAULT_FORMAT
        var = Variable(
            name=name,
            minimum=_float(item["minimum"], f"variable {idx} minimum"),
            maximum=_float(item["maximum"], f"variable {idx} maximum"),
            format=str(fmt),
            sweeps=sweeps,
        )
        var.render(var.minimum)
        variables.append(var)
    if not variables:
        raise ConfigError("No calibration variables")
    return tuple(variables)


def build_config(
    data: Mapping[str, Any], *, base_dir: Path, source: Optional[Path] = None
) -> CalibrationConfig:
    """Build a validated configuration from an already-decoded document."""

    simulator = _command(data.get("simulator"), "simulator", base_dir)
    evaluator = _command(data.get("evaluator"), "evaluator", base_dir)
    algorithm = Algorithm.from_selector(data.get("algorithm"))

    simulations = 0
    if algorithm is Algorithm.MONTE_CARLO:
        if data.get("simulations") is None:
            raise ConfigError("No simulations number in the data file")
        simulations = _positive_int(data["simulations"], "simulations number")
    elif data.get("simulations") is not None:
        simulations = _positive_int(data["simulations"], "simulations number", allow_zero=True)

    iterations = 1
    if data.get("iterations") is not None:
        iterations = _positive_int(data["iterations"], "iterations number")
    bests = 1
    if data.get("bests") is not None:
        bests = _positive_int(data["bests"], "bests number")
    seed = DEFAULT_SEED
    if data.get("seed") is not None:
        seed = _positive_int(data["seed"], "seed", allow_zero=True)

    experiments = _build_experiments(list(data.get("experiments") or []), base_dir)
    variables = _build_variables(list(data.get("variables") or []), algorithm)

    return CalibrationConfig(
        simulator=simulator,
        evaluator=evaluator,
        algorithm=algorithm,
        experiments=experiments,
        variables=variables,
        simulations=simulations,
        iterations=iterations,
        bests=bests,
        seed=seed,
        source=source,
    )


def _templates_from_attrs(attrs: Mapping[str, str]) -> List[str]:
    out: List[str] = []
    k = 1
    while f"template{k}" in attrs:
        out.append(attrs[f"template{k}"])
        k += 1
    return out


def _xml_document(path: Path) -> Dict[str, Any]:
    try:
        root = ET.parse(path).getroot()
    except ET.ParseError as e:
        raise ConfigError(f"Unable to parse the data file {path}: {e}") from e
    if root.tag != ROOT_TAG:
        raise ConfigError("Bad name of the XML root node in the data file")
    doc: Dict[str, Any] = dict(root.attrib)
    experiments: List[Dict[str, Any]] = []
    variables: List[Dict[str, Any]] = []
    for child in root:
        if child.tag == EXPERIMENT_TAG:
            if variables:
                raise ConfigError("Bad XML node: experiments must precede variables")
            exp: Dict[str, Any] = {"name": child.get("name")}
            exp["templates"] = _templates_from_attrs(child.attrib)
            experiments.append(exp)
        elif child.tag == VARIABLE_TAG:
            variables.append(dict(child.attrib))
        else:
            raise ConfigError(f"Bad XML node: {child.tag!r}")
    doc["experiments"] = experiments
    doc["variables"] = variables
    return doc


def _json_document(path: Path) -> Dict[str, Any]:
    try:
        data = json.loads(path.read_bytes())
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise ConfigError(f"Unable to parse the data file {path}: {e}") from e
    except OSError as e:
        raise ConfigError(f"Unable to read the data file {path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError("JSON data file must contain an object")
    return data


def load_config(path: Path) -> CalibrationConfig:
    """Load and validate a configuration document (XML or JSON)."""

    path = Path(path)
    if not path.is_file():
        raise ConfigError(f"Data file not found: {path}")
    data = _json_document(path) if path.suffix.lower() == ".json" else _xml_document(path)
    return build_config(data, base_dir=path.resolve().parent, source=path)


__all__ = [
    "Algorithm",
    "CalibrationConfig",
    "ConfigError",
    "DEFAULT_FORMAT",
    "DEFAULT_SEED",
    "Experiment",
    "TEXT_ENCODING",
    "TEXT_ERRORS",
    "Template",
    "Variable",
    "build_config",
    "load_config",
]
