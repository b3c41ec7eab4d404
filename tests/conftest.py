from __future__ import annotations

import shlex
import sys
import textwrap
import xml.etree.ElementTree as ET
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence

import pytest

# Ensure src/ is on sys.path when running tests without installation.
PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_PATH = PROJECT_ROOT / "src"
if SRC_PATH.is_dir() and str(SRC_PATH) not in sys.path:
    sys.path.insert(0, str(SRC_PATH))


# Simulator: concatenates its (non-empty) input files into the output file.
SIMULATOR_SRC = """
import sys
from pathlib import Path

*inputs, out = sys.argv[1:]
Path(out).write_text("".join(Path(p).read_text() for p in inputs if p))
"""

# Evaluator: squared distance between ``name=value`` lines of the simulator
# output and of the experiment's reference file.
EVALUATOR_SRC = """
import sys
from pathlib import Path


def parse(text):
    vals = {}
    for line in text.splitlines():
        if "=" in line:
            k, v = line.split("=", 1)
            vals[k.strip()] = float(v)
    return vals


out, ref, result = sys.argv[1:4]
got = parse(Path(out).read_text())
want = parse(Path(ref).read_text())
cost = sum((got[k] - v) ** 2 for k, v in want.items())
Path(result).write_text(repr(cost) + "\\n")
"""


def write_script(directory: Path, name: str, source: str) -> str:
    """Write a Python script and return a command string that runs it."""

    path = directory / name
    path.write_text(textwrap.dedent(source))
    return shlex.join([sys.executable, str(path)])


def write_xml_config(
    path: Path,
    *,
    simulator: str,
    evaluator: str,
    experiments: Sequence[Mapping[str, Any]],
    variables: Sequence[Mapping[str, Any]],
    algorithm: Optional[str] = None,
    simulations: Optional[int] = None,
    bests: Optional[int] = None,
    root_tag: str = "calibrate",
) -> Path:
    attrs: Dict[str, str] = {"simulator": simulator, "evaluator": evaluator}
    if algorithm is not None:
        attrs["algorithm"] = algorithm
    if simulations is not None:
        attrs["simulations"] = str(simulations)
    if bests is not None:
        attrs["bests"] = str(bests)
    root = ET.Element(root_tag, attrs)
    for exp in experiments:
        e_attrs = {"name": str(exp["name"])}
        for k, tpl in enumerate(exp["templates"], start=1):
            e_attrs[f"template{k}"] = str(tpl)
        ET.SubElement(root, "experiment", e_attrs)
    for var in variables:
        ET.SubElement(root, "variable", {k: str(v) for k, v in var.items()})
    ET.ElementTree(root).write(path)
    return path


@pytest.fixture()
def tools(tmp_path: Path) -> Dict[str, str]:
    return {
        "simulator": write_script(tmp_path, "sim.py", SIMULATOR_SRC),
        "evaluator": write_script(tmp_path, "evaluate.py", EVALUATOR_SRC),
    }


@pytest.fixture()
def sweep_config_path(tmp_path: Path, tools: Dict[str, str]) -> Path:
    """Two-variable sweep whose unique optimum is x=4, y=0."""

    (tmp_path / "in.tpl").write_text("@variable1@=@value1@\n@variable2@=@value2@\n")
    (tmp_path / "ref.dat").write_text("x=4\ny=0\n")
    variables: List[Dict[str, Any]] = [
        {"name": "x", "minimum": 0, "maximum": 10, "format": "%.6f", "sweeps": 6},
        {"name": "y", "minimum": -1, "maximum": 1, "format": "%.6f", "sweeps": 3},
    ]
    return write_xml_config(
        tmp_path / "calibrate.xml",
        simulator=tools["simulator"],
        evaluator=tools["evaluator"],
        algorithm="sweep",
        bests=3,
        experiments=[{"name": "ref.dat", "templates": ["in.tpl"]}],
        variables=variables,
    )
