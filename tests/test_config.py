from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict

import pytest

from calibrator.config import Algorithm, ConfigError, DEFAULT_FORMAT, DEFAULT_SEED, load_config

from conftest import write_xml_config


@pytest.fixture()
def files(tmp_path: Path) -> Path:
    for name in ("a.tpl", "b.tpl", "c.tpl", "d.tpl", "e.tpl"):
        (tmp_path / name).write_text(f"{name} @value1@\n")
    (tmp_path / "ref1.dat").write_text("1\n")
    (tmp_path / "ref2.dat").write_text("2\n")
    return tmp_path


def _write(path: Path, **kw: Any) -> Path:
    defaults: Dict[str, Any] = {
        "simulator": "sim",
        "evaluator": "eval",
        "experiments": [{"name": "ref1.dat", "templates": ["a.tpl"]}],
        "variables": [{"name": "x", "minimum": 0, "maximum": 1}],
        "simulations": 10,
    }
    defaults.update(kw)
    return write_xml_config(path / "cfg.xml", **defaults)


def test_monte_carlo_defaults(files: Path) -> None:
    cfg = load_config(_write(files))
    assert cfg.algorithm is Algorithm.MONTE_CARLO
    assert cfg.nsimulations == 10
    assert cfg.bests == 1
    assert cfg.iterations == 1
    assert cfg.seed == DEFAULT_SEED
    assert cfg.variables[0].format == DEFAULT_FORMAT
    assert cfg.simulator == ("sim",)
    exp = cfg.experiments[0]
    assert exp.name == files / "ref1.dat"
    assert exp.templates[0].text == "a.tpl @value1@\n"


def test_sweep_counts_multiply(files: Path) -> None:
    cfg = load_config(
        _write(
            files,
            algorithm="sweep",
            simulations=None,
            bests=4,
            variables=[
                {"name": "x", "minimum": 0, "maximum": 1, "sweeps": 2},
                {"name": "y", "minimum": 0, "maximum": 1, "sweeps": 3, "format": "%.2f"},
            ],
        )
    )
    assert cfg.algorithm is Algorithm.SWEEP
    assert cfg.nsimulations == 6
    assert cfg.bests == 4
    assert [v.sweeps for v in cfg.variables] == [2, 3]


def test_other_algorithm_selects_genetic(files: Path) -> None:
    cfg = load_config(_write(files, algorithm="genetic", simulations=None))
    assert cfg.algorithm is Algorithm.GENETIC
    assert cfg.nsimulations == 0


def test_simulator_found_next_to_document_is_resolved(files: Path) -> None:
    (files / "sim").write_text("#!/bin/sh\n")
    cfg = load_config(_write(files))
    assert cfg.simulator == (str((files / "sim").resolve()),)


def test_variable_length_template_slots(files: Path) -> None:
    templates = ["a.tpl", "b.tpl", "c.tpl", "d.tpl", "e.tpl"]
    cfg = load_config(
        _write(
            files,
            experiments=[
                {"name": "ref1.dat", "templates": templates},
                {"name": "ref2.dat", "templates": templates},
            ],
        )
    )
    assert cfg.ninputs == 5
    assert cfg.nexperiments == 2


@pytest.mark.parametrize(
    "overrides, message",
    [
        ({"simulator": ""}, "simulator"),
        ({"evaluator": ""}, "evaluator"),
        ({"simulations": None}, "simulations"),
        ({"simulations": 0}, "simulations"),
        ({"bests": 0}, "bests"),
        ({"experiments": []}, "experiments"),
        ({"variables": []}, "variables"),
        ({"root_tag": "calibration"}, "root node"),
        ({"variables": [{"name": "x", "maximum": 1}]}, "minimum"),
        ({"variables": [{"name": "x", "minimum": 0}]}, "maximum"),
        ({"variables": [{"name": "x", "minimum": "zero", "maximum": 1}]}, "number"),
        (
            {"algorithm": "sweep", "variables": [{"name": "x", "minimum": 0, "maximum": 1}]},
            "sweeps",
        ),
        (
            {
                "experiments": [
                    {"name": "ref1.dat", "templates": ["a.tpl", "b.tpl"]},
                    {"name": "ref2.dat", "templates": ["a.tpl"]},
                ]
            },
            "templates number",
        ),
        ({"experiments": [{"name": "ref1.dat", "templates": ["missing.tpl"]}]}, "template"),
        ({"experiments": [{"name": "ref1.dat", "templates": []}]}, "template1"),
    ],
)
def test_configuration_errors(files: Path, overrides: Dict[str, Any], message: str) -> None:
    with pytest.raises(ConfigError, match=message):
        load_config(_write(files, **overrides))


def test_zero_iterations_rejected(files: Path) -> None:
    path = _write(files)
    path.write_text(path.read_text().replace("<calibrate ", '<calibrate iterations="0" '))
    with pytest.raises(ConfigError, match="iterations"):
        load_config(path)


def test_unknown_element_rejected(files: Path) -> None:
    path = _write(files)
    path.write_text(path.read_text().replace("</calibrate>", "<parameter /></calibrate>"))
    with pytest.raises(ConfigError, match="Bad XML node"):
        load_config(path)


def test_unparseable_document(files: Path) -> None:
    path = files / "broken.xml"
    path.write_text("<calibrate")
    with pytest.raises(ConfigError, match="Unable to parse"):
        load_config(path)


def test_json_document(files: Path) -> None:
    path = files / "cfg.json"
    path.write_text(
        json.dumps(
            {
                "simulator": "sim --fast",
                "evaluator": "eval",
                "algorithm": "sweep",
                "bests": 2,
                "seed": 11,
                "experiments": [{"name": "ref1.dat", "templates": ["a.tpl", "b.tpl"]}],
                "variables": [
                    {"name": "x", "minimum": -1, "maximum": 1, "sweeps": 5, "format": "%.3f"}
                ],
            }
        )
    )
    cfg = load_config(path)
    assert cfg.simulator == ("sim", "--fast")
    assert cfg.nsimulations == 5
    assert cfg.ninputs == 2
    assert cfg.seed == 11
    assert cfg.variables[0].render(0.5) == "0.500"


def test_latin1_template_loads(files: Path) -> None:
    (files / "a.tpl").write_bytes(b"temp\xe9rature=@value1@\n")
    cfg = load_config(_write(files))
    text = cfg.experiments[0].templates[0].text
    assert text.startswith("temp") and text.endswith("rature=@value1@\n")


def test_json_document_with_bad_encoding(files: Path) -> None:
    path = files / "cfg.json"
    path.write_bytes(b'{"simulator": "sim\xe9", "evaluator": "eval"}')
    with pytest.raises(ConfigError, match="Unable to parse"):
        load_config(path)
