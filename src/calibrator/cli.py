from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

"""CLI entrypoints for calibrator.

``calibrator run CONFIG`` performs a full calibration. Heavier internals are
imported inside command bodies so ``calibrator version`` stays lightweight.
"""

app = typer.Typer(help="Calibrator: black-box calibration of empirical parameters")
console = Console()
err_console = Console(stderr=True)


def _setup_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.WARNING),
        format="%(message)s",
        handlers=[RichHandler(console=err_console, show_path=False)],
        force=True,
    )


@app.command()
def version() -> None:
    """Print version."""
    from . import __version__

    console.print(f"calibrator {__version__}")


@app.command()
def run(
    config_file: Path = typer.Argument(..., help="Calibration data file (XML or JSON)."),
    nthreads: Optional[int] = typer.Option(
        None,
        "--nthreads",
        "-nthreads",
        min=1,
        help="Worker threads per process (default: detected cores or CALIBRATOR_NTHREADS).",
    ),
    peers: int = typer.Option(
        1, "--peers", min=1, help="Cooperating peer processes on this machine."
    ),
    mpi: Optional[bool] = typer.Option(
        None,
        "--mpi/--no-mpi",
        help="Run as one MPI rank (default: auto-detect an MPI launcher).",
    ),
    work_dir: Optional[Path] = typer.Option(
        None, help="Directory for generated input/output/result files."
    ),
    keep_files: Optional[bool] = typer.Option(
        None, "--keep-files/--no-keep-files", help="Keep generated files for inspection."
    ),
    strict: Optional[bool] = typer.Option(
        None, "--strict/--no-strict", help="Abort on the first failed evaluation."
    ),
    seed: Optional[int] = typer.Option(None, min=0, help="Override the Monte Carlo seed."),
    json_out: bool = typer.Option(False, "--json", help="Emit the result as JSON."),
    log_level: Optional[str] = typer.Option(
        None, help="Logging level (DEBUG|INFO|WARNING|ERROR)."
    ),
) -> None:
    """Run a calibration and print the best candidate."""
    from dataclasses import replace

    from .config import ConfigError, load_config
    from .engine import RunOptions, calibrate
    from .eval import EvaluationError
    from .peers import PeerError, detect_peers
    from .settings import load_settings

    settings = load_settings()
    _setup_logging(log_level or settings.log_level)

    try:
        config = load_config(config_file)
    except ConfigError as e:
        err_console.print(f"[red]Configuration error:[/red] {e}")
        raise typer.Exit(code=2)
    if seed is not None:
        config = replace(config, seed=int(seed))

    options = RunOptions(
        nthreads=int(nthreads) if nthreads is not None else settings.nthreads,
        work_dir=work_dir if work_dir is not None else settings.work_dir,
        keep_files=settings.keep_files if keep_files is None else bool(keep_files),
        strict=settings.strict if strict is None else bool(strict),
    )

    try:
        group = detect_peers(mpi=mpi, local=int(peers))
        result = calibrate(config, options=options, peers=group)
    except PeerError as e:
        err_console.print(f"[red]Peer setup failed:[/red] {e}")
        raise typer.Exit(code=2)
    except EvaluationError as e:
        err_console.print(f"[red]Evaluation failed:[/red] {e}")
        raise typer.Exit(code=1)

    if result is None:
        # Non-coordinator peer: results are reported by rank 0.
        return

    if json_out:
        typer.echo(json.dumps(result.as_dict(), indent=2))
        if result.best is None:
            raise typer.Exit(code=1)
        return

    best = result.best
    if best is None:
        err_console.print(
            f"No candidate produced an objective value "
            f"({result.evaluated} evaluated, {result.failed} failed)."
        )
        raise typer.Exit(code=1)

    typer.echo("THE BEST IS")
    typer.echo(f"error={best.value:e}")
    for var, value in zip(config.variables, result.vector(best)):
        typer.echo(f"{var.name}={var.render(float(value))}")

    if len(result.bests) > 1:
        table = Table(title=f"Best {len(result.bests)} candidates")
        table.add_column("rank")
        table.add_column("index")
        table.add_column("error")
        for var in config.variables:
            table.add_column(var.name)
        for pos, entry in enumerate(result.bests, start=1):
            vec = result.vector(entry)
            table.add_row(
                str(pos),
                str(entry.index),
                f"{entry.value:.6g}",
                *(var.render(float(x)) for var, x in zip(config.variables, vec)),
            )
        console.print(table)
    if result.failed:
        err_console.print(f"[yellow]{result.failed} candidate(s) failed evaluation[/yellow]")


def main() -> None:
    app()


if __name__ == "__main__":  # pragma: no cover
    main()
