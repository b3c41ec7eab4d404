"""Environment-driven runtime settings.

Values come from ``CALIBRATOR_*`` environment variables, optionally loaded
from a local ``.env`` file. Command-line flags take precedence over these.

- ``CALIBRATOR_NTHREADS``: worker threads per process (default: CPU count)
- ``CALIBRATOR_WORK_DIR``: where input/output/result files are created
- ``CALIBRATOR_KEEP_FILES``: keep generated files for inspection
- ``CALIBRATOR_STRICT``: abort the run on the first failed evaluation
- ``CALIBRATOR_LOG_LEVEL``: logging level name for the CLI
"""

from __future__ import annotations

import multiprocessing
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import find_dotenv, load_dotenv


def _env_truthy(name: str) -> Optional[bool]:
    raw = os.getenv(name)
    if raw is None:
        return None
    v = raw.strip().lower()
    if not v:
        return None
    if v in {"1", "true", "yes", "on", "y"}:
        return True
    if v in {"0", "false", "no", "off", "n"}:
        return False
    return None


def _env_int(name: str) -> Optional[int]:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return None
    try:
        return int(raw.strip())
    except ValueError:
        return None


def cores_number() -> int:
    try:
        return max(1, multiprocessing.cpu_count())
    except NotImplementedError:
        return 1


@dataclass(frozen=True)
class Settings:
    nthreads: int
    work_dir: Path
    keep_files: bool = False
    strict: bool = False
    log_level: str = "WARNING"


def load_settings(*, dotenv: bool = True) -> Settings:
    """Resolve settings from the environment (and ``.env`` when present)."""

    if dotenv:
        load_dotenv(find_dotenv(usecwd=True), override=False)
    nthreads = _env_int("CALIBRATOR_NTHREADS")
    work_dir = os.getenv("CALIBRATOR_WORK_DIR") or "."
    return Settings(
        nthreads=nthreads if nthreads and nthreads > 0 else cores_number(),
        work_dir=Path(work_dir).expanduser(),
        keep_files=bool(_env_truthy("CALIBRATOR_KEEP_FILES")),
        strict=bool(_env_truthy("CALIBRATOR_STRICT")),
        log_level=(os.getenv("CALIBRATOR_LOG_LEVEL") or "WARNING").strip().upper(),
    )


__all__ = ["Settings", "cores_number", "load_settings"]
