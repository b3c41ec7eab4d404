from __future__ import annotations

from . import bests, generators
from .bests import BestEntry, TopN, merge_bests
from .generators import generate

__all__ = ["bests", "generators", "BestEntry", "TopN", "generate", "merge_bests"]
