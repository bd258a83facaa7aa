"""Named per-element transforms and input generators for benchmark runs."""

from __future__ import annotations

import math
import time
from typing import Callable, Dict

import numpy as np

from .partition import require_int
from .utils.exceptions import InvalidConfiguration

__all__ = [
    "WORKLOADS",
    "dynamic_cost",
    "exp_decay",
    "get_workload",
    "identity",
    "make_input",
    "sin_add",
]


def identity(x):
    return x


def exp_decay(x):
    """``exp(-x)``: cheap, uniform per-element cost."""
    return math.exp(-x)


def sin_add(x):
    """``sin(x) + cos(x)``: slightly heavier uniform work."""
    return math.sin(x) + math.cos(x)


def dynamic_cost(x, scale: float = 1e-6):
    """Busy-wait proportional to ``|x|`` before returning ``x``.

    Per-element cost varies with the value, so static partitions finish at
    different times while work stealing keeps every worker busy.
    """
    deadline = time.perf_counter() + abs(float(x)) * scale
    while time.perf_counter() < deadline:
        pass
    return x


WORKLOADS: Dict[str, Callable] = {
    "identity": identity,
    "exp_decay": exp_decay,
    "sin_add": sin_add,
    "dynamic": dynamic_cost,
}


def get_workload(name: str) -> Callable:
    """Return the transform registered under ``name``."""
    try:
        return WORKLOADS[name]
    except KeyError:
        raise InvalidConfiguration(
            f"Unknown workload {name!r}",
            details={"workload": name, "choices": sorted(WORKLOADS)},
        ) from None


def make_input(length: int, seed: int | None = 0, *, integers: bool = False) -> np.ndarray:
    """Build a reproducible 1-D input array.

    Floats are drawn uniformly from ``[0, 1)``; with ``integers=True`` the
    values are ``int64`` in ``[0, 1000)`` so reductions are exact.
    """
    length = require_int("length", length, minimum=0)
    rng = np.random.default_rng(seed)
    if integers:
        return rng.integers(0, 1000, size=length, dtype=np.int64)
    return rng.random(length)
