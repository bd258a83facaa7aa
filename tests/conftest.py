"""Shared pytest fixtures for reduction_bench tests."""

from __future__ import annotations

import numpy as np
import pytest

from reduction_bench.config import ENV_VAR
from reduction_bench.strategies import StrategyTag

ALL_STRATEGIES = list(StrategyTag)
THREADED_STRATEGIES = [tag for tag in StrategyTag if tag is not StrategyTag.SERIAL]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep developer ``RB_REDUCE`` settings out of the tests."""
    monkeypatch.delenv(ENV_VAR, raising=False)


@pytest.fixture(params=ALL_STRATEGIES, ids=lambda tag: tag.value)
def strategy(request: pytest.FixtureRequest) -> StrategyTag:
    """Parametrise a test over every strategy."""
    return request.param


@pytest.fixture(params=THREADED_STRATEGIES, ids=lambda tag: tag.value)
def threaded_strategy(request: pytest.FixtureRequest) -> StrategyTag:
    """Parametrise a test over the three threaded strategies."""
    return request.param


@pytest.fixture(scope="session")
def float_input() -> np.ndarray:
    """Reproducible float64 input in ``[0, 1)``."""
    return np.random.default_rng(1234).random(5_000)


@pytest.fixture(scope="session")
def int_input() -> np.ndarray:
    """Reproducible int64 input, so sums are exact."""
    return np.random.default_rng(4321).integers(-1000, 1000, size=5_000, dtype=np.int64)
