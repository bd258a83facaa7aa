"""
reduction_bench.

Run one map-reduce computation under serial, partitioned-threaded,
atomic-threaded and work-stealing strategies, check that they agree, and
benchmark them against each other.
"""

from __future__ import annotations

import logging as _logging
from importlib import import_module
from typing import TYPE_CHECKING, Any

# Provide a default no-op handler to avoid "No handler" warnings for library users.
_logging.getLogger(__name__).addHandler(_logging.NullHandler())

__version__ = "0.1.0"

if TYPE_CHECKING:  # pragma: no cover - import-time only
    from .accumulator import (
        Accumulator,
        CountAccumulator,
        MaxAccumulator,
        MinAccumulator,
        ProductAccumulator,
        SumAccumulator,
    )
    from .config import ReductionConfig
    from .harness import BenchmarkReport, Sample, StrategyBenchmark, run, verify_consistency
    from .partition import Partition, plan
    from .strategies import ReductionExecutor, StrategyTag, reduce
    from .utils.exceptions import (
        ConsistencyViolation,
        InvalidConfiguration,
        ReductionError,
        TransformFailure,
    )

__all__ = (
    "Accumulator",
    "BenchmarkReport",
    "ConsistencyViolation",
    "CountAccumulator",
    "InvalidConfiguration",
    "MaxAccumulator",
    "MinAccumulator",
    "Partition",
    "ProductAccumulator",
    "ReductionConfig",
    "ReductionError",
    "ReductionExecutor",
    "Sample",
    "StrategyBenchmark",
    "StrategyTag",
    "SumAccumulator",
    "TransformFailure",
    "plan",
    "reduce",
    "run",
    "verify_consistency",
)

_NAME_TO_MODULE = {
    "Accumulator": ("accumulator", "Accumulator"),
    "CountAccumulator": ("accumulator", "CountAccumulator"),
    "MaxAccumulator": ("accumulator", "MaxAccumulator"),
    "MinAccumulator": ("accumulator", "MinAccumulator"),
    "ProductAccumulator": ("accumulator", "ProductAccumulator"),
    "SumAccumulator": ("accumulator", "SumAccumulator"),
    "ReductionConfig": ("config", "ReductionConfig"),
    "BenchmarkReport": ("harness", "BenchmarkReport"),
    "Sample": ("harness", "Sample"),
    "StrategyBenchmark": ("harness", "StrategyBenchmark"),
    "run": ("harness", "run"),
    "verify_consistency": ("harness", "verify_consistency"),
    "Partition": ("partition", "Partition"),
    "plan": ("partition", "plan"),
    "ReductionExecutor": ("strategies", "ReductionExecutor"),
    "StrategyTag": ("strategies", "StrategyTag"),
    "reduce": ("strategies", "reduce"),
    "ConsistencyViolation": ("utils.exceptions", "ConsistencyViolation"),
    "InvalidConfiguration": ("utils.exceptions", "InvalidConfiguration"),
    "ReductionError": ("utils.exceptions", "ReductionError"),
    "TransformFailure": ("utils.exceptions", "TransformFailure"),
}


def __getattr__(name: str) -> Any:
    """Lazily expose the public API so importing the package stays cheap."""
    if name not in _NAME_TO_MODULE:
        raise AttributeError(f"module {__name__!r} has no attribute {name!r}")

    module_name, attr_name = _NAME_TO_MODULE[name]
    module = import_module(f"{__name__}.{module_name}")
    value = getattr(module, attr_name)
    globals()[name] = value
    return value
