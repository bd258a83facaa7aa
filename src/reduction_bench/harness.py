"""Benchmark harness for reduction strategies.

:func:`run` times repeated invocations of one strategy after a number of
untimed warmup calls. :class:`StrategyBenchmark` sweeps strategies and worker
counts over one input, checks that every strategy produced the same combined
result, and renders the comparison as text or a :class:`pandas.DataFrame`.
"""

from __future__ import annotations

import logging
import math
import numbers
import time
import tracemalloc
import uuid
from dataclasses import dataclass, field
from functools import partial
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from .accumulator import AccumulatorLike
from .config import DEFAULT_REL_TOLERANCE, ReductionConfig
from .logging import logging_context
from .strategies import ReductionExecutor, StrategyTag, Transform
from .utils.exceptions import ConsistencyViolation

logger = logging.getLogger(__name__)


def _to_builtin(value: Any) -> Any:
    """Convert numpy scalars to plain Python numbers for JSON output."""
    if isinstance(value, np.generic):
        return value.item()
    return value


def _or_nan(value: Optional[int]) -> float:
    return math.nan if value is None else float(value)


def _nanmean(values: np.ndarray) -> float:
    """Mean of the measured values; ``nan`` when nothing was measured."""
    if values.size == 0 or np.isnan(values).all():
        return math.nan
    return float(np.nanmean(values))


@dataclass(frozen=True)
class Sample:
    """One timed invocation.

    ``allocations`` and ``peak_bytes`` are ``None`` unless the run traced
    allocations.
    """

    elapsed: float
    allocations: Optional[int]
    result: Any
    peak_bytes: Optional[int] = None


@dataclass
class SampleSet:
    """Append-only sequence of samples collected during one run."""

    _samples: List[Sample] = field(default_factory=list)

    def append(self, sample: Sample) -> None:
        self._samples.append(sample)

    def __len__(self) -> int:
        return len(self._samples)

    def __iter__(self):
        return iter(self._samples)

    def __getitem__(self, index: int) -> Sample:
        return self._samples[index]

    @property
    def elapsed(self) -> np.ndarray:
        return np.fromiter((s.elapsed for s in self._samples), dtype=float, count=len(self))

    @property
    def allocations(self) -> np.ndarray:
        return np.fromiter(
            (_or_nan(s.allocations) for s in self._samples), dtype=float, count=len(self)
        )

    @property
    def peak_bytes(self) -> np.ndarray:
        return np.fromiter(
            (_or_nan(s.peak_bytes) for s in self._samples), dtype=float, count=len(self)
        )


@dataclass
class BenchmarkReport:
    """Timing summary for one strategy and worker count."""

    strategy: str
    workers: int
    repetitions: int
    warmup: int
    samples: SampleSet

    @property
    def min(self) -> float:
        return float(np.min(self.samples.elapsed))

    @property
    def max(self) -> float:
        return float(np.max(self.samples.elapsed))

    @property
    def median(self) -> float:
        return float(np.median(self.samples.elapsed))

    @property
    def mean(self) -> float:
        return float(np.mean(self.samples.elapsed))

    @property
    def std(self) -> float:
        """Population standard deviation of the elapsed times."""
        return float(np.std(self.samples.elapsed))

    @property
    def variance(self) -> float:
        return float(np.var(self.samples.elapsed))

    @property
    def mean_allocations(self) -> float:
        """Mean traced block count; ``nan`` when allocations were not traced."""
        return _nanmean(self.samples.allocations)

    @property
    def mean_peak_bytes(self) -> float:
        return _nanmean(self.samples.peak_bytes)

    @property
    def results(self) -> List[Any]:
        """Distinct combined results observed, in first-seen order."""
        seen: List[Any] = []
        for sample in self.samples:
            if not any(_same(sample.result, other) for other in seen):
                seen.append(sample.result)
        return seen

    def histogram(self, bins: int = 10) -> Tuple[np.ndarray, np.ndarray]:
        """Return ``(counts, edges)`` of the elapsed-time distribution."""
        return np.histogram(self.samples.elapsed, bins=bins)

    def summary(self) -> Dict[str, Any]:
        """Return the headline statistics as a flat mapping."""
        return {
            "strategy": self.strategy,
            "workers": self.workers,
            "repetitions": self.repetitions,
            "warmup": self.warmup,
            "min": self.min,
            "median": self.median,
            "mean": self.mean,
            "std": self.std,
            "max": self.max,
            "mean_allocations": self.mean_allocations,
            "mean_peak_bytes": self.mean_peak_bytes,
        }

    def to_dict(self) -> Dict[str, Any]:
        """Return a JSON-serialisable representation including raw samples."""
        payload = self.summary()
        payload["results"] = [_to_builtin(r) for r in self.results]
        payload["samples"] = [float(t) for t in self.samples.elapsed]
        for key in ("mean_allocations", "mean_peak_bytes"):
            if math.isnan(payload[key]):
                payload[key] = None
        return payload


def _same(a: Any, b: Any) -> bool:
    if a is b:
        return True
    try:
        return bool(a == b)
    except (TypeError, ValueError):
        return False


def _timed_call(fn: Callable[[], Any]) -> Tuple[Any, float]:
    start = time.perf_counter()
    result = fn()
    return result, time.perf_counter() - start


def _traced_call(fn: Callable[[], Any]) -> Tuple[Any, float, int, int]:
    """Run ``fn`` under :mod:`tracemalloc`.

    Returns the result, the elapsed time, the number of blocks allocated by
    the call that are still alive when it returns, and the peak traced memory
    above the starting level. Temporaries freed before the call returns only
    show up in the peak.
    """
    started = not tracemalloc.is_tracing()
    if started:
        tracemalloc.start()
    try:
        before = tracemalloc.take_snapshot()
        baseline, _ = tracemalloc.get_traced_memory()
        tracemalloc.reset_peak()
        result, elapsed = _timed_call(fn)
        _, peak = tracemalloc.get_traced_memory()
        after = tracemalloc.take_snapshot()
    finally:
        if started:
            tracemalloc.stop()
    ignore = [tracemalloc.Filter(False, tracemalloc.__file__)]
    diff = after.filter_traces(ignore).compare_to(before.filter_traces(ignore), "lineno")
    blocks = sum(max(0, stat.count_diff) for stat in diff)
    return result, elapsed, blocks, max(0, peak - baseline)


def run(
    strategy: StrategyTag | str,
    items: Sequence[Any],
    transform: Transform,
    workers: int | None = None,
    repetitions: int | None = None,
    warmup: int | None = None,
    *,
    accumulator: AccumulatorLike | str | None = None,
    trace_allocations: bool | None = None,
    config: ReductionConfig | None = None,
) -> BenchmarkReport:
    """Benchmark one strategy.

    Parameters
    ----------
    strategy : StrategyTag or str
        Strategy to time.
    items : Sequence
        Input shared by every invocation.
    transform : callable
        Per-element transform.
    workers, repetitions, warmup : int, optional
        Override the matching :class:`ReductionConfig` fields.
    accumulator : AccumulatorLike or str, optional
        Merge primitive; defaults to summation.
    trace_allocations : bool, optional
        Trace each timed invocation with :mod:`tracemalloc` and record the
        blocks it left allocated and its peak traced memory. Tracing slows
        the invocation, so elapsed times from traced runs are not comparable
        with untraced ones.
    config : ReductionConfig, optional
        Base configuration; defaults are used when omitted.

    Returns
    -------
    BenchmarkReport
        One sample per timed invocation.

    Raises
    ------
    InvalidConfiguration
        Before any invocation, for out-of-range options.
    TransformFailure
        As soon as any invocation fails; remaining repetitions are skipped.
    """
    cfg = (config or ReductionConfig()).with_overrides(
        strategy=strategy,
        workers=workers,
        repetitions=repetitions,
        warmup=warmup,
        trace_allocations=trace_allocations,
    )
    cfg.validate()
    tag = StrategyTag.parse(cfg.strategy)
    n_workers = cfg.effective_workers
    executor = ReductionExecutor(cfg)

    samples = SampleSet()
    with logging_context(run_id=uuid.uuid4().hex[:12], strategy=tag.value, workers=n_workers):
        logger.info(
            "Benchmarking strategy=%s workers=%d repetitions=%d warmup=%d trace_allocations=%s",
            tag.value,
            n_workers,
            cfg.repetitions,
            cfg.warmup,
            cfg.trace_allocations,
        )
        for _ in range(cfg.warmup):
            executor.reduce(items, transform, accumulator=accumulator)
        invoke = partial(executor.reduce, items, transform, accumulator=accumulator)
        for _ in range(cfg.repetitions):
            if cfg.trace_allocations:
                result, elapsed, blocks, peak = _traced_call(invoke)
                sample = Sample(elapsed, blocks, result, peak_bytes=peak)
            else:
                result, elapsed = _timed_call(invoke)
                sample = Sample(elapsed, None, result)
            samples.append(sample)

    report = BenchmarkReport(
        strategy=tag.value,
        workers=n_workers,
        repetitions=cfg.repetitions,
        warmup=cfg.warmup,
        samples=samples,
    )
    logger.info(
        "Finished %s/%d: median=%.6fs mean=%.6fs std=%.6fs",
        tag.value,
        n_workers,
        report.median,
        report.mean,
        report.std,
    )
    return report


def _values_equal(a: Any, b: Any, rel_tol: float, abs_tol: float) -> bool:
    if isinstance(a, numbers.Integral) and isinstance(b, numbers.Integral):
        return int(a) == int(b)
    try:
        fa, fb = float(a), float(b)
    except (TypeError, ValueError):
        return _same(a, b)
    if math.isnan(fa) or math.isnan(fb):
        return math.isnan(fa) and math.isnan(fb)
    return math.isclose(fa, fb, rel_tol=rel_tol, abs_tol=abs_tol)


def verify_consistency(
    observed: Iterable[BenchmarkReport | Any],
    *,
    rel_tol: float = DEFAULT_REL_TOLERANCE,
    abs_tol: float = 0.0,
) -> Any:
    """Check that all combined results agree and return the reference value.

    ``observed`` may mix :class:`BenchmarkReport` objects (all of their
    distinct results are checked) and bare result values. Integers must match
    exactly; other numbers must agree within ``rel_tol``/``abs_tol``.

    Raises
    ------
    ConsistencyViolation
        On the first disagreement with the reference (first) value.
    """
    labelled: List[Tuple[str, Any]] = []
    for position, item in enumerate(observed):
        if isinstance(item, BenchmarkReport):
            label = f"{item.strategy}/{item.workers}"
            labelled.extend((label, value) for value in item.results)
        else:
            labelled.append((f"#{position}", item))
    if not labelled:
        return None
    ref_label, reference = labelled[0]
    for label, value in labelled[1:]:
        if not _values_equal(reference, value, rel_tol, abs_tol):
            raise ConsistencyViolation(
                f"{label} produced {value!r}, expected {reference!r} (from {ref_label})",
                details={
                    "reference": _to_builtin(reference),
                    "reference_label": ref_label,
                    "observed": _to_builtin(value),
                    "observed_label": label,
                    "rel_tol": rel_tol,
                    "abs_tol": abs_tol,
                },
            )
    return reference


class StrategyBenchmark:
    """Sweep strategies and worker counts over one input."""

    def __init__(
        self,
        items: Sequence[Any],
        transform: Transform,
        *,
        accumulator: AccumulatorLike | str | None = None,
        config: ReductionConfig | None = None,
    ):
        """Store the shared input, transform and base configuration."""
        self.items = items
        self.transform = transform
        self.accumulator = accumulator
        self.config = config or ReductionConfig()
        self.results: List[BenchmarkReport] = []

    def run(
        self,
        strategies: Optional[Sequence[StrategyTag | str]] = None,
        worker_counts: Optional[Sequence[int]] = None,
    ) -> List[BenchmarkReport]:
        """Benchmark every strategy for every worker count, then verify results.

        Each call starts a fresh sweep; reports from an earlier call are discarded.
        """
        tags = [StrategyTag.parse(s) for s in (strategies or list(StrategyTag))]
        worker_counts = list(worker_counts or [self.config.effective_workers])
        self.results = []

        # Baseline: serial runs once, it ignores the worker count
        if StrategyTag.SERIAL in tags:
            self._run_single(StrategyTag.SERIAL, 1)

        for tag in tags:
            if tag is StrategyTag.SERIAL:
                continue
            for workers in worker_counts:
                self._run_single(tag, workers)

        self.verify()
        return self.results

    def _run_single(self, tag: StrategyTag, workers: int) -> None:
        self.results.append(
            run(
                tag,
                self.items,
                self.transform,
                workers=workers,
                accumulator=self.accumulator,
                config=self.config,
            )
        )

    def verify(self) -> Any:
        """Raise :class:`ConsistencyViolation` if any two strategies disagree."""
        return verify_consistency(self.results, rel_tol=self.config.rel_tolerance)

    def baseline(self) -> Optional[BenchmarkReport]:
        for report in self.results:
            if report.strategy == StrategyTag.SERIAL.value:
                return report
        return None

    def speedup(self, report: BenchmarkReport) -> float:
        """Serial median divided by ``report``'s median; ``nan`` without a baseline."""
        base = self.baseline()
        if base is None or report.median <= 0:
            return float("nan")
        return base.median / report.median

    def to_frame(self) -> pd.DataFrame:
        """Return one row per report with summary statistics and speedup."""
        rows: List[Mapping[str, Any]] = []
        for report in self.results:
            row = dict(report.summary())
            row["speedup"] = self.speedup(report)
            rows.append(row)
        columns = [
            "strategy",
            "workers",
            "repetitions",
            "warmup",
            "min",
            "median",
            "mean",
            "std",
            "max",
            "mean_allocations",
            "mean_peak_bytes",
            "speedup",
        ]
        return pd.DataFrame(rows, columns=columns)

    def report(self) -> str:
        """Generate a text report of benchmark results."""
        lines = ["Reduction Strategy Benchmark Results", "=" * 78]
        lines.append(
            f"{'Strategy':<14} | {'Workers':<7} | {'Min (s)':<10} | {'Median (s)':<10} | "
            f"{'Mean (s)':<10} | {'Std (s)':<10} | {'Speedup':<7}"
        )
        lines.append("-" * 78)
        for res in sorted(self.results, key=lambda x: x.median):
            lines.append(
                f"{res.strategy:<14} | {res.workers:<7} | {res.min:<10.6f} | {res.median:<10.6f} | "
                f"{res.mean:<10.6f} | {res.std:<10.6f} | {self.speedup(res):<7.2f}"
            )
        return "\n".join(lines)


__all__ = [
    "BenchmarkReport",
    "Sample",
    "SampleSet",
    "StrategyBenchmark",
    "run",
    "verify_consistency",
]
