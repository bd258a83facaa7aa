"""Execution strategies for parallel map-reduce.

Four interchangeable strategies sit behind one :meth:`ReductionExecutor.reduce`
call:

* ``serial`` folds on the calling thread in index order.
* ``partitioned`` gives each worker one partition and one private slot; the
  slots are folded on the calling thread after every worker has joined.
* ``atomic`` uses the same partitions but every worker absorbs each element
  into one shared slot under a lock.
* ``work_stealing`` queues many more chunks than workers; workers claim chunks
  until the queue is empty and keep a private partial result.

Any transform failure stops further dispatch, the pool is drained, and the
first failure is raised as :class:`TransformFailure`.
"""

from __future__ import annotations

import contextvars
import logging
import queue
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from enum import Enum
from functools import partial
from typing import Any, Callable, List, Mapping, Sequence

from .accumulator import AccumulatorLike, resolve_accumulator
from .config import ReductionConfig, TelemetryCallback
from .logging import logging_context
from .partition import Partition, plan, plan_chunks, require_int
from .utils.exceptions import InvalidConfiguration, TransformFailure

logger = logging.getLogger(__name__)

Transform = Callable[[Any], Any]


class StrategyTag(str, Enum):
    """Enumerated execution strategies."""

    SERIAL = "serial"
    PARTITIONED_THREADED = "partitioned"
    ATOMIC_THREADED = "atomic"
    WORK_STEALING = "work_stealing"

    @classmethod
    def parse(cls, value: "StrategyTag | str") -> "StrategyTag":
        """Return the tag for ``value``, accepting common spellings."""
        if isinstance(value, StrategyTag):
            return value
        if isinstance(value, str):
            key = value.strip().lower().replace("-", "_")
            tag = _ALIASES.get(key)
            if tag is not None:
                return tag
        raise InvalidConfiguration(
            f"Unknown strategy {value!r}",
            details={"strategy": value, "choices": [t.value for t in cls]},
        )

    def __str__(self) -> str:
        return self.value


_ALIASES = {
    "serial": StrategyTag.SERIAL,
    "sequential": StrategyTag.SERIAL,
    "partitioned": StrategyTag.PARTITIONED_THREADED,
    "partitioned_threaded": StrategyTag.PARTITIONED_THREADED,
    "threads": StrategyTag.PARTITIONED_THREADED,
    "atomic": StrategyTag.ATOMIC_THREADED,
    "atomic_threaded": StrategyTag.ATOMIC_THREADED,
    "work_stealing": StrategyTag.WORK_STEALING,
    "workstealing": StrategyTag.WORK_STEALING,
    "stealing": StrategyTag.WORK_STEALING,
    "dynamic": StrategyTag.WORK_STEALING,
}


@dataclass
class ReductionMetrics:
    """Counters collected by :class:`ReductionExecutor`."""

    invocations: int = 0
    elements: int = 0
    failures: int = 0
    chunks_claimed: int = 0
    total_duration: float = 0.0
    max_workers: int = 0

    def snapshot(self) -> Mapping[str, int | float]:
        """Return the metrics as a serialisable mapping."""
        return {
            "invocations": self.invocations,
            "elements": self.elements,
            "failures": self.failures,
            "chunks_claimed": self.chunks_claimed,
            "total_duration": self.total_duration,
            "max_workers": self.max_workers,
        }


class _Cancellation:
    """Stop flag plus first-failure slot shared by the workers of one call."""

    def __init__(self) -> None:
        self._stop = threading.Event()
        self._lock = threading.Lock()
        self.error: BaseException | None = None
        self.index: int | None = None

    @property
    def stopped(self) -> bool:
        return self._stop.is_set()

    def record(self, index: int, exc: BaseException) -> None:
        with self._lock:
            if self.error is None:
                self.error = exc
                self.index = index
        self._stop.set()


class _AtomicSlot:
    """Shared accumulator whose read-modify-write is serialised by a lock."""

    def __init__(self, accumulator: AccumulatorLike) -> None:
        self._accumulator = accumulator
        self._lock = threading.Lock()
        self.value = accumulator.identity()

    def absorb(self, value: Any) -> None:
        with self._lock:
            self.value = self._accumulator.absorb(self.value, value)


def _fold_range(
    items: Sequence[Any],
    transform: Transform,
    accumulator: AccumulatorLike,
    part: Partition,
    cancel: _Cancellation,
    initial: Any,
) -> Any:
    """Fold ``items[part]`` into ``initial``, stopping early once ``cancel`` is set."""
    acc = initial
    for index in range(part.start, part.end):
        if cancel.stopped:
            return acc
        try:
            value = transform(items[index])
        except Exception as exc:
            cancel.record(index, exc)
            return acc
        acc = accumulator.absorb(acc, value)
    return acc


def _submit(pool: ThreadPoolExecutor, fn: Callable[..., Any], *args: Any) -> Future:
    """Submit ``fn`` so that it runs inside a copy of the caller's logging context."""
    return pool.submit(contextvars.copy_context().run, fn, *args)


class ReductionExecutor:
    """Facade that resolves a strategy tag and runs one reduction per call."""

    def __init__(self, config: ReductionConfig | None = None) -> None:
        """Store configuration and metric state for later reduce calls."""
        self.config = config if config is not None else ReductionConfig()
        self.metrics = ReductionMetrics()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    def reduce(
        self,
        items: Sequence[Any],
        transform: Transform,
        *,
        strategy: StrategyTag | str | None = None,
        workers: int | None = None,
        accumulator: AccumulatorLike | str | None = None,
    ) -> Any:
        """Transform every element of ``items`` and fold the results.

        Parameters
        ----------
        items : Sequence
            Indexable, fixed-length input; never copied.
        transform : callable
            Per-element function. Exceptions it raises surface as
            :class:`TransformFailure`.
        strategy : StrategyTag or str, optional
            Overrides ``config.strategy``.
        workers : int, optional
            Overrides ``config.workers``; defaults to the CPU count.
        accumulator : AccumulatorLike or str, optional
            Merge primitive; defaults to summation.

        Returns
        -------
        Any
            The combined result, or ``accumulator.identity()`` for empty input.

        Raises
        ------
        InvalidConfiguration
            Before any work is scheduled, for bad options or input.
        TransformFailure
            When ``transform`` raised for some element.
        """
        tag = StrategyTag.parse(strategy if strategy is not None else self.config.strategy)
        n_workers = require_int(
            "workers",
            workers if workers is not None else self.config.effective_workers,
            minimum=1,
        )
        acc = resolve_accumulator(accumulator)
        if not callable(transform):
            raise InvalidConfiguration(
                "transform must be callable", details={"transform": repr(transform)}
            )
        if not hasattr(items, "__len__") or not hasattr(items, "__getitem__"):
            raise InvalidConfiguration(
                "input must be an indexable, fixed-length sequence",
                details={"input_type": type(items).__name__},
            )

        strategy_fn = self._resolve_strategy(tag)
        length = len(items)
        self._emit(
            "reduction_start",
            {"strategy": tag.value, "workers": n_workers, "items": length},
        )
        start = time.perf_counter()
        with logging_context(strategy=tag.value, workers=n_workers):
            logger.debug("Reducing %d items with %s on %d workers", length, tag.value, n_workers)
            try:
                result = strategy_fn(items, transform, acc, workers=n_workers)
            except TransformFailure as exc:
                self.metrics.failures += 1
                self._emit(
                    "reduction_failure",
                    {"strategy": tag.value, "workers": n_workers, "error": repr(exc.__cause__)},
                )
                logger.debug("Reduction failed: %s", exc)
                raise
        duration = time.perf_counter() - start
        self.metrics.invocations += 1
        self.metrics.elements += length
        self.metrics.total_duration += duration
        self.metrics.max_workers = max(self.metrics.max_workers, n_workers)
        self._emit(
            "reduction_complete",
            {
                "strategy": tag.value,
                "workers": n_workers,
                "items": length,
                "duration": duration,
            },
        )
        return result

    # ------------------------------------------------------------------
    # Strategy selection
    # ------------------------------------------------------------------
    def _resolve_strategy(self, tag: StrategyTag) -> Callable[..., Any]:
        """Return the concrete strategy implementation for ``tag``."""
        if tag is StrategyTag.PARTITIONED_THREADED:
            return self._partitioned_strategy
        if tag is StrategyTag.ATOMIC_THREADED:
            return self._atomic_strategy
        if tag is StrategyTag.WORK_STEALING:
            return partial(
                self._work_stealing_strategy,
                chunks_per_worker=self.config.chunks_per_worker,
            )
        return self._serial_strategy

    # ------------------------------------------------------------------
    # Individual strategies
    # ------------------------------------------------------------------
    def _serial_strategy(
        self,
        items: Sequence[Any],
        transform: Transform,
        accumulator: AccumulatorLike,
        *,
        workers: int = 1,
    ) -> Any:
        """Fold in index order on the calling thread."""
        acc = accumulator.identity()
        for index in range(len(items)):
            try:
                value = transform(items[index])
            except Exception as exc:
                raise self._failure(StrategyTag.SERIAL, index, exc) from exc
            acc = accumulator.absorb(acc, value)
        return acc

    def _partitioned_strategy(
        self,
        items: Sequence[Any],
        transform: Transform,
        accumulator: AccumulatorLike,
        *,
        workers: int = 1,
    ) -> Any:
        """One partition and one private slot per worker, merged after the join."""
        partitions = plan(len(items), workers)
        if not partitions:
            return accumulator.identity()
        cancel = _Cancellation()
        slots: List[Any] = [accumulator.identity() for _ in partitions]

        def work(slot: int, part: Partition) -> None:
            slots[slot] = _fold_range(
                items, transform, accumulator, part, cancel, accumulator.identity()
            )

        with ThreadPoolExecutor(
            max_workers=len(partitions), thread_name_prefix="reduction-partitioned"
        ) as pool:
            futures = [_submit(pool, work, slot, part) for slot, part in enumerate(partitions)]
        self._raise_on_failure(StrategyTag.PARTITIONED_THREADED, cancel, futures)

        result = accumulator.identity()
        for partial_result in slots:
            result = accumulator.combine(result, partial_result)
        return result

    def _atomic_strategy(
        self,
        items: Sequence[Any],
        transform: Transform,
        accumulator: AccumulatorLike,
        *,
        workers: int = 1,
    ) -> Any:
        """Same partitions as ``partitioned`` but a single lock-guarded shared slot."""
        partitions = plan(len(items), workers)
        if not partitions:
            return accumulator.identity()
        cancel = _Cancellation()
        shared = _AtomicSlot(accumulator)

        def work(part: Partition) -> None:
            for index in range(part.start, part.end):
                if cancel.stopped:
                    return
                try:
                    value = transform(items[index])
                except Exception as exc:
                    cancel.record(index, exc)
                    return
                shared.absorb(value)

        with ThreadPoolExecutor(
            max_workers=len(partitions), thread_name_prefix="reduction-atomic"
        ) as pool:
            futures = [_submit(pool, work, part) for part in partitions]
        self._raise_on_failure(StrategyTag.ATOMIC_THREADED, cancel, futures)
        return shared.value

    def _work_stealing_strategy(
        self,
        items: Sequence[Any],
        transform: Transform,
        accumulator: AccumulatorLike,
        *,
        workers: int = 1,
        chunks_per_worker: int = 1,
    ) -> Any:
        """Workers claim chunks from a shared queue until it is empty."""
        chunks = plan_chunks(len(items), workers, chunks_per_worker)
        if not chunks:
            return accumulator.identity()
        pending: "queue.Queue[Partition]" = queue.Queue()
        for chunk in chunks:
            pending.put(chunk)
        cancel = _Cancellation()
        n_threads = min(workers, len(chunks))
        slots: List[Any] = [accumulator.identity() for _ in range(n_threads)]
        claims: List[int] = [0] * n_threads

        def work(slot: int) -> None:
            acc = accumulator.identity()
            while not cancel.stopped:
                try:
                    chunk = pending.get_nowait()
                except queue.Empty:
                    break
                claims[slot] += 1
                acc = _fold_range(items, transform, accumulator, chunk, cancel, acc)
            slots[slot] = acc

        with ThreadPoolExecutor(
            max_workers=n_threads, thread_name_prefix="reduction-stealing"
        ) as pool:
            futures = [_submit(pool, work, slot) for slot in range(n_threads)]
        self.metrics.chunks_claimed += sum(claims)
        self._raise_on_failure(StrategyTag.WORK_STEALING, cancel, futures)
        logger.debug("Chunk claims per worker: %s", claims)

        result = accumulator.identity()
        for partial_result in slots:
            result = accumulator.combine(result, partial_result)
        return result

    # ------------------------------------------------------------------
    # Failure handling
    # ------------------------------------------------------------------
    @staticmethod
    def _failure(tag: StrategyTag, index: int | None, exc: BaseException) -> TransformFailure:
        return TransformFailure(
            f"transform failed at index {index} under {tag.value}: {exc!r}",
            details={"strategy": tag.value, "index": index},
        )

    def _raise_on_failure(
        self, tag: StrategyTag, cancel: _Cancellation, futures: List[Future]
    ) -> None:
        """Propagate the first transform error, then any worker-internal error.

        Called only after the pool has been joined, so no worker is running.
        """
        if cancel.error is not None:
            raise self._failure(tag, cancel.index, cancel.error) from cancel.error
        for future in futures:
            future.result()

    # ------------------------------------------------------------------
    # Telemetry
    # ------------------------------------------------------------------
    def _emit(self, event: str, payload: Mapping[str, Any]) -> None:
        """Emit telemetry payloads guarding against user callback failures."""
        callback: TelemetryCallback | None = self.config.telemetry
        if callback is None:
            return
        try:
            callback(event, payload)
        except Exception as exc:
            logger.warning("Reduction telemetry callback failed for %s: %s", event, exc)


def reduce(
    strategy: StrategyTag | str,
    items: Sequence[Any],
    transform: Transform,
    workers: int | None = None,
    *,
    accumulator: AccumulatorLike | str | None = None,
    config: ReductionConfig | None = None,
) -> Any:
    """Run one reduction of ``transform`` over ``items`` under ``strategy``.

    Examples
    --------
    >>> reduce("partitioned", [1.0, 2.0, 3.0, 4.0, 5.0], lambda x: x, workers=2)
    15.0
    """
    executor = ReductionExecutor(config)
    return executor.reduce(
        items, transform, strategy=strategy, workers=workers, accumulator=accumulator
    )


__all__ = [
    "ReductionExecutor",
    "ReductionMetrics",
    "StrategyTag",
    "Transform",
    "reduce",
]
