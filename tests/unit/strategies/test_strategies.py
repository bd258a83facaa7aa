from __future__ import annotations

import math
import threading
from functools import partial

import numpy as np
import pytest

from reduction_bench.accumulator import CountAccumulator, MaxAccumulator, SumAccumulator
from reduction_bench.config import ReductionConfig
from reduction_bench.strategies import ReductionExecutor, ReductionMetrics, StrategyTag, reduce
from reduction_bench.utils.exceptions import InvalidConfiguration, TransformFailure


def identity(x):
    return x


def _reduction_threads():
    return [t for t in threading.enumerate() if t.name.startswith("reduction-")]


def test_scenario_small_sum(strategy):
    assert reduce(strategy, [1.0, 2.0, 3.0, 4.0, 5.0], identity, workers=2) == 15.0


def test_empty_input_returns_identity(strategy):
    assert reduce(strategy, [], identity, workers=4) == 0
    assert reduce(strategy, [], identity, workers=4, accumulator="max") == -math.inf


@pytest.mark.parametrize("workers", [1, 2, 3, 8])
def test_float_results_agree_with_serial(strategy, float_input, workers):
    expected = reduce(StrategyTag.SERIAL, float_input, math.exp, workers=1)
    result = reduce(strategy, float_input, math.exp, workers=workers)
    assert math.isclose(result, expected, rel_tol=1e-9)


@pytest.mark.parametrize("workers", [1, 2, 5, 16])
def test_integer_results_are_exact(strategy, int_input, workers):
    expected = sum(int(x) * 3 for x in int_input)
    result = reduce(strategy, int_input, lambda x: x * 3, workers=workers)
    assert int(result) == expected


def test_no_lost_or_duplicated_work(strategy):
    items = list(range(257))
    for workers in range(1, 65):
        assert reduce(strategy, items, identity, workers=workers, accumulator=CountAccumulator()) == 257


def test_serial_is_bit_reproducible(float_input):
    first = reduce("serial", float_input, math.sin, workers=1)
    second = reduce("serial", float_input, math.sin, workers=7)
    assert first == second


def test_custom_accumulator(strategy):
    items = np.arange(100)
    assert reduce(strategy, items, lambda x: -abs(x - 40), workers=3, accumulator=MaxAccumulator()) == 0


def _fail_at(target, x):
    if x == target:
        raise ValueError(f"bad element {x}")
    return x


@pytest.mark.parametrize("workers", [1, 2, 4])
def test_failure_propagates_as_transform_failure(strategy, workers):
    items = list(range(50))
    with pytest.raises(TransformFailure) as exc_info:
        reduce(strategy, items, partial(_fail_at, 17), workers=workers)
    err = exc_info.value
    assert isinstance(err.__cause__, ValueError)
    assert err.details == {"strategy": strategy.value, "index": 17}


def test_failure_leaves_no_running_workers(threaded_strategy):
    items = list(range(1_000))
    with pytest.raises(TransformFailure):
        reduce(threaded_strategy, items, partial(_fail_at, 500), workers=8)
    assert _reduction_threads() == []


def test_failure_stops_dispatch_on_single_worker(strategy):
    calls = []

    def transform(x):
        calls.append(x)
        raise RuntimeError("first element fails")

    with pytest.raises(TransformFailure):
        reduce(strategy, list(range(100)), transform, workers=1)
    assert calls == [0]


def test_first_error_is_reported_once_per_call(threaded_strategy):
    barrier = threading.Barrier(2, timeout=5)

    def transform(x):
        if x in (0, 5):
            barrier.wait()
            raise ValueError(x)
        return x

    with pytest.raises(TransformFailure) as exc_info:
        reduce(threaded_strategy, list(range(10)), transform, workers=2)
    assert exc_info.value.details["index"] in (0, 5)


def test_failure_does_not_poison_later_calls(strategy):
    executor = ReductionExecutor(ReductionConfig(strategy=strategy.value, workers=3))
    with pytest.raises(TransformFailure):
        executor.reduce([1, 2, 0, 4], lambda x: 1 / x)
    assert executor.reduce([1, 2, 4], lambda x: x) == 7
    assert executor.metrics.failures == 1
    assert executor.metrics.invocations == 1


def test_worker_logging_context_follows_the_call(threaded_strategy):
    from reduction_bench.logging import get_logging_context

    seen = []

    def transform(x):
        seen.append(get_logging_context().get("strategy"))
        return x

    reduce(threaded_strategy, list(range(20)), transform, workers=4)
    assert set(seen) == {threaded_strategy.value}


@pytest.mark.parametrize(
    "kwargs",
    [
        {"workers": 0},
        {"workers": -2},
        {"workers": 2.5},
    ],
)
def test_invalid_workers_rejected_before_work(strategy, kwargs):
    calls = []
    with pytest.raises(InvalidConfiguration):
        reduce(strategy, [1, 2, 3], calls.append, **kwargs)
    assert calls == []


def test_invalid_input_and_transform_rejected():
    with pytest.raises(InvalidConfiguration, match="callable"):
        reduce("serial", [1], "not callable", workers=1)
    with pytest.raises(InvalidConfiguration, match="indexable"):
        reduce("serial", (x for x in range(3)), identity, workers=1)


def test_strategy_tag_parse():
    assert StrategyTag.parse("serial") is StrategyTag.SERIAL
    assert StrategyTag.parse("Partitioned") is StrategyTag.PARTITIONED_THREADED
    assert StrategyTag.parse("atomic_threaded") is StrategyTag.ATOMIC_THREADED
    assert StrategyTag.parse("work-stealing") is StrategyTag.WORK_STEALING
    assert StrategyTag.parse(StrategyTag.SERIAL) is StrategyTag.SERIAL
    with pytest.raises(InvalidConfiguration) as exc_info:
        StrategyTag.parse("gpu")
    assert "work_stealing" in exc_info.value.details["choices"]


@pytest.mark.parametrize(
    "tag, thread_prefix",
    [
        (StrategyTag.SERIAL, None),
        (StrategyTag.PARTITIONED_THREADED, "reduction-partitioned"),
        (StrategyTag.ATOMIC_THREADED, "reduction-atomic"),
        (StrategyTag.WORK_STEALING, "reduction-stealing"),
    ],
)
def test_resolve_strategy_dispatches_to_matching_runner(tag, thread_prefix):
    executor = ReductionExecutor(ReductionConfig(chunks_per_worker=3))
    names = set()

    def record(x):
        names.add(threading.current_thread().name)
        return x

    runner = executor._resolve_strategy(tag)
    assert runner(list(range(12)), record, SumAccumulator(), workers=2) == 66
    if thread_prefix is None:
        assert names == {threading.current_thread().name}
    else:
        assert names and all(name.startswith(thread_prefix) for name in names)


def test_work_stealing_uses_configured_chunks_per_worker():
    executor = ReductionExecutor(ReductionConfig(chunks_per_worker=3))
    executor.reduce(list(range(100)), identity, strategy="work_stealing", workers=2)
    assert executor.metrics.chunks_claimed == 6


def test_metrics_snapshot_and_updates():
    executor = ReductionExecutor(ReductionConfig(workers=2))
    executor.reduce(list(range(10)), identity, strategy="partitioned")
    executor.reduce(list(range(5)), identity, strategy="serial")
    snapshot = executor.metrics.snapshot()
    assert snapshot["invocations"] == 2
    assert snapshot["elements"] == 15
    assert snapshot["max_workers"] == 2
    assert snapshot["total_duration"] >= 0.0
    assert ReductionMetrics().snapshot()["failures"] == 0


def test_work_stealing_claims_every_chunk():
    executor = ReductionExecutor(ReductionConfig(workers=4, chunks_per_worker=5))
    assert executor.reduce(list(range(1_000)), identity, strategy="work_stealing") == 499_500
    assert executor.metrics.chunks_claimed == 20


def test_work_stealing_balances_uneven_cost():
    def uneven(x):
        # the first chunk is expensive; other workers keep claiming
        if x < 10:
            threading.Event().wait(0.01)
        return x

    executor = ReductionExecutor(ReductionConfig(workers=2, chunks_per_worker=10))
    assert executor.reduce(list(range(200)), uneven, strategy="work_stealing") == 19_900


def test_telemetry_events_and_callback_failures(caplog):
    events = []

    def telemetry(event, payload):
        events.append((event, dict(payload)))

    executor = ReductionExecutor(ReductionConfig(workers=2, telemetry=telemetry))
    executor.reduce([1, 2, 3], identity, strategy="atomic")
    assert [name for name, _ in events] == ["reduction_start", "reduction_complete"]
    assert events[1][1]["items"] == 3

    events.clear()
    with pytest.raises(TransformFailure):
        executor.reduce([1, 0], lambda x: 1 / x, strategy="serial")
    assert [name for name, _ in events] == ["reduction_start", "reduction_failure"]

    def broken(event, payload):
        raise RuntimeError("telemetry down")

    executor = ReductionExecutor(ReductionConfig(workers=2, telemetry=broken))
    with caplog.at_level("WARNING", logger="reduction_bench.strategies"):
        assert executor.reduce([1, 2, 3], identity, strategy="serial") == 6
    assert "telemetry callback failed" in caplog.text
