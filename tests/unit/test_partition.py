from __future__ import annotations

import numpy as np
import pytest

from reduction_bench.partition import Partition, plan, plan_chunks
from reduction_bench.utils.exceptions import InvalidConfiguration


def test_plan_ten_over_three():
    assert plan(10, 3) == [Partition(0, 4), Partition(4, 7), Partition(7, 10)]
    assert [len(p) for p in plan(10, 3)] == [4, 3, 3]


def test_plan_empty_input_has_no_partitions():
    assert plan(0, 1) == []
    assert plan(0, 8) == []


def test_plan_more_workers_than_elements():
    partitions = plan(3, 8)
    assert partitions == [Partition(0, 1), Partition(1, 2), Partition(2, 3)]


@pytest.mark.parametrize("length", [0, 1, 2, 7, 10, 63, 64, 65, 1000, 1001])
@pytest.mark.parametrize("workers", [1, 2, 3, 4, 7, 16, 64])
def test_plan_covers_range_without_gaps_or_overlap(length, workers):
    partitions = plan(length, workers)
    assert len(partitions) == min(workers, length)
    covered = [index for part in partitions for index in part]
    assert covered == list(range(length))
    for left, right in zip(partitions, partitions[1:]):
        assert left.end == right.start
    if partitions:
        sizes = [len(p) for p in partitions]
        assert max(sizes) - min(sizes) <= 1
        assert min(sizes) >= 1


def test_plan_accepts_numpy_integers():
    assert plan(np.int64(4), np.int32(2)) == [Partition(0, 2), Partition(2, 4)]


@pytest.mark.parametrize("workers", [0, -1, 1.5, "2", True, None])
def test_plan_rejects_bad_worker_counts(workers):
    with pytest.raises(InvalidConfiguration) as exc_info:
        plan(10, workers)
    assert exc_info.value.details == {"workers": workers}


def test_plan_rejects_negative_length():
    with pytest.raises(InvalidConfiguration, match="non-negative"):
        plan(-1, 2)


def test_plan_chunks_multiplies_workers():
    chunks = plan_chunks(100, 4, 8)
    assert len(chunks) == 32
    assert chunks[0] == Partition(0, 4)
    assert chunks[-1].end == 100


def test_plan_chunks_rejects_zero_chunks():
    with pytest.raises(InvalidConfiguration, match="chunks_per_worker"):
        plan_chunks(100, 4, 0)


def test_partition_str():
    assert str(Partition(4, 7)) == "[4,7)"
