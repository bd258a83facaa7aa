"""Contiguous, balanced index partitions for threaded reductions."""

from __future__ import annotations

import numbers
from dataclasses import dataclass
from typing import Any, Iterator, List

from .utils.exceptions import InvalidConfiguration

__all__ = ["Partition", "plan", "plan_chunks", "require_int"]


@dataclass(frozen=True)
class Partition:
    """Half-open index range ``[start, end)`` owned by a single worker."""

    start: int
    end: int

    def __len__(self) -> int:
        return self.end - self.start

    def __iter__(self) -> Iterator[int]:
        return iter(range(self.start, self.end))

    def __str__(self) -> str:
        return f"[{self.start},{self.end})"


def require_int(name: str, value: Any, *, minimum: int) -> int:
    """Return ``value`` as ``int`` or raise :class:`InvalidConfiguration`."""
    if isinstance(value, bool) or not isinstance(value, numbers.Integral) or value < minimum:
        qualifier = {0: "non-negative", 1: "positive"}.get(minimum, f">= {minimum}")
        raise InvalidConfiguration(
            f"{name} must be a {qualifier} integer, got {value!r}",
            details={name: value},
        )
    return int(value)


def plan(length: int, workers: int) -> List[Partition]:
    """Split ``[0, length)`` into at most ``workers`` contiguous partitions.

    Parameters
    ----------
    length : int
        Number of input elements, ``>= 0``.
    workers : int
        Number of workers, ``>= 1``.

    Returns
    -------
    list of Partition
        ``min(workers, length)`` non-empty partitions in ascending order. The
        first ``length % workers`` partitions hold one extra element, so sizes
        never differ by more than one. An empty list when ``length == 0``.

    Raises
    ------
    InvalidConfiguration
        If ``workers <= 0`` or ``length < 0``.

    Examples
    --------
    >>> [str(p) for p in plan(10, 3)]
    ['[0,4)', '[4,7)', '[7,10)']
    """
    workers = require_int("workers", workers, minimum=1)
    length = require_int("length", length, minimum=0)
    if length == 0:
        return []
    count = min(workers, length)
    size, extra = divmod(length, count)
    partitions: List[Partition] = []
    start = 0
    for index in range(count):
        end = start + size + (1 if index < extra else 0)
        partitions.append(Partition(start, end))
        start = end
    return partitions


def plan_chunks(length: int, workers: int, chunks_per_worker: int) -> List[Partition]:
    """Return the work-stealing chunk list: ``workers * chunks_per_worker`` balanced chunks."""
    workers = require_int("workers", workers, minimum=1)
    chunks_per_worker = require_int("chunks_per_worker", chunks_per_worker, minimum=1)
    return plan(length, workers * chunks_per_worker)
