"""Merge primitives used by every reduction strategy.

An accumulator is three pure functions: ``identity`` returns the neutral
element, ``absorb`` folds one transformed element into a partial result and
``combine`` merges two partial results. ``combine`` must be associative and
commutative so that partitioned, atomic and work-stealing reductions agree
with the serial fold.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Callable, Protocol, runtime_checkable

from .utils.exceptions import InvalidConfiguration

__all__ = [
    "Accumulator",
    "AccumulatorLike",
    "CountAccumulator",
    "MaxAccumulator",
    "MinAccumulator",
    "ProductAccumulator",
    "SumAccumulator",
    "resolve_accumulator",
]


@runtime_checkable
class AccumulatorLike(Protocol):
    """Structural contract consumed by the execution strategies."""

    def identity(self) -> Any:  # pragma: no cover - protocol
        ...

    def combine(self, a: Any, b: Any) -> Any:  # pragma: no cover - protocol
        ...

    def absorb(self, acc: Any, value: Any) -> Any:  # pragma: no cover - protocol
        ...


@dataclass(frozen=True)
class Accumulator:
    """Accumulator assembled from plain callables.

    ``absorb`` defaults to ``combine`` which is correct whenever a transformed
    element is itself a partial result (sum, product, min, max).
    """

    name: str
    zero: Callable[[], Any]
    merge: Callable[[Any, Any], Any]
    fold: Callable[[Any, Any], Any] | None = None

    def identity(self) -> Any:
        """Return the neutral element."""
        return self.zero()

    def combine(self, a: Any, b: Any) -> Any:
        """Merge two partial results."""
        return self.merge(a, b)

    def absorb(self, acc: Any, value: Any) -> Any:
        """Fold one transformed element into ``acc``."""
        if self.fold is None:
            return self.merge(acc, value)
        return self.fold(acc, value)


class SumAccumulator:
    """Addition with ``0`` as identity."""

    name = "sum"

    def identity(self) -> Any:
        return 0

    def combine(self, a: Any, b: Any) -> Any:
        return a + b

    def absorb(self, acc: Any, value: Any) -> Any:
        return acc + value

    def __repr__(self) -> str:
        return "SumAccumulator()"


class CountAccumulator:
    """Counts absorbed elements, ignoring their values."""

    name = "count"

    def identity(self) -> int:
        return 0

    def combine(self, a: int, b: int) -> int:
        return a + b

    def absorb(self, acc: int, value: Any) -> int:
        return acc + 1

    def __repr__(self) -> str:
        return "CountAccumulator()"


class ProductAccumulator:
    """Multiplication with ``1`` as identity."""

    name = "product"

    def identity(self) -> Any:
        return 1

    def combine(self, a: Any, b: Any) -> Any:
        return a * b

    def absorb(self, acc: Any, value: Any) -> Any:
        return acc * value

    def __repr__(self) -> str:
        return "ProductAccumulator()"


class MaxAccumulator:
    """Maximum; ``-inf`` is the identity so empty inputs stay comparable."""

    name = "max"

    def identity(self) -> float:
        return -math.inf

    def combine(self, a: Any, b: Any) -> Any:
        return a if a >= b else b

    def absorb(self, acc: Any, value: Any) -> Any:
        return acc if acc >= value else value

    def __repr__(self) -> str:
        return "MaxAccumulator()"


class MinAccumulator:
    """Minimum; ``+inf`` is the identity."""

    name = "min"

    def identity(self) -> float:
        return math.inf

    def combine(self, a: Any, b: Any) -> Any:
        return a if a <= b else b

    def absorb(self, acc: Any, value: Any) -> Any:
        return acc if acc <= value else value

    def __repr__(self) -> str:
        return "MinAccumulator()"


_BUILTINS: dict[str, Callable[[], AccumulatorLike]] = {
    "sum": SumAccumulator,
    "count": CountAccumulator,
    "product": ProductAccumulator,
    "max": MaxAccumulator,
    "min": MinAccumulator,
}


def resolve_accumulator(value: AccumulatorLike | str | None) -> AccumulatorLike:
    """Return an accumulator instance for ``value``.

    ``None`` selects :class:`SumAccumulator`; strings name a built-in.
    """
    if value is None:
        return SumAccumulator()
    if isinstance(value, str):
        key = value.strip().lower()
        if key not in _BUILTINS:
            raise InvalidConfiguration(
                f"Unknown accumulator {value!r}",
                details={"accumulator": value, "choices": sorted(_BUILTINS)},
            )
        return _BUILTINS[key]()
    return value
