"""Exception hierarchy for reduction_bench.

All library errors inherit from :class:`ReductionError` and accept a
structured ``details`` payload so callers and the CLI can report which
strategy, element or option was involved.
"""

from __future__ import annotations

from typing import Any

__all__ = [
    "ReductionError",
    "InvalidConfiguration",
    "TransformFailure",
    "ConsistencyViolation",
    "explain_exception",
]


class ReductionError(Exception):
    """Base class for library-specific errors."""

    def __init__(self, message: str, *, details: dict[str, Any] | None = None) -> None:
        """Attach structured error details alongside the user-facing message."""
        super().__init__(message)
        self.details: dict[str, Any] | None = details

    def __repr__(self) -> str:  # pragma: no cover - repr stability check in tests
        """Return the exception representation with the message payload."""
        cls = self.__class__.__name__
        return f"{cls}({super().__str__()!r})"


class InvalidConfiguration(ReductionError):
    """Worker count, repetition count, warmup or chunking options are out of range."""


class TransformFailure(ReductionError):
    """The caller-supplied transform raised while processing an element.

    The original exception is available as ``__cause__``.
    """


class ConsistencyViolation(ReductionError):
    """Two strategies disagreed on the combined result beyond tolerance."""


def explain_exception(e: Exception) -> str:
    """Return a human-readable multi-line description of an exception.

    Parameters
    ----------
    e : Exception
        The exception to format.

    Returns
    -------
    str
        For ``ReductionError`` the class name, message and details (when
        present); for any other exception its string form.

    Examples
    --------
    >>> e = InvalidConfiguration("workers must be positive", details={"workers": 0})
    >>> print(explain_exception(e))
    InvalidConfiguration: workers must be positive
      Details: {'workers': 0}
    """
    if isinstance(e, ReductionError):
        lines = [f"{e.__class__.__name__}: {str(e)}"]
        if e.details is not None:
            lines.append(f"  Details: {e.details}")
        if e.__cause__ is not None:
            lines.append(f"  Caused by: {e.__cause__!r}")
        return "\n".join(lines)
    return str(e)
