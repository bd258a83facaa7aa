"""Shared utilities used across reduction_bench."""

from .exceptions import (
    ConsistencyViolation,
    InvalidConfiguration,
    ReductionError,
    TransformFailure,
    explain_exception,
)

__all__ = [
    "ConsistencyViolation",
    "InvalidConfiguration",
    "ReductionError",
    "TransformFailure",
    "explain_exception",
]
