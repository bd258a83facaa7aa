"""Runtime configuration for reductions and benchmark runs.

Settings resolve in three layers: dataclass defaults, the
``[tool.reduction_bench]`` table of ``pyproject.toml`` in the current working
directory, then comma-separated ``RB_REDUCE`` environment tokens, e.g.::

    RB_REDUCE="work_stealing,workers=8,chunks=16,repetitions=200,warmup=5,trace"
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any, Callable, Dict, Mapping, Sequence

try:
    import tomllib as _tomllib
except ModuleNotFoundError:  # pragma: no cover - fallback for <3.11
    try:  # pragma: no cover - optional dependency path
        import tomli as _tomllib  # type: ignore[assignment]
    except ModuleNotFoundError:  # pragma: no cover - tomllib unavailable
        _tomllib = None  # type: ignore[assignment]

from .partition import require_int
from .utils.exceptions import InvalidConfiguration

logger = logging.getLogger(__name__)

TelemetryCallback = Callable[[str, Mapping[str, Any]], None]

ENV_VAR = "RB_REDUCE"
DEFAULT_REPETITIONS = 1000
DEFAULT_WARMUP = 10
DEFAULT_CHUNKS_PER_WORKER = 8
DEFAULT_REL_TOLERANCE = 1e-9

_STRATEGY_TOKENS = {"serial", "partitioned", "atomic", "work_stealing", "work-stealing", "stealing"}


def default_workers() -> int:
    """Return the available hardware parallelism (at least one)."""
    return os.cpu_count() or 1


def read_pyproject_section(path: Sequence[str], root: Path | None = None) -> Dict[str, Any]:
    """Return a mapping from the requested ``pyproject.toml`` section.

    Parameters
    ----------
    path : Sequence[str]
        Nested keys to traverse, e.g. ``("tool", "reduction_bench")``.
    root : Path, optional
        Directory holding ``pyproject.toml``; defaults to the working directory.

    Returns
    -------
    Dict[str, Any]
        The section contents, or an empty dict when the file or section is
        missing or unreadable.
    """
    if _tomllib is None:
        return {}

    candidate = (root or Path.cwd()) / "pyproject.toml"
    if not candidate.exists():
        return {}
    try:
        with candidate.open("rb") as fh:
            data = _tomllib.load(fh)
    except (OSError, ValueError) as exc:
        logger.debug("Ignoring unreadable %s: %s", candidate, exc)
        return {}

    cursor: Any = data
    for key in path:
        if isinstance(cursor, dict) and key in cursor:
            cursor = cursor[key]
        else:
            return {}
    if isinstance(cursor, dict):
        return dict(cursor)
    return {}


def _parse_int(token: str, key: str) -> int:
    raw = token.split("=", 1)[1].strip()
    try:
        return int(raw)
    except ValueError as exc:
        raise InvalidConfiguration(
            f"{ENV_VAR} token {token!r} is not an integer", details={key: raw}
        ) from exc


@dataclass
class ReductionConfig:
    """Configuration options shared by ``reduce`` and the benchmark harness."""

    strategy: str = "serial"
    workers: int | None = None
    repetitions: int = DEFAULT_REPETITIONS
    warmup: int = DEFAULT_WARMUP
    chunks_per_worker: int = DEFAULT_CHUNKS_PER_WORKER
    rel_tolerance: float = DEFAULT_REL_TOLERANCE
    trace_allocations: bool = False
    telemetry: TelemetryCallback | None = None

    @property
    def effective_workers(self) -> int:
        """Worker count with the hardware default applied."""
        return self.workers if self.workers is not None else default_workers()

    def validate(self) -> "ReductionConfig":
        """Raise :class:`InvalidConfiguration` for out-of-range options; return ``self``."""
        from .strategies import StrategyTag

        StrategyTag.parse(self.strategy)
        if self.workers is not None:
            require_int("workers", self.workers, minimum=1)
        require_int("repetitions", self.repetitions, minimum=1)
        require_int("warmup", self.warmup, minimum=0)
        require_int("chunks_per_worker", self.chunks_per_worker, minimum=1)
        if not isinstance(self.trace_allocations, bool):
            raise InvalidConfiguration(
                f"trace_allocations must be a boolean, got {self.trace_allocations!r}",
                details={"trace_allocations": self.trace_allocations},
            )
        if not self.rel_tolerance >= 0.0:
            raise InvalidConfiguration(
                f"rel_tolerance must be non-negative, got {self.rel_tolerance!r}",
                details={"rel_tolerance": self.rel_tolerance},
            )
        return self

    def with_overrides(self, **overrides: Any) -> "ReductionConfig":
        """Return a copy with the non-``None`` ``overrides`` applied."""
        return replace(self, **{k: v for k, v in overrides.items() if v is not None})

    @classmethod
    def from_pyproject(
        cls, base: "ReductionConfig | None" = None, root: Path | None = None
    ) -> "ReductionConfig":
        """Merge ``[tool.reduction_bench]`` settings with an optional ``base``."""
        cfg = replace(base) if base is not None else cls()
        section = read_pyproject_section(("tool", "reduction_bench"), root=root)
        known = {f.name for f in fields(cls)} - {"telemetry"}
        for key, value in section.items():
            name = key.replace("-", "_")
            if name not in known:
                logger.debug("Ignoring unknown [tool.reduction_bench] key %r", key)
                continue
            setattr(cfg, name, value)
        return cfg

    @classmethod
    def from_env(cls, base: "ReductionConfig | None" = None) -> "ReductionConfig":
        """Merge ``RB_REDUCE`` overrides with an optional ``base`` configuration."""
        cfg = replace(base) if base is not None else cls()
        raw = os.getenv(ENV_VAR)
        if not raw:
            return cfg
        tokens = [segment.strip() for segment in raw.split(",") if segment.strip()]
        for token in tokens:
            lowered = token.lower()
            if lowered in _STRATEGY_TOKENS:
                cfg.strategy = lowered
                continue
            if lowered.startswith("workers="):
                cfg.workers = _parse_int(token, "workers")
                continue
            if lowered.startswith("repetitions="):
                cfg.repetitions = _parse_int(token, "repetitions")
                continue
            if lowered.startswith("warmup="):
                cfg.warmup = _parse_int(token, "warmup")
                continue
            if lowered.startswith("chunks="):
                cfg.chunks_per_worker = _parse_int(token, "chunks_per_worker")
                continue
            if lowered in {"trace", "trace_allocations"}:
                cfg.trace_allocations = True
                continue
            if lowered.startswith("rtol="):
                try:
                    cfg.rel_tolerance = float(token.split("=", 1)[1])
                except ValueError as exc:
                    raise InvalidConfiguration(
                        f"{ENV_VAR} token {token!r} is not a float",
                        details={"rel_tolerance": token},
                    ) from exc
                continue
            logger.debug("Ignoring unknown %s token %r", ENV_VAR, token)
        return cfg

    @classmethod
    def resolve(cls, base: "ReductionConfig | None" = None) -> "ReductionConfig":
        """Apply pyproject then environment layers and validate the result."""
        return cls.from_env(cls.from_pyproject(base)).validate()


__all__ = [
    "DEFAULT_CHUNKS_PER_WORKER",
    "DEFAULT_REL_TOLERANCE",
    "DEFAULT_REPETITIONS",
    "DEFAULT_WARMUP",
    "ENV_VAR",
    "ReductionConfig",
    "TelemetryCallback",
    "default_workers",
    "read_pyproject_section",
]
