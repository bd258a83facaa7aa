"""Command-line entry point for running and comparing reduction strategies."""

from __future__ import annotations

import argparse
import json
import logging
import time
from pathlib import Path
from typing import Any, Dict, Sequence

from .accumulator import resolve_accumulator
from .config import ReductionConfig
from .harness import StrategyBenchmark, _to_builtin
from .logging import configure_cli_logging
from .partition import plan
from .strategies import ReductionExecutor, StrategyTag
from .utils.exceptions import (
    ConsistencyViolation,
    InvalidConfiguration,
    TransformFailure,
    explain_exception,
)
from .workloads import WORKLOADS, get_workload, make_input

logger = logging.getLogger(__name__)

_STRATEGY_CHOICES = tuple(tag.value for tag in StrategyTag)
_ACCUMULATOR_CHOICES = ("sum", "count", "product", "max", "min")


def _emit_header(title: str) -> None:
    """Print a section header for CLI output."""
    print(title)
    print("=" * len(title))


def _base_config(args: argparse.Namespace) -> ReductionConfig:
    """Resolve pyproject/env layers, then apply explicit command-line options."""
    cfg = ReductionConfig.from_env(ReductionConfig.from_pyproject())
    return cfg.with_overrides(
        repetitions=getattr(args, "repetitions", None),
        warmup=getattr(args, "warmup", None),
        chunks_per_worker=getattr(args, "chunks", None),
        rel_tolerance=getattr(args, "rtol", None),
        trace_allocations=getattr(args, "trace_allocations", None),
    ).validate()


def _cmd_plan(args: argparse.Namespace) -> int:
    """Handle the `plan` subcommand."""
    partitions = plan(args.length, args.workers)
    _emit_header(f"Partitions for length={args.length}, workers={args.workers}")
    for index, part in enumerate(partitions):
        print(f"  {index:>3}: {part} size={len(part)}")
    return 0


def _cmd_reduce(args: argparse.Namespace) -> int:
    """Handle the `reduce` subcommand."""
    cfg = _base_config(args)
    items = make_input(args.length, args.seed, integers=args.integers)
    executor = ReductionExecutor(cfg)
    strategies = args.strategy or list(_STRATEGY_CHOICES)
    for strategy in strategies:
        result = executor.reduce(
            items,
            get_workload(args.workload),
            strategy=strategy,
            workers=args.workers,
            accumulator=resolve_accumulator(args.accumulator),
        )
        print(f"{strategy:<14} {_to_builtin(result)!r}")
    return 0


def _cmd_bench(args: argparse.Namespace) -> int:
    """Handle the `bench` subcommand."""
    cfg = _base_config(args)
    items = make_input(args.length, args.seed, integers=args.integers)
    bench = StrategyBenchmark(
        items,
        get_workload(args.workload),
        accumulator=resolve_accumulator(args.accumulator),
        config=cfg,
    )
    bench.run(strategies=args.strategy, worker_counts=args.workers)
    print(bench.report())

    if args.output:
        payload: Dict[str, Any] = {
            "workload": args.workload,
            "length": args.length,
            "accumulator": args.accumulator,
            "reports": [report.to_dict() for report in bench.results],
            "timestamp": time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime()),
        }
        Path(args.output).write_text(
            json.dumps(payload, indent=2 if args.pretty else None, sort_keys=True),
            encoding="utf-8",
        )
        print(f"Benchmarks written to {args.output}")
    return 0


def _add_input_options(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--length", type=int, default=100_000, help="Number of input elements")
    parser.add_argument("--seed", type=int, default=0, help="Seed for the generated input")
    parser.add_argument(
        "--integers",
        action="store_true",
        help="Generate int64 input so reductions are exact",
    )
    parser.add_argument(
        "--workload",
        choices=sorted(WORKLOADS),
        default="exp_decay",
        help="Per-element transform",
    )
    parser.add_argument(
        "--accumulator",
        choices=_ACCUMULATOR_CHOICES,
        default="sum",
        help="Combine operation",
    )
    parser.add_argument(
        "--strategy",
        action="append",
        choices=_STRATEGY_CHOICES,
        help="Strategy to run (repeatable, default: all)",
    )
    parser.add_argument("--chunks", type=int, help="Work-stealing chunks per worker")


def build_parser() -> argparse.ArgumentParser:
    """Return the argument parser for the ``reduction-bench`` command."""
    parser = argparse.ArgumentParser(
        prog="reduction-bench",
        description="Run and compare serial, partitioned, atomic and work-stealing reductions",
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")
    subparsers = parser.add_subparsers(dest="command")

    plan_parser = subparsers.add_parser("plan", help="Show the partition plan")
    plan_parser.add_argument("length", type=int, help="Number of input elements")
    plan_parser.add_argument("workers", type=int, help="Number of workers")
    plan_parser.set_defaults(func=_cmd_plan)

    reduce_parser = subparsers.add_parser("reduce", help="Run one reduction per strategy")
    _add_input_options(reduce_parser)
    reduce_parser.add_argument("--workers", type=int, help="Worker count (default: CPU count)")
    reduce_parser.set_defaults(func=_cmd_reduce)

    bench_parser = subparsers.add_parser("bench", help="Benchmark and compare strategies")
    _add_input_options(bench_parser)
    bench_parser.add_argument(
        "--workers",
        type=int,
        action="append",
        help="Worker count to benchmark (repeatable, default: CPU count)",
    )
    bench_parser.add_argument("--repetitions", type=int, help="Timed invocations per run")
    bench_parser.add_argument("--warmup", type=int, help="Untimed invocations per run")
    bench_parser.add_argument("--rtol", type=float, help="Relative tolerance for result checks")
    bench_parser.add_argument(
        "--trace-allocations",
        action="store_true",
        default=None,
        help="Record allocations with tracemalloc (slows the timed calls)",
    )
    bench_parser.add_argument("--output", "-o", type=str, help="Optional JSON output file")
    bench_parser.add_argument("--pretty", action="store_true", help="Pretty-print JSON")
    bench_parser.set_defaults(func=_cmd_bench)
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    """Run the CLI and return the exit code.

    Exit codes: 0 on success, 1 when a transform failed or strategies
    disagreed, 2 on invalid configuration or missing command.
    """
    parser = build_parser()
    args = parser.parse_args(argv)
    if not getattr(args, "func", None):
        parser.print_help()
        return 2
    configure_cli_logging(verbose=args.verbose)
    try:
        return args.func(args)
    except InvalidConfiguration as exc:
        print(explain_exception(exc))
        return 2
    except (TransformFailure, ConsistencyViolation) as exc:
        logger.error("Run aborted: %s", exc)
        print(explain_exception(exc))
        return 1


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
