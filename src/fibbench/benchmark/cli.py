"""Command-line interface for the benchmark suite.

Provides the `fibbench-benchmark` command with subcommands for:
- Listing the available kernels
- Computing a single Fibonacci number
- Verifying that all kernels agree
- Running the performance suite
"""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path

from fibbench.benchmark.runner import (
    BenchmarkProgress,
    BenchmarkRunner,
    SuiteConfigError,
    default_suite_path,
    format_results_table,
    load_suite_config,
    session_to_dict,
    with_overrides,
)
from fibbench.kernels import COMPLEXITY, KERNELS, UnknownKernelError, compute
from fibbench.verify import VerificationError, verify_all


def cmd_kernels(args: argparse.Namespace) -> int:
    """List kernels."""
    print(f"{'Kernel':<12} Complexity")
    print("-" * 40)
    for name in KERNELS:
        print(f"{name:<12} {COMPLEXITY[name]}")
    return 0


def cmd_compute(args: argparse.Namespace) -> int:
    """Compute fib(n) with one kernel."""
    try:
        value = compute(args.n, args.kernel)
    except (ValueError, UnknownKernelError) as e:
        print(f"Error: {e}")
        return 1
    print(value)
    return 0


def cmd_verify(args: argparse.Namespace) -> int:
    """Check every kernel against the expected sequence and each other."""
    try:
        report = verify_all(stop=args.stop, recursive_limit=args.recursive_limit)
    except VerificationError as e:
        print(f"FAILED: {e}")
        return 1

    wrapped = ", ".join(str(n) for n in report.wraparound_indices) or "none"
    print(
        f"OK: {report.checks} checks passed for {', '.join(report.kernels)} "
        f"(n={report.agreement_range[0]}..{report.agreement_range[1]}, "
        f"recursive up to {report.recursive_limit}, wraparound at {wrapped})"
    )
    return 0


def cmd_run(args: argparse.Namespace) -> int:
    """Run benchmarks."""
    suite_path = Path(args.suite) if args.suite else default_suite_path()

    if not suite_path.exists():
        print(f"Error: Suite configuration not found: {suite_path}")
        return 1

    try:
        suite = load_suite_config(suite_path)
    except (SuiteConfigError, OSError) as e:
        print(f"Error loading suite configuration: {e}")
        return 1

    if args.group and args.group not in {g.name for g in suite.groups}:
        print(f"Error: No group named {args.group!r} in {suite_path}")
        return 1

    try:
        settings = with_overrides(
            suite.settings,
            target_cv=args.cv_target,
            min_runs=args.min_runs,
            max_runs=args.max_runs,
            warmup=args.warmup,
            min_sample_time=args.min_sample_time,
        )
        if args.jobs < 1:
            raise ValueError("--jobs must be at least 1")
    except ValueError as e:
        print(f"Error: invalid run settings: {e}")
        return 1

    def progress(p: BenchmarkProgress) -> None:
        if p.phase == "timing":
            print(
                f"  [{p.group}] {p.kernel}({p.n}) {p.completed + 1}/{p.total}",
                end="\r",
                flush=True,
            )
        elif p.phase == "finished":
            print(f"  [{p.group}] done ({p.total} measurements)" + " " * 20)

    runner = BenchmarkRunner(
        suite=suite,
        settings=settings,
        jobs=args.jobs,
        progress_callback=progress if not args.quiet else None,
    )

    print(f"fibbench: suite {suite.name!r} from {suite_path}")
    print(
        f"  target CV {settings.target_cv * 100:.1f}%, "
        f"{settings.min_runs}-{settings.max_runs} runs, {settings.warmup} warmup, "
        f"{args.jobs} job(s)"
    )
    print()

    session = runner.run_all(group_filter=args.group)
    session.description = args.description

    print()
    print(format_results_table(session))

    if args.json:
        Path(args.json).write_text(json.dumps(session_to_dict(session), indent=2))
        print(f"\nResults written to {args.json}")

    if any(r.error for report in session.reports for r in report.results):
        return 1
    return 0


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser."""
    parser = argparse.ArgumentParser(
        prog="fibbench-benchmark",
        description="Correctness and performance harness for Fibonacci kernels",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # kernels command
    kernels_parser = subparsers.add_parser("kernels", help="List kernels")
    kernels_parser.set_defaults(func=cmd_kernels)

    # compute command
    compute_parser = subparsers.add_parser("compute", help="Compute fib(n)")
    compute_parser.add_argument("n", type=int, help="Index to compute")
    compute_parser.add_argument(
        "--kernel",
        default="iterative",
        help=f"Kernel to use ({', '.join(KERNELS)}; default: iterative)",
    )
    compute_parser.set_defaults(func=cmd_compute)

    # verify command
    verify_parser = subparsers.add_parser(
        "verify", help="Check that all kernels agree"
    )
    verify_parser.add_argument(
        "--stop",
        type=int,
        default=40,
        help="Last index of the agreement range (default: 40)",
    )
    verify_parser.add_argument(
        "--recursive-limit",
        type=int,
        default=30,
        help="Largest index checked with the recursive kernel (default: 30)",
    )
    verify_parser.set_defaults(func=cmd_verify)

    # run command
    run_parser = subparsers.add_parser("run", help="Run benchmarks")
    run_parser.add_argument(
        "--suite",
        help="Path to suite.yaml configuration (default: bundled suite)",
    )
    run_parser.add_argument(
        "--group",
        help="Run only the specified group",
    )
    run_parser.add_argument(
        "--cv-target",
        type=float,
        help="Target coefficient of variation (default: from suite)",
    )
    run_parser.add_argument(
        "--min-runs",
        type=int,
        help="Minimum number of timed runs (default: from suite)",
    )
    run_parser.add_argument(
        "--max-runs",
        type=int,
        help="Maximum number of timed runs (default: from suite)",
    )
    run_parser.add_argument(
        "--warmup",
        type=int,
        help="Number of warmup runs (default: from suite)",
    )
    run_parser.add_argument(
        "--min-sample-time",
        type=float,
        help="Minimum seconds per timed sample (default: from suite)",
    )
    run_parser.add_argument(
        "-j",
        "--jobs",
        type=int,
        default=1,
        help="Run groups in this many worker processes (default: 1)",
    )
    run_parser.add_argument(
        "--json",
        help="Also write results as JSON to this path",
    )
    run_parser.add_argument(
        "-d",
        "--description",
        help="Description for this benchmark run",
    )
    run_parser.add_argument(
        "--quiet",
        action="store_true",
        help="Suppress progress output",
    )
    run_parser.set_defaults(func=cmd_run)

    return parser


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    parser = create_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0

    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
