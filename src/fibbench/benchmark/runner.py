"""Benchmark orchestration and reporting.

Provides the runner that coordinates:
- Loading the suite configuration (groups of kernels and input sweeps)
- Calibrating and timing each (kernel, n) pair
- Running groups sequentially, or one per worker process
- Formatting results tables and the head-to-head comparison
"""

from __future__ import annotations

import platform
import threading
from collections.abc import Callable
from concurrent.futures import ProcessPoolExecutor, as_completed
from dataclasses import dataclass, field, replace
from datetime import datetime
from pathlib import Path
from typing import Any

import yaml

from fibbench.benchmark.measure import calibrate_loops, time_kernel
from fibbench.benchmark.stats import (
    EMPTY_STATS,
    BenchmarkStats,
    format_duration,
    run_until_stable,
)
from fibbench.kernels import KERNELS, get_kernel


class SuiteConfigError(ValueError):
    """The suite configuration is malformed."""


@dataclass(frozen=True)
class RunSettings:
    """Measurement settings shared by every group of a suite.

    Attributes:
        target_cv: Target coefficient of variation.
        min_runs: Minimum number of timed samples.
        max_runs: Maximum number of timed samples.
        warmup: Number of discarded warmup samples.
        min_sample_time: Minimum duration of one sample, in seconds.
        recursive_cap: Largest input accepted for the recursive kernel.
    """

    target_cv: float = 0.05
    min_runs: int = 5
    max_runs: int = 30
    warmup: int = 2
    min_sample_time: float = 0.002
    recursive_cap: int = 30


@dataclass(frozen=True)
class BenchmarkGroup:
    """A set of kernels measured over the same inputs.

    Attributes:
        name: Group identifier.
        kernels: Kernel names, in report order.
        inputs: Indices to measure each kernel at.
        comparison: Whether this group is a head-to-head comparison.
        enabled: Whether the group runs.
    """

    name: str
    kernels: tuple[str, ...]
    inputs: tuple[int, ...]
    comparison: bool = False
    enabled: bool = True


@dataclass
class BenchmarkSuite:
    """Collection of benchmark groups.

    Attributes:
        name: Suite name.
        groups: Groups in run order.
        base_path: Directory the suite was loaded from.
        settings: Default measurement settings.
    """

    name: str
    groups: list[BenchmarkGroup]
    base_path: Path
    settings: RunSettings = field(default_factory=RunSettings)


@dataclass(frozen=True)
class MeasurementResult:
    """Timing of one kernel at one input.

    Attributes:
        group: Group name.
        kernel: Kernel name.
        n: Input index.
        value: fib(n) as returned by the kernel (None on error).
        stats: Per-call timing statistics.
        error: Error message if the measurement failed.
    """

    group: str
    kernel: str
    n: int
    value: int | None
    stats: BenchmarkStats
    error: str | None = None


@dataclass
class GroupReport:
    """Results of one group, in (kernel, input) order."""

    group: BenchmarkGroup
    results: list[MeasurementResult] = field(default_factory=list)

    @property
    def name(self) -> str:
        return self.group.name


@dataclass
class Session:
    """A complete benchmark run.

    Attributes:
        timestamp: When the session started.
        suite: Suite name.
        interpreter: Python implementation and version.
        settings: Settings the session ran with.
        reports: Group reports, in suite order.
        description: Optional description.
    """

    timestamp: datetime
    suite: str
    interpreter: str
    settings: RunSettings
    reports: list[GroupReport]
    description: str | None = None


@dataclass(frozen=True)
class BenchmarkProgress:
    """Progress callback information.

    Attributes:
        group: Current group name.
        kernel: Current kernel name ("" for group-level events).
        n: Current input (-1 for group-level events).
        phase: "started", "timing" or "finished".
            With jobs > 1 only the group-level "started" and "finished"
            events are reported.
        completed: Measurements finished in this group.
        total: Measurements expected in this group.
    """

    group: str
    kernel: str
    n: int
    phase: str
    completed: int
    total: int


# Type for progress callbacks
ProgressCallback = Callable[[BenchmarkProgress], None]


class ReportSink:
    """Serializes progress events coming from concurrently running groups."""

    def __init__(self, callback: ProgressCallback | None = None) -> None:
        self._callback = callback
        self._lock = threading.Lock()

    def emit(self, progress: BenchmarkProgress) -> None:
        if self._callback is None:
            return
        with self._lock:
            self._callback(progress)


def default_suite_path() -> Path:
    """Path of the suite bundled with the package."""
    return Path(__file__).with_name("suite.yaml")


def _parse_inputs(group_name: str, raw: Any) -> tuple[int, ...]:
    if isinstance(raw, dict):
        try:
            start = raw.get("start", 0)
            stop = raw["stop"]
            step = raw.get("step", 1)
        except KeyError:
            raise SuiteConfigError(
                f"group {group_name!r}: input sweep needs a 'stop'"
            ) from None
        bounds = (start, stop, step)
        if not all(isinstance(v, int) and not isinstance(v, bool) for v in bounds):
            raise SuiteConfigError(
                f"group {group_name!r}: sweep bounds must be integers"
            )
        if step < 1:
            raise SuiteConfigError(f"group {group_name!r}: sweep step must be >= 1")
        values = list(range(start, stop + 1, step))
    elif isinstance(raw, list):
        values = raw
    else:
        raise SuiteConfigError(
            f"group {group_name!r}: 'inputs' must be a list or a sweep mapping"
        )

    for value in values:
        if isinstance(value, bool) or not isinstance(value, int) or value < 0:
            raise SuiteConfigError(
                f"group {group_name!r}: inputs must be non-negative integers, "
                f"got {value!r}"
            )
    if not values:
        raise SuiteConfigError(f"group {group_name!r}: no inputs")
    return tuple(values)


def validate_settings(settings: RunSettings) -> RunSettings:
    """Check that `settings` can drive a measurement and return it unchanged.

    Raises:
        SuiteConfigError: If the run bounds or timing parameters are invalid.
    """
    if settings.min_runs < 1 or settings.max_runs < settings.min_runs:
        raise SuiteConfigError(
            f"settings need 1 <= min_runs <= max_runs, got min_runs="
            f"{settings.min_runs}, max_runs={settings.max_runs}"
        )
    if settings.warmup < 0:
        raise SuiteConfigError(f"warmup must be >= 0, got {settings.warmup}")
    if settings.min_sample_time < 0:
        raise SuiteConfigError(
            f"min_sample_time must be >= 0, got {settings.min_sample_time}"
        )
    if settings.target_cv < 0:
        raise SuiteConfigError(f"target_cv must be >= 0, got {settings.target_cv}")
    return settings


def _parse_settings(raw: dict[str, Any] | None) -> RunSettings:
    if raw is None:
        return RunSettings()
    if not isinstance(raw, dict):
        raise SuiteConfigError("'settings' must be a mapping")
    known = set(RunSettings.__dataclass_fields__)
    unknown = sorted(set(raw) - known)
    if unknown:
        raise SuiteConfigError(f"unknown settings: {', '.join(unknown)}")
    return validate_settings(RunSettings(**raw))


def _parse_group(data: Any, settings: RunSettings) -> BenchmarkGroup:
    if not isinstance(data, dict) or not data.get("name"):
        raise SuiteConfigError(f"every group needs a name, got {data!r}")
    name = data["name"]

    kernels = data.get("kernels") or []
    if not kernels:
        raise SuiteConfigError(f"group {name!r}: no kernels")
    for kernel in kernels:
        if kernel not in KERNELS:
            raise SuiteConfigError(
                f"group {name!r}: unknown kernel {kernel!r} "
                f"(expected one of: {', '.join(KERNELS)})"
            )

    inputs = _parse_inputs(name, data.get("inputs"))
    if "recursive" in kernels and max(inputs) > settings.recursive_cap:
        raise SuiteConfigError(
            f"group {name!r}: recursive kernel limited to n <= "
            f"{settings.recursive_cap}, got {max(inputs)}"
        )

    return BenchmarkGroup(
        name=name,
        kernels=tuple(kernels),
        inputs=inputs,
        comparison=bool(data.get("comparison", False)),
        enabled=bool(data.get("enabled", True)),
    )


def load_suite_config(config_path: Path | str) -> BenchmarkSuite:
    """Load a benchmark suite from YAML.

    Args:
        config_path: Path to a suite.yaml file.

    Returns:
        BenchmarkSuite configuration.

    Raises:
        SuiteConfigError: If the file does not describe a valid suite.
        OSError: If the file cannot be read.
    """
    config_path = Path(config_path)
    with config_path.open() as f:
        try:
            data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise SuiteConfigError(f"invalid YAML in {config_path}: {e}") from e

    if not isinstance(data, dict):
        raise SuiteConfigError(f"{config_path}: expected a mapping at top level")

    settings = _parse_settings(data.get("settings"))
    groups = [_parse_group(g, settings) for g in data.get("groups") or []]
    if not groups:
        raise SuiteConfigError(f"{config_path}: no benchmark groups defined")

    names = [g.name for g in groups]
    duplicates = sorted({n for n in names if names.count(n) > 1})
    if duplicates:
        raise SuiteConfigError(f"duplicate group names: {', '.join(duplicates)}")

    return BenchmarkSuite(
        name=data.get("name", "benchmarks"),
        groups=groups,
        base_path=config_path.parent,
        settings=settings,
    )


def describe_interpreter() -> str:
    """E.g. "CPython 3.12.1"."""
    return f"{platform.python_implementation()} {platform.python_version()}"


@dataclass
class BenchmarkRunner:
    """Main benchmark runner.

    Attributes:
        suite: Benchmark suite configuration.
        settings: Measurement settings (defaults to the suite's).
        jobs: Number of worker processes; 1 runs groups in this process.
        progress_callback: Optional callback for progress updates.
    """

    suite: BenchmarkSuite
    settings: RunSettings | None = None
    jobs: int = 1
    progress_callback: ProgressCallback | None = None
    _settings: RunSettings = field(init=False, repr=False)
    _sink: ReportSink = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self._settings = self.settings or self.suite.settings
        if self.jobs < 1:
            raise ValueError(f"jobs must be >= 1, got {self.jobs}")
        self._sink = ReportSink(self.progress_callback)

    def measure(self, group: str, kernel_name: str, n: int) -> MeasurementResult:
        """Calibrate and time one kernel at one input.

        Failures of the measurement itself are recorded in the result rather
        than raised, so one bad pair does not abort the session.
        """
        settings = self._settings
        try:
            kernel = get_kernel(kernel_name)
            value = kernel(n)
            loops = calibrate_loops(kernel, n, settings.min_sample_time)
            stats = run_until_stable(
                lambda: time_kernel(kernel, n, loops),
                min_runs=settings.min_runs,
                max_runs=settings.max_runs,
                target_cv=settings.target_cv,
                warmup=settings.warmup,
                loops=loops,
            )
        except Exception as e:
            return MeasurementResult(
                group=group,
                kernel=kernel_name,
                n=n,
                value=None,
                stats=EMPTY_STATS,
                error=f"{type(e).__name__}: {e}",
            )
        return MeasurementResult(
            group=group, kernel=kernel_name, n=n, value=value, stats=stats
        )

    def run_group(self, group: BenchmarkGroup) -> GroupReport:
        """Measure every (kernel, input) pair of a group, in order."""
        report = GroupReport(group=group)
        pairs = [(k, n) for k in group.kernels for n in group.inputs]
        total = len(pairs)

        self._sink.emit(BenchmarkProgress(group.name, "", -1, "started", 0, total))
        for done, (kernel_name, n) in enumerate(pairs):
            self._sink.emit(
                BenchmarkProgress(group.name, kernel_name, n, "timing", done, total)
            )
            report.results.append(self.measure(group.name, kernel_name, n))
        self._sink.emit(
            BenchmarkProgress(group.name, "", -1, "finished", total, total)
        )
        return report

    def _selected_groups(self, group_filter: str | None) -> list[BenchmarkGroup]:
        groups = [g for g in self.suite.groups if g.enabled]
        if group_filter is not None:
            groups = [g for g in groups if g.name == group_filter]
        return groups

    def _run_parallel(self, groups: list[BenchmarkGroup]) -> list[GroupReport]:
        """Run each group in a worker process.

        Workers report nothing back while they run. "started" is emitted
        when a group is submitted to the pool and "finished" when its report
        arrives, so no "timing" events are produced in this mode.
        """
        reports: dict[str, GroupReport] = {}
        with ProcessPoolExecutor(max_workers=self.jobs) as pool:
            futures = {}
            for group in groups:
                total = len(group.kernels) * len(group.inputs)
                self._sink.emit(
                    BenchmarkProgress(group.name, "", -1, "started", 0, total)
                )
                futures[pool.submit(_run_group_in_worker, self._settings, group)] = (
                    group
                )
            for future in as_completed(futures):
                group = futures[future]
                report = future.result()
                reports[group.name] = report
                total = len(report.results)
                self._sink.emit(
                    BenchmarkProgress(group.name, "", -1, "finished", total, total)
                )
        return [reports[g.name] for g in groups]

    def run_all(self, group_filter: str | None = None) -> Session:
        """Run the enabled groups of the suite.

        Args:
            group_filter: If provided, only run the group with this name.

        Returns:
            Session with one report per group, in suite order.
        """
        timestamp = datetime.now()
        groups = self._selected_groups(group_filter)

        if self.jobs > 1 and len(groups) > 1:
            reports = self._run_parallel(groups)
        else:
            reports = [self.run_group(group) for group in groups]

        return Session(
            timestamp=timestamp,
            suite=self.suite.name,
            interpreter=describe_interpreter(),
            settings=self._settings,
            reports=reports,
        )


def _run_group_in_worker(settings: RunSettings, group: BenchmarkGroup) -> GroupReport:
    """Entry point for worker processes: run one group with no shared state."""
    suite = BenchmarkSuite(
        name=group.name, groups=[group], base_path=Path.cwd(), settings=settings
    )
    return BenchmarkRunner(suite=suite, settings=settings).run_group(group)


def with_overrides(settings: RunSettings, **overrides: Any) -> RunSettings:
    """Return `settings` with every non-None override applied.

    Raises:
        SuiteConfigError: If the result fails `validate_settings`.
    """
    changes = {k: v for k, v in overrides.items() if v is not None}
    return validate_settings(replace(settings, **changes))


def format_results_table(session: Session) -> str:
    """Format every group's measurements as a table.

    Args:
        session: Session with results.

    Returns:
        Formatted table string.
    """
    lines = []

    lines.append("=" * 96)
    lines.append(f"BENCHMARK RESULTS: {session.suite} ({session.interpreter})")
    lines.append("=" * 96)

    for report in session.reports:
        lines.append(f"\n[{report.name}]")
        lines.append(
            f"{'Kernel':<10} {'n':>5} {'fib(n)':>21} {'mean':>10} {'median':>10} "
            f"{'stddev':>10} {'CV':>7} {'runs':>10}"
        )
        lines.append("-" * 96)
        for result in report.results:
            if result.error:
                lines.append(
                    f"{result.kernel:<10} {result.n:>5} ERROR: {result.error}"
                )
                continue
            stats = result.stats
            runs = f"{stats.samples}x{stats.loops}"
            lines.append(
                f"{result.kernel:<10} {result.n:>5} {result.value:>21} "
                f"{format_duration(stats.mean):>10} "
                f"{format_duration(stats.median):>10} "
                f"{format_duration(stats.stddev):>10} "
                f"{stats.cv * 100:>6.2f}% {runs:>10}"
            )

    for report in session.reports:
        if report.group.comparison:
            lines.append("")
            lines.append(format_comparison(report))

    return "\n".join(lines)


def format_comparison(report: GroupReport) -> str:
    """Rank the kernels of a comparison group against the fastest one."""
    lines = []
    lines.append("=" * 60)
    lines.append(f"HEAD-TO-HEAD: {report.name}")
    lines.append("=" * 60)

    timed = [r for r in report.results if not r.error and r.stats.mean > 0]
    if not timed:
        lines.append("No successful measurements.")
        return "\n".join(lines)

    ranked = sorted(timed, key=lambda r: r.stats.mean)
    fastest = ranked[0].stats.mean

    lines.append(f"{'Benchmark':<20} {'mean':>10} {'median':>10} {'relative':>12}")
    lines.append("-" * 60)
    for result in ranked:
        label = f"{result.kernel}_{result.n}"
        ratio = result.stats.mean / fastest
        lines.append(
            f"{label:<20} {format_duration(result.stats.mean):>10} "
            f"{format_duration(result.stats.median):>10} {ratio:>11.2f}x"
        )

    failed = [r for r in report.results if r.error]
    for result in failed:
        label = f"{result.kernel}_{result.n}"
        lines.append(f"{label:<20} ERROR: {result.error}")

    return "\n".join(lines)


def session_to_dict(session: Session) -> dict[str, Any]:
    """JSON-serializable form of a session."""
    return {
        "timestamp": session.timestamp.isoformat(),
        "suite": session.suite,
        "interpreter": session.interpreter,
        "description": session.description,
        "settings": {
            name: getattr(session.settings, name)
            for name in RunSettings.__dataclass_fields__
        },
        "groups": [
            {
                "name": report.name,
                "comparison": report.group.comparison,
                "results": [_result_to_dict(r) for r in report.results],
            }
            for report in session.reports
        ],
    }


def _result_to_dict(result: MeasurementResult) -> dict[str, Any]:
    stats = result.stats
    return {
        "kernel": result.kernel,
        "n": result.n,
        "value": result.value,
        "error": result.error,
        "mean_s": stats.mean,
        "median_s": stats.median,
        "stddev_s": stats.stddev,
        "cv": stats.cv,
        "min_s": stats.min,
        "max_s": stats.max,
        "ci95_s": list(stats.confidence_95),
        "samples": stats.samples,
        "loops": stats.loops,
        "outliers": len(stats.outliers),
    }
