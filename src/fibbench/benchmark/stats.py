"""Timing statistics for kernel measurements.

Each sample is the mean duration of one kernel call within a batch of
`loops` calls, in seconds. A summary reports:
- Central estimates (mean, median) and spread (stddev, CV, IQR)
- Outliers flagged with the IQR rule and excluded from the estimates
- A 95% confidence interval for the mean
- How many samples were needed to reach the target CV
"""

from __future__ import annotations

import math
import statistics
from collections.abc import Callable
from dataclasses import dataclass, field

# Two-tailed 95% critical values of Student's t, keyed by sample size.
_T_TABLE_95: tuple[tuple[int, float], ...] = (
    (2, 12.706),
    (3, 4.303),
    (4, 3.182),
    (5, 2.776),
    (6, 2.571),
    (7, 2.447),
    (8, 2.365),
    (9, 2.306),
    (10, 2.262),
    (15, 2.145),
    (20, 2.093),
    (30, 2.045),
    (50, 2.009),
    (100, 1.984),
)
_Z_95 = 1.96


@dataclass(frozen=True)
class BenchmarkStats:
    """Statistical summary of one (kernel, n) measurement.

    Attributes:
        times: Raw per-call durations, one per sample (seconds)
        mean: Arithmetic mean of the retained samples
        median: Median of the retained samples
        stddev: Sample standard deviation
        cv: Coefficient of variation (stddev/mean)
        min: Fastest retained sample
        max: Slowest retained sample
        iqr: Interquartile range
        outliers: Samples flagged by the IQR rule
        confidence_95: 95% confidence interval for the mean (lower, upper)
        runs_to_stable: Samples taken before the CV target was met
        loops: Kernel calls per sample
    """

    times: tuple[float, ...]
    mean: float
    median: float
    stddev: float
    cv: float
    min: float
    max: float
    iqr: float
    outliers: tuple[float, ...] = field(default_factory=tuple)
    confidence_95: tuple[float, float] = field(default_factory=lambda: (0.0, 0.0))
    runs_to_stable: int = 0
    loops: int = 1

    @property
    def samples(self) -> int:
        return len(self.times)


EMPTY_STATS = BenchmarkStats(
    times=(), mean=0.0, median=0.0, stddev=0.0, cv=0.0, min=0.0, max=0.0, iqr=0.0
)


def compute_quartiles(data: list[float]) -> tuple[float, float, float]:
    """Return (Q1, median, Q3).

    Q1 and Q3 are the medians of the lower and upper halves, excluding the
    middle element for odd-sized data. With fewer than 4 values all three
    quartiles collapse to the median.
    """
    if len(data) < 4:
        med = statistics.median(data)
        return med, med, med

    ordered = sorted(data)
    half, odd = divmod(len(ordered), 2)
    lower = ordered[:half]
    upper = ordered[half + odd :]
    return statistics.median(lower), statistics.median(ordered), statistics.median(upper)


def detect_outliers(data: list[float], factor: float = 1.5) -> list[float]:
    """Return the values outside [Q1 - factor*IQR, Q3 + factor*IQR].

    Data sets with fewer than 4 values never have outliers.
    """
    if len(data) < 4:
        return []

    q1, _, q3 = compute_quartiles(data)
    fence = factor * (q3 - q1)
    return [x for x in data if not q1 - fence <= x <= q3 + fence]


def _t_critical(n: int) -> float:
    for size, t in _T_TABLE_95:
        if n <= size:
            return t
    return _Z_95


def compute_confidence_interval(data: list[float]) -> tuple[float, float]:
    """95% confidence interval for the mean, using a t-table for small samples."""
    if len(data) < 2:
        mean = data[0] if data else 0.0
        return mean, mean

    mean = statistics.mean(data)
    stderr = statistics.stdev(data) / math.sqrt(len(data))
    margin = _t_critical(len(data)) * stderr
    return mean - margin, mean + margin


def compute_stats(
    times: list[float],
    remove_outliers: bool = True,
    runs_to_stable: int = 0,
    loops: int = 1,
) -> BenchmarkStats:
    """Summarize per-call timings.

    Args:
        times: Per-call durations in seconds, one per sample.
        remove_outliers: Exclude IQR outliers from the estimates. Raw times
            are always kept in `BenchmarkStats.times`.
        runs_to_stable: Number of samples taken to reach the CV target.
        loops: Kernel calls per sample.
    """
    if not times:
        return EMPTY_STATS

    outliers = detect_outliers(times)
    kept = times
    if remove_outliers and outliers:
        flagged = set(outliers)
        kept = [t for t in times if t not in flagged]
        if len(kept) < 2:
            kept = times

    mean = statistics.mean(kept)
    stddev = statistics.stdev(kept) if len(kept) > 1 else 0.0
    q1, median, q3 = compute_quartiles(kept)

    return BenchmarkStats(
        times=tuple(times),
        mean=mean,
        median=median,
        stddev=stddev,
        cv=stddev / mean if mean > 0 else 0.0,
        min=min(kept),
        max=max(kept),
        iqr=q3 - q1,
        outliers=tuple(outliers),
        confidence_95=compute_confidence_interval(kept),
        runs_to_stable=runs_to_stable,
        loops=loops,
    )


def _cv(times: list[float]) -> float:
    if len(times) < 2:
        return 0.0
    mean = statistics.mean(times)
    if mean <= 0:
        return 0.0
    return statistics.stdev(times) / mean


def run_until_stable(
    sampler: Callable[[], float],
    min_runs: int = 5,
    max_runs: int = 50,
    target_cv: float = 0.01,
    warmup: int = 3,
    batch_size: int = 5,
    loops: int = 1,
) -> BenchmarkStats:
    """Collect samples until the coefficient of variation meets the target.

    Warmup samples are taken and discarded first. After `min_runs` samples,
    batches of `batch_size` are added while CV > target_cv and fewer than
    `max_runs` samples exist.

    Args:
        sampler: Returns one per-call duration in seconds.
        min_runs: Samples taken before the CV is first checked.
        max_runs: Hard cap on the number of samples.
        target_cv: Target coefficient of variation (0.01 = 1%).
        warmup: Discarded samples taken up front.
        batch_size: Samples added per adaptive step.
        loops: Kernel calls per sample, recorded in the result.
    """
    for _ in range(warmup):
        sampler()

    times = [sampler() for _ in range(min_runs)]

    while len(times) < max_runs and _cv(times) > target_cv:
        for _ in range(min(batch_size, max_runs - len(times))):
            times.append(sampler())

    return compute_stats(
        times, remove_outliers=True, runs_to_stable=len(times), loops=loops
    )


_UNITS: tuple[tuple[str, float], ...] = (
    ("s", 1.0),
    ("ms", 1e-3),
    ("us", 1e-6),
    ("ns", 1e-9),
)


def format_duration(seconds: float, unit: str | None = None) -> str:
    """Format a duration, picking the largest unit that keeps the value >= 1.

    Args:
        seconds: Duration in seconds.
        unit: Force a unit ("s", "ms", "us" or "ns").
    """
    scales = dict(_UNITS)
    if unit is None:
        unit = next((u for u, scale in _UNITS if seconds >= scale), "ns")
    elif unit not in scales:
        raise ValueError(f"unknown time unit {unit!r}")
    return f"{seconds / scales[unit]:.1f}{unit}"


def format_stats(stats: BenchmarkStats, unit: str | None = None) -> str:
    """Format like "1.2us +/- 0.0us (CV=0.43%, 12 runs x 10000 loops)"."""
    if unit is None:
        unit = next((u for u, scale in _UNITS if stats.mean >= scale), "ns")
    mean = format_duration(stats.mean, unit)
    stddev = format_duration(stats.stddev, unit)
    return (
        f"{mean} +/- {stddev} (CV={stats.cv * 100:.2f}%, "
        f"{stats.samples} runs x {stats.loops} loops)"
    )
