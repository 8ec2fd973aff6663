"""Performance harness for the Fibonacci kernels.

This package provides repeatable kernel timings with:
- Loop calibration so each sample lasts long enough to time reliably
- Adaptive run counts targeting a configurable CV
- YAML-configured groups of (kernel, input) sweeps
- A head-to-head comparison of all kernels at one input
"""

from __future__ import annotations

from fibbench.benchmark.measure import black_box, calibrate_loops, time_kernel
from fibbench.benchmark.runner import (
    BenchmarkGroup,
    BenchmarkRunner,
    BenchmarkSuite,
    GroupReport,
    MeasurementResult,
    RunSettings,
    Session,
    SuiteConfigError,
    default_suite_path,
    load_suite_config,
)
from fibbench.benchmark.stats import BenchmarkStats, run_until_stable

__all__ = [
    "BenchmarkGroup",
    "BenchmarkRunner",
    "BenchmarkStats",
    "BenchmarkSuite",
    "GroupReport",
    "MeasurementResult",
    "RunSettings",
    "Session",
    "SuiteConfigError",
    "black_box",
    "calibrate_loops",
    "default_suite_path",
    "load_suite_config",
    "run_until_stable",
    "time_kernel",
]
