"""Unit tests for fibbench.benchmark.runner module."""

from __future__ import annotations

import threading
from datetime import datetime
from pathlib import Path

import pytest

from fibbench.benchmark.runner import (
    BenchmarkGroup,
    BenchmarkProgress,
    BenchmarkRunner,
    BenchmarkSuite,
    GroupReport,
    MeasurementResult,
    ReportSink,
    RunSettings,
    Session,
    SuiteConfigError,
    default_suite_path,
    format_comparison,
    format_results_table,
    load_suite_config,
    session_to_dict,
    with_overrides,
)
from fibbench.benchmark.stats import EMPTY_STATS, compute_stats

FAST = RunSettings(
    target_cv=1.0, min_runs=2, max_runs=3, warmup=0, min_sample_time=0.0
)


def write_suite(tmp_path: Path, text: str) -> Path:
    path = tmp_path / "suite.yaml"
    path.write_text(text)
    return path


def make_result(kernel: str, n: int, mean: float, error: str | None = None):
    stats = EMPTY_STATS if error else compute_stats([mean, mean])
    return MeasurementResult(
        group="g",
        kernel=kernel,
        n=n,
        value=None if error else 832040,
        stats=stats,
        error=error,
    )


class TestLoadSuiteConfig:
    """Tests for suite loading and validation."""

    def test_bundled_suite(self) -> None:
        suite = load_suite_config(default_suite_path())
        groups = {g.name: g for g in suite.groups}

        assert suite.name == "fibonacci"
        assert list(groups) == [
            "fibonacci_recursive",
            "fibonacci_iterative",
            "fibonacci_memoized",
            "fibonacci_matrix",
            "fibonacci_comparison",
        ]
        assert groups["fibonacci_recursive"].inputs == (10, 15, 20, 25, 30)
        assert groups["fibonacci_matrix"].inputs == tuple(range(10, 101, 10))

        comparison = groups["fibonacci_comparison"]
        assert comparison.comparison is True
        assert comparison.inputs == (30,)
        assert comparison.kernels == ("recursive", "iterative", "memoized", "matrix")
        assert suite.settings.recursive_cap == 30

    def test_defaults(self, tmp_path: Path) -> None:
        path = write_suite(
            tmp_path,
            "groups:\n  - name: g\n    kernels: [matrix]\n    inputs: [1, 2]\n",
        )
        suite = load_suite_config(path)

        assert suite.name == "benchmarks"
        assert suite.settings == RunSettings()
        assert suite.base_path == tmp_path
        assert suite.groups[0].enabled is True
        assert suite.groups[0].comparison is False

    def test_sweep_defaults(self, tmp_path: Path) -> None:
        path = write_suite(
            tmp_path,
            "groups:\n  - name: g\n    kernels: [matrix]\n    inputs: {stop: 3}\n",
        )
        assert load_suite_config(path).groups[0].inputs == (0, 1, 2, 3)

    @pytest.mark.parametrize(
        ("body", "message"),
        [
            ("groups: []\n", "no benchmark groups"),
            ("- just a list\n", "mapping at top level"),
            ("groups:\n  - kernels: [matrix]\n    inputs: [1]\n", "needs a name"),
            ("groups:\n  - name: g\n    inputs: [1]\n", "no kernels"),
            (
                "groups:\n  - name: g\n    kernels: [bogus]\n    inputs: [1]\n",
                "unknown kernel 'bogus'",
            ),
            (
                "groups:\n  - name: g\n    kernels: [matrix]\n    inputs: [-1]\n",
                "non-negative integers",
            ),
            (
                "groups:\n  - name: g\n    kernels: [matrix]\n    inputs: [1.5]\n",
                "non-negative integers",
            ),
            (
                "groups:\n  - name: g\n    kernels: [matrix]\n    inputs: {start: 1}\n",
                "needs a 'stop'",
            ),
            (
                "groups:\n  - name: g\n    kernels: [matrix]\n"
                "    inputs: {stop: 5, step: 0}\n",
                "step must be >= 1",
            ),
            (
                "groups:\n  - name: g\n    kernels: [recursive]\n    inputs: [40]\n",
                "limited to n <= 30",
            ),
            (
                "groups:\n  - name: g\n    kernels: [matrix]\n    inputs: [1]\n"
                "  - name: g\n    kernels: [matrix]\n    inputs: [2]\n",
                "duplicate group names: g",
            ),
            (
                "settings:\n  colour: blue\n"
                "groups:\n  - name: g\n    kernels: [matrix]\n    inputs: [1]\n",
                "unknown settings: colour",
            ),
            (
                "settings:\n  min_runs: 10\n  max_runs: 5\n"
                "groups:\n  - name: g\n    kernels: [matrix]\n    inputs: [1]\n",
                "min_runs <= max_runs",
            ),
            (
                "settings:\n  min_runs: 0\n"
                "groups:\n  - name: g\n    kernels: [matrix]\n    inputs: [1]\n",
                "min_runs <= max_runs",
            ),
            (
                "settings:\n  warmup: -2\n"
                "groups:\n  - name: g\n    kernels: [matrix]\n    inputs: [1]\n",
                "warmup must be >= 0",
            ),
            ("groups: [\n", "invalid YAML"),
        ],
    )
    def test_invalid(self, tmp_path: Path, body: str, message: str) -> None:
        with pytest.raises(SuiteConfigError, match=message):
            load_suite_config(write_suite(tmp_path, body))

    def test_recursive_cap_is_configurable(self, tmp_path: Path) -> None:
        path = write_suite(
            tmp_path,
            "settings:\n  recursive_cap: 12\n"
            "groups:\n  - name: g\n    kernels: [recursive]\n    inputs: [13]\n",
        )
        with pytest.raises(SuiteConfigError, match="n <= 12"):
            load_suite_config(path)


class TestBenchmarkRunner:
    """Tests for BenchmarkRunner."""

    @pytest.fixture
    def suite(self) -> BenchmarkSuite:
        return BenchmarkSuite(
            name="test",
            groups=[
                BenchmarkGroup("small", ("iterative", "matrix"), (10, 20)),
                BenchmarkGroup("skipped", ("matrix",), (5,), enabled=False),
                BenchmarkGroup(
                    "h2h", ("recursive", "memoized"), (15,), comparison=True
                ),
            ],
            base_path=Path("."),
            settings=FAST,
        )

    def test_measure(self, suite: BenchmarkSuite) -> None:
        result = BenchmarkRunner(suite).measure("g", "matrix", 30)

        assert result.error is None
        assert result.value == 832040
        assert result.stats.samples >= 2
        assert result.stats.mean > 0

    def test_measure_unknown_kernel_recorded(self, suite: BenchmarkSuite) -> None:
        result = BenchmarkRunner(suite).measure("g", "nope", 3)

        assert result.value is None
        assert result.stats is EMPTY_STATS
        assert result.error is not None
        assert "UnknownKernelError" in result.error

    def test_run_group_order(self, suite: BenchmarkSuite) -> None:
        report = BenchmarkRunner(suite).run_group(suite.groups[0])

        pairs = [(r.kernel, r.n) for r in report.results]
        assert pairs == [
            ("iterative", 10),
            ("iterative", 20),
            ("matrix", 10),
            ("matrix", 20),
        ]
        assert [r.value for r in report.results] == [55, 6765, 55, 6765]

    def test_run_all_skips_disabled(self, suite: BenchmarkSuite) -> None:
        session = BenchmarkRunner(suite).run_all()

        assert [r.name for r in session.reports] == ["small", "h2h"]
        assert session.suite == "test"
        assert session.settings == FAST

    def test_run_all_filter(self, suite: BenchmarkSuite) -> None:
        session = BenchmarkRunner(suite).run_all(group_filter="h2h")
        assert [r.name for r in session.reports] == ["h2h"]

    def test_settings_override(self, suite: BenchmarkSuite) -> None:
        settings = with_overrides(FAST, min_runs=4, max_runs=4)
        result = BenchmarkRunner(suite, settings=settings).measure("g", "matrix", 5)
        assert result.stats.samples == 4

    def test_progress_events(self, suite: BenchmarkSuite) -> None:
        events: list[BenchmarkProgress] = []
        runner = BenchmarkRunner(suite, progress_callback=events.append)
        runner.run_group(suite.groups[0])

        phases = [e.phase for e in events]
        assert phases[0] == "started"
        assert phases[-1] == "finished"
        assert phases.count("timing") == 4
        assert events[-1].completed == events[-1].total == 4

    def test_parallel_progress_is_group_level(self, suite: BenchmarkSuite) -> None:
        events: list[BenchmarkProgress] = []
        runner = BenchmarkRunner(suite, jobs=2, progress_callback=events.append)
        session = runner.run_all()

        assert [r.name for r in session.reports] == ["small", "h2h"]
        assert sorted(e.phase for e in events) == [
            "finished",
            "finished",
            "started",
            "started",
        ]
        assert all(e.kernel == "" and e.n == -1 for e in events)

    def test_rejects_zero_jobs(self, suite: BenchmarkSuite) -> None:
        with pytest.raises(ValueError, match="jobs"):
            BenchmarkRunner(suite, jobs=0)


class TestWithOverrides:
    """Tests for applying command-line overrides to suite settings."""

    def test_none_values_ignored(self) -> None:
        assert with_overrides(FAST, min_runs=None, warmup=None) == FAST

    def test_applies_values(self) -> None:
        settings = with_overrides(FAST, max_runs=9, target_cv=0.2)
        assert settings.max_runs == 9
        assert settings.target_cv == 0.2

    @pytest.mark.parametrize(
        ("overrides", "message"),
        [
            ({"min_runs": 0}, "min_runs <= max_runs"),
            ({"min_runs": 5}, "min_runs <= max_runs"),
            ({"warmup": -1}, "warmup must be >= 0"),
            ({"min_sample_time": -0.5}, "min_sample_time must be >= 0"),
            ({"target_cv": -0.1}, "target_cv must be >= 0"),
        ],
    )
    def test_rejects_invalid(self, overrides: dict, message: str) -> None:
        with pytest.raises(SuiteConfigError, match=message):
            with_overrides(FAST, **overrides)


class TestReportSink:
    """Tests for ReportSink."""

    def test_no_callback(self) -> None:
        ReportSink().emit(BenchmarkProgress("g", "", -1, "started", 0, 1))

    def test_serializes_concurrent_writes(self) -> None:
        active = 0
        overlaps = 0
        received: list[int] = []

        def callback(p: BenchmarkProgress) -> None:
            nonlocal active, overlaps
            active += 1
            if active > 1:
                overlaps += 1
            received.append(p.n)
            active -= 1

        sink = ReportSink(callback)

        def worker(start: int) -> None:
            for i in range(200):
                sink.emit(BenchmarkProgress("g", "k", start + i, "timing", i, 200))

        threads = [threading.Thread(target=worker, args=(k * 1000,)) for k in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert overlaps == 0
        assert len(received) == 800


class TestReporting:
    """Tests for report formatting."""

    @pytest.fixture
    def session(self) -> Session:
        h2h = BenchmarkGroup(
            "fibonacci_comparison",
            ("recursive", "iterative", "matrix"),
            (30,),
            comparison=True,
        )
        report = GroupReport(
            group=h2h,
            results=[
                make_result("recursive", 30, 0.2),
                make_result("iterative", 30, 2e-6),
                make_result("matrix", 30, 4e-6),
            ],
        )
        return Session(
            timestamp=datetime(2024, 1, 2, 3, 4, 5),
            suite="fibonacci",
            interpreter="CPython 3.12.0",
            settings=FAST,
            reports=[report],
        )

    def test_comparison_ranking(self, session: Session) -> None:
        text = format_comparison(session.reports[0])
        lines = [line for line in text.splitlines() if line.endswith("x")]

        assert lines[0].startswith("iterative_30")
        assert lines[0].endswith("1.00x")
        assert lines[1].startswith("matrix_30")
        assert lines[1].endswith("2.00x")
        assert lines[2].startswith("recursive_30")
        assert lines[2].endswith("100000.00x")

    def test_comparison_lists_errors(self) -> None:
        group = BenchmarkGroup("h2h", ("matrix",), (30,), comparison=True)
        report = GroupReport(
            group=group,
            results=[
                make_result("iterative", 30, 1e-6),
                make_result("matrix", 30, 0.0, error="boom"),
            ],
        )
        assert "matrix_30" in format_comparison(report)
        assert "ERROR: boom" in format_comparison(report)

    def test_comparison_without_results(self) -> None:
        group = BenchmarkGroup("h2h", ("matrix",), (30,), comparison=True)
        report = GroupReport(group=group, results=[])
        assert "No successful measurements" in format_comparison(report)

    def test_results_table(self, session: Session) -> None:
        text = format_results_table(session)

        assert "BENCHMARK RESULTS: fibonacci (CPython 3.12.0)" in text
        assert "[fibonacci_comparison]" in text
        assert "832040" in text
        assert "HEAD-TO-HEAD: fibonacci_comparison" in text

    def test_session_to_dict(self, session: Session) -> None:
        data = session_to_dict(session)

        assert data["timestamp"] == "2024-01-02T03:04:05"
        assert data["settings"]["min_runs"] == 2
        group = data["groups"][0]
        assert group["name"] == "fibonacci_comparison"
        assert group["comparison"] is True
        first = group["results"][0]
        assert first["kernel"] == "recursive"
        assert first["value"] == 832040
        assert first["samples"] == 2
        assert first["mean_s"] == pytest.approx(0.2)
