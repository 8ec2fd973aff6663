"""Timed kernel invocation."""

from __future__ import annotations

import time
from typing import TypeVar

from fibbench.kernels import Kernel

T = TypeVar("T")

_observed: object = None


def black_box(value: T) -> T:
    """Return `value` unchanged after publishing it to module state.

    Wrapping both the argument and the result of a timed call keeps them
    observable, so the call cannot be treated as dead code.
    """
    global _observed
    _observed = value
    return value


def last_observed() -> object:
    """The value most recently passed through `black_box`."""
    return _observed


def time_kernel(kernel: Kernel, n: int, loops: int = 1) -> float:
    """Call `kernel(n)` `loops` times and return the mean seconds per call."""
    if loops < 1:
        raise ValueError(f"loops must be >= 1, got {loops}")
    start = time.perf_counter()
    for _ in range(loops):
        black_box(kernel(black_box(n)))
    return (time.perf_counter() - start) / loops


def calibrate_loops(
    kernel: Kernel, n: int, min_sample_time: float = 0.001, max_loops: int = 10**7
) -> int:
    """Find how many calls make one sample last at least `min_sample_time`.

    Tries 1, 10, 100, ... calls and returns the first count whose batch is
    long enough, capped at `max_loops`.
    """
    loops = 1
    while loops < max_loops:
        if time_kernel(kernel, n, loops) * loops >= min_sample_time:
            return loops
        loops *= 10
    return max_loops
