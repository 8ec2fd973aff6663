"""Fibonacci kernels.

Four independent ways of computing fib(n), all sharing one contract:

- fib(0) == 0 and fib(1) == 1
- results are unsigned 64-bit values; every addition and multiplication is
  reduced modulo 2**64, so fib(n) for n > 93 wraps around
- the wrapped value is identical across kernels for any n

The kernels themselves do no bounds checking. `compute()` is the entry point
for external callers and validates its input before dispatching.
"""

from __future__ import annotations

import sys
from collections.abc import Callable

U64_MASK = (1 << 64) - 1

# Largest n whose Fibonacci number fits in 64 unsigned bits.
MAX_SAFE_INDEX = 93

Kernel = Callable[[int], int]
Matrix2 = tuple[tuple[int, int], tuple[int, int]]

FIB_MATRIX: Matrix2 = ((1, 1), (1, 0))


class UnknownKernelError(KeyError):
    """Raised when a kernel name is not registered."""

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(name)

    def __str__(self) -> str:
        known = ", ".join(KERNELS)
        return f"unknown kernel {self.name!r} (expected one of: {known})"


def fib_recursive(n: int) -> int:
    """Naive double recursion, O(2^n). Callers must keep n small."""
    if n <= 1:
        return n
    return (fib_recursive(n - 1) + fib_recursive(n - 2)) & U64_MASK


def fib_iterative(n: int) -> int:
    """Bottom-up evaluation carrying (previous, current), O(n) time, O(1) space.

    This is the reference kernel the others are checked against.
    """
    if n <= 1:
        return n
    previous, current = 0, 1
    for _ in range(n - 1):
        previous, current = current, (previous + current) & U64_MASK
    return current


def fib_memoized(n: int) -> int:
    """Top-down recursion over a table owned by this call only.

    The table is allocated on entry and discarded on return; nothing is
    cached between calls.
    """
    memo: list[int | None] = [None] * (n + 1)

    def helper(k: int) -> int:
        known = memo[k]
        if known is not None:
            return known
        if k <= 1:
            value = k
        else:
            value = (helper(k - 1) + helper(k - 2)) & U64_MASK
        memo[k] = value
        return value

    return helper(n)


def _matrix_mult(a: Matrix2, b: Matrix2) -> Matrix2:
    (a00, a01), (a10, a11) = a
    (b00, b01), (b10, b11) = b
    return (
        ((a00 * b00 + a01 * b10) & U64_MASK, (a00 * b01 + a01 * b11) & U64_MASK),
        ((a10 * b00 + a11 * b10) & U64_MASK, (a10 * b01 + a11 * b11) & U64_MASK),
    )


def _matrix_pow(m: Matrix2, n: int) -> Matrix2:
    """Raise `m` to the n-th power (n >= 1) by square-and-multiply."""
    if n == 1:
        return m
    half = _matrix_pow(m, n // 2)
    squared = _matrix_mult(half, half)
    if n % 2 == 0:
        return squared
    return _matrix_mult(squared, m)


def fib_matrix(n: int) -> int:
    """Read fib(n) from the top-right entry of [[1, 1], [1, 0]]^n.

    Uses O(log n) fixed-size 2x2 multiplications.
    """
    if n == 0:
        return 0
    return _matrix_pow(FIB_MATRIX, n)[0][1]


KERNELS: dict[str, Kernel] = {
    "recursive": fib_recursive,
    "iterative": fib_iterative,
    "memoized": fib_memoized,
    "matrix": fib_matrix,
}

COMPLEXITY = {
    "recursive": "O(2^n) time, O(n) stack",
    "iterative": "O(n) time, O(1) space",
    "memoized": "O(n) time, O(n) space",
    "matrix": "O(log n) time, O(log n) stack",
}


def get_kernel(name: str) -> Kernel:
    """Look up a kernel by name.

    Raises:
        UnknownKernelError: If no kernel is registered under `name`.
    """
    try:
        return KERNELS[name]
    except KeyError:
        raise UnknownKernelError(name) from None


def compute(n: int, kernel: str = "iterative") -> int:
    """Compute fib(n) with the named kernel.

    Args:
        n: Non-negative index. Values above MAX_SAFE_INDEX wrap modulo 2**64.
        kernel: Kernel name, one of `KERNELS`.

    Returns:
        fib(n) as an unsigned 64-bit value.

    Raises:
        ValueError: If `n` is not a non-negative integer, or if a recursive
            kernel would exceed the interpreter recursion limit for `n`.
        UnknownKernelError: If `kernel` is not registered.
    """
    if isinstance(n, bool) or not isinstance(n, int):
        raise ValueError(f"index must be an integer, got {type(n).__name__}")
    if n < 0:
        raise ValueError(f"index must be non-negative, got {n}")
    func = get_kernel(kernel)
    try:
        return func(n)
    except RecursionError:
        raise ValueError(
            f"n={n} is too deep for the {kernel} kernel under the recursion "
            f"limit of {sys.getrecursionlimit()}; use the iterative or matrix kernel"
        ) from None
