"""Correctness harness for the Fibonacci kernels.

Checks every kernel against a literal expected sequence for small n, then
against the reference kernel over an extended range that includes indices in
the wrapped (n > 93) region. The first mismatch aborts the run.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass

from fibbench.kernels import KERNELS, Kernel

EXPECTED_SEQUENCE: tuple[int, ...] = (0, 1, 1, 2, 3, 5, 8, 13, 21, 34, 55)

# Indices past the 64-bit safe threshold, checked for identical wraparound.
WRAPAROUND_INDICES: tuple[int, ...] = (93, 94, 95, 100)


class VerificationError(AssertionError):
    """A kernel produced a value different from the expected one.

    Attributes:
        n: Index at which the mismatch occurred.
        kernel: Name of the failing kernel.
        expected: Expected value.
        actual: Value returned by the kernel.
        source: Where `expected` came from ("expected sequence" or the name
            of the reference kernel).
    """

    def __init__(
        self, n: int, kernel: str, expected: int, actual: int, source: str
    ) -> None:
        self.n = n
        self.kernel = kernel
        self.expected = expected
        self.actual = actual
        self.source = source
        super().__init__(
            f"{kernel} failed for n={n}: expected {expected} ({source}), got {actual}"
        )


@dataclass(frozen=True)
class VerificationReport:
    """Summary of a successful verification run.

    Attributes:
        kernels: Names of the kernels checked.
        checks: Number of (kernel, n) comparisons performed.
        sequence_range: Inclusive range checked against the literal sequence.
        agreement_range: Inclusive range checked against the reference kernel.
        recursive_limit: Largest n the recursive kernel was checked at.
        wraparound_indices: Extra indices checked beyond the safe threshold.
    """

    kernels: tuple[str, ...]
    checks: int
    sequence_range: tuple[int, int]
    agreement_range: tuple[int, int]
    recursive_limit: int
    wraparound_indices: tuple[int, ...]


def _check(kernel: str, func: Kernel, n: int, expected: int, source: str) -> None:
    actual = func(n)
    if actual != expected:
        raise VerificationError(n, kernel, expected, actual, source)


def verify_expected_sequence(kernels: Mapping[str, Kernel] = KERNELS) -> int:
    """Check every kernel against EXPECTED_SEQUENCE.

    Returns:
        Number of comparisons made.

    Raises:
        VerificationError: On the first mismatch.
    """
    checks = 0
    for n, expected in enumerate(EXPECTED_SEQUENCE):
        for name, func in kernels.items():
            _check(name, func, n, expected, "expected sequence")
            checks += 1
    return checks


def verify_agreement(
    kernels: Mapping[str, Kernel] = KERNELS,
    stop: int = 40,
    recursive_limit: int = 30,
    reference: str = "iterative",
    extra_indices: Iterable[int] = WRAPAROUND_INDICES,
) -> int:
    """Check that every kernel agrees with the reference kernel.

    Args:
        kernels: Kernels to check, by name.
        stop: Last index (inclusive) of the contiguous range.
        recursive_limit: The "recursive" kernel is skipped above this index.
        reference: Name of the kernel used as ground truth.
        extra_indices: Additional indices to check, typically in the wrapped
            region.

    Returns:
        Number of comparisons made.

    Raises:
        VerificationError: On the first mismatch.
        KeyError: If `reference` is not in `kernels`.
    """
    oracle = kernels[reference]
    indices = list(range(stop + 1))
    indices.extend(n for n in extra_indices if n > stop)

    checks = 0
    for n in indices:
        expected = oracle(n)
        for name, func in kernels.items():
            if name == reference:
                continue
            if name == "recursive" and n > recursive_limit:
                continue
            _check(name, func, n, expected, reference)
            checks += 1
    return checks


def verify_all(
    kernels: Mapping[str, Kernel] = KERNELS,
    stop: int = 40,
    recursive_limit: int = 30,
    reference: str = "iterative",
    extra_indices: Iterable[int] = WRAPAROUND_INDICES,
) -> VerificationReport:
    """Run the sequence check followed by the agreement check.

    Raises:
        VerificationError: On the first mismatch in either phase.
    """
    extra = tuple(extra_indices)
    checks = verify_expected_sequence(kernels)
    checks += verify_agreement(
        kernels,
        stop=stop,
        recursive_limit=recursive_limit,
        reference=reference,
        extra_indices=extra,
    )
    return VerificationReport(
        kernels=tuple(kernels),
        checks=checks,
        sequence_range=(0, len(EXPECTED_SEQUENCE) - 1),
        agreement_range=(0, stop),
        recursive_limit=recursive_limit,
        wraparound_indices=tuple(n for n in extra if n > stop),
    )
