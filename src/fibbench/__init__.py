"""fibbench: Fibonacci kernels with correctness and performance harnesses."""

from __future__ import annotations

import sys

from fibbench.kernels import KERNELS, UnknownKernelError, compute


def main() -> None:
    """Entry point for the fibbench CLI."""
    if len(sys.argv) < 2:
        print("Usage: fibbench <n> [kernel]")
        sys.exit(1)

    kernel = sys.argv[2] if len(sys.argv) > 2 else "iterative"
    try:
        value = compute(int(sys.argv[1]), kernel)
    except (ValueError, UnknownKernelError) as e:
        print(f"Error: {e}")
        sys.exit(1)
    print(value)


__all__ = ["KERNELS", "compute", "main"]
