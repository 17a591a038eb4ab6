"""
Measurement statistics.

Pure functions -- no I/O, no clocks. ``statistics.mean`` is used instead of
``fmean`` because its exact arithmetic keeps ``min <= mean <= max`` for
any input.
"""
from __future__ import annotations

import statistics
from typing import Optional, Sequence, Tuple


def summarize(values: Sequence[float]) -> Tuple[Optional[float], Optional[float], Optional[float], Optional[float]]:
    """Return ``(mean, min, max, population stddev)``; all ``None`` when empty."""
    if not values:
        return None, None, None, None
    return (
        statistics.mean(values),
        min(values),
        max(values),
        statistics.pstdev(values),
    )


def packet_loss(failed: int, attempted: int) -> Optional[float]:
    if attempted <= 0:
        return None
    return failed / attempted


def throughput_bps(byte_count: int, elapsed_seconds: float) -> float:
    """Bits per second for ``byte_count`` bytes over ``elapsed_seconds``."""
    if elapsed_seconds <= 0:
        raise ValueError("elapsed time must be positive")
    return byte_count * 8 / elapsed_seconds
