"""Statistical primitives shared by scenarios, aggregation and reports."""
from __future__ import annotations

import math
import statistics
from fractions import Fraction
from typing import Dict, List, Optional, Sequence


def percentile(sorted_values: Sequence[float], p: float) -> float:
    """Nearest-rank percentile of an already sorted sequence.

    ``p`` is expressed in percent (0-100). No interpolation is performed, so
    the result is always one of the input values. An empty input yields 0.
    """
    if not sorted_values:
        return 0
    index = max(0, math.ceil(p / 100 * len(sorted_values)) - 1)
    return sorted_values[index]


def throughput(success_count: int, elapsed_ms: float) -> float:
    if elapsed_ms <= 0:
        return 0.0
    return success_count / elapsed_ms * 1000


def gas_average(gas_values: Sequence[int]) -> Optional[int]:
    # Integer sum and floor division; gas figures can exceed float precision.
    if not gas_values:
        return None
    total = sum(int(value) for value in gas_values)
    return total // len(gas_values)


def latency_stats(latencies: Sequence[float]) -> Dict[str, float]:
    ordered: List[float] = sorted(latencies)
    if not ordered:
        return {
            "avg": 0.0,
            "min": 0.0,
            "p50": 0.0,
            "p90": 0.0,
            "p99": 0.0,
            "max": 0.0,
            "count": 0,
        }
    return {
        "avg": float(statistics.mean(ordered)),
        "min": ordered[0],
        "p50": percentile(ordered, 50),
        "p90": percentile(ordered, 90),
        "p99": percentile(ordered, 99),
        "max": ordered[-1],
        "count": len(ordered),
    }


def percentage_difference(a: Optional[int], b: Optional[int]) -> Optional[float]:
    """Relative advantage of ``a`` over ``b`` in percent.

    Computed as ``(b - a) / max(a, b) * 100``: when ``a`` is the cheaper side
    this is ``(b - a) / b * 100``, and swapping the arguments flips the sign
    while keeping the magnitude.
    """
    if a is None or b is None:
        return None
    base = max(int(a), int(b))
    if base == 0:
        return None
    return float(Fraction((int(b) - int(a)) * 100, base))


def gas_ratio(numerator: Optional[int], denominator: Optional[int]) -> Optional[float]:
    if numerator is None or denominator is None or int(denominator) == 0:
        return None
    return float(Fraction(int(numerator), int(denominator)))
