"""Per-block packing density and time-window throughput series."""
from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Sequence, Tuple

from loadlab.dispatch import CallOutcome
from loadlab.metrics import gas_average

DEGRADATION_THRESHOLD_PCT = 20.0


@dataclass(frozen=True)
class BlockStats:
    block_number: int
    tx_count: int
    total_gas: int


@dataclass(frozen=True)
class WindowStats:
    index: int
    start_ms: float
    end_ms: float
    tx_count: int
    tps: float

    @property
    def label(self) -> str:
        return f"{self.start_ms / 1000:.0f}-{self.end_ms / 1000:.0f}s"


def analyze_blocks(outcomes: Iterable[CallOutcome]) -> List[BlockStats]:
    counts: Dict[int, int] = {}
    gas: Dict[int, int] = {}
    for outcome in outcomes:
        if not outcome.success or outcome.block_number is None:
            continue
        block = outcome.block_number
        counts[block] = counts.get(block, 0) + 1
        gas[block] = gas.get(block, 0) + int(outcome.gas_used or 0)
    return [
        BlockStats(block_number=block, tx_count=counts[block], total_gas=gas[block])
        for block in sorted(counts)
    ]


def packing_stats(outcomes: Sequence[CallOutcome]) -> Dict[str, Any]:
    """How densely confirmed calls landed in blocks.

    ``avg_gas_per_call`` is ``None`` when nothing succeeded.
    """
    blocks = analyze_blocks(outcomes)
    tx_counts = [block.tx_count for block in blocks]
    success_gas = [
        int(outcome.gas_used or 0) for outcome in outcomes if outcome.success
    ]
    return {
        "block_count": len(blocks),
        "avg_per_block": sum(tx_counts) / len(tx_counts) if tx_counts else 0.0,
        "max_per_block": max(tx_counts) if tx_counts else 0,
        "total_gas": sum(success_gas),
        "avg_gas_per_call": gas_average(success_gas),
        "blocks": blocks,
    }


def group_windows(
    offsets_ms: Iterable[float], duration_ms: float, width_ms: float
) -> List[WindowStats]:
    """Bucket confirmation offsets into contiguous fixed-width windows.

    Windows cover ``[0, duration_ms)``; the last one is clipped to
    ``duration_ms`` instead of padded. Offsets outside the run are ignored.
    """
    if width_ms <= 0:
        raise ValueError("Window width must be greater than zero")
    if duration_ms <= 0:
        return []

    window_count = math.ceil(duration_ms / width_ms)
    counts = [0] * window_count
    for offset in offsets_ms:
        if offset < 0 or offset >= duration_ms:
            continue
        counts[int(offset // width_ms)] += 1

    windows: List[WindowStats] = []
    for index, count in enumerate(counts):
        start = index * width_ms
        end = min((index + 1) * width_ms, duration_ms)
        seconds = (end - start) / 1000
        windows.append(
            WindowStats(
                index=index,
                start_ms=start,
                end_ms=end,
                tx_count=count,
                tps=count / seconds if seconds > 0 else 0.0,
            )
        )
    return windows


def degradation(
    windows: Sequence[WindowStats], threshold_pct: float = DEGRADATION_THRESHOLD_PCT
) -> Tuple[float, bool]:
    """Throughput drop of the last window against the first one.

    Only the first and last windows are compared; a dip in the middle of the
    run that recovers by the end is not reported.
    """
    if len(windows) < 2:
        return 0.0, False
    first = windows[0].tps
    last = windows[-1].tps
    if first <= 0:
        return 0.0, False
    drop_pct = (first - last) / first * 100
    return drop_pct, drop_pct > threshold_pct
