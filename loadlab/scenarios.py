"""Load scenarios: each configures the dispatcher and applies its own targets."""
from __future__ import annotations

import asyncio
import random
import sys
from contextlib import contextmanager
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Callable, Iterator, List, Optional, Sequence, Tuple

from loadlab.accounts import AccountPool, SetupError
from loadlab.aggregate import (
    DEGRADATION_THRESHOLD_PCT,
    degradation,
    group_windows,
    packing_stats,
)
from loadlab.contracts import COMPUTE_HASH, SEND_MESSAGE, ContractFunction, Target
from loadlab.dispatch import FAILURE_OTHER, ArgsGenerator, BurstRun, CallOutcome, dispatch
from loadlab.messages import message_args
from loadlab.metrics import gas_ratio
from loadlab.report import Verdict, compute_verdict
from loadlab.results import ScenarioResult, build_result

SEQUENTIAL_NAME = "Scenario 1: Sequential Throughput"
CONCURRENT_NAME = "Scenario 2: Concurrent Throughput"
SUSTAINED_NAME = "Scenario 3: Sustained Load"
PAYLOAD_SWEEP_NAME = "Scenario 4: Message Size"
BURST_COMPARISON_NAME = "Scenario 5: Burst Comparison"
COMPUTE_COMPARISON_NAME = "Scenario 6: Compute Comparison"

MESSAGE_SIZE_BYTES = 64

SEQUENTIAL_TX_COUNT = 100
SEQUENTIAL_TARGET_TPS = 10.0

CONCURRENT_TX_COUNT = 50
CONCURRENT_TARGET_TPS = 20.0

SUSTAINED_DURATION_MS = 60_000
SUSTAINED_WINDOW_MS = 10_000
SUSTAINED_TARGET_TPS = 8.0

TXS_PER_TIER = 25
SIZE_TIERS: List[Tuple[str, int]] = [
    ("32B", 32),
    ("256B", 256),
    ("1KB", 1024),
    ("4KB", 4096),
]
# Gas of the 1KB tier against the 32B tier must stay under this factor.
RATIO_TIERS: Tuple[int, int] = (1024, 32)
MAX_GAS_RATIO = 3.0

BURST_SIZES: List[int] = [50, 100, 200, 500]
ITERATION_TIERS: List[int] = [100, 500, 1000, 2000]
COMPUTE_BURST_SIZE = 100
GAS_DISCOUNT_TARGET_PCT = 30.0
SETTLE_DELAY_SECONDS = 2.0


class ScenarioState(Enum):
    CONFIGURED = "configured"
    RUNNING = "running"
    COMPLETED = "completed"
    ABORTED = "aborted"


_TRANSITIONS = {
    ScenarioState.CONFIGURED: {ScenarioState.RUNNING},
    ScenarioState.RUNNING: {ScenarioState.COMPLETED, ScenarioState.ABORTED},
    ScenarioState.COMPLETED: set(),
    ScenarioState.ABORTED: set(),
}


class ScenarioRun:
    def __init__(self, name: str):
        self.name = name
        self.state = ScenarioState.CONFIGURED

    def transition(self, new_state: ScenarioState) -> None:
        if new_state not in _TRANSITIONS[self.state]:
            raise RuntimeError(
                f"{self.name}: invalid transition {self.state.value} -> {new_state.value}"
            )
        self.state = new_state


@contextmanager
def scenario_run(name: str) -> Iterator[ScenarioRun]:
    """Track a scenario from ``running`` to ``completed`` or ``aborted``.

    Only a :class:`SetupError` aborts; it is re-raised so the caller can
    report the scenario as un-runnable. Any other exception propagates with
    the run left in ``running``.
    """
    run = ScenarioRun(name)
    run.transition(ScenarioState.RUNNING)
    try:
        yield run
    except SetupError as exc:
        run.transition(ScenarioState.ABORTED)
        print(f"[ERROR] {name} aborted during setup: {exc}", file=sys.stderr)
        raise
    run.transition(ScenarioState.COMPLETED)


@dataclass(frozen=True)
class PayloadSweepResult:
    results: List[ScenarioResult]
    ratio: Optional[float]
    scaling: Optional[str]
    max_ratio: float
    passed: bool


@dataclass(frozen=True)
class ComparisonResult:
    name: str
    tier_name: str
    rows: List[ScenarioResult]
    verdict: Verdict


def classify_gas_scaling(ratio: float) -> str:
    if ratio < 5:
        return "SUBLINEAR"
    if ratio < 15:
        return "MODERATE"
    if ratio < 35:
        return "ROUGHLY LINEAR"
    return "SUPERLINEAR"


def _log_failure(tag: str, outcome: CallOutcome) -> None:
    error = (outcome.error or "")[:120]
    print(
        f"[ERROR] [{tag}] call {outcome.index + 1} (nonce {outcome.nonce}) failed "
        f"after {outcome.elapsed_ms:.0f}ms: {error}",
        file=sys.stderr,
    )


async def _dispatch_after_setup(
    client: Any,
    pool: AccountPool,
    target_address: str,
    function: ContractFunction,
    burst_size: int,
    args_for: ArgsGenerator,
    first: bool,
) -> BurstRun:
    """Dispatch a burst where only the scenario's first nonce snapshot is fatal.

    Once the scenario is running, a failed snapshot fails every call of the
    burst without sending any of them.
    """
    try:
        return await dispatch(client, pool, target_address, function, burst_size, args_for)
    except SetupError as exc:
        if first:
            raise
        now = client.now_ms()
        outcomes = []
        for index in range(burst_size):
            account = pool[index % len(pool)]
            outcomes.append(
                CallOutcome(
                    index=index,
                    account=account.address,
                    nonce=pool.cursor(account),
                    success=False,
                    elapsed_ms=0.0,
                    completed_ms=now,
                    error=str(exc),
                    failure_kind=FAILURE_OTHER,
                )
            )
        return BurstRun(outcomes=outcomes, started_ms=now, elapsed_ms=0.0)


async def _one_at_a_time(
    client: Any,
    pool: AccountPool,
    target: Target,
    function: ContractFunction,
    count: int,
    args_for: ArgsGenerator,
    tag: str,
    progress_every: int = 10,
    setup_pending: bool = True,
) -> List[CallOutcome]:
    outcomes: List[CallOutcome] = []
    for index in range(count):
        burst = await _dispatch_after_setup(
            client,
            pool,
            target.address,
            function,
            1,
            lambda _i, index=index: args_for(index),
            first=setup_pending and index == 0,
        )
        outcome = replace(burst.outcomes[0], index=index)
        outcomes.append(outcome)
        if not outcome.success:
            _log_failure(tag, outcome)
        if progress_every and (index + 1) % progress_every == 0:
            print(f"  [INFO] [{tag}] {index + 1}/{count} complete", flush=True)
    return outcomes


async def run_sequential(
    client: Any,
    pool: AccountPool,
    target: Target,
    tx_count: int = SEQUENTIAL_TX_COUNT,
    message_size: int = MESSAGE_SIZE_BYTES,
    target_tps: float = SEQUENTIAL_TARGET_TPS,
    rng: Optional[random.Random] = None,
) -> ScenarioResult:
    print(
        f"\n[INFO] [Sequential] Starting - {tx_count} TXs, {message_size}-byte messages, one at a time",
        flush=True,
    )
    with scenario_run(SEQUENTIAL_NAME):
        start = client.now_ms()
        outcomes = await _one_at_a_time(
            client, pool, target, SEND_MESSAGE, tx_count, message_args(message_size, rng), "Sequential"
        )
        elapsed = client.now_ms() - start
        result = build_result(
            SEQUENTIAL_NAME,
            target.label,
            outcomes,
            elapsed,
            extras={"target_tps": target_tps, "message_size_bytes": message_size},
        )
        result = replace(result, passed=result.tps >= target_tps)
    return result


async def run_concurrent(
    client: Any,
    pool: AccountPool,
    target: Target,
    tx_count: int = CONCURRENT_TX_COUNT,
    message_size: int = MESSAGE_SIZE_BYTES,
    target_tps: float = CONCURRENT_TARGET_TPS,
    rng: Optional[random.Random] = None,
) -> ScenarioResult:
    print(
        f"\n[INFO] [Concurrent] Starting - {tx_count} TXs fired at once across "
        f"{len(pool)} account(s) with pre-assigned nonces",
        flush=True,
    )
    with scenario_run(CONCURRENT_NAME):
        burst = await dispatch(
            client, pool, target.address, SEND_MESSAGE, tx_count, message_args(message_size, rng)
        )
        for outcome in burst.failures:
            _log_failure("Concurrent", outcome)
        packing = packing_stats(burst.outcomes)
        nonce_errors = burst.nonce_errors
        result = build_result(
            CONCURRENT_NAME,
            target.label,
            burst.outcomes,
            burst.elapsed_ms,
            extras={
                "target_tps": target_tps,
                "accounts": len(pool),
                "nonce_errors": nonce_errors,
                "other_errors": len(burst.failures) - nonce_errors,
                "block_count": packing["block_count"],
                "avg_per_block": packing["avg_per_block"],
                "max_per_block": packing["max_per_block"],
            },
        )
        result = replace(result, passed=result.tps >= target_tps)
    if nonce_errors:
        print(
            f"[WARN] {nonce_errors} nonce-related failures detected; this may indicate "
            "sequencer ordering issues or RPC nonce staleness.",
            file=sys.stderr,
        )
    return result


async def run_sustained(
    client: Any,
    pool: AccountPool,
    target: Target,
    duration_ms: float = SUSTAINED_DURATION_MS,
    window_ms: float = SUSTAINED_WINDOW_MS,
    message_size: int = MESSAGE_SIZE_BYTES,
    target_tps: float = SUSTAINED_TARGET_TPS,
    degradation_threshold_pct: float = DEGRADATION_THRESHOLD_PCT,
    rng: Optional[random.Random] = None,
) -> ScenarioResult:
    """Issue calls one at a time until ``duration_ms`` has passed.

    No call is started after the deadline, but the call in flight when it
    passes is always awaited.
    """
    print(
        f"\n[INFO] [Sustained] Starting - continuous load for {duration_ms / 1000:.0f} seconds",
        flush=True,
    )
    args_for = message_args(message_size, rng)
    with scenario_run(SUSTAINED_NAME):
        start = client.now_ms()
        deadline = start + duration_ms
        outcomes: List[CallOutcome] = []
        while client.now_ms() < deadline:
            burst = await _dispatch_after_setup(
                client, pool, target.address, SEND_MESSAGE, 1, args_for, first=not outcomes
            )
            outcome = replace(burst.outcomes[0], index=len(outcomes))
            outcomes.append(outcome)
            if not outcome.success:
                _log_failure("Sustained", outcome)
            if len(outcomes) % 25 == 0:
                elapsed_sec = (outcome.completed_ms - start) / 1000
                rate = len(outcomes) / elapsed_sec if elapsed_sec > 0 else 0.0
                print(
                    f"  [INFO] [Sustained] {len(outcomes)} TXs in {elapsed_sec:.1f}s ({rate:.1f} TPS)",
                    flush=True,
                )
        elapsed = client.now_ms() - start

        offsets = [outcome.completed_ms - start for outcome in outcomes if outcome.success]
        windows = group_windows(offsets, min(duration_ms, elapsed), window_ms)
        drop_pct, degraded = degradation(windows, degradation_threshold_pct)
        result = build_result(
            SUSTAINED_NAME,
            target.label,
            outcomes,
            elapsed,
            extras={
                "target_tps": target_tps,
                "windows": windows,
                "degradation_pct": round(drop_pct, 2),
                "degradation_threshold_pct": degradation_threshold_pct,
                "degraded": degraded,
            },
        )
        result = replace(result, passed=result.tps >= target_tps and not degraded)
    return result


async def run_payload_sweep(
    client: Any,
    pool: AccountPool,
    target: Target,
    tiers: Sequence[Tuple[str, int]] = SIZE_TIERS,
    txs_per_tier: int = TXS_PER_TIER,
    ratio_tiers: Tuple[int, int] = RATIO_TIERS,
    max_ratio: float = MAX_GAS_RATIO,
    rng: Optional[random.Random] = None,
) -> PayloadSweepResult:
    labels = ", ".join(label for label, _ in tiers)
    print(f"\n[INFO] [Message Size] Starting - {txs_per_tier} TXs per tier: {labels}", flush=True)
    with scenario_run(PAYLOAD_SWEEP_NAME):
        results: List[ScenarioResult] = []
        for label, size in tiers:
            print(f"  [INFO] [Message Size] Running tier: {label} ({size} bytes)", flush=True)
            tier_start = client.now_ms()
            outcomes = await _one_at_a_time(
                client,
                pool,
                target,
                SEND_MESSAGE,
                txs_per_tier,
                message_args(size, rng),
                f"Message Size {label}",
                progress_every=0,
                setup_pending=not any(result.total for result in results),
            )
            results.append(
                build_result(
                    f"{PAYLOAD_SWEEP_NAME} - {label}",
                    target.label,
                    outcomes,
                    client.now_ms() - tier_start,
                    extras={"size_bytes": size, "size_label": label},
                )
            )

    by_size = {result.extras["size_bytes"]: result.avg_gas for result in results}
    numerator, denominator = ratio_tiers
    ratio = gas_ratio(by_size.get(numerator), by_size.get(denominator))
    return PayloadSweepResult(
        results=results,
        ratio=ratio,
        scaling=classify_gas_scaling(ratio) if ratio is not None else None,
        max_ratio=max_ratio,
        passed=ratio is not None and ratio < max_ratio,
    )


async def run_comparative_burst(
    client: Any,
    pool: AccountPool,
    favored: Target,
    baseline: Target,
    function: ContractFunction,
    tiers: Sequence[int],
    burst_size_for: Callable[[int], int],
    args_for_tier: Callable[[int], ArgsGenerator],
    name: str = BURST_COMPARISON_NAME,
    tier_name: str = "Burst",
    target_pct: float = GAS_DISCOUNT_TARGET_PCT,
    settle_delay: float = SETTLE_DELAY_SECONDS,
) -> ComparisonResult:
    """Run the same burst against two targets at every tier and compare gas.

    The favored target always goes first within a tier; ``settle_delay``
    seconds separate consecutive bursts so pending state can drain.
    """
    with scenario_run(name):
        rows: List[ScenarioResult] = []
        for tier in tiers:
            burst_size = burst_size_for(tier)
            print(f"\n[INFO] {tier_name} {tier}: {burst_size} TXs per target", flush=True)
            for target in (favored, baseline):
                if settle_delay > 0 and rows:
                    await asyncio.sleep(settle_delay)
                burst = await _dispatch_after_setup(
                    client,
                    pool,
                    target.address,
                    function,
                    burst_size,
                    args_for_tier(tier),
                    first=not any(row.total for row in rows),
                )
                for outcome in burst.failures:
                    _log_failure(target.label, outcome)
                packing = packing_stats(burst.outcomes)
                row = build_result(
                    name,
                    target.label,
                    burst.outcomes,
                    burst.elapsed_ms,
                    extras={
                        "tier": tier,
                        "burst_size": burst_size,
                        "block_count": packing["block_count"],
                        "avg_per_block": packing["avg_per_block"],
                        "max_per_block": packing["max_per_block"],
                        "blocks": packing["blocks"],
                    },
                )
                rows.append(row)
                print(
                    f"  [INFO] [{target.label}] Done: {row.successful} OK, {row.failed} failed, "
                    f"{row.tps:.1f} TPS, avg {row.avg_gas if row.avg_gas is not None else 'N/A'} gas/TX, "
                    f"{packing['avg_per_block']:.1f} TXs/block avg",
                    flush=True,
                )

        verdict = compute_verdict(rows, favored.label, baseline.label, target_pct)
    return ComparisonResult(name=name, tier_name=tier_name, rows=rows, verdict=verdict)


async def run_burst_comparison(
    client: Any,
    pool: AccountPool,
    favored: Target,
    baseline: Target,
    burst_sizes: Sequence[int] = BURST_SIZES,
    message_size: int = MESSAGE_SIZE_BYTES,
    target_pct: float = GAS_DISCOUNT_TARGET_PCT,
    settle_delay: float = SETTLE_DELAY_SECONDS,
    rng: Optional[random.Random] = None,
) -> ComparisonResult:
    return await run_comparative_burst(
        client,
        pool,
        favored,
        baseline,
        SEND_MESSAGE,
        burst_sizes,
        burst_size_for=lambda size: size,
        args_for_tier=lambda _size: message_args(message_size, rng),
        name=BURST_COMPARISON_NAME,
        tier_name="Burst",
        target_pct=target_pct,
        settle_delay=settle_delay,
    )


async def run_compute_comparison(
    client: Any,
    pool: AccountPool,
    favored: Target,
    baseline: Target,
    iteration_tiers: Sequence[int] = ITERATION_TIERS,
    burst_size: int = COMPUTE_BURST_SIZE,
    target_pct: float = GAS_DISCOUNT_TARGET_PCT,
    settle_delay: float = SETTLE_DELAY_SECONDS,
) -> ComparisonResult:
    return await run_comparative_burst(
        client,
        pool,
        favored,
        baseline,
        COMPUTE_HASH,
        iteration_tiers,
        burst_size_for=lambda _iterations: burst_size,
        args_for_tier=lambda iterations: (lambda _index: [iterations]),
        name=COMPUTE_COMPARISON_NAME,
        tier_name="Iters",
        target_pct=target_pct,
        settle_delay=settle_delay,
    )
