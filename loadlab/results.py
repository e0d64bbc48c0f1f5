"""Scenario results exported to the report builder."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from loadlab.dispatch import FAILURE_NONCE, CallOutcome
from loadlab.metrics import gas_average, latency_stats, throughput


@dataclass(frozen=True)
class ScenarioResult:
    scenario: str
    target: str
    total: int
    successful: int
    failed: int
    elapsed_ms: float
    tps: float
    latency: Dict[str, float]
    avg_gas: Optional[int]
    total_gas: int
    nonce_errors: int = 0
    passed: Optional[bool] = None
    extras: Dict[str, Any] = field(default_factory=dict)
    outcomes: List[CallOutcome] = field(default_factory=list, repr=False)


def build_result(
    scenario: str,
    target: str,
    outcomes: Sequence[CallOutcome],
    elapsed_ms: float,
    extras: Optional[Dict[str, Any]] = None,
    passed: Optional[bool] = None,
) -> ScenarioResult:
    successes = [outcome for outcome in outcomes if outcome.success]
    gas_values = [int(outcome.gas_used or 0) for outcome in successes]
    return ScenarioResult(
        scenario=scenario,
        target=target,
        total=len(outcomes),
        successful=len(successes),
        failed=len(outcomes) - len(successes),
        elapsed_ms=elapsed_ms,
        tps=throughput(len(successes), elapsed_ms),
        latency=latency_stats([outcome.elapsed_ms for outcome in successes]),
        avg_gas=gas_average(gas_values),
        total_gas=sum(gas_values),
        nonce_errors=sum(
            1 for outcome in outcomes if outcome.failure_kind == FAILURE_NONCE
        ),
        passed=passed,
        extras=dict(extras or {}),
        outcomes=list(outcomes),
    )
