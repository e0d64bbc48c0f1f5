"""Tables, verdicts and persisted summaries for load-test runs."""
from __future__ import annotations

import csv
import json
import os
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence, Tuple

from loadlab.aggregate import BlockStats, WindowStats
from loadlab.metrics import percentage_difference
from loadlab.results import ScenarioResult

RULE = "=" * 60
WIDE_RULE = "=" * 100

CSV_HEADER = [
    "scenario",
    "target",
    "index",
    "account",
    "nonce",
    "tx_hash",
    "success",
    "gas_used",
    "block_number",
    "latency_ms",
    "failure_kind",
    "error",
]


@dataclass
class Verdict:
    favored: str
    baseline: str
    favored_avg_gas: Optional[int]
    baseline_avg_gas: Optional[int]
    gas_discount_pct: Optional[float]
    packing_ratio: Optional[float]
    target_pct: float
    passed: bool
    per_tier: List[Dict[str, Any]] = field(default_factory=list)


def _gas_str(value: Optional[int]) -> str:
    return "N/A" if value is None else f"{value:,}"


def format_result(result: ScenarioResult) -> str:
    latency = result.latency
    lines = [
        "",
        RULE,
        f"  {result.scenario} [{result.target}]",
        RULE,
        f"  Transactions : {result.successful}/{result.total} ({result.failed} failed)",
        f"  Elapsed      : {result.elapsed_ms / 1000:.2f}s",
        f"  TPS          : {result.tps:.2f}",
        "  Latency:",
        f"    avg : {latency['avg']:.1f}ms",
        f"    min : {latency['min']:.1f}ms",
        f"    p50 : {latency['p50']:.1f}ms",
        f"    p90 : {latency['p90']:.1f}ms",
        f"    p99 : {latency['p99']:.1f}ms",
        f"    max : {latency['max']:.1f}ms",
        f"  Avg Gas      : {_gas_str(result.avg_gas)}",
    ]
    if result.nonce_errors:
        lines.append(f"  Nonce errors : {result.nonce_errors}")
    if result.passed is not None:
        lines.append(f"  Verdict      : {'PASS' if result.passed else 'FAIL'}")
    lines.append("")
    return "\n".join(lines)


def _pass_label(passed: Optional[bool]) -> str:
    if passed is None:
        return "-"
    return "PASS" if passed else "FAIL"


def format_summary_table(results: Sequence[ScenarioResult]) -> str:
    lines = [
        "| Scenario                         | Target   | OK/Fail   | TPS    | Avg Gas      | Time(s) | Pass? |",
        "|----------------------------------|----------|-----------|--------|--------------|---------|-------|",
    ]
    for result in results:
        ok_fail = f"{result.successful}/{result.failed}"
        lines.append(
            f"| {result.scenario[:32]:<32} | {result.target[:8]:<8} | {ok_fail:>9} | "
            f"{result.tps:>6.2f} | {_gas_str(result.avg_gas):>12} | "
            f"{result.elapsed_ms / 1000:>7.2f} | {_pass_label(result.passed):>5} |"
        )
    return "\n".join(f"  {line}" for line in lines)


def format_windows(windows: Sequence[WindowStats], degradation_pct: float, threshold_pct: float) -> str:
    baseline = windows[0].tps if windows else 0.0
    lines = [
        "  Rolling Window Breakdown:",
        "  -----------------------------------------------",
        "  Window          | TXs  | TPS",
        "  -----------------------------------------------",
    ]
    for window in windows:
        marker = ""
        if window.index == 0:
            marker = " (baseline)"
        elif window.tps < baseline * (1 - threshold_pct / 100):
            marker = " (DEGRADED)"
        lines.append(
            f"  {window.start_ms / 1000:>3.0f}s - {window.end_ms / 1000:>3.0f}s  | "
            f"{window.tx_count:>4} | {window.tps:.2f}{marker}"
        )
    lines.append("  -----------------------------------------------")
    exceeded = degradation_pct > threshold_pct
    lines.append(
        f"  Degradation: {degradation_pct:.1f}% "
        f"{f'(EXCEEDS {threshold_pct:.0f}% THRESHOLD)' if exceeded else '(within threshold)'}"
    )
    return "\n".join(lines)


def format_sweep(results: Sequence[ScenarioResult]) -> str:
    base_gas = results[0].avg_gas if results else None
    lines = [
        "  Gas Scaling Analysis:",
        "  -----------------------------------------------",
        "  Size   | Avg Gas     | Ratio vs base | TPS",
        "  -----------------------------------------------",
    ]
    for result in results:
        label = str(result.extras.get("size_label", "??"))
        if result.avg_gas is not None and base_gas:
            ratio = f"{result.avg_gas / base_gas:.2f}x"
        else:
            ratio = "N/A"
        lines.append(
            f"  {label:<6} | {_gas_str(result.avg_gas):>11} | {ratio:>13} | {result.tps:.2f}"
        )
    lines.append("  -----------------------------------------------")
    return "\n".join(lines)


def format_comparison_table(rows: Sequence[ScenarioResult], title: str, tier_name: str = "Burst") -> str:
    lines = [
        "",
        WIDE_RULE,
        f"  {title}",
        WIDE_RULE,
        f"  {tier_name:>5} | Contract | OK/Fail | TXs/Block(avg) | TXs/Block(max) | Avg Gas/TX  | Time(s) | TPS",
        "  ------|----------|---------|----------------|----------------|-------------|---------|------",
    ]
    for row in rows:
        ok_fail = f"{row.successful}/{row.failed}"
        lines.append(
            f"  {row.extras.get('tier', ''):>5} | {row.target[:8]:<8} | {ok_fail:>7} | "
            f"{row.extras.get('avg_per_block', 0.0):>14.1f} | "
            f"{row.extras.get('max_per_block', 0):>14} | {_gas_str(row.avg_gas):>11} | "
            f"{row.elapsed_ms / 1000:>7.2f} | {row.tps:>6.1f}"
        )
    lines.append(WIDE_RULE)
    return "\n".join(lines)


def _average_int(values: List[int]) -> Optional[int]:
    if not values:
        return None
    return sum(values) // len(values)


def _side(rows: Sequence[ScenarioResult], label: str) -> Tuple[List[int], List[float]]:
    gas = [row.avg_gas for row in rows if row.target == label and row.avg_gas is not None]
    packing = [
        float(row.extras.get("avg_per_block", 0.0)) for row in rows if row.target == label
    ]
    return gas, packing


def compute_verdict(
    rows: Sequence[ScenarioResult], favored: str, baseline: str, target_pct: float
) -> Verdict:
    """Compare average gas per call of two targets across every tested tier.

    Each side's figure is the mean of its per-tier averages; tiers where a
    side had no successful call are left out of that side's mean.
    """
    favored_gas, favored_packing = _side(rows, favored)
    baseline_gas, baseline_packing = _side(rows, baseline)
    favored_avg = _average_int(favored_gas)
    baseline_avg = _average_int(baseline_gas)
    discount = percentage_difference(favored_avg, baseline_avg)

    packing_ratio: Optional[float] = None
    if favored_packing and baseline_packing:
        baseline_mean = sum(baseline_packing) / len(baseline_packing)
        if baseline_mean > 0:
            packing_ratio = (sum(favored_packing) / len(favored_packing)) / baseline_mean

    tiers: Dict[Any, Dict[str, Optional[int]]] = {}
    for row in rows:
        if row.target not in (favored, baseline):
            continue
        tiers.setdefault(row.extras.get("tier"), {})[row.target] = row.avg_gas
    per_tier = []
    for tier, gas in tiers.items():
        if favored in gas and baseline in gas:
            per_tier.append(
                {
                    "tier": tier,
                    "favored_gas": gas[favored],
                    "baseline_gas": gas[baseline],
                    "discount_pct": percentage_difference(gas[favored], gas[baseline]),
                }
            )

    return Verdict(
        favored=favored,
        baseline=baseline,
        favored_avg_gas=favored_avg,
        baseline_avg_gas=baseline_avg,
        gas_discount_pct=discount,
        packing_ratio=packing_ratio,
        target_pct=target_pct,
        passed=discount is not None and discount >= target_pct,
        per_tier=per_tier,
    )


def format_verdict(verdict: Verdict, tier_name: str = "burst") -> str:
    discount = "N/A" if verdict.gas_discount_pct is None else f"{verdict.gas_discount_pct:.1f}%"
    ratio = "N/A" if verdict.packing_ratio is None else f"{verdict.packing_ratio:.2f}x"
    lines = [
        "",
        WIDE_RULE,
        "  VERDICT",
        "-" * 100,
    ]
    for tier in verdict.per_tier:
        tier_discount = tier["discount_pct"]
        lines.append(
            f"  {tier_name} {tier['tier']}: {verdict.favored} {_gas_str(tier['favored_gas'])} gas  |  "
            f"{verdict.baseline} {_gas_str(tier['baseline_gas'])} gas  |  Discount: "
            f"{'N/A' if tier_discount is None else f'{tier_discount:.1f}%'}"
        )
    lines.extend(
        [
            f"  Avg Gas/TX - {verdict.favored}: {_gas_str(verdict.favored_avg_gas)}  |  "
            f"{verdict.baseline}: {_gas_str(verdict.baseline_avg_gas)}",
            f"  Gas discount ({verdict.favored} vs {verdict.baseline}): {discount}",
            f"  TXs/Block ratio ({verdict.favored} / {verdict.baseline}): {ratio}",
            "",
            f"  Target: >= {verdict.target_pct:.0f}% {verdict.favored} gas discount | "
            f"Actual: {discount} | {'PASS' if verdict.passed else 'FAIL'}",
            WIDE_RULE,
            "",
        ]
    )
    return "\n".join(lines)


def _int_str(value: Optional[int]) -> Optional[str]:
    return None if value is None else str(value)


def _json_extra(value: Any, key: str = "") -> Any:
    if isinstance(value, BlockStats):
        return {
            "block_number": str(value.block_number),
            "tx_count": value.tx_count,
            "total_gas": str(value.total_gas),
        }
    if isinstance(value, WindowStats):
        return {
            "window": value.label,
            "tx_count": value.tx_count,
            "tps": round(value.tps, 2),
        }
    if isinstance(value, int) and not isinstance(value, bool) and "gas" in key:
        return str(value)
    if isinstance(value, (list, tuple)):
        return [_json_extra(item, key) for item in value]
    if isinstance(value, dict):
        return {name: _json_extra(item, name) for name, item in value.items()}
    return value


def result_to_json(result: ScenarioResult) -> Dict[str, Any]:
    return {
        "scenario": result.scenario,
        "target": result.target,
        "total_txs": result.total,
        "successful_txs": result.successful,
        "failed_txs": result.failed,
        "nonce_errors": result.nonce_errors,
        "elapsed_ms": result.elapsed_ms,
        "tps": result.tps,
        "avg_latency_ms": result.latency["avg"],
        "min_latency_ms": result.latency["min"],
        "p50_latency_ms": result.latency["p50"],
        "p90_latency_ms": result.latency["p90"],
        "p99_latency_ms": result.latency["p99"],
        "max_latency_ms": result.latency["max"],
        "avg_gas": _int_str(result.avg_gas),
        "total_gas": str(result.total_gas),
        "passed": result.passed,
        "extras": _json_extra(result.extras) if result.extras else None,
    }


def verdict_to_json(verdict: Verdict) -> Dict[str, Any]:
    return {
        "favored": verdict.favored,
        "baseline": verdict.baseline,
        "favored_avg_gas": _int_str(verdict.favored_avg_gas),
        "baseline_avg_gas": _int_str(verdict.baseline_avg_gas),
        "gas_discount_pct": verdict.gas_discount_pct,
        "packing_ratio": verdict.packing_ratio,
        "target_pct": verdict.target_pct,
        "passed": verdict.passed,
        "per_tier": [
            {
                "tier": tier["tier"],
                "favored_gas": _int_str(tier["favored_gas"]),
                "baseline_gas": _int_str(tier["baseline_gas"]),
                "discount_pct": tier["discount_pct"],
            }
            for tier in verdict.per_tier
        ],
    }


def build_summary(
    rpc_url: str,
    targets: Dict[str, str],
    results: Sequence[ScenarioResult],
    verdicts: Optional[Dict[str, Verdict]] = None,
    overall_pass: bool = False,
    errors: Optional[List[Dict[str, str]]] = None,
    timestamp: Optional[str] = None,
) -> Dict[str, Any]:
    return {
        "timestamp": timestamp or datetime.now(timezone.utc).isoformat(),
        "rpc_url": rpc_url,
        "targets": dict(targets),
        "overall_pass": overall_pass,
        "results": [result_to_json(result) for result in results],
        "verdicts": {name: verdict_to_json(verdict) for name, verdict in (verdicts or {}).items()},
        "errors": list(errors or []),
    }


def ensure_directory(path: str) -> None:
    if not os.path.exists(path):
        os.makedirs(path, exist_ok=True)


def build_output_paths(output_dir: str, label: str) -> Dict[str, str]:
    timestamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%SZ")
    ensure_directory(output_dir)
    return {
        "csv": os.path.join(output_dir, f"{label}.csv"),
        "summary": os.path.join(output_dir, f"{label}_summary_{timestamp}.json"),
        "timestamp": timestamp,
    }


def write_summary(path: str, payload: Dict[str, Any]) -> str:
    ensure_directory(os.path.dirname(os.path.abspath(path)))
    with open(path, "w", encoding="utf-8") as handle:
        json.dump(payload, handle, indent=2)
    return path


def write_outcomes_csv(path: str, results: Sequence[ScenarioResult]) -> int:
    """Append one row per call to ``path``; the header is written once."""
    ensure_directory(os.path.dirname(os.path.abspath(path)))
    write_header = not os.path.exists(path)
    rows = 0
    with open(path, "a", newline="", encoding="utf-8") as handle:
        writer = csv.DictWriter(handle, fieldnames=CSV_HEADER)
        if write_header:
            writer.writeheader()
        for result in results:
            for outcome in result.outcomes:
                writer.writerow(
                    {
                        "scenario": result.scenario,
                        "target": result.target,
                        "index": outcome.index,
                        "account": outcome.account,
                        "nonce": outcome.nonce,
                        "tx_hash": outcome.tx_hash,
                        "success": int(outcome.success),
                        "gas_used": outcome.gas_used,
                        "block_number": outcome.block_number,
                        "latency_ms": f"{outcome.elapsed_ms:.3f}",
                        "failure_kind": outcome.failure_kind,
                        "error": outcome.error,
                    }
                )
                rows += 1
    return rows
