#!/usr/bin/env python3
"""Run TPS / gas load scenarios against Stylus and EVM contracts on an L2 node."""
from __future__ import annotations

import argparse
import asyncio
import random
import sys
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional

from web3.exceptions import Web3Exception

from loadlab.accounts import AccountPool, SetupError
from loadlab.chain import DEFAULT_FUNDING_WEI, DEFAULT_RECEIPT_TIMEOUT, Web3ChainClient
from loadlab.config import HarnessConfig, load_config, require
from loadlab.contracts import Target
from loadlab.report import (
    Verdict,
    build_output_paths,
    build_summary,
    format_comparison_table,
    format_result,
    format_summary_table,
    format_sweep,
    format_verdict,
    format_windows,
    write_outcomes_csv,
    write_summary,
)
from loadlab.results import ScenarioResult
from loadlab import scenarios

SINGLE_TARGET_SCENARIOS = ["sequential", "concurrent", "sustained", "payload-sweep"]
COMPARISON_SCENARIOS = ["burst-comparison", "compute-comparison"]
BURST_POOL_SCENARIOS = {"concurrent", "burst-comparison", "compute-comparison"}
SCENARIO_CHOICES = ["run-all"] + SINGLE_TARGET_SCENARIOS + COMPARISON_SCENARIOS

DEFAULT_OUTPUT_DIR = "results"


def parse_int_list(raw: str) -> List[int]:
    values: List[int] = []
    for item in raw.split(","):
        item = item.strip()
        if not item:
            continue
        try:
            value = int(item)
        except ValueError as exc:  # noqa: BLE001
            raise argparse.ArgumentTypeError(f"Expected an integer, received '{item}'.") from exc
        if value <= 0:
            raise argparse.ArgumentTypeError("List values must be greater than zero.")
        values.append(value)
    if not values:
        raise argparse.ArgumentTypeError("Expected a comma-separated list of integers.")
    return values


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="loadlab", description=__doc__)
    parser.add_argument(
        "scenario",
        choices=SCENARIO_CHOICES,
        help="Scenario to run; run-all runs the four single-target scenarios",
    )
    parser.add_argument(
        "--env-file",
        default=None,
        help="Path to a .env file (defaults to the nearest .env from the working directory)",
    )
    parser.add_argument(
        "--chain-config-dir",
        default=None,
        help="Directory holding deployment address files such as contractAddress.txt",
    )
    parser.add_argument(
        "--rpc-url",
        default=None,
        help="Override RPC endpoint (defaults to L2_CHAIN_RPC)",
    )
    parser.add_argument(
        "--receipt-timeout",
        type=int,
        default=DEFAULT_RECEIPT_TIMEOUT,
        help="Seconds to wait for each transaction receipt",
    )
    parser.add_argument(
        "--gas-limit",
        type=int,
        default=None,
        help="Fixed gas limit per call; estimated per call when omitted",
    )
    parser.add_argument(
        "--poa",
        action="store_true",
        help="Inject POA middleware (for Clique/IBFT style chains)",
    )
    parser.add_argument(
        "--skip-funding",
        action="store_true",
        help="Assume burst accounts are funded and skip top-up transfers",
    )
    parser.add_argument(
        "--funding-wei",
        type=int,
        default=DEFAULT_FUNDING_WEI,
        help="Minimum balance each burst account is topped up to",
    )
    parser.add_argument(
        "--output-dir",
        default=DEFAULT_OUTPUT_DIR,
        help="Directory where the summary JSON and per-call CSV are written",
    )
    parser.add_argument(
        "--label",
        default="loadlab",
        help="Base name used for output files",
    )
    parser.add_argument(
        "--summary-only",
        action="store_true",
        help="Skip CSV emission, only write the summary JSON",
    )
    parser.add_argument("--tx-count", type=int, default=scenarios.SEQUENTIAL_TX_COUNT)
    parser.add_argument("--concurrent-count", type=int, default=scenarios.CONCURRENT_TX_COUNT)
    parser.add_argument(
        "--duration",
        type=float,
        default=scenarios.SUSTAINED_DURATION_MS / 1000,
        help="Sustained scenario duration in seconds",
    )
    parser.add_argument(
        "--window",
        type=float,
        default=scenarios.SUSTAINED_WINDOW_MS / 1000,
        help="Sustained scenario window width in seconds",
    )
    parser.add_argument("--txs-per-tier", type=int, default=scenarios.TXS_PER_TIER)
    parser.add_argument(
        "--burst-sizes",
        type=parse_int_list,
        default=list(scenarios.BURST_SIZES),
        help="Comma-separated burst sizes for burst-comparison",
    )
    parser.add_argument(
        "--iteration-tiers",
        type=parse_int_list,
        default=list(scenarios.ITERATION_TIERS),
        help="Comma-separated hash iteration tiers for compute-comparison",
    )
    parser.add_argument("--compute-burst-size", type=int, default=scenarios.COMPUTE_BURST_SIZE)
    parser.add_argument(
        "--settle-delay",
        type=float,
        default=scenarios.SETTLE_DELAY_SECONDS,
        help="Seconds to pause between comparison bursts",
    )
    parser.add_argument(
        "--seed",
        type=int,
        default=None,
        help="Seed for message payload generation",
    )
    return parser.parse_args(argv)


@dataclass
class RunCollector:
    results: List[ScenarioResult] = field(default_factory=list)
    verdicts: Dict[str, Verdict] = field(default_factory=dict)
    checks: List[bool] = field(default_factory=list)
    targets: Dict[str, str] = field(default_factory=dict)
    errors: List[Dict[str, str]] = field(default_factory=list)

    @property
    def overall_pass(self) -> bool:
        return bool(self.checks) and all(self.checks) and not self.errors


@dataclass
class RunContext:
    args: argparse.Namespace
    config: HarnessConfig
    client: Any
    rng: Optional[random.Random]
    collector: RunCollector


def primary_pool(config: HarnessConfig) -> AccountPool:
    key = require(config.test_user_key, "TEST_USER_PRIVATE_KEY", "Set it in .env.")
    return AccountPool.from_keys([key])


def burst_pool(config: HarnessConfig) -> AccountPool:
    return AccountPool.from_keys(config.burst_keys)


def messaging_target(ctx: RunContext) -> Target:
    address = require(
        ctx.config.messaging_address,
        "MESSAGING_CONTRACT_ADDRESS",
        "Set it in .env or deploy the contract first.",
    )
    ctx.collector.targets["Stylus"] = address
    return Target("Stylus", address)


def _record(ctx: RunContext, result: ScenarioResult) -> None:
    ctx.collector.results.append(result)
    if result.passed is not None:
        ctx.collector.checks.append(result.passed)
    print(format_result(result))


async def _sequential(ctx: RunContext) -> None:
    result = await scenarios.run_sequential(
        ctx.client,
        primary_pool(ctx.config),
        messaging_target(ctx),
        tx_count=ctx.args.tx_count,
        rng=ctx.rng,
    )
    _record(ctx, result)


async def _concurrent(ctx: RunContext) -> None:
    result = await scenarios.run_concurrent(
        ctx.client,
        burst_pool(ctx.config),
        messaging_target(ctx),
        tx_count=ctx.args.concurrent_count,
        rng=ctx.rng,
    )
    _record(ctx, result)


async def _sustained(ctx: RunContext) -> None:
    result = await scenarios.run_sustained(
        ctx.client,
        primary_pool(ctx.config),
        messaging_target(ctx),
        duration_ms=ctx.args.duration * 1000,
        window_ms=ctx.args.window * 1000,
        rng=ctx.rng,
    )
    _record(ctx, result)
    print(
        format_windows(
            result.extras["windows"],
            result.extras["degradation_pct"],
            result.extras["degradation_threshold_pct"],
        )
    )


async def _payload_sweep(ctx: RunContext) -> None:
    sweep = await scenarios.run_payload_sweep(
        ctx.client,
        primary_pool(ctx.config),
        messaging_target(ctx),
        txs_per_tier=ctx.args.txs_per_tier,
        rng=ctx.rng,
    )
    for result in sweep.results:
        _record(ctx, result)
    print(format_sweep(sweep.results))
    if sweep.ratio is None:
        print("[WARN] Gas ratio unavailable: a compared tier had no successful calls.", file=sys.stderr)
    else:
        print(f"  Scaling: {sweep.scaling}")
        print(
            f"  Check: {scenarios.RATIO_TIERS[0]}B/{scenarios.RATIO_TIERS[1]}B gas ratio = "
            f"{sweep.ratio:.2f}x (target < {sweep.max_ratio:.0f}x) | "
            f"{'PASS' if sweep.passed else 'FAIL'}"
        )
    ctx.collector.checks.append(sweep.passed)


def _record_comparison(ctx: RunContext, comparison: scenarios.ComparisonResult, key: str) -> None:
    ctx.collector.results.extend(comparison.rows)
    ctx.collector.verdicts[key] = comparison.verdict
    ctx.collector.checks.append(comparison.verdict.passed)
    print(format_comparison_table(comparison.rows, comparison.name, comparison.tier_name))
    print(format_verdict(comparison.verdict, comparison.tier_name.lower()))


async def _burst_comparison(ctx: RunContext) -> None:
    stylus = messaging_target(ctx)
    evm_address = require(
        ctx.config.evm_messaging_address,
        "EVM_CONTRACT_ADDRESS",
        "Set it in .env or deploy via scripts/run-burst-comparison.sh.",
    )
    ctx.collector.targets["EVM"] = evm_address
    comparison = await scenarios.run_burst_comparison(
        ctx.client,
        burst_pool(ctx.config),
        stylus,
        Target("EVM", evm_address),
        burst_sizes=ctx.args.burst_sizes,
        settle_delay=ctx.args.settle_delay,
        rng=ctx.rng,
    )
    _record_comparison(ctx, comparison, "burst-comparison")


async def _compute_comparison(ctx: RunContext) -> None:
    stylus_address = require(
        ctx.config.compute_stylus_address,
        "COMPUTE_STYLUS_ADDRESS",
        "Set it in .env or deploy via scripts/run-compute-comparison.sh.",
    )
    evm_address = require(
        ctx.config.compute_evm_address,
        "COMPUTE_EVM_ADDRESS",
        "Set it in .env or deploy via scripts/run-compute-comparison.sh.",
    )
    ctx.collector.targets["Stylus compute"] = stylus_address
    ctx.collector.targets["EVM compute"] = evm_address
    comparison = await scenarios.run_compute_comparison(
        ctx.client,
        burst_pool(ctx.config),
        Target("Stylus", stylus_address),
        Target("EVM", evm_address),
        iteration_tiers=ctx.args.iteration_tiers,
        burst_size=ctx.args.compute_burst_size,
        settle_delay=ctx.args.settle_delay,
    )
    _record_comparison(ctx, comparison, "compute-comparison")


RUNNERS: Dict[str, Callable[[RunContext], Awaitable[None]]] = {
    "sequential": _sequential,
    "concurrent": _concurrent,
    "sustained": _sustained,
    "payload-sweep": _payload_sweep,
    "burst-comparison": _burst_comparison,
    "compute-comparison": _compute_comparison,
}


def selected_scenarios(name: str) -> List[str]:
    if name == "run-all":
        return list(SINGLE_TARGET_SCENARIOS)
    return [name]


async def fund_burst_pool(ctx: RunContext) -> None:
    if ctx.args.skip_funding:
        print("[INFO] Skipping burst account funding as requested", flush=True)
        return
    if not ctx.config.test_user_key:
        print(
            "[WARN] TEST_USER_PRIVATE_KEY not set; burst accounts are assumed to be funded.",
            file=sys.stderr,
        )
        return
    await ctx.client.fund_accounts(
        ctx.config.test_user_key,
        burst_pool(ctx.config).accounts,
        amount_wei=ctx.args.funding_wei,
    )


async def execute(
    args: argparse.Namespace,
    config: HarnessConfig,
    client_factory: Callable[..., Any] = Web3ChainClient,
) -> int:
    client = client_factory(
        config.rpc_url,
        chain_id=config.chain_id,
        receipt_timeout=args.receipt_timeout,
        gas_limit=args.gas_limit,
        poa=args.poa,
    )
    chain_id = await client.connect()
    latest_block = await client.latest_block()

    print("RPC:", config.rpc_url)
    print("Chain ID:", chain_id)
    print("Latest block:", latest_block)
    print("Scenario:", args.scenario)

    ctx = RunContext(
        args=args,
        config=config,
        client=client,
        rng=random.Random(args.seed) if args.seed is not None else None,
        collector=RunCollector(),
    )
    names = selected_scenarios(args.scenario)
    if BURST_POOL_SCENARIOS.intersection(names):
        await fund_burst_pool(ctx)

    for name in names:
        try:
            await RUNNERS[name](ctx)
        except (SetupError, ValueError) as exc:
            print(f"\n[ERROR] {name} failed: {exc}", file=sys.stderr)
            ctx.collector.errors.append({"scenario": name, "error": str(exc)})

    collector = ctx.collector
    print("\n" + "=" * 72)
    print("  COMBINED RESULTS SUMMARY")
    print("=" * 72)
    print(format_summary_table(collector.results))
    if collector.errors:
        print("\n  ERRORS:")
        for entry in collector.errors:
            print(f"    - {entry['scenario']}: {entry['error']}")
    print("\n" + "=" * 72)
    print(f"  OVERALL: {'PASS' if collector.overall_pass else 'FAIL'}")
    print("=" * 72)

    paths = build_output_paths(args.output_dir, args.label)
    if not args.summary_only and collector.results:
        rows = write_outcomes_csv(paths["csv"], collector.results)
        print(f"Detailed results ({rows} calls) appended to {paths['csv']}")

    summary = build_summary(
        rpc_url=config.rpc_url,
        targets=collector.targets,
        results=collector.results,
        verdicts=collector.verdicts,
        overall_pass=collector.overall_pass,
        errors=collector.errors,
    )
    write_summary(paths["summary"], summary)
    print(f"Summary written to {paths['summary']}")

    return 1 if collector.errors else 0


def main(
    argv: Optional[List[str]] = None, client_factory: Callable[..., Any] = Web3ChainClient
) -> int:
    args = parse_args(argv)
    try:
        config = load_config(args.env_file, args.chain_config_dir)
        if args.rpc_url:
            config.rpc_url = args.rpc_url
        return asyncio.run(execute(args, config, client_factory))
    except (ConnectionError, FileNotFoundError, ValueError, SetupError, Web3Exception) as exc:
        print(f"Fatal error: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
