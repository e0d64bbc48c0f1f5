import asyncio
import random

import pytest

from conftest import FakeChainClient
from loadlab.accounts import SetupError
from loadlab.contracts import Target
from loadlab.dispatch import FAILURE_OTHER
from loadlab.scenarios import (
    ScenarioState,
    classify_gas_scaling,
    run_burst_comparison,
    run_compute_comparison,
    run_concurrent,
    run_payload_sweep,
    run_sequential,
    run_sustained,
    scenario_run,
)

STYLUS = Target("Stylus", "0x00000000000000000000000000000000000000a1")
EVM = Target("EVM", "0x00000000000000000000000000000000000000b2")


class SlowingChainClient(FakeChainClient):
    """Fast confirmations for the first half second, slow ones afterwards."""

    async def await_receipt(self, handle):
        self.latency_ms = 50.0 if self.clock_ms < 500 else 200.0
        return await super().await_receipt(handle)


@pytest.mark.asyncio
async def test_sequential_throughput(single_pool, fake_client):
    result = await run_sequential(
        fake_client, single_pool, STYLUS, tx_count=5, target_tps=10.0, rng=random.Random(1)
    )

    assert result.total == 5
    assert result.successful == 5
    assert result.elapsed_ms == pytest.approx(500.0)
    assert result.tps == pytest.approx(10.0)
    assert result.passed is True
    assert [outcome.index for outcome in result.outcomes] == [0, 1, 2, 3, 4]
    # every call re-reads the pending nonce
    assert len(fake_client.nonce_queries) == 5
    assert [s.nonce for s in fake_client.submissions] == [0, 1, 2, 3, 4]
    assert all(len(s.args[0]) == 64 for s in fake_client.submissions)


@pytest.mark.asyncio
async def test_sequential_below_target_fails(single_pool, fake_client):
    result = await run_sequential(fake_client, single_pool, STYLUS, tx_count=5, target_tps=20.0)

    assert result.tps == pytest.approx(10.0)
    assert result.passed is False


@pytest.mark.asyncio
async def test_concurrent_records_packing_and_errors(burst_pool):
    client = FakeChainClient(fail_submissions={2: "nonce too low"}, block_size=3)

    result = await run_concurrent(client, burst_pool, STYLUS, tx_count=9, target_tps=1.0)

    assert result.total == 9
    assert result.failed == 1
    assert result.nonce_errors == 1
    assert result.extras["nonce_errors"] == 1
    assert result.extras["other_errors"] == 0
    assert result.extras["accounts"] == 3
    assert result.extras["block_count"] == 3
    assert result.extras["max_per_block"] == 3
    assert len(client.nonce_queries) == 3
    assert result.passed is True


@pytest.mark.asyncio
async def test_sustained_steady_rate(single_pool, fake_client):
    result = await run_sustained(
        fake_client, single_pool, STYLUS, duration_ms=1_000, window_ms=250, target_tps=8.0
    )

    assert result.total == 10
    windows = result.extras["windows"]
    assert [w.tx_count for w in windows] == [2, 2, 3, 2]
    assert result.extras["degraded"] is False
    assert result.extras["degradation_pct"] == 0.0
    assert result.passed is True


@pytest.mark.asyncio
async def test_sustained_detects_degradation(single_pool):
    client = SlowingChainClient()

    result = await run_sustained(
        client, single_pool, STYLUS, duration_ms=1_000, window_ms=500, target_tps=1.0
    )

    assert result.total == 13
    windows = result.extras["windows"]
    assert [w.tx_count for w in windows] == [9, 3]
    assert windows[0].tps == pytest.approx(18.0)
    assert windows[1].tps == pytest.approx(6.0)
    assert result.extras["degraded"] is True
    assert result.passed is False


@pytest.mark.asyncio
async def test_payload_sweep_ratio(single_pool):
    client = FakeChainClient(gas_fn=lambda s: 21_000 + 16 * len(s.args[0]))

    sweep = await run_payload_sweep(
        client, single_pool, STYLUS, tiers=[("32B", 32), ("1KB", 1024)], txs_per_tier=3
    )

    assert [r.avg_gas for r in sweep.results] == [21_512, 37_384]
    assert sweep.ratio == pytest.approx(37_384 / 21_512)
    assert sweep.scaling == "SUBLINEAR"
    assert sweep.passed is True


@pytest.mark.asyncio
async def test_payload_sweep_without_ratio_tiers_fails(single_pool, fake_client):
    sweep = await run_payload_sweep(
        fake_client, single_pool, STYLUS, tiers=[("32B", 32)], txs_per_tier=1
    )

    assert sweep.ratio is None
    assert sweep.scaling is None
    assert sweep.passed is False


@pytest.mark.asyncio
async def test_burst_comparison_verdict(burst_pool):
    client = FakeChainClient(gas_by_target={STYLUS.address: 60_000, EVM.address: 100_000})

    comparison = await run_burst_comparison(
        client, burst_pool, STYLUS, EVM, burst_sizes=[4, 8], settle_delay=0
    )

    assert [(row.target, row.extras["tier"]) for row in comparison.rows] == [
        ("Stylus", 4),
        ("EVM", 4),
        ("Stylus", 8),
        ("EVM", 8),
    ]
    verdict = comparison.verdict
    assert verdict.favored_avg_gas == 60_000
    assert verdict.baseline_avg_gas == 100_000
    assert verdict.gas_discount_pct == pytest.approx(40.0)
    assert verdict.passed is True
    assert len(verdict.per_tier) == 2

    pairs = [(s.address, s.nonce) for s in client.submissions]
    assert len(pairs) == 24
    assert len(set(pairs)) == 24


@pytest.mark.asyncio
async def test_burst_comparison_below_target(burst_pool):
    client = FakeChainClient(gas_by_target={STYLUS.address: 90_000, EVM.address: 100_000})

    comparison = await run_burst_comparison(
        client, burst_pool, STYLUS, EVM, burst_sizes=[3], settle_delay=0
    )

    assert comparison.verdict.gas_discount_pct == pytest.approx(10.0)
    assert comparison.verdict.passed is False


@pytest.mark.asyncio
async def test_compute_comparison_passes_iterations(burst_pool, fake_client):
    comparison = await run_compute_comparison(
        fake_client, burst_pool, STYLUS, EVM, iteration_tiers=[100, 500], burst_size=3, settle_delay=0
    )

    assert len(comparison.rows) == 4
    assert comparison.tier_name == "Iters"
    assert {s.function for s in fake_client.submissions} == {"computeHash"}
    assert [s.args for s in fake_client.submissions[:3]] == [[100]] * 3
    assert [s.args for s in fake_client.submissions[-3:]] == [[500]] * 3


@pytest.mark.asyncio
async def test_unreadable_nonces_abort_before_any_call(burst_pool):
    client = FakeChainClient(nonce_error=ConnectionError("connection refused"))

    with pytest.raises(SetupError):
        await run_concurrent(client, burst_pool, STYLUS, tx_count=5)

    assert client.submissions == []


def test_scenario_run_transitions():
    with scenario_run("demo") as run:
        assert run.state is ScenarioState.RUNNING
    assert run.state is ScenarioState.COMPLETED

    with pytest.raises(RuntimeError):
        run.transition(ScenarioState.RUNNING)


def test_scenario_run_aborts_on_setup_error():
    with pytest.raises(SetupError):
        with scenario_run("demo") as run:
            raise SetupError("no nonces")
    assert run.state is ScenarioState.ABORTED


def test_scenario_run_lets_other_errors_through():
    with pytest.raises(ValueError):
        with scenario_run("demo") as run:
            raise ValueError("bad input")
    assert run.state is not ScenarioState.COMPLETED


@pytest.mark.parametrize(
    "ratio, label",
    [(1.7, "SUBLINEAR"), (10, "MODERATE"), (20, "ROUGHLY LINEAR"), (40, "SUPERLINEAR")],
)
def test_classify_gas_scaling(ratio, label):
    assert classify_gas_scaling(ratio) == label


@pytest.mark.asyncio
async def test_sequential_keeps_running_after_nonce_read_failure(single_pool):
    client = FakeChainClient(failed_nonce_reads={4})

    result = await run_sequential(client, single_pool, STYLUS, tx_count=10, target_tps=1.0)

    assert result.total == 10
    assert result.successful == 9
    failed = result.outcomes[3]
    assert not failed.success
    assert failed.failure_kind == FAILURE_OTHER
    assert "rpc blip" in failed.error
    assert [s.nonce for s in client.submissions] == list(range(9))


@pytest.mark.asyncio
async def test_sustained_keeps_running_after_nonce_read_failure(single_pool):
    client = FakeChainClient(failed_nonce_reads={4})

    result = await run_sustained(
        client, single_pool, STYLUS, duration_ms=1_000, window_ms=500, target_tps=1.0
    )

    assert result.successful == 10
    assert result.failed == 1
    assert result.total == 11
    assert result.outcomes[3].failure_kind == FAILURE_OTHER


@pytest.mark.asyncio
async def test_sequential_first_nonce_read_failure_aborts(single_pool):
    client = FakeChainClient(failed_nonce_reads={1})

    with pytest.raises(SetupError):
        await run_sequential(client, single_pool, STYLUS, tx_count=3)

    assert client.submissions == []


@pytest.mark.asyncio
async def test_payload_sweep_later_tier_survives_nonce_read_failure(single_pool):
    client = FakeChainClient(failed_nonce_reads={3})

    sweep = await run_payload_sweep(
        client, single_pool, STYLUS, tiers=[("32B", 32), ("1KB", 1024)], txs_per_tier=2
    )

    assert [(r.successful, r.failed) for r in sweep.results] == [(2, 0), (1, 1)]


@pytest.mark.asyncio
async def test_comparison_burst_fails_as_data_after_setup(burst_pool):
    client = FakeChainClient(failed_nonce_reads={4})

    comparison = await run_burst_comparison(
        client, burst_pool, STYLUS, EVM, burst_sizes=[2], settle_delay=0
    )

    stylus_row, evm_row = comparison.rows
    assert (stylus_row.successful, stylus_row.failed) == (2, 0)
    assert (evm_row.successful, evm_row.failed) == (0, 2)
    assert all(o.failure_kind == FAILURE_OTHER for o in evm_row.outcomes)
    assert comparison.verdict.passed is False
    assert len(client.submissions) == 2


@pytest.mark.asyncio
async def test_settle_delay_only_between_bursts(burst_pool, fake_client, monkeypatch):
    delays = []
    real_sleep = asyncio.sleep

    async def recording_sleep(delay, *args, **kwargs):
        if delay:
            delays.append(delay)
            return None
        return await real_sleep(0)

    monkeypatch.setattr(asyncio, "sleep", recording_sleep)

    await run_burst_comparison(
        fake_client, burst_pool, STYLUS, EVM, burst_sizes=[2, 3], settle_delay=0.5
    )

    assert delays == [0.5, 0.5, 0.5]
