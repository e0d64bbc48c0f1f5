from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

import pytest

from loadlab.accounts import ANVIL_BURST_KEYS, AccountPool
from loadlab.chain import Receipt


@dataclass
class Submission:
    address: str
    nonce: int
    target: str
    function: str
    args: List[Any]


class FakeChainClient:
    """In-memory stand-in for :class:`loadlab.chain.Web3ChainClient`.

    Every receipt advances the clock by ``latency_ms``; submissions land in
    blocks of ``block_size`` in submission order.
    """

    def __init__(
        self,
        gas_by_target: Optional[Dict[str, int]] = None,
        default_gas: int = 50_000,
        block_size: int = 4,
        latency_ms: float = 100.0,
        start_nonces: Optional[Dict[str, int]] = None,
        fail_submissions: Optional[Dict[int, str]] = None,
        revert_submissions: Optional[set] = None,
        nonce_error: Optional[Exception] = None,
        gas_fn: Optional[Callable[[Submission], int]] = None,
        failed_nonce_reads: Optional[set] = None,
        funding_error: Optional[Exception] = None,
    ):
        self.gas_by_target = dict(gas_by_target or {})
        self.default_gas = default_gas
        self.block_size = block_size
        self.latency_ms = latency_ms
        self.pending = dict(start_nonces or {})
        self.fail_submissions = dict(fail_submissions or {})
        self.revert_submissions = set(revert_submissions or ())
        self.nonce_error = nonce_error
        self.gas_fn = gas_fn
        self.failed_nonce_reads = set(failed_nonce_reads or ())
        self.funding_error = funding_error
        self.funded: List[str] = []
        self.clock_ms = 0.0
        self.submissions: List[Submission] = []
        self.nonce_queries: List[str] = []

    async def connect(self) -> int:
        return 412346

    async def latest_block(self) -> int:
        return 100 + len(self.submissions) // self.block_size

    async def fund_accounts(self, funder_key, accounts, amount_wei=0):
        if self.funding_error is not None:
            raise self.funding_error
        self.funded = [account.address for account in accounts]
        return list(self.funded)

    def now_ms(self) -> float:
        return self.clock_ms

    async def get_pending_nonce(self, address: str) -> int:
        self.nonce_queries.append(address)
        if self.nonce_error is not None:
            raise self.nonce_error
        if len(self.nonce_queries) in self.failed_nonce_reads:
            raise ConnectionError("rpc blip")
        return self.pending.get(address, 0)

    async def submit_call(self, account, target_address, function, args, nonce):
        handle = len(self.submissions)
        self.submissions.append(
            Submission(account.address, nonce, target_address, function.name, list(args))
        )
        await asyncio.sleep(0)
        if handle in self.fail_submissions:
            raise ValueError(self.fail_submissions[handle])
        self.pending[account.address] = max(self.pending.get(account.address, 0), nonce + 1)
        return handle

    def _gas(self, submission: Submission) -> int:
        if self.gas_fn is not None:
            return self.gas_fn(submission)
        return self.gas_by_target.get(submission.target, self.default_gas)

    async def await_receipt(self, handle: int) -> Receipt:
        await asyncio.sleep(0)
        self.clock_ms += self.latency_ms
        submission = self.submissions[handle]
        return Receipt(
            tx_hash=f"0x{handle:064x}",
            success=handle not in self.revert_submissions,
            gas_used=self._gas(submission),
            block_number=100 + handle // self.block_size,
        )


@pytest.fixture
def fake_client():
    return FakeChainClient()


@pytest.fixture
def burst_pool():
    return AccountPool.from_keys(ANVIL_BURST_KEYS[:3])


@pytest.fixture
def single_pool():
    return AccountPool.from_keys(ANVIL_BURST_KEYS[:1])
