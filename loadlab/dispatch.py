"""Burst dispatch: round-robin nonce assignment and settle-all confirmation."""
from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any, Callable, List, Optional

from loadlab.accounts import AccountPool, BurstAccount
from loadlab.contracts import ContractFunction

FAILURE_NONCE = "nonce"
FAILURE_OTHER = "other"

NONCE_ERROR_MARKERS = ("nonce", "replacement")

ArgsGenerator = Callable[[int], List[Any]]


@dataclass(frozen=True)
class CallAssignment:
    index: int
    account: BurstAccount
    nonce: int
    target: str
    function: ContractFunction = field(compare=False)
    args: tuple = ()


@dataclass(frozen=True)
class CallOutcome:
    index: int
    account: str
    nonce: int
    success: bool
    elapsed_ms: float
    completed_ms: float
    gas_used: Optional[int] = None
    block_number: Optional[int] = None
    tx_hash: Optional[str] = None
    error: Optional[str] = None
    failure_kind: Optional[str] = None


@dataclass
class BurstRun:
    outcomes: List[CallOutcome]
    started_ms: float
    elapsed_ms: float

    @property
    def successes(self) -> List[CallOutcome]:
        return [outcome for outcome in self.outcomes if outcome.success]

    @property
    def failures(self) -> List[CallOutcome]:
        return [outcome for outcome in self.outcomes if not outcome.success]

    @property
    def nonce_errors(self) -> int:
        return sum(1 for outcome in self.outcomes if outcome.failure_kind == FAILURE_NONCE)


def classify_failure(message: str) -> str:
    lowered = message.lower()
    if any(marker in lowered for marker in NONCE_ERROR_MARKERS):
        return FAILURE_NONCE
    return FAILURE_OTHER


def assign_calls(
    pool: AccountPool,
    target: str,
    function: ContractFunction,
    burst_size: int,
    args_for: ArgsGenerator,
) -> List[CallAssignment]:
    """Build every assignment of a burst before anything is sent.

    Call ``i`` goes to ``accounts[i % K]`` and takes that account's next
    nonce, so each account receives a gap-free ascending run of nonces.
    """
    assignments: List[CallAssignment] = []
    for index in range(burst_size):
        account = pool[index % len(pool)]
        assignments.append(
            CallAssignment(
                index=index,
                account=account,
                nonce=pool.next(account),
                target=target,
                function=function,
                args=tuple(args_for(index)),
            )
        )
    return assignments


def _failed(
    assignment: CallAssignment, message: str, elapsed_ms: float, completed_ms: float, kind: str
) -> CallOutcome:
    return CallOutcome(
        index=assignment.index,
        account=assignment.account.address,
        nonce=assignment.nonce,
        success=False,
        elapsed_ms=elapsed_ms,
        completed_ms=completed_ms,
        error=message,
        failure_kind=kind,
    )


async def _fire(client: Any, assignment: CallAssignment) -> CallOutcome:
    start = client.now_ms()
    try:
        handle = await client.submit_call(
            assignment.account,
            assignment.target,
            assignment.function,
            list(assignment.args),
            assignment.nonce,
        )
        receipt = await client.await_receipt(handle)
    except Exception as exc:  # noqa: BLE001 - failures are recorded per call
        end = client.now_ms()
        message = str(exc) or exc.__class__.__name__
        return _failed(assignment, message, end - start, end, classify_failure(message))

    end = client.now_ms()
    if not receipt.success:
        return CallOutcome(
            index=assignment.index,
            account=assignment.account.address,
            nonce=assignment.nonce,
            success=False,
            elapsed_ms=end - start,
            completed_ms=end,
            block_number=receipt.block_number,
            tx_hash=receipt.tx_hash,
            error="execution reverted",
            failure_kind=FAILURE_OTHER,
        )
    return CallOutcome(
        index=assignment.index,
        account=assignment.account.address,
        nonce=assignment.nonce,
        success=True,
        elapsed_ms=end - start,
        completed_ms=end,
        gas_used=int(receipt.gas_used),
        block_number=receipt.block_number,
        tx_hash=receipt.tx_hash,
    )


async def settle_all(client: Any, assignments: List[CallAssignment]) -> List[CallOutcome]:
    """Fire every assignment at once and wait for all of them.

    One call failing never cancels its siblings; anything that still escapes
    a call is turned into a failed outcome for that call.
    """
    settled = await asyncio.gather(
        *(_fire(client, assignment) for assignment in assignments),
        return_exceptions=True,
    )
    outcomes: List[CallOutcome] = []
    for assignment, result in zip(assignments, settled):
        if isinstance(result, BaseException):
            now = client.now_ms()
            message = str(result) or result.__class__.__name__
            outcomes.append(_failed(assignment, message, 0.0, now, classify_failure(message)))
        else:
            outcomes.append(result)
    return outcomes


async def dispatch(
    client: Any,
    pool: AccountPool,
    target: str,
    function: ContractFunction,
    burst_size: int,
    args_for: ArgsGenerator,
    snapshot: bool = True,
) -> BurstRun:
    if burst_size <= 0:
        return BurstRun(outcomes=[], started_ms=0.0, elapsed_ms=0.0)

    if snapshot:
        await pool.snapshot(client)

    # Every nonce is taken before the first await on a submission.
    assignments = assign_calls(pool, target, function, burst_size, args_for)

    started = client.now_ms()
    outcomes = await settle_all(client, assignments)
    elapsed = client.now_ms() - started
    return BurstRun(outcomes=outcomes, started_ms=started, elapsed_ms=elapsed)
