import pytest

from conftest import FakeChainClient
from loadlab.accounts import ANVIL_BURST_KEYS, AccountPool, BurstAccount, NonceCursor, SetupError


def test_burst_account_derives_address_from_key():
    account = BurstAccount.from_key(ANVIL_BURST_KEYS[0])
    assert account.address == "0x90F79bf6EB2c4f870365E785982E1f101E93b906"


def test_burst_account_accepts_key_without_prefix():
    account = BurstAccount.from_key(ANVIL_BURST_KEYS[1][2:])
    assert account.address == "0x15d34AAf54267DB7D7c367839AAf71A00a2C6A65"
    assert account.private_key.startswith("0x")


def test_burst_account_hides_key_in_repr():
    account = BurstAccount.from_key(ANVIL_BURST_KEYS[0])
    assert ANVIL_BURST_KEYS[0] not in repr(account)


def test_nonce_cursor_returns_then_increments():
    cursor = NonceCursor(7)
    assert cursor.next() == 7
    assert cursor.next() == 8
    assert cursor.value == 9


def test_empty_pool_is_rejected():
    with pytest.raises(ValueError):
        AccountPool([])


@pytest.mark.asyncio
async def test_snapshot_reads_pending_nonce_once_per_account(burst_pool):
    start = {account.address: 10 * (i + 1) for i, account in enumerate(burst_pool.accounts)}
    client = FakeChainClient(start_nonces=start)

    snapshot = await burst_pool.snapshot(client)

    assert snapshot == start
    assert client.nonce_queries == [account.address for account in burst_pool.accounts]
    first = burst_pool[0]
    assert burst_pool.next(first) == 10
    assert burst_pool.next(first) == 11
    assert burst_pool.cursor(first) == 12


@pytest.mark.asyncio
async def test_snapshot_failure_raises_setup_error(burst_pool):
    client = FakeChainClient(nonce_error=ConnectionError("connection refused"))

    with pytest.raises(SetupError, match="connection refused"):
        await burst_pool.snapshot(client)


def test_next_before_snapshot_is_an_error(burst_pool):
    with pytest.raises(RuntimeError):
        burst_pool.next(burst_pool[0])


@pytest.mark.asyncio
async def test_snapshot_replaces_previous_cursors(single_pool):
    account = single_pool[0]
    client = FakeChainClient(start_nonces={account.address: 3})
    await single_pool.snapshot(client)
    single_pool.next(account)
    single_pool.next(account)

    client.pending[account.address] = 42
    await single_pool.snapshot(client)

    assert single_pool.next(account) == 42
