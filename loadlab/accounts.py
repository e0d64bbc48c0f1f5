"""Signing accounts and per-account nonce bookkeeping."""
from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List

from eth_account import Account

# Anvil dev accounts #3-#9; #0-#2 are left to deployers and the test user.
ANVIL_BURST_KEYS: List[str] = [
    "0x7c852118294e51e653712a81e05800f419141751be58f605c371e15141b007a6",
    "0x47e179ec197488593b187f80a00eb0da91f1b9d0b13f8733639f19c30a34926a",
    "0x8b3a350cf5c34c9194ca85829a2df0ec3153be0318b5e2d3348e872092edffba",
    "0x92db14e403b83dfe3df233f83dfa3a0d7096f21ca9b0d6d6b8d88b2b4ec1564e",
    "0x4bbbf85ce3377467afe5d46f804f221813b2bb87f24d81f60f1fcdbf7cbf4356",
    "0xdbda1821b80551c9d65939329250298aa3472ba22feea921c0cf5d620ea67b97",
    "0x2a871d0798f97d79848a013d4936a73bf4cc922c825d33c1cf7073dff6d409c6",
]


class SetupError(RuntimeError):
    """Raised when a scenario cannot start (e.g. nonces cannot be read)."""


@dataclass(frozen=True)
class BurstAccount:
    address: str
    private_key: str = field(repr=False)

    @classmethod
    def from_key(cls, private_key: str) -> "BurstAccount":
        key = private_key.strip()
        if not key.startswith("0x"):
            key = f"0x{key}"
        return cls(address=Account.from_key(key).address, private_key=key)


@dataclass
class NonceCursor:
    value: int

    def next(self) -> int:
        current = self.value
        self.value += 1
        return current


class AccountPool:
    """Fixed, ordered set of signing accounts with one nonce cursor each.

    Cursors only exist after :meth:`snapshot`, which reads the pending
    transaction count so calls still in the mempool from an earlier run are
    never reused. Cursors are advanced by the dispatcher's assignment loop and
    nowhere else.
    """

    def __init__(self, accounts: Iterable[BurstAccount]):
        self.accounts: List[BurstAccount] = list(accounts)
        if not self.accounts:
            raise ValueError("An account pool needs at least one account")
        self._cursors: Dict[str, NonceCursor] = {}

    @classmethod
    def from_keys(cls, private_keys: Iterable[str]) -> "AccountPool":
        return cls(BurstAccount.from_key(key) for key in private_keys)

    def __len__(self) -> int:
        return len(self.accounts)

    def __getitem__(self, index: int) -> BurstAccount:
        return self.accounts[index]

    async def snapshot(self, client: Any) -> Dict[str, int]:
        try:
            nonces = await asyncio.gather(
                *(client.get_pending_nonce(account.address) for account in self.accounts)
            )
        except Exception as exc:  # noqa: BLE001 - any failure here is fatal for the scenario
            raise SetupError(f"Unable to read pending nonces: {exc}") from exc

        self._cursors = {
            account.address: NonceCursor(int(nonce))
            for account, nonce in zip(self.accounts, nonces)
        }
        return {address: cursor.value for address, cursor in self._cursors.items()}

    def next(self, account: BurstAccount) -> int:
        try:
            cursor = self._cursors[account.address]
        except KeyError:
            raise RuntimeError(
                f"No nonce snapshot for {account.address}; call snapshot() first"
            ) from None
        return cursor.next()

    def cursor(self, account: BurstAccount) -> int:
        return self._cursors[account.address].value
