"""Async web3 client used by the dispatcher to sign, send and confirm calls."""
from __future__ import annotations

import sys
import time
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional

from eth_account import Account
from web3 import AsyncWeb3, Web3
from web3.middleware import ExtraDataToPOAMiddleware

from loadlab.accounts import BurstAccount
from loadlab.contracts import ContractFunction

DEFAULT_RECEIPT_TIMEOUT = 120
TRANSFER_GAS = 21000
DEFAULT_FUNDING_WEI = Web3.to_wei(1, "ether")


@dataclass(frozen=True)
class Receipt:
    tx_hash: str
    success: bool
    gas_used: int
    block_number: int


class Web3ChainClient:
    """Thin wrapper over :class:`web3.AsyncWeb3` exposing what the harness needs.

    Transactions are built with explicit nonces and signed locally, so the node
    never has to hold the burst keys.
    """

    def __init__(
        self,
        rpc_url: str,
        chain_id: Optional[int] = None,
        receipt_timeout: int = DEFAULT_RECEIPT_TIMEOUT,
        gas_limit: Optional[int] = None,
        poa: bool = False,
    ):
        self.rpc_url = rpc_url
        self.chain_id = chain_id
        self.receipt_timeout = receipt_timeout
        self.gas_limit = gas_limit
        self.web3 = AsyncWeb3(AsyncWeb3.AsyncHTTPProvider(rpc_url))
        inject_poa_if_needed(self.web3, poa)
        self._contracts: Dict[tuple, Any] = {}
        self._signers: Dict[str, Any] = {}

    async def connect(self) -> int:
        if not await self.web3.is_connected():
            raise ConnectionError(f"Unable to reach RPC endpoint: {self.rpc_url}")
        remote_chain_id = await self.web3.eth.chain_id
        if self.chain_id is not None and self.chain_id != remote_chain_id:
            print(
                f"[WARN] Configured chain id {self.chain_id} differs from node "
                f"chain id {remote_chain_id}; using the node's value.",
                file=sys.stderr,
            )
        self.chain_id = remote_chain_id
        return remote_chain_id

    async def latest_block(self) -> int:
        return await self.web3.eth.block_number

    def now_ms(self) -> float:
        return time.perf_counter() * 1000

    async def get_pending_nonce(self, address: str) -> int:
        return await self.web3.eth.get_transaction_count(
            Web3.to_checksum_address(address), "pending"
        )

    async def submit_call(
        self,
        account: BurstAccount,
        target_address: str,
        function: ContractFunction,
        args: List[Any],
        nonce: int,
    ) -> Any:
        contract = self._contract(target_address, function)
        tx_params: Dict[str, Any] = {
            "from": account.address,
            "nonce": nonce,
            "chainId": self.chain_id,
        }
        if self.gas_limit:
            tx_params["gas"] = self.gas_limit
        transaction = await contract.get_function_by_name(function.name)(
            *args
        ).build_transaction(tx_params)
        signed = self._signer(account).sign_transaction(transaction)
        return await self.web3.eth.send_raw_transaction(signed.raw_transaction)

    async def await_receipt(self, handle: Any) -> Receipt:
        receipt = await self.web3.eth.wait_for_transaction_receipt(
            handle, timeout=self.receipt_timeout
        )
        return Receipt(
            tx_hash=Web3.to_hex(handle),
            success=receipt.get("status", 0) == 1,
            gas_used=int(receipt.get("gasUsed", 0)),
            block_number=int(receipt["blockNumber"]),
        )

    async def fund_accounts(
        self,
        funder_key: str,
        accounts: Iterable[BurstAccount],
        amount_wei: int = DEFAULT_FUNDING_WEI,
    ) -> List[str]:
        """Top up every account holding less than ``amount_wei``.

        Transfers are sent one at a time and each receipt is awaited before
        the next, so the funder's nonce is simply re-read per transfer.
        """
        funder = BurstAccount.from_key(funder_key)
        pending = list(accounts)
        print(
            f"[INFO] Funding {len(pending)} burst accounts with {amount_wei} wei each...",
            flush=True,
        )
        funded: List[str] = []
        for account in pending:
            address = Web3.to_checksum_address(account.address)
            balance = await self.web3.eth.get_balance(address)
            if balance >= amount_wei:
                continue
            transaction = {
                "to": address,
                "value": amount_wei,
                "gas": TRANSFER_GAS,
                "gasPrice": await self.web3.eth.gas_price,
                "nonce": await self.get_pending_nonce(funder.address),
                "chainId": self.chain_id,
            }
            signed = self._signer(funder).sign_transaction(transaction)
            tx_hash = await self.web3.eth.send_raw_transaction(signed.raw_transaction)
            await self.web3.eth.wait_for_transaction_receipt(
                tx_hash, timeout=self.receipt_timeout
            )
            funded.append(address)
        print(f"[INFO] All burst accounts funded ({len(funded)} top-ups).", flush=True)
        return funded

    def _contract(self, address: str, function: ContractFunction) -> Any:
        key = (address.lower(), function.name)
        if key not in self._contracts:
            self._contracts[key] = self.web3.eth.contract(
                address=Web3.to_checksum_address(address),
                abi=function.abi,
            )
        return self._contracts[key]

    def _signer(self, account: BurstAccount) -> Any:
        if account.address not in self._signers:
            self._signers[account.address] = Account.from_key(account.private_key)
        return self._signers[account.address]


def inject_poa_if_needed(web3: AsyncWeb3, enabled: bool) -> None:
    if enabled:
        try:
            web3.middleware_onion.inject(ExtraDataToPOAMiddleware, layer=0)
        except ValueError:
            # Middleware already present
            pass
