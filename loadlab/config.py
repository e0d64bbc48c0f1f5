"""Harness configuration from ``.env``, the environment and deployment files."""
from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import List, Optional

from dotenv import find_dotenv, load_dotenv

from loadlab.accounts import ANVIL_BURST_KEYS

DEFAULT_RPC_URL = "http://localhost:8547"
DEFAULT_CHAIN_CONFIG_DIR = "chain-config"


@dataclass
class HarnessConfig:
    rpc_url: str = DEFAULT_RPC_URL
    chain_id: Optional[int] = None
    test_user_key: Optional[str] = field(default=None, repr=False)
    burst_keys: List[str] = field(default_factory=lambda: list(ANVIL_BURST_KEYS), repr=False)
    messaging_address: Optional[str] = None
    evm_messaging_address: Optional[str] = None
    compute_stylus_address: Optional[str] = None
    compute_evm_address: Optional[str] = None


def read_address_file(chain_config_dir: str, filename: str) -> Optional[str]:
    path = os.path.join(chain_config_dir, filename)
    if not os.path.exists(path):
        return None
    with open(path, "r", encoding="utf-8") as handle:
        value = handle.read().strip()
    return value or None


def resolve_address(env_name: str, filename: str, chain_config_dir: str) -> Optional[str]:
    value = os.environ.get(env_name, "").strip()
    if value:
        return value
    return read_address_file(chain_config_dir, filename)


def parse_key_list(raw: Optional[str]) -> List[str]:
    if not raw:
        return []
    return [item.strip() for item in raw.split(",") if item.strip()]


def load_config(
    env_file: Optional[str] = None, chain_config_dir: Optional[str] = None
) -> HarnessConfig:
    # Values already present in the environment win over the .env file.
    load_dotenv(dotenv_path=env_file or find_dotenv(usecwd=True), override=False)
    config_dir = chain_config_dir or os.environ.get(
        "CHAIN_CONFIG_DIR", DEFAULT_CHAIN_CONFIG_DIR
    )

    chain_id_raw = os.environ.get("CHAIN_ID", "").strip()
    try:
        chain_id = int(chain_id_raw) if chain_id_raw else None
    except ValueError as exc:  # noqa: BLE001
        raise ValueError(f"CHAIN_ID must be an integer, received '{chain_id_raw}'.") from exc

    return HarnessConfig(
        rpc_url=os.environ.get("L2_CHAIN_RPC", "").strip() or DEFAULT_RPC_URL,
        chain_id=chain_id,
        test_user_key=os.environ.get("TEST_USER_PRIVATE_KEY", "").strip() or None,
        burst_keys=parse_key_list(os.environ.get("BURST_PRIVATE_KEYS")) or list(ANVIL_BURST_KEYS),
        messaging_address=resolve_address(
            "MESSAGING_CONTRACT_ADDRESS", "contractAddress.txt", config_dir
        ),
        evm_messaging_address=resolve_address(
            "EVM_CONTRACT_ADDRESS", "evmContractAddress.txt", config_dir
        ),
        compute_stylus_address=resolve_address(
            "COMPUTE_STYLUS_ADDRESS", "computeStylusAddress.txt", config_dir
        ),
        compute_evm_address=resolve_address(
            "COMPUTE_EVM_ADDRESS", "computeEvmAddress.txt", config_dir
        ),
    )


def require(value: Optional[str], env_name: str, hint: str = "") -> str:
    if not value:
        message = f"{env_name} is not set"
        if hint:
            message = f"{message}. {hint}"
        raise ValueError(message)
    return value
