"""Multi-account burst load testing for EVM smart-contract endpoints."""

from loadlab.accounts import AccountPool, BurstAccount, SetupError
from loadlab.dispatch import BurstRun, CallAssignment, CallOutcome, dispatch
from loadlab.results import ScenarioResult

__all__ = [
    "AccountPool",
    "BurstAccount",
    "BurstRun",
    "CallAssignment",
    "CallOutcome",
    "ScenarioResult",
    "SetupError",
    "dispatch",
]
