"""
Shared helpers for the tournament ledger tests.
"""
from .fake_ledger import (
    BROKEN_TOKEN_ADDRESS,
    CONTRACT_ADDRESS,
    TOKEN_ADDRESS,
    FakeLedger,
    FakeSigner,
    FakeWeb3,
)
from .constants import (
    HOST_ADDRESS,
    OUTSIDER_ADDRESS,
    PLAYER_ADDRESS,
    SERVER_ADDRESS,
    TEST_PRIV_KEY,
    TEST_RPC_URL,
)

__all__ = [
    "BROKEN_TOKEN_ADDRESS",
    "CONTRACT_ADDRESS",
    "FakeLedger",
    "FakeSigner",
    "FakeWeb3",
    "HOST_ADDRESS",
    "OUTSIDER_ADDRESS",
    "PLAYER_ADDRESS",
    "SERVER_ADDRESS",
    "TEST_PRIV_KEY",
    "TEST_RPC_URL",
    "TOKEN_ADDRESS",
]
