"""
Pytest fixtures for the tournament ledger tests.
"""
import time

import pytest

from tournament_ledger._rate_limited_log import reset_rate_limits
from tournament_ledger.backoff import BackoffPolicy
from tournament_ledger.identity.context import WalletContext
from tournament_ledger.ledger.poller import ConfirmationPoller
from tournament_ledger.ledger.reader import LedgerReader
from tournament_ledger.lobby import LobbyOrchestrator

from tests.test_helpers import (
    CONTRACT_ADDRESS,
    HOST_ADDRESS,
    OUTSIDER_ADDRESS,
    PLAYER_ADDRESS,
    SERVER_ADDRESS,
    FakeLedger,
    FakeSigner,
    FakeWeb3,
)


# Make time.sleep instantaneous so retries don't slow the suite down
@pytest.fixture(autouse=True)
def _fast_sleep(monkeypatch):
    monkeypatch.setattr(time, "sleep", lambda *_a, **_kw: None)


@pytest.fixture(autouse=True)
def _fresh_rate_limits():
    reset_rate_limits()
    yield
    reset_rate_limits()


@pytest.fixture
def ledger():
    return FakeLedger(game_server=SERVER_ADDRESS)


@pytest.fixture
def w3(ledger):
    return FakeWeb3(ledger)


@pytest.fixture
def host():
    return FakeSigner(HOST_ADDRESS)


@pytest.fixture
def player():
    return FakeSigner(PLAYER_ADDRESS)


@pytest.fixture
def server():
    return FakeSigner(SERVER_ADDRESS)


@pytest.fixture
def outsider():
    return FakeSigner(OUTSIDER_ADDRESS)


@pytest.fixture
def reader(w3):
    return LedgerReader(w3, CONTRACT_ADDRESS)


@pytest.fixture
def fast_policy():
    return BackoffPolicy.immediate(max_attempts=5)


@pytest.fixture
def poller(w3, fast_policy):
    return ConfirmationPoller(w3, policy=fast_policy)


@pytest.fixture
def orchestrator(w3, reader, server):
    return LobbyOrchestrator(
        w3,
        CONTRACT_ADDRESS,
        server_signer=server,
        reader=reader,
        submit_policy=BackoffPolicy.immediate(max_attempts=3),
        confirm_policy=BackoffPolicy.immediate(max_attempts=5),
        receipt_timeout=1,
    )


@pytest.fixture
def wallet():
    return WalletContext(session_id="session-0001")
