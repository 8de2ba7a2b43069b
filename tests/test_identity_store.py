"""
Tests for wallet-link bindings and challenge nonces.
"""
import pytest
from unittest.mock import MagicMock

from tournament_ledger.exceptions import PersistenceError
from tournament_ledger.identity.storage import MemoryLinkStorage
from tournament_ledger.identity.store import NONCE_TTL_MS, IdentityStore

from tests.test_helpers import HOST_ADDRESS, PLAYER_ADDRESS


class FakeClock:
    def __init__(self, now: int = 1_700_000_000_000):
        self.now = now

    def __call__(self) -> int:
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(clock):
    return IdentityStore(MemoryLinkStorage(), clock=clock)


class TestNonces:
    def test_issue_nonce(self, store, clock):
        challenge = store.issue_nonce("session-a")
        assert len(challenge.nonce) == 64
        assert challenge.expires_at == clock.now + NONCE_TTL_MS
        assert store.has_pending_nonce("session-a")

    def test_nonces_are_unique(self, store):
        assert store.issue_nonce("session-a").nonce != store.issue_nonce("session-b").nonce

    def test_reissue_replaces_pending(self, store):
        first = store.issue_nonce("session-a")
        second = store.issue_nonce("session-a")
        assert not store.validate_and_consume("session-a", first.nonce)
        assert store.validate_and_consume("session-a", second.nonce)

    def test_single_use(self, store):
        challenge = store.issue_nonce("session-a")
        assert store.validate_and_consume("session-a", challenge.nonce)
        assert not store.validate_and_consume("session-a", challenge.nonce)
        assert not store.has_pending_nonce("session-a")

    def test_bound_to_session(self, store):
        challenge = store.issue_nonce("session-a")
        assert not store.validate_and_consume("session-b", challenge.nonce)
        assert store.validate_and_consume("session-a", challenge.nonce)

    def test_expired_nonce_rejected(self, store, clock):
        challenge = store.issue_nonce("session-a")
        clock.now += NONCE_TTL_MS
        assert not store.validate_and_consume("session-a", challenge.nonce)

    def test_valid_just_before_expiry(self, store, clock):
        challenge = store.issue_nonce("session-a")
        clock.now += NONCE_TTL_MS - 1
        assert store.validate_and_consume("session-a", challenge.nonce)

    def test_wrong_value_keeps_pending_nonce(self, store):
        challenge = store.issue_nonce("session-a")
        assert not store.validate_and_consume("session-a", "0" * 64)
        assert store.validate_and_consume("session-a", challenge.nonce)

    def test_discarded_after_repeated_failures(self, clock):
        store = IdentityStore(clock=clock, max_failed_attempts=3)
        challenge = store.issue_nonce("session-a")
        for _ in range(3):
            assert not store.validate_and_consume("session-a", "bad")
        assert not store.has_pending_nonce("session-a")
        assert not store.validate_and_consume("session-a", challenge.nonce)

    def test_non_string_nonce(self, store):
        store.issue_nonce("session-a")
        assert not store.validate_and_consume("session-a", None)

    def test_purge_expired(self, store, clock):
        store.issue_nonce("session-a")
        clock.now += NONCE_TTL_MS // 2
        store.issue_nonce("session-b")
        clock.now += NONCE_TTL_MS // 2
        assert store.purge_expired() == 1
        assert not store.has_pending_nonce("session-a")
        assert store.has_pending_nonce("session-b")


class TestBindings:
    def test_bind_and_lookup(self, store, clock):
        link = store.bind("session-a", HOST_ADDRESS.lower())
        assert link.address == HOST_ADDRESS
        assert link.updated_at == clock.now
        assert store.lookup("session-a") == HOST_ADDRESS

    def test_lookup_unknown(self, store):
        assert store.lookup("nobody") is None
        assert store.get_link("nobody") is None

    def test_rebind_same_address_refreshes_timestamp(self, store, clock):
        store.bind("session-a", HOST_ADDRESS)
        clock.now += 5000
        link = store.bind("session-a", HOST_ADDRESS)
        assert link.address == HOST_ADDRESS
        assert link.updated_at == clock.now

    def test_rebind_replaces_address(self, store):
        store.bind("session-a", HOST_ADDRESS)
        store.bind("session-a", PLAYER_ADDRESS)
        assert store.lookup("session-a") == PLAYER_ADDRESS

    def test_bind_invalid_address(self, store):
        with pytest.raises(ValueError):
            store.bind("session-a", "0x1234")

    def test_unbind(self, store):
        store.bind("session-a", HOST_ADDRESS)
        store.unbind("session-a")
        assert store.lookup("session-a") is None

    def test_write_failure_raises_persistence_error(self, clock):
        storage = MagicMock()
        storage.set.side_effect = OSError("disk full")
        store = IdentityStore(storage, clock=clock)
        with pytest.raises(PersistenceError):
            store.bind("session-a", HOST_ADDRESS)

    def test_read_back_mismatch_raises_persistence_error(self, clock):
        storage = MagicMock()
        storage.read_back.return_value = None
        store = IdentityStore(storage, clock=clock)
        with pytest.raises(PersistenceError):
            store.bind("session-a", HOST_ADDRESS)

    def test_persistence_error_propagates_unchanged(self, clock):
        storage = MagicMock()
        storage.set.side_effect = PersistenceError("Failed to save wallet link: locked")
        store = IdentityStore(storage, clock=clock)
        with pytest.raises(PersistenceError, match="locked"):
            store.bind("session-a", HOST_ADDRESS)
