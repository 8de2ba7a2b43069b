"""
Tests for building, signing and broadcasting ledger calls.
"""
import threading

import pytest
from unittest.mock import MagicMock, patch
from web3.exceptions import ContractLogicError

from tournament_ledger.backoff import BackoffPolicy
from tournament_ledger.exceptions import SubmissionError
from tournament_ledger.ledger.submitter import DEFAULT_FEES, TransactionSubmitter
from tournament_ledger.signer import LocalSigner
from tournament_ledger.utils import ZERO_ADDRESS, string_to_bytes32

from tests.test_helpers import CONTRACT_ADDRESS, TEST_PRIV_KEY, FakeSigner
from tests.test_helpers.fake_ledger import FakeCall

BET = 10**18


def create_args(lobby_id="abc123", bet=BET):
    return [string_to_bytes32(lobby_id), bet, True, ZERO_ADDRESS]


@pytest.fixture
def submitter(w3, host):
    return TransactionSubmitter(w3, CONTRACT_ADDRESS, host, policy=BackoffPolicy.immediate(3))


class TestSubmit:
    def test_submit_returns_hash_and_mines(self, submitter, ledger):
        tx_hash = submitter.submit("createLobby", create_args(), value=BET)
        assert tx_hash.startswith("0x") and len(tx_hash) == 66
        assert ledger.receipts[tx_hash]["status"] == 1
        assert ledger.lobby("abc123")["host"] == submitter.address

    def test_fixed_fee_parameters(self, submitter, ledger):
        submitter.submit("createLobby", create_args(), value=BET)
        tx = ledger.sent[0]
        assert tx["gas"] == DEFAULT_FEES.gas_limit
        assert tx["maxFeePerGas"] == DEFAULT_FEES.max_fee_per_gas
        assert tx["maxPriorityFeePerGas"] == DEFAULT_FEES.max_priority_fee_per_gas
        assert tx["value"] == BET

    def test_sequence_numbers_advance(self, submitter, ledger):
        submitter.submit("createLobby", create_args("one"), value=BET)
        submitter.submit("createLobby", create_args("two"), value=BET)
        assert [tx["nonce"] for tx in ledger.sent] == [0, 1]

    def test_no_signer(self, w3, ledger):
        submitter = TransactionSubmitter(w3, CONTRACT_ADDRESS, None)
        assert not submitter.available
        assert submitter.address is None
        with pytest.raises(SubmissionError, match="no signing key"):
            submitter.submit("startGame", [string_to_bytes32("abc123")])
        assert ledger.send_attempts == 0


class TestRetries:
    def test_transient_failures_are_retried(self, submitter, ledger):
        ledger.send_failures = 2
        tx_hash = submitter.submit("createLobby", create_args(), value=BET)
        assert ledger.send_attempts == 3
        assert tx_hash in ledger.receipts

    def test_gives_up_after_max_attempts(self, submitter, ledger):
        ledger.send_failures = 10
        with pytest.raises(ConnectionError):
            submitter.submit("createLobby", create_args(), value=BET)
        assert ledger.send_attempts == 3
        assert ledger.lobby("abc123") is None

    def test_fresh_sequence_number_every_attempt(self, submitter, w3, ledger):
        ledger.send_failures = 2
        with patch.object(w3.eth, "get_transaction_count", wraps=w3.eth.get_transaction_count) as spy:
            submitter.submit("createLobby", create_args(), value=BET)
        assert spy.call_count == 3
        for call in spy.call_args_list:
            assert call.args[1] == "pending"

    def test_backoff_between_attempts_only(self, w3, host, ledger):
        sleep = MagicMock()
        policy = BackoffPolicy(max_attempts=3, base_delay=0.25, mode="linear", sleep=sleep)
        submitter = TransactionSubmitter(w3, CONTRACT_ADDRESS, host, policy=policy)
        ledger.send_failures = 10
        with pytest.raises(ConnectionError):
            submitter.submit("createLobby", create_args(), value=BET)
        assert [c.args[0] for c in sleep.call_args_list] == [0.25, 0.5]

    def test_revert_detected_by_simulation(self, submitter, ledger, host):
        ledger.seed_lobby("abc123", host.address)
        with pytest.raises(ContractLogicError, match="LobbyAlreadyExists"):
            submitter.submit("createLobby", create_args(), value=BET)
        assert ledger.send_attempts == 0

    def test_revert_at_broadcast_not_retried(self, w3, host):
        submitter = TransactionSubmitter(w3, CONTRACT_ADDRESS, host, policy=BackoffPolicy.immediate(3))
        with patch.object(w3.eth, "send_raw_transaction",
                          side_effect=ContractLogicError("execution reverted: NotHost")) as send:
            with pytest.raises(ContractLogicError):
                submitter.submit("startGame", [string_to_bytes32("abc123")], simulate=False)
        assert send.call_count == 1

    def test_simulation_transport_error_still_submits(self, submitter, ledger):
        with patch.object(FakeCall, "call", side_effect=ConnectionError("rpc down")):
            tx_hash = submitter.submit("createLobby", create_args(), value=BET)
        assert tx_hash in ledger.receipts

    def test_signing_failure_is_fatal(self, w3, ledger):
        signer = FakeSigner("0x" + "55" * 20)
        signer.sign_transaction = MagicMock(side_effect=RuntimeError("hsm offline"))
        submitter = TransactionSubmitter(w3, CONTRACT_ADDRESS, signer, policy=BackoffPolicy.immediate(3))
        with pytest.raises(SubmissionError, match="sign"):
            submitter.submit("createLobby", create_args(), value=BET)
        assert signer.sign_transaction.call_count == 1
        assert ledger.send_attempts == 0


class TestSerialization:
    def test_concurrent_submissions_use_distinct_sequence_numbers(self, w3, host, ledger):
        submitters = [
            TransactionSubmitter(w3, CONTRACT_ADDRESS, host, policy=BackoffPolicy.immediate(1))
            for _ in range(2)
        ]
        errors = []

        def run(submitter, lobby_id):
            try:
                submitter.submit("createLobby", create_args(lobby_id), value=BET)
            except Exception as e:
                errors.append(e)

        threads = [
            threading.Thread(target=run, args=(submitter, f"lobby-{i}"))
            for i, submitter in enumerate(submitters * 4)
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert errors == []
        assert sorted(tx["nonce"] for tx in ledger.sent) == list(range(8))

    def test_interprocess_lock_file(self, w3, host, ledger, tmp_path):
        submitter = TransactionSubmitter(
            w3, CONTRACT_ADDRESS, host, policy=BackoffPolicy.immediate(1),
            interprocess_lock=True, lock_dir=str(tmp_path),
        )
        submitter.submit("createLobby", create_args(), value=BET)
        assert (tmp_path / f"{host.address.lower()}.tx.lock").exists()


class TestLocalSigner:
    def test_signed_bytes_are_broadcast(self):
        mock_w3 = MagicMock()
        mock_w3.eth.get_transaction_count.return_value = 7
        mock_w3.eth.send_raw_transaction.return_value = bytes.fromhex("ab" * 32)

        def build_tx(params):
            return {**params, "to": CONTRACT_ADDRESS, "data": "0x1234", "chainId": 11155111}

        contract = MagicMock()
        contract.functions.startGame.return_value.build_transaction.side_effect = build_tx
        mock_w3.eth.contract.return_value = contract

        signer = LocalSigner(TEST_PRIV_KEY)
        submitter = TransactionSubmitter(mock_w3, CONTRACT_ADDRESS, signer, policy=BackoffPolicy.immediate(1))
        tx_hash = submitter.submit("startGame", [string_to_bytes32("abc123")], simulate=False)

        assert tx_hash == "0x" + "ab" * 32
        raw = mock_w3.eth.send_raw_transaction.call_args.args[0]
        assert isinstance(raw, (bytes, bytearray))
        mock_w3.eth.get_transaction_count.assert_called_once_with(signer.address, "pending")
