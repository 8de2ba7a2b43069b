"""
Tests for revert name extraction and user-facing messages.
"""
import pytest
from web3 import Web3
from web3.exceptions import ContractCustomError, ContractLogicError

from tournament_ledger.exceptions import LedgerRevertError
from tournament_ledger.ledger.errors import (
    ERROR_SELECTORS,
    extract_error_name,
    is_revert,
    translate_error,
)


def selector(name):
    return "0x" + bytes(Web3.keccak(text=f"{name}()")[:4]).hex()


class TestExtractErrorName:
    def test_from_message(self):
        assert extract_error_name(ContractLogicError("execution reverted: NotHost")) == "NotHost"

    def test_from_revert_data(self):
        error = ContractCustomError(selector("LobbyNotFound"), data=selector("LobbyNotFound"))
        assert extract_error_name(error) == "LobbyNotFound"

    def test_longest_name_wins(self):
        # "TransferFailed" is contained in "TokenTransferFailed"
        assert extract_error_name(ValueError("reverted with TokenTransferFailed")) == "TokenTransferFailed"
        assert extract_error_name(ValueError("reverted with TransferFailed")) == "TransferFailed"

    def test_unknown(self):
        assert extract_error_name(ValueError("connection refused")) is None

    def test_selector_table(self):
        assert ERROR_SELECTORS[selector("NotWinner")[2:]] == "NotWinner"


class TestIsRevert:
    def test_web3_reverts(self):
        assert is_revert(ContractLogicError("execution reverted"))
        assert is_revert(ContractCustomError("0x12345678"))

    def test_named_error_in_plain_exception(self):
        assert is_revert(ValueError("{'message': 'execution reverted: AlreadyParticipant'}"))

    def test_transport_errors(self):
        assert not is_revert(ConnectionError("reset by peer"))
        assert not is_revert(TimeoutError())


class TestTranslateError:
    @pytest.mark.parametrize("action,name,message", [
        ("create lobby", "LobbyAlreadyExists", "A lobby with this ID already exists."),
        ("join lobby", "InsufficientFunds",
         "Insufficient funds. You need to pay exactly the lobby stake to join."),
        ("join lobby", "GameAlreadyStarted", "This lobby has already started. You cannot join now."),
        ("declare winner", "NotGameServer", "Only the game server can declare winners."),
        ("start game", "NotHost", "Only the host can start the game."),
        ("claim prize", "PrizeAlreadyClaimed", "Prize has already been claimed."),
        ("update allowlist", "ZeroAddress", "Cannot add the zero address to the allowlist."),
        ("join lobby", "LobbyNotFound", "Lobby does not exist."),
    ])
    def test_known_errors(self, action, name, message):
        error = translate_error(action, ContractLogicError(f"execution reverted: {name}"), tx_hash="0xabc")
        assert isinstance(error, LedgerRevertError)
        assert str(error) == message
        assert error.user_message == message
        assert error.error_name == name
        assert error.tx_hash == "0xabc"

    def test_unknown_error_includes_raw_text(self):
        error = translate_error("join lobby", ContractLogicError("execution reverted: weird"))
        assert str(error) == "Failed to join lobby: execution reverted: weird"
        assert error.error_name is None
        assert error.raw_error == "execution reverted: weird"

    def test_revert_data_not_in_message(self):
        error = ContractLogicError("execution reverted: weird", data="0x08c379a0")
        translated = translate_error("join lobby", error)
        assert str(translated) == "Failed to join lobby: execution reverted: weird"
        assert translated.raw_error == "execution reverted: weird"

    def test_named_revert_with_data(self):
        error = ContractLogicError("execution reverted: NotHost", data="0x08c379a0")
        assert str(translate_error("start game", error)) == "Only the host can start the game."

    def test_known_name_without_message_for_action(self):
        error = translate_error("claim prize", ContractLogicError("execution reverted: TooFewPlayers"))
        assert error.error_name == "TooFewPlayers"
        assert str(error).startswith("Failed to claim prize:")

    def test_user_rejected(self):
        error = translate_error("join lobby", Exception("User rejected the request."))
        assert str(error) == "Transaction was cancelled by user."
