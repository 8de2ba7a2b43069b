"""
Translation of ledger reverts into user-facing messages.

Reverts reach us as web3 exceptions whose text (or revert data) carries the
custom error name. Known names are mapped per action; anything else falls back
to a generic message that includes the raw error text.
"""
import logging
from typing import Dict, Optional

from web3 import Web3
from web3.exceptions import ContractCustomError, ContractLogicError

from ..exceptions import LedgerRevertError
from .abi import TOURNAMENT_ERRORS

logger = logging.getLogger(__name__)

USER_REJECTED = "User rejected"

# 4-byte selector (hex, no prefix) -> error name, for reverts reported only as data
ERROR_SELECTORS: Dict[str, str] = {
    bytes(Web3.keccak(text=f"{name}()")[:4]).hex(): name for name in TOURNAMENT_ERRORS
}

# Messages shared by every action
COMMON_MESSAGES: Dict[str, str] = {
    "LobbyNotFound": "Lobby does not exist.",
    "LobbyAlreadyExists": "A lobby with this ID already exists.",
    "NotHost": "Only the host can perform this action.",
    "InvalidStatus": "Lobby cannot be changed in its current state.",
    "ZeroAddress": "The zero address is not allowed.",
    "NotGameServer": "Only the game server can perform this action.",
}

ACTION_MESSAGES: Dict[str, Dict[str, str]] = {
    "create lobby": {
        "InvalidBetAmount": "Invalid stake amount.",
        "InvalidPaymentAsset": "This stake asset is not accepted.",
        "InsufficientFunds": "Insufficient funds to cover the stake.",
        "TokenTransferFailed": "Stake token transfer failed. Check your token approval.",
    },
    "join lobby": {
        "InsufficientFunds": "Insufficient funds. You need to pay exactly the lobby stake to join.",
        "GameAlreadyStarted": "This lobby has already started. You cannot join now.",
        "AlreadyParticipant": "You are already a participant in this lobby.",
        "LobbyFull": "This lobby is full.",
        "NotAllowlisted": "You are not on this lobby's allowlist.",
    },
    "start game": {
        "NotHost": "Only the host can start the game.",
        "GameAlreadyStarted": "The game has already started.",
        "NotGameServer": "Only the game server can start the game.",
        "TooFewPlayers": "Not enough players to start the game.",
    },
    "declare winner": {
        "NotGameServer": "Only the game server can declare winners.",
        "GameNotInProgress": "Game is not in progress.",
        "InvalidWinner": "Invalid winner address.",
    },
    "claim prize": {
        "NotWinner": "You are not the winner of this lobby.",
        "GameNotFinished": "The game has not finished yet.",
        "PrizeAlreadyClaimed": "Prize has already been claimed.",
        "NothingToClaim": "There is nothing to claim.",
    },
    "cancel lobby": {
        "NotHost": "Only the host can cancel this lobby.",
        "InvalidStatus": "Lobby cannot be cancelled in its current state.",
        "GameAlreadyStarted": "The game has already started and cannot be cancelled.",
    },
    "update allowlist": {
        "NotHost": "Only the host can modify the allowlist.",
        "InvalidStatus": "Allowlist can only be updated while the lobby is open.",
        "ZeroAddress": "Cannot add the zero address to the allowlist.",
    },
    "sponsor prize pool": {
        "InvalidAmount": "Invalid sponsorship amount.",
        "InvalidStatus": "This lobby can no longer be sponsored.",
    },
}


def error_text(error: BaseException) -> str:
    """Readable text of an exception; web3 errors keep it in ``message``."""
    message = getattr(error, "message", None)
    if isinstance(message, str) and message:
        return message
    return str(error) or type(error).__name__


def extract_error_name(error: BaseException) -> Optional[str]:
    """
    Find the custom error name carried by a web3 exception.

    Checks revert data for a known selector first, then the exception text.

    Returns:
        The error name, or None if no known name is present
    """
    data = getattr(error, "data", None)
    if isinstance(data, (bytes, bytearray)):
        data = bytes(data).hex()
    if isinstance(data, str):
        selector = data[2:10] if data.startswith("0x") else data[:8]
        name = ERROR_SELECTORS.get(selector.lower())
        if name:
            return name

    text = error_text(error)
    for name in sorted(TOURNAMENT_ERRORS, key=len, reverse=True):
        if name in text:
            return name
    return None


def is_revert(error: BaseException) -> bool:
    """Check whether an exception is a contract-level rejection."""
    return isinstance(error, (ContractLogicError, ContractCustomError)) or extract_error_name(error) is not None


def translate_error(action: str, error: BaseException, tx_hash: Optional[str] = None) -> LedgerRevertError:
    """
    Map a failed call to a LedgerRevertError with a readable message.

    Args:
        action: Human name of the action, e.g. "join lobby"
        error: The exception raised by the web3 call
        tx_hash: Transaction hash if the call was already broadcast

    Returns:
        LedgerRevertError ready to raise
    """
    raw = error_text(error)
    if USER_REJECTED in raw:
        return LedgerRevertError("Transaction was cancelled by user.", raw_error=raw, tx_hash=tx_hash)

    name = extract_error_name(error)
    if name:
        message = ACTION_MESSAGES.get(action, {}).get(name) or COMMON_MESSAGES.get(name)
        if message:
            return LedgerRevertError(message, error_name=name, raw_error=raw, tx_hash=tx_hash)

    logger.debug(f"Unmapped ledger error for {action}: {raw}")
    return LedgerRevertError(f"Failed to {action}: {raw}", error_name=name, raw_error=raw, tx_hash=tx_hash)
