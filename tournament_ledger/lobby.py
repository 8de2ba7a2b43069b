"""
Tournament lobby flows against the ledger.

Every write goes through a per-signer ``TransactionSubmitter`` and is then
confirmed against ledger state. Player-initiated writes are confirmed by
polling lobby state; server writes wait for the receipt first and verify the
state afterwards. When confirmation does not arrive in time the result is
UNCONFIRMED, never a failure: the transaction may still land.
"""
import logging
import threading
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional, Sequence, Union

from web3 import Web3

from .backoff import CONFIRM_POLICY, SUBMIT_POLICY, BackoffPolicy
from .config import LedgerConfig
from .exceptions import LedgerRevertError, PrecheckError, SubmissionError
from .ledger.abi import ERC20_ABI
from .ledger.errors import is_revert, translate_error
from .ledger.events import LOBBY_EVENTS, EventStream
from .ledger.poller import ConfirmationPoller
from .ledger.provider import build_web3
from .ledger.reader import LedgerReader
from .ledger.submitter import TransactionSubmitter
from .models import ActionOutcome, GameStatus, Lobby, LobbyActionResult, LobbyRead, ReadStatus
from .signer import Signer, server_signer_from_config
from .utils import (
    ZERO_ADDRESS, is_zero_address, parse_units, same_address, short_address, string_to_bytes32, to_checksum
)

logger = logging.getLogger(__name__)

MSG_LOBBY_MISSING = "Lobby does not exist on-chain"
MSG_LOBBY_UNREADABLE = "Could not read the lobby from the ledger. Please try again."
MSG_ALREADY_PARTICIPANT = "You are already a participant in this lobby"
MSG_LOBBY_CLOSED = "This lobby has already started or finished"
MSG_NOT_ALLOWLISTED = "You are not on this lobby's allowlist."
MSG_NOT_WINNER = "You are not the winner of this lobby."
MSG_NOT_FINISHED = "The game has not finished yet."
MSG_ALREADY_CLAIMED = "Prize has already been claimed."

Amount = Union[str, int, float, Decimal]


class LobbyOrchestrator:
    """
    Create, join, start, settle and cancel tournament lobbies.

    Example:
        orchestrator = LobbyOrchestrator.from_config(LedgerConfig.from_env())
        result = orchestrator.create_lobby(host_signer, "abc123", "1.5")
        if not result.confirmed:
            print(result.message)
    """

    def __init__(
        self,
        w3: Web3,
        contract_address: str,
        server_signer: Optional[Signer] = None,
        reader: Optional[LedgerReader] = None,
        poller: Optional[ConfirmationPoller] = None,
        submit_policy: BackoffPolicy = SUBMIT_POLICY,
        confirm_policy: BackoffPolicy = CONFIRM_POLICY,
        receipt_timeout: float = 120.0,
        interprocess_lock: bool = False,
        logger: Optional[logging.Logger] = None,
    ):
        """
        Initialize the orchestrator

        Args:
            w3: Connected Web3 instance
            contract_address: Tournament contract address
            server_signer: Key for server writes (start, declare winner, cancel);
                None leaves those writes unavailable
            reader: Ledger read facade (built from ``w3`` if omitted)
            poller: Confirmation poller (built from ``w3`` if omitted)
            submit_policy: Attempt budget for each write
            confirm_policy: Attempt budget and interval for state confirmation
            receipt_timeout: Seconds to wait for a server write's receipt
            interprocess_lock: Serialize each key's writes across processes too
            logger: Optional logger instance
        """
        self.w3 = w3
        self.contract_address = to_checksum(contract_address)
        self.reader = reader or LedgerReader(w3, self.contract_address)
        self.poller = poller or ConfirmationPoller(w3, policy=confirm_policy)
        self.server_signer = server_signer
        self.submit_policy = submit_policy
        self.confirm_policy = confirm_policy
        self.receipt_timeout = receipt_timeout
        self.interprocess_lock = interprocess_lock
        self.logger = logger or logging.getLogger(__name__)
        self._submitters: Dict[str, TransactionSubmitter] = {}
        self._submitters_lock = threading.RLock()

    @classmethod
    def from_config(cls, config: LedgerConfig, w3: Optional[Web3] = None, **kwargs: Any) -> "LobbyOrchestrator":
        """Build an orchestrator from configuration, including the server key."""
        w3 = w3 or build_web3(config)
        reader = LedgerReader(w3, config.contract_address, multicall_address=config.multicall_address)
        kwargs.setdefault("interprocess_lock", True)
        return cls(w3, config.contract_address, server_signer=server_signer_from_config(config),
                   reader=reader, **kwargs)

    # ------------------------------------------------------------------
    # Submission plumbing
    # ------------------------------------------------------------------

    def submitter_for(self, signer: Optional[Signer]) -> TransactionSubmitter:
        """
        The submitter for a signing key, created on first use.

        One submitter per address keeps every write from that key on the same
        serialized path.
        """
        if signer is None:
            return TransactionSubmitter(self.w3, self.contract_address, None, policy=self.submit_policy)
        key = signer.address.lower()
        with self._submitters_lock:
            submitter = self._submitters.get(key)
            if submitter is None:
                submitter = TransactionSubmitter(
                    self.w3,
                    self.contract_address,
                    signer,
                    policy=self.submit_policy,
                    interprocess_lock=self.interprocess_lock,
                )
                self._submitters[key] = submitter
            return submitter

    @property
    def server_submitter(self) -> TransactionSubmitter:
        return self.submitter_for(self.server_signer)

    def _submit(
        self,
        action: str,
        submitter: TransactionSubmitter,
        function_name: str,
        args: Sequence[Any],
        value: int = 0,
        contract: Optional[Any] = None,
    ) -> str:
        try:
            return submitter.submit(function_name, args, value=value, contract=contract)
        except SubmissionError:
            raise
        except Exception as e:
            if is_revert(e) or "User rejected" in str(e):
                error = translate_error(action, e)
                self.logger.warning(f"Cannot {action}: {error} ({error.error_name or 'unnamed revert'})")
                raise error from e
            self.logger.error(f"Failed to {action} after {submitter.policy.max_attempts} attempts: {e}")
            raise SubmissionError(f"Failed to {action}: {e}") from e

    def _confirm_state(
        self,
        action: str,
        tx_hash: str,
        lobby_id: str,
        actor: str,
        predicate: Callable[[LobbyRead], bool],
        waiting_for: str,
    ) -> LobbyActionResult:
        result = self.poller.poll_until(
            lambda: self.reader.get_lobby_result(lobby_id),
            lambda read: read is not None and predicate(read),
            policy=self.confirm_policy,
            description=f"{waiting_for} ({lobby_id})",
        )
        last_lobby = result.value.lobby if result.value is not None else None
        if result.satisfied:
            self.logger.info(f"✅ {action} confirmed on-chain for {lobby_id} after {result.attempts} check(s)")
            return LobbyActionResult(
                tx_hash=tx_hash, lobby_id=lobby_id, actor=actor,
                outcome=ActionOutcome.CONFIRMED, lobby=last_lobby,
            )
        return self._unconfirmed(tx_hash, lobby_id, actor, waiting_for, last_lobby, self._poll_window)

    def _confirm_receipt(
        self,
        action: str,
        tx_hash: str,
        lobby_id: str,
        actor: str,
        predicate: Callable[[LobbyRead], bool],
        waiting_for: str,
    ) -> LobbyActionResult:
        receipt = self.poller.wait_for_receipt(tx_hash, timeout=self.receipt_timeout)
        if receipt is None:
            last = self.reader.get_lobby(lobby_id)
            return self._unconfirmed(tx_hash, lobby_id, actor, waiting_for, last, self.receipt_timeout)
        if not receipt.succeeded:
            self.logger.error(f"{action} transaction {tx_hash} reverted in block {receipt.block_number}")
            raise LedgerRevertError(f"Failed to {action}: transaction reverted", tx_hash=tx_hash)
        self.logger.info(f"{action} included in block {receipt.block_number} ({tx_hash}), verifying state")
        return self._confirm_state(action, tx_hash, lobby_id, actor, predicate, waiting_for)

    @property
    def _poll_window(self) -> float:
        """Seconds a state poll under the confirm policy spends waiting."""
        return self.confirm_policy.max_attempts * self.confirm_policy.base_delay

    def _unconfirmed(
        self, tx_hash: str, lobby_id: str, actor: str, waiting_for: str, last: Optional[Lobby], waited: float
    ) -> LobbyActionResult:
        message = (
            f"Transaction sent ({tx_hash}) but {waiting_for} not confirmed on-chain "
            f"after {waited:g}s. Check block explorer."
        )
        self.logger.warning(message)
        return LobbyActionResult(
            tx_hash=tx_hash, lobby_id=lobby_id, actor=actor,
            outcome=ActionOutcome.UNCONFIRMED, lobby=last, message=message,
        )

    def _read_for_precheck(self, lobby_id: str, with_allowlist: bool = False) -> Lobby:
        read = self.reader.get_lobby_result(lobby_id, with_allowlist=with_allowlist)
        if read.status == ReadStatus.FAILED:
            raise PrecheckError(MSG_LOBBY_UNREADABLE)
        if read.lobby is None:
            raise PrecheckError(MSG_LOBBY_MISSING)
        return read.lobby

    def _ensure_allowance(self, signer: Signer, token: str, amount: int) -> None:
        """Approve the tournament contract to pull ``amount`` of a stake token."""
        if is_zero_address(token) or amount == 0:
            return
        allowance = self.reader.get_token_allowance(token, signer.address, self.contract_address)
        if allowance >= amount:
            return
        self.logger.info(f"Approving {amount} of {short_address(token)} for {short_address(signer.address)}")
        erc20 = self.w3.eth.contract(address=to_checksum(token), abi=ERC20_ABI)
        tx_hash = self._submit("approve stake token", self.submitter_for(signer), "approve",
                               [self.contract_address, amount], contract=erc20)
        receipt = self.poller.wait_for_receipt(tx_hash, timeout=self.receipt_timeout)
        if receipt is None or not receipt.succeeded:
            raise SubmissionError(f"Token approval {tx_hash} was not confirmed. Please try again.")

    # ------------------------------------------------------------------
    # Player flows
    # ------------------------------------------------------------------

    def create_lobby(
        self,
        signer: Signer,
        lobby_id: str,
        amount: Amount,
        public: bool = True,
        stake_token: Optional[str] = None,
    ) -> LobbyActionResult:
        """
        Create a lobby staked with ``amount`` of the native asset or a token.

        Args:
            signer: Host wallet
            lobby_id: Human-readable lobby id (at most 32 UTF-8 bytes are kept)
            amount: Human-readable stake, e.g. "1.5"
            public: List the lobby in public discovery
            stake_token: ERC-20 stake asset; None for the native asset

        Returns:
            LobbyActionResult, CONFIRMED once the lobby exists with this host

        Raises:
            PrecheckError: If the id, amount or stake token is invalid
            LedgerRevertError: If the ledger rejects the call (e.g. the id is taken)
            SubmissionError: If the call could not be submitted
        """
        if not lobby_id:
            raise PrecheckError("Lobby id must not be empty")
        try:
            token = to_checksum(stake_token) if stake_token else ZERO_ADDRESS
        except ValueError as e:
            raise PrecheckError("Invalid stake token address.") from e
        _, decimals = self.reader.token_metadata(token)
        try:
            amount_units = parse_units(amount, decimals)
        except ValueError as e:
            raise PrecheckError(str(e)) from e

        self.logger.info(
            f"Creating lobby {lobby_id} on-chain: host={short_address(signer.address)} "
            f"stake={amount} ({amount_units} units) public={public}"
        )
        self._ensure_allowance(signer, token, amount_units)
        tx_hash = self._submit(
            "create lobby",
            self.submitter_for(signer),
            "createLobby",
            [string_to_bytes32(lobby_id), amount_units, public, token],
            value=amount_units if is_zero_address(token) else 0,
        )
        return self._confirm_state(
            "Lobby creation", tx_hash, lobby_id, signer.address,
            lambda read: read.lobby is not None and same_address(read.lobby.host, signer.address),
            waiting_for="lobby",
        )

    def join_lobby(self, signer: Signer, lobby_id: str) -> LobbyActionResult:
        """
        Join a lobby, paying exactly its stake.

        Raises:
            PrecheckError: If the lobby is missing, closed, already joined or
                the caller is not allowlisted
            LedgerRevertError: If the ledger rejects the call
            SubmissionError: If the call could not be submitted
        """
        lobby = self._read_for_precheck(lobby_id, with_allowlist=True)
        if lobby.is_participant(signer.address):
            raise PrecheckError(MSG_ALREADY_PARTICIPANT)
        if lobby.status != GameStatus.CREATED:
            raise PrecheckError(MSG_LOBBY_CLOSED)
        if lobby.allowlist_enabled and self.reader.is_allowlisted(lobby_id, signer.address) is False:
            raise PrecheckError(MSG_NOT_ALLOWLISTED)

        self.logger.info(
            f"Joining lobby {lobby_id} as {short_address(signer.address)} "
            f"with stake {lobby.formatted_bet_amount} {lobby.stake_symbol}"
        )
        self._ensure_allowance(signer, lobby.stake_token, lobby.bet_amount)
        tx_hash = self._submit(
            "join lobby",
            self.submitter_for(signer),
            "joinLobby",
            [string_to_bytes32(lobby_id)],
            value=lobby.bet_amount if lobby.is_native_stake else 0,
        )
        return self._confirm_state(
            "Join", tx_hash, lobby_id, signer.address,
            lambda read: read.lobby is not None and read.lobby.is_participant(signer.address),
            waiting_for="participation",
        )

    def claim_prize(self, signer: Signer, lobby_id: str) -> LobbyActionResult:
        """
        Withdraw the prize of a finished lobby.

        Raises:
            PrecheckError: If the lobby is not finished or the caller is not the winner
            LedgerRevertError: If the ledger rejects the call
            SubmissionError: If the call could not be submitted
        """
        lobby = self._read_for_precheck(lobby_id)
        if lobby.status == GameStatus.CLAIMED:
            raise PrecheckError(MSG_ALREADY_CLAIMED)
        if lobby.status != GameStatus.FINISHED:
            raise PrecheckError(MSG_NOT_FINISHED)
        if not same_address(lobby.winner, signer.address):
            raise PrecheckError(MSG_NOT_WINNER)

        tx_hash = self._submit("claim prize", self.submitter_for(signer), "claimPrize", [string_to_bytes32(lobby_id)])
        return self._confirm_state(
            "Prize claim", tx_hash, lobby_id, signer.address,
            lambda read: read.lobby is not None and read.lobby.status == GameStatus.CLAIMED,
            waiting_for="prize claim",
        )

    def sponsor_prize_pool(
        self, signer: Signer, lobby_id: str, amount: Amount
    ) -> LobbyActionResult:
        """
        Add funds to a lobby's prize pool without joining it.

        Raises:
            PrecheckError: If the lobby is missing, already settled, or the amount is invalid
        """
        lobby = self._read_for_precheck(lobby_id)
        if lobby.status in (GameStatus.FINISHED, GameStatus.CLAIMED):
            raise PrecheckError("This lobby can no longer be sponsored.")
        try:
            amount_units = parse_units(amount, lobby.stake_decimals)
        except ValueError as e:
            raise PrecheckError(str(e)) from e
        if amount_units == 0:
            raise PrecheckError("Sponsorship amount must be greater than zero.")

        self._ensure_allowance(signer, lobby.stake_token, amount_units)
        tx_hash = self._submit(
            "sponsor prize pool",
            self.submitter_for(signer),
            "addToPrizePool",
            [string_to_bytes32(lobby_id), amount_units],
            value=amount_units if lobby.is_native_stake else 0,
        )
        expected = lobby.total_prize + amount_units
        return self._confirm_state(
            "Sponsorship", tx_hash, lobby_id, signer.address,
            lambda read: read.lobby is not None and read.lobby.total_prize >= expected,
            waiting_for="prize pool update",
        )

    # ------------------------------------------------------------------
    # Allowlist
    # ------------------------------------------------------------------

    @staticmethod
    def _normalize_addresses(addresses: Sequence[str], empty_message: str) -> List[str]:
        if not addresses:
            raise PrecheckError(empty_message)
        normalized: List[str] = []
        for address in addresses:
            try:
                checksummed = to_checksum(address)
            except ValueError as e:
                raise PrecheckError(f"Invalid address provided: {e}") from e
            if checksummed not in normalized:
                normalized.append(checksummed)
        return normalized

    def _confirm_allowlist(
        self, tx_hash: str, lobby_id: str, actor: str, addresses: List[str], expected: bool
    ) -> LobbyActionResult:
        def probe() -> Optional[bool]:
            states = [self.reader.is_allowlisted(lobby_id, address) for address in addresses]
            if any(state is None for state in states):
                return None
            return all(state == expected for state in states)

        result = self.poller.poll_until(probe, lambda ok: ok is True, policy=self.confirm_policy,
                                        description=f"allowlist update ({lobby_id})")
        if result.satisfied:
            return LobbyActionResult(tx_hash=tx_hash, lobby_id=lobby_id, actor=actor,
                                     outcome=ActionOutcome.CONFIRMED)
        return self._unconfirmed(tx_hash, lobby_id, actor, "allowlist update", None, self._poll_window)

    def add_to_allowlist(self, signer: Signer, lobby_id: str, addresses: Sequence[str]) -> LobbyActionResult:
        normalized = self._normalize_addresses(addresses, "No addresses provided for allowlist.")
        tx_hash = self._submit("update allowlist", self.submitter_for(signer), "addToAllowlist",
                               [string_to_bytes32(lobby_id), normalized])
        return self._confirm_allowlist(tx_hash, lobby_id, signer.address, normalized, True)

    def remove_from_allowlist(self, signer: Signer, lobby_id: str, addresses: Sequence[str]) -> LobbyActionResult:
        normalized = self._normalize_addresses(addresses, "No addresses provided for removal.")
        tx_hash = self._submit("update allowlist", self.submitter_for(signer), "removeFromAllowlist",
                               [string_to_bytes32(lobby_id), normalized])
        return self._confirm_allowlist(tx_hash, lobby_id, signer.address, normalized, False)

    def set_allowlist_enabled(self, signer: Signer, lobby_id: str, enabled: bool) -> LobbyActionResult:
        tx_hash = self._submit("update allowlist", self.submitter_for(signer), "setAllowlistEnabled",
                               [string_to_bytes32(lobby_id), enabled])
        result = self.poller.poll_until(
            lambda: self.reader.is_allowlist_enabled(lobby_id),
            lambda state: state is enabled,
            policy=self.confirm_policy,
            description=f"allowlist toggle ({lobby_id})",
        )
        if result.satisfied:
            return LobbyActionResult(tx_hash=tx_hash, lobby_id=lobby_id, actor=signer.address,
                                     outcome=ActionOutcome.CONFIRMED)
        return self._unconfirmed(tx_hash, lobby_id, signer.address, "allowlist toggle", None,
                                 self._poll_window)

    # ------------------------------------------------------------------
    # Server flows
    # ------------------------------------------------------------------

    def start_game(self, lobby_id: str) -> LobbyActionResult:
        """
        Mark a lobby's game as started (server key).

        Raises:
            SubmissionError: If no server key is configured or submission failed
            LedgerRevertError: If the ledger rejects the call
        """
        submitter = self.server_submitter
        self.logger.info(f"Starting game on-chain for lobby {lobby_id}")
        tx_hash = self._submit("start game", submitter, "startGame", [string_to_bytes32(lobby_id)])
        return self._confirm_receipt(
            "Game start", tx_hash, lobby_id, submitter.address,
            lambda read: read.lobby is not None and read.lobby.status == GameStatus.IN_PROGRESS,
            waiting_for="game start",
        )

    def declare_winner(self, lobby_id: str, winner: str) -> LobbyActionResult:
        """
        Record the winner of a lobby (server key).

        Raises:
            PrecheckError: If the winner address is invalid
            SubmissionError: If no server key is configured or submission failed
            LedgerRevertError: If the ledger rejects the call, e.g. NotGameServer
        """
        try:
            winner = to_checksum(winner)
        except ValueError as e:
            raise PrecheckError("Invalid winner address.") from e
        if is_zero_address(winner):
            raise PrecheckError("Invalid winner address.")

        submitter = self.server_submitter
        self.logger.info(f"Declaring winner on-chain for lobby {lobby_id}: {short_address(winner)}")
        tx_hash = self._submit("declare winner", submitter, "declareWinner", [string_to_bytes32(lobby_id), winner])
        return self._confirm_receipt(
            "Winner declaration", tx_hash, lobby_id, submitter.address,
            lambda read: (read.lobby is not None and read.lobby.status == GameStatus.FINISHED
                          and read.lobby.has_winner),
            waiting_for="winner declaration",
        )

    def cancel_lobby(self, lobby_id: str, signer: Optional[Signer] = None) -> LobbyActionResult:
        """
        Cancel a lobby that has not started, refunding its participants.

        Args:
            lobby_id: Lobby to cancel
            signer: Host wallet; None cancels with the server key

        Returns:
            LobbyActionResult, CONFIRMED once the lobby no longer exists
        """
        def cancelled(read: LobbyRead) -> bool:
            return read.status == ReadStatus.ABSENT

        if signer is None:
            submitter = self.server_submitter
            tx_hash = self._submit("cancel lobby", submitter, "cancelLobby", [string_to_bytes32(lobby_id)])
            return self._confirm_receipt("Cancellation", tx_hash, lobby_id, submitter.address, cancelled,
                                         waiting_for="cancellation")
        tx_hash = self._submit("cancel lobby", self.submitter_for(signer), "cancelLobby",
                               [string_to_bytes32(lobby_id)])
        return self._confirm_state("Cancellation", tx_hash, lobby_id, signer.address, cancelled,
                                   waiting_for="cancellation")

    # ------------------------------------------------------------------
    # Reads and events
    # ------------------------------------------------------------------

    def get_lobby(self, lobby_id: str) -> Optional[Lobby]:
        return self.reader.get_lobby(lobby_id)

    def list_public_lobbies(self) -> List[Lobby]:
        return self.reader.list_public_lobbies()

    def watch_lobby(
        self, lobby_id: Optional[str] = None, events: Sequence[str] = LOBBY_EVENTS, poll_interval: float = 2.0
    ) -> EventStream:
        """Stream contract events, optionally for one lobby."""
        return EventStream(self.w3, self.contract_address, events, lobby_id=lobby_id, poll_interval=poll_interval)
