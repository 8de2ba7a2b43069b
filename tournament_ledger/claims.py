"""
Claim eligibility for a finished tournament.

The engine re-derives eligibility from ledger state on every tick; nothing is
cached between ticks. A check runs while a result screen is open and stops as
soon as the answer is final, or after a bounded number of ticks.
"""
import logging
import threading
from typing import Callable, Optional

from .backoff import CLAIM_POLICY, BackoffPolicy
from .identity.context import WalletContext, WalletState
from .ledger.poller import ConfirmationPoller, PollHandle
from .ledger.reader import LedgerReader
from .models import ClaimEligibility, ClaimState, GameStatus, Lobby, ReadStatus
from .utils import same_address, short_address

logger = logging.getLogger(__name__)

MSG_NOT_TOURNAMENT = "This was a regular game, not a tournament. No prize to claim."
MSG_CONNECT_WALLET = "Connect your wallet to claim prizes"
MSG_NOT_WINNER = "You are not the winner of this tournament"
MSG_WAITING_FOR_WINNER = "⏳ Waiting for server to declare winner on-chain..."
MSG_NOT_STARTED = "Game hasn't started on-chain yet"
MSG_ALREADY_CLAIMED = "Prize already claimed"
MSG_PAYOUT_SETTLING = "⏳ Waiting for the tournament payout to settle on-chain..."
MSG_ELIGIBLE = "Your prize is ready to claim"
MSG_TIMEOUT = "Still waiting for the tournament result on-chain. Check again later."

ClaimListener = Callable[[ClaimEligibility], None]


class ClaimEligibilityEngine:
    """Derives whether the current wallet may withdraw a tournament prize."""

    def __init__(
        self,
        reader: LedgerReader,
        wallet: WalletContext,
        poller: Optional[ConfirmationPoller] = None,
        policy: BackoffPolicy = CLAIM_POLICY,
        distinguish_read_failures: bool = False,
        logger: Optional[logging.Logger] = None,
    ):
        """
        Initialize the engine

        Args:
            reader: Ledger read facade
            wallet: Current identity; its address is the claimant
            poller: Poller used for bounded re-checks
            policy: Tick budget and interval
            distinguish_read_failures: Report a failed lobby read as an error
                (and keep polling) instead of as "not a tournament"
            logger: Optional logger instance
        """
        self.reader = reader
        self.wallet = wallet
        self.poller = poller or ConfirmationPoller(policy=policy)
        self.policy = policy
        self.distinguish_read_failures = distinguish_read_failures
        self.logger = logger or logging.getLogger(__name__)

    def evaluate(self, lobby_id: str, address: Optional[str]) -> ClaimEligibility:
        """
        Compute eligibility once.

        Args:
            lobby_id: Lobby the match was played in
            address: Claimant address, or None if no wallet is connected

        Returns:
            ClaimEligibility; ``stop`` tells callers whether to keep polling
        """
        try:
            return self._evaluate(lobby_id, address)
        except Exception as e:
            self.logger.error(f"Error checking claim eligibility for {lobby_id}: {e}")
            return ClaimEligibility(state=ClaimState.ERROR, message=f"Error checking prize: {e}", stop=False)

    def _evaluate(self, lobby_id: str, address: Optional[str]) -> ClaimEligibility:
        read = self.reader.get_lobby_result(lobby_id)
        if read.status == ReadStatus.FAILED and self.distinguish_read_failures:
            return ClaimEligibility(
                state=ClaimState.ERROR, message=f"Error checking prize: {read.error}", stop=False
            )
        lobby = read.lobby
        if lobby is None:
            return ClaimEligibility(
                state=ClaimState.NOT_ELIGIBLE, message=MSG_NOT_TOURNAMENT, stop=True, is_tournament=False
            )

        if not address:
            return ClaimEligibility(state=ClaimState.NOT_ELIGIBLE, message=MSG_CONNECT_WALLET, stop=True, lobby=lobby)

        if lobby.status == GameStatus.CREATED:
            return ClaimEligibility(state=ClaimState.CHECKING, message=MSG_NOT_STARTED, stop=False, lobby=lobby)
        if lobby.status == GameStatus.IN_PROGRESS:
            return ClaimEligibility(state=ClaimState.CHECKING, message=MSG_WAITING_FOR_WINNER, stop=False, lobby=lobby)
        if lobby.status == GameStatus.CLAIMED:
            return ClaimEligibility(state=ClaimState.NOT_ELIGIBLE, message=MSG_ALREADY_CLAIMED, stop=True, lobby=lobby)

        # Finished
        if not same_address(lobby.winner, address):
            return ClaimEligibility(state=ClaimState.NOT_ELIGIBLE, message=MSG_NOT_WINNER, stop=True, lobby=lobby)

        balance = self._claimable_balance(lobby, address)
        if balance > 0:
            self.logger.info(f"Claim available for {short_address(address)} in lobby {lobby_id}: {balance}")
            return ClaimEligibility(
                state=ClaimState.ELIGIBLE, message=MSG_ELIGIBLE, stop=True, lobby=lobby, claimable_balance=balance
            )
        return ClaimEligibility(state=ClaimState.CHECKING, message=MSG_PAYOUT_SETTLING, stop=False, lobby=lobby)

    def _claimable_balance(self, lobby: Lobby, address: str) -> int:
        balance = self.reader.get_claimable_balance(address, lobby.stake_token)
        if balance is None:
            # Balance view unavailable: the undistributed prize belongs to the winner
            return lobby.total_prize
        return balance

    def check(self, lobby_id: str) -> ClaimEligibility:
        """Compute eligibility once for the wallet context's address."""
        return self.evaluate(lobby_id, self.wallet.address)

    def run(
        self,
        lobby_id: str,
        cancel_event: Optional[threading.Event] = None,
        on_update: Optional[ClaimListener] = None,
    ) -> ClaimEligibility:
        """
        Re-check until the answer is final or the tick budget is spent.

        Returns:
            The final eligibility, or a TIMEOUT result when the budget ran out
        """
        result = self.poller.poll_until(
            lambda: self.check(lobby_id),
            lambda eligibility: eligibility is not None and eligibility.stop,
            policy=self.policy,
            cancel_event=cancel_event,
            on_value=on_update,
            description=f"claim eligibility of {lobby_id}",
        )
        if result.satisfied:
            return result.value
        last = result.value
        if result.cancelled:
            return last or ClaimEligibility(state=ClaimState.CHECKING, message="", stop=True)
        timeout = ClaimEligibility(
            state=ClaimState.TIMEOUT,
            message=MSG_TIMEOUT,
            stop=True,
            lobby=last.lobby if last else None,
        )
        if on_update is not None:
            on_update(timeout)
        return timeout

    def start(self, lobby_id: str, on_update: ClaimListener) -> "ClaimWatch":
        """
        Watch eligibility in the background.

        The watch restarts whenever the wallet context changes, so connecting
        a wallet after the "connect your wallet" message re-runs the check.
        """
        watch = ClaimWatch(self, lobby_id, on_update)
        watch.start()
        return watch


class ClaimWatch:
    """Background claim check bound to a wallet context."""

    def __init__(self, engine: ClaimEligibilityEngine, lobby_id: str, on_update: ClaimListener):
        self.engine = engine
        self.lobby_id = lobby_id
        self.on_update = on_update
        self.latest: Optional[ClaimEligibility] = None
        self._handle: Optional[PollHandle] = None
        self._unsubscribe: Optional[Callable[[], None]] = None
        self._lock = threading.RLock()
        self._stopped = False

    def _emit(self, eligibility: Optional[ClaimEligibility]) -> None:
        if eligibility is None:
            return
        self.latest = eligibility
        self.on_update(eligibility)

    def _on_done(self, result) -> None:
        if result.satisfied:
            return
        timeout = ClaimEligibility(
            state=ClaimState.TIMEOUT,
            message=MSG_TIMEOUT,
            stop=True,
            lobby=result.value.lobby if result.value else None,
        )
        self._emit(timeout)

    def _launch(self) -> None:
        with self._lock:
            if self._stopped:
                return
            if self._handle is not None:
                self._handle.cancel()
            self._handle = self.engine.poller.start(
                lambda: self.engine.check(self.lobby_id),
                lambda eligibility: eligibility is not None and eligibility.stop,
                policy=self.engine.policy,
                on_value=self._emit,
                on_done=self._on_done,
                description=f"claim eligibility of {self.lobby_id}",
            )

    def _on_wallet_change(self, state: WalletState) -> None:
        self.engine.logger.debug(f"Wallet changed, rechecking claim for {self.lobby_id}")
        self._launch()

    def start(self) -> None:
        self._unsubscribe = self.engine.wallet.subscribe(self._on_wallet_change)
        self._launch()

    def cancel(self) -> None:
        """Stop watching; no further updates are delivered."""
        with self._lock:
            self._stopped = True
            if self._unsubscribe is not None:
                self._unsubscribe()
                self._unsubscribe = None
            if self._handle is not None:
                self._handle.cancel()

    def join(self, timeout: Optional[float] = None) -> None:
        handle = self._handle
        if handle is not None:
            handle.join(timeout)
