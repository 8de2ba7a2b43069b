"""
Polling the ledger until submitted effects become visible.

A broadcast transaction is not a confirmed one: callers poll either for the
receipt or for a predicate over observed state, with a bounded number of
attempts and a fixed interval. Polling can run in the caller's thread or in a
background thread that stops when its handle is cancelled.
"""
import logging
import threading
from dataclasses import dataclass
from typing import Any, Callable, Generic, Optional, TypeVar

from web3 import Web3
from web3.exceptions import TimeExhausted

from .._rate_limited_log import rate_limited_log
from ..backoff import CONFIRM_POLICY, BackoffPolicy
from ..models import TxReceipt

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class PollResult(Generic[T]):
    """
    Outcome of a polling run.

    Attributes:
        satisfied: The predicate held before the attempt budget ran out
        value: Last value observed by the probe (may be None)
        attempts: Number of probes made
        cancelled: Polling was stopped by its cancel event
    """
    satisfied: bool
    value: Optional[T] = None
    attempts: int = 0
    cancelled: bool = False


class PollHandle:
    """Handle for a background polling run."""

    def __init__(self, thread: threading.Thread, cancel_event: threading.Event):
        self._thread = thread
        self._cancel_event = cancel_event
        self.result: Optional[PollResult] = None

    def cancel(self) -> None:
        """Stop the run; the probe is never called again after this returns."""
        self._cancel_event.set()

    @property
    def cancelled(self) -> bool:
        return self._cancel_event.is_set()

    def join(self, timeout: Optional[float] = None) -> Optional[PollResult]:
        self._thread.join(timeout)
        return self.result

    def is_alive(self) -> bool:
        return self._thread.is_alive()


class ConfirmationPoller:
    """Waits for receipts or for a condition over ledger state."""

    def __init__(
        self,
        w3: Optional[Web3] = None,
        policy: BackoffPolicy = CONFIRM_POLICY,
        logger: Optional[logging.Logger] = None,
    ):
        self.w3 = w3
        self.policy = policy
        self.logger = logger or logging.getLogger(__name__)

    def poll_until(
        self,
        probe: Callable[[], T],
        predicate: Callable[[Optional[T]], bool],
        policy: Optional[BackoffPolicy] = None,
        cancel_event: Optional[threading.Event] = None,
        on_value: Optional[Callable[[Optional[T]], None]] = None,
        description: str = "condition",
    ) -> PollResult[T]:
        """
        Probe until the predicate holds or the attempt budget runs out.

        The first probe happens immediately; the policy delay is waited
        between probes only. A probe that raises counts as a failed attempt
        and polling continues.

        Args:
            probe: Reads the current value (e.g. a lobby)
            predicate: Decides whether the value is the awaited one
            policy: Attempt budget and interval (defaults to the poller's)
            cancel_event: Stops polling as soon as it is set
            on_value: Called with each observed value
            description: Name used in log messages

        Returns:
            PollResult with the last observed value
        """
        policy = policy or self.policy
        cancel_event = cancel_event or threading.Event()
        value: Optional[T] = None

        for attempt in range(1, policy.max_attempts + 1):
            if cancel_event.is_set():
                return PollResult(satisfied=False, value=value, attempts=attempt - 1, cancelled=True)
            try:
                value = probe()
            except Exception as e:
                rate_limited_log(
                    f"Polling for {description} failed on attempt {attempt}: {e}",
                    key=f"poll:{description}",
                    logger_instance=self.logger,
                )
            else:
                if on_value is not None and not cancel_event.is_set():
                    on_value(value)
                if predicate(value):
                    self.logger.debug(f"{description} observed after {attempt} attempt(s)")
                    return PollResult(satisfied=True, value=value, attempts=attempt)

            if attempt < policy.max_attempts and policy.wait(attempt, cancel_event):
                return PollResult(satisfied=False, value=value, attempts=attempt, cancelled=True)

        self.logger.warning(f"Gave up waiting for {description} after {policy.max_attempts} attempts")
        return PollResult(satisfied=False, value=value, attempts=policy.max_attempts)

    def start(
        self,
        probe: Callable[[], T],
        predicate: Callable[[Optional[T]], bool],
        policy: Optional[BackoffPolicy] = None,
        on_value: Optional[Callable[[Optional[T]], None]] = None,
        on_done: Optional[Callable[[PollResult[T]], None]] = None,
        description: str = "condition",
    ) -> PollHandle:
        """
        Run ``poll_until`` in a daemon thread.

        ``on_done`` is not called when the run was cancelled.

        Returns:
            PollHandle used to cancel or join the run
        """
        cancel_event = threading.Event()
        handle: PollHandle

        def run() -> None:
            result = self.poll_until(
                probe, predicate, policy=policy, cancel_event=cancel_event,
                on_value=on_value, description=description,
            )
            handle.result = result
            if on_done is not None and not result.cancelled and not cancel_event.is_set():
                on_done(result)

        thread = threading.Thread(target=run, name=f"poll-{description}", daemon=True)
        handle = PollHandle(thread, cancel_event)
        thread.start()
        return handle

    def wait_for_receipt(
        self,
        tx_hash: str,
        timeout: float = 60.0,
        poll_latency: float = 2.0,
    ) -> Optional[TxReceipt]:
        """
        Wait for a transaction to be included.

        Returns:
            The receipt, or None if it did not appear within the timeout
        """
        if self.w3 is None:
            raise ValueError("wait_for_receipt needs a Web3 instance")
        try:
            raw = self.w3.eth.wait_for_transaction_receipt(tx_hash, timeout=timeout, poll_latency=poll_latency)
        except TimeExhausted:
            self.logger.warning(f"No receipt for {tx_hash} after {timeout}s")
            return None
        receipt = TxReceipt.model_validate(_receipt_dict(raw))
        if not receipt.succeeded:
            self.logger.warning(f"Transaction {tx_hash} reverted in block {receipt.block_number}")
        return receipt


def _receipt_dict(raw: Any) -> dict:
    data = dict(raw)
    tx_hash = data.get("transactionHash")
    if tx_hash is not None and not isinstance(tx_hash, str):
        data["transactionHash"] = "0x" + bytes(tx_hash).hex()
    return data
