"""
Construction, signing and broadcasting of state-mutating ledger calls.

Each signing key has exactly one writer at a time: fetching the pending
sequence number and broadcasting the transaction that uses it happen under a
lock keyed by the signer address, so two concurrent submissions can never
claim the same sequence number. With ``interprocess_lock`` the same section
is also guarded by a file lock shared between worker processes.
"""
import logging
import os
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterator, Optional, Sequence

import appdirs
import fasteners
from web3 import Web3

from ..backoff import SUBMIT_POLICY, BackoffPolicy
from ..exceptions import SubmissionError
from ..models import FeeParameters, TransactionAttempt
from ..signer import Signer
from ..utils import short_address, to_checksum
from .abi import TOURNAMENT_ABI
from .errors import is_revert

logger = logging.getLogger(__name__)

# Fixed fee parameters. Dynamic estimation proved unreliable against the
# target RPC, so calls are built with constants tuned for the network.
DEFAULT_FEES = FeeParameters(
    gas_limit=1_000_000,
    max_fee_per_gas=Web3.to_wei("0.0025", "gwei"),
    max_priority_fee_per_gas=Web3.to_wei("0.001", "gwei"),
)

# Process-wide locks, one per signing address
_key_locks: Dict[str, threading.Lock] = {}
_key_locks_guard = threading.RLock()


def _lock_for(address: str) -> threading.Lock:
    with _key_locks_guard:
        lock = _key_locks.get(address.lower())
        if lock is None:
            lock = threading.Lock()
            _key_locks[address.lower()] = lock
        return lock


def _to_hex(tx_hash: Any) -> str:
    if isinstance(tx_hash, str):
        return tx_hash if tx_hash.startswith("0x") else "0x" + tx_hash
    return "0x" + bytes(tx_hash).hex()


class TransactionSubmitter:
    """
    Submits calls to the tournament contract from a single signing key.

    ``submit`` returns as soon as the transaction is broadcast; waiting for
    the ledger to reflect it is the confirmation poller's job.
    """

    def __init__(
        self,
        w3: Web3,
        contract_address: str,
        signer: Optional[Signer] = None,
        abi: Optional[list] = None,
        fees: FeeParameters = DEFAULT_FEES,
        policy: BackoffPolicy = SUBMIT_POLICY,
        interprocess_lock: bool = False,
        lock_dir: Optional[str] = None,
        logger: Optional[logging.Logger] = None,
    ):
        """
        Initialize the submitter

        Args:
            w3: Connected Web3 instance
            contract_address: Target contract address
            signer: Signing key; None leaves every write unavailable
            abi: Contract ABI (defaults to the tournament contract)
            fees: Fixed gas limit and fee caps
            policy: Attempt budget and backoff between attempts
            interprocess_lock: Also serialize across processes with a file lock
            lock_dir: Directory for the file lock (defaults to the user data dir)
            logger: Optional logger instance
        """
        self.w3 = w3
        self.contract_address = to_checksum(contract_address)
        self.contract = w3.eth.contract(address=self.contract_address, abi=abi or TOURNAMENT_ABI)
        self.signer = signer
        self.fees = fees
        self.policy = policy
        self.logger = logger or logging.getLogger(__name__)
        self._process_lock = None
        if signer is not None and interprocess_lock:
            directory = Path(lock_dir or appdirs.user_data_dir("tournament-ledger"))
            os.makedirs(directory, exist_ok=True)
            lock_file = directory / f"{signer.address.lower()}.tx.lock"
            self._process_lock = fasteners.InterProcessLock(str(lock_file))
            self.logger.debug(f"Using submission lock file at {lock_file}")

    @property
    def address(self) -> Optional[str]:
        return self.signer.address if self.signer else None

    @property
    def available(self) -> bool:
        return self.signer is not None

    @contextmanager
    def _serialized(self) -> Iterator[None]:
        with _lock_for(self.signer.address):
            if self._process_lock is None:
                yield
                return
            with self._process_lock:
                yield

    def simulate(
        self, function_name: str, args: Sequence[Any] = (), value: int = 0, contract: Optional[Any] = None
    ) -> None:
        """
        Dry-run a call from the signer's address.

        Raises:
            The web3 exception for a named revert. Transport failures are only
            logged, since the broadcast step retries them anyway.
        """
        fn = getattr((contract or self.contract).functions, function_name)(*args)
        try:
            fn.call({"from": self.signer.address, "value": value})
        except Exception as e:
            if is_revert(e):
                self.logger.info(f"{function_name} would revert: {e}")
                raise
            self.logger.warning(f"Could not simulate {function_name}, submitting anyway: {e}")

    def submit(
        self,
        function_name: str,
        args: Sequence[Any] = (),
        value: int = 0,
        simulate: bool = True,
        contract: Optional[Any] = None,
    ) -> str:
        """
        Build, sign and broadcast a contract call.

        Args:
            function_name: Contract function to call
            args: Positional arguments for the function
            value: Native value to attach, in wei
            simulate: Dry-run the call first so reverts surface immediately
            contract: Another contract to call instead, e.g. a stake token

        Returns:
            Transaction hash as a 0x-prefixed hex string

        Raises:
            SubmissionError: If no signing key is configured or signing fails
            ContractLogicError: If the ledger rejects the call (not retried)
            Exception: The last transport error once all attempts failed
        """
        if self.signer is None:
            raise SubmissionError(f"Cannot call {function_name}: no signing key configured")

        args = tuple(args)
        if simulate:
            self.simulate(function_name, args, value, contract)

        fn = getattr((contract or self.contract).functions, function_name)(*args)
        last_error: Optional[BaseException] = None

        with self._serialized():
            for attempt in range(1, self.policy.max_attempts + 1):
                try:
                    # Fresh every attempt: a cached value collides with our own in-flight calls
                    sequence_number = self.w3.eth.get_transaction_count(self.signer.address, "pending")
                    tx_attempt = TransactionAttempt(
                        function_name=function_name,
                        args=args,
                        sequence_number=sequence_number,
                        fees=self.fees,
                        attempt=attempt,
                        value=value,
                    )
                    self.logger.info(
                        f"Attempt {attempt}/{self.policy.max_attempts} to call {function_name} "
                        f"from {short_address(self.signer.address)} (nonce {sequence_number})"
                    )
                    tx = fn.build_transaction(tx_attempt.to_tx_params(self.signer.address))
                    signed = self._sign(tx)
                    tx_hash = _to_hex(self.w3.eth.send_raw_transaction(signed.raw_transaction))
                    self.logger.info(f"Transaction sent: {function_name} {tx_hash}")
                    return tx_hash
                except SubmissionError:
                    raise
                except Exception as e:
                    if is_revert(e):
                        raise
                    last_error = e
                    self.logger.warning(f"Attempt {attempt} to call {function_name} failed: {e}")
                    if attempt < self.policy.max_attempts:
                        self.policy.wait(attempt)

        self.logger.error(f"All {self.policy.max_attempts} attempts to call {function_name} failed: {last_error}")
        raise last_error

    def _sign(self, tx: Dict[str, Any]) -> Any:
        try:
            return self.signer.sign_transaction(tx)
        except Exception as e:
            self.logger.error(f"Transaction signing failed: {e}")
            raise SubmissionError(f"Failed to sign transaction: {e}")
