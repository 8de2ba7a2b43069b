"""
Wallet links and link challenge nonces, keyed by persistent session id.
"""
import hmac
import logging
import secrets
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional

from ..exceptions import PersistenceError
from ..models import NonceChallenge, WalletLink
from ..utils import short_address, to_checksum
from .storage import LinkStorage, MemoryLinkStorage

logger = logging.getLogger(__name__)

NONCE_TTL_MS = 10 * 60 * 1000
NONCE_BYTES = 32
# Wrong guesses tolerated before a pending nonce is thrown away
MAX_FAILED_NONCE_ATTEMPTS = 5


def _now_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class _PendingNonce:
    nonce: str
    expires_at: int
    failed_attempts: int = 0


class IdentityStore:
    """
    Durable session -> address bindings plus short-lived single-use nonces.

    Bindings are written through the storage backend before ``bind``
    returns. Nonces live in memory only: a restart simply forces clients to
    request a new challenge.
    """

    def __init__(
        self,
        storage: Optional[LinkStorage] = None,
        nonce_ttl_ms: int = NONCE_TTL_MS,
        max_failed_attempts: int = MAX_FAILED_NONCE_ATTEMPTS,
        clock: Callable[[], int] = _now_ms,
    ):
        """
        Initialize the store

        Args:
            storage: Link storage backend (defaults to in-memory)
            nonce_ttl_ms: Lifetime of an issued nonce in milliseconds
            max_failed_attempts: Failed validations after which a nonce is discarded
            clock: Returns the current time in epoch milliseconds
        """
        self.storage = storage or MemoryLinkStorage()
        self.nonce_ttl_ms = nonce_ttl_ms
        self.max_failed_attempts = max_failed_attempts
        self._clock = clock
        self._nonces: Dict[str, _PendingNonce] = {}
        self._lock = threading.RLock()

    # ------------------------------------------------------------------
    # Nonces
    # ------------------------------------------------------------------

    def issue_nonce(self, session_id: str) -> NonceChallenge:
        """
        Create a fresh challenge nonce, replacing any pending one.

        Returns:
            NonceChallenge with the token and its expiry (epoch ms)
        """
        nonce = secrets.token_hex(NONCE_BYTES)
        expires_at = self._clock() + self.nonce_ttl_ms
        with self._lock:
            self._nonces[session_id] = _PendingNonce(nonce=nonce, expires_at=expires_at)
        logger.debug(f"Issued link nonce for session {session_id[:8]}")
        return NonceChallenge(nonce=nonce, expires_at=expires_at)

    def validate_and_consume(self, session_id: str, nonce: str) -> bool:
        """
        Check a submitted nonce and consume it on success.

        A wrong or expired value leaves the pending nonce in place so a client
        retrying with a stale value does not lose a still-valid challenge. After
        ``max_failed_attempts`` wrong values the nonce is discarded.

        Returns:
            True if the nonce matched and had not expired
        """
        with self._lock:
            pending = self._nonces.get(session_id)
            if pending is None or not isinstance(nonce, str):
                return False
            if self._clock() >= pending.expires_at:
                logger.info(f"Link nonce for session {session_id[:8]} has expired")
                return False
            if not hmac.compare_digest(pending.nonce.encode(), nonce.encode()):
                pending.failed_attempts += 1
                if pending.failed_attempts >= self.max_failed_attempts:
                    del self._nonces[session_id]
                    logger.warning(
                        f"Discarding link nonce for session {session_id[:8]} "
                        f"after {pending.failed_attempts} failed attempts"
                    )
                return False
            del self._nonces[session_id]
            return True

    def has_pending_nonce(self, session_id: str) -> bool:
        with self._lock:
            return session_id in self._nonces

    def purge_expired(self) -> int:
        """Drop expired nonces. Returns the number removed."""
        now = self._clock()
        with self._lock:
            expired = [sid for sid, pending in self._nonces.items() if now >= pending.expires_at]
            for sid in expired:
                del self._nonces[sid]
        return len(expired)

    # ------------------------------------------------------------------
    # Bindings
    # ------------------------------------------------------------------

    def bind(self, session_id: str, address: str) -> WalletLink:
        """
        Bind a session to a wallet address and persist it.

        Re-binding the same address is idempotent apart from refreshing
        ``updated_at``. The stored record is read back after the write.

        Returns:
            The stored WalletLink

        Raises:
            ValueError: If the address is invalid
            PersistenceError: If the link could not be written or verified
        """
        checksummed = to_checksum(address)
        link = WalletLink(address=checksummed, updated_at=self._clock())
        with self._lock:
            try:
                self.storage.set(session_id, link)
                stored = self.storage.read_back(session_id)
            except PersistenceError:
                raise
            except Exception as e:
                logger.error(f"Failed to persist wallet link for session {session_id[:8]}: {e}")
                raise PersistenceError(f"Failed to save wallet link: {e}") from e
            if stored is None or stored.address != checksummed:
                logger.error(f"Wallet link for session {session_id[:8]} did not survive read-back")
                raise PersistenceError("Wallet link was not saved")
        logger.info(f"Linked session {session_id[:8]} to {short_address(checksummed)}")
        return stored

    def lookup(self, session_id: str) -> Optional[str]:
        link = self.storage.get(session_id)
        return link.address if link else None

    def get_link(self, session_id: str) -> Optional[WalletLink]:
        return self.storage.get(session_id)

    def unbind(self, session_id: str) -> None:
        with self._lock:
            self.storage.delete(session_id)
        logger.info(f"Unlinked wallet for session {session_id[:8]}")
