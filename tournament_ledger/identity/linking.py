"""
Challenge/response binding of a session id to a wallet address.

Flow:
    1. ``request_challenge`` issues a nonce (or nothing, if already linked)
    2. The wallet owner signs ``build_link_message(...)`` with personal_sign
    3. ``link`` checks the nonce, recovers the signer and stores the binding
"""
import logging
from datetime import datetime, timezone
from typing import Optional

from eth_account import Account
from eth_account.messages import encode_defunct

from ..exceptions import NonceError, SignatureMismatchError
from ..models import LinkSubmission, NonceChallenge, WalletLink
from ..utils import same_address, short_address, to_checksum
from .store import IdentityStore

logger = logging.getLogger(__name__)

LINK_PROTOCOL_LABEL = "Openfront wallet link"


def build_link_message(domain: str, address: str, nonce: str, timestamp: Optional[datetime] = None) -> str:
    """
    Build the human-readable message a wallet signs to prove ownership.

    The timestamp is shown to the signer only and never checked.

    Args:
        domain: Host the request originates from
        address: Wallet address being linked
        nonce: Challenge nonce
        timestamp: Time shown in the message (defaults to now, UTC)

    Returns:
        Newline-joined message
    """
    ts = (timestamp or datetime.now(timezone.utc)).isoformat(timespec="milliseconds")
    if ts.endswith("+00:00"):
        ts = ts[:-len("+00:00")] + "Z"
    return "\n".join([
        LINK_PROTOCOL_LABEL,
        f"Domain: {domain}",
        f"Address: {address}",
        f"Nonce: {nonce}",
        f"Timestamp: {ts}",
    ])


def _message_field(message: str, name: str) -> Optional[str]:
    prefix = f"{name}: "
    for line in message.splitlines():
        if line.startswith(prefix):
            return line[len(prefix):].strip()
    return None


def recover_signer(message: str, signature: str) -> str:
    """
    Recover the address that personal_signed ``message``.

    Raises:
        SignatureMismatchError: If the signature is malformed
    """
    try:
        return Account.recover_message(encode_defunct(text=message), signature=signature)
    except Exception as e:
        raise SignatureMismatchError(f"Invalid signature: {type(e).__name__}") from e


class LinkChallengeService:
    """Issues link challenges and verifies signed responses."""

    def __init__(self, store: IdentityStore, domain: str = "localhost"):
        self.store = store
        self.domain = domain

    def current_address(self, session_id: str) -> Optional[str]:
        return self.store.lookup(session_id)

    def request_challenge(self, session_id: str, address: Optional[str] = None) -> Optional[NonceChallenge]:
        """
        Start (or skip) a link challenge.

        Args:
            session_id: Caller's persistent session id
            address: Address the caller intends to link, if known

        Returns:
            The issued challenge, or None when ``address`` is already bound
            to this session
        """
        if address:
            bound = self.store.lookup(session_id)
            if bound and same_address(bound, address):
                logger.debug(f"Session {session_id[:8]} already linked to {short_address(bound)}")
                return None
        return self.store.issue_nonce(session_id)

    def build_message(self, address: str, nonce: str, timestamp: Optional[datetime] = None) -> str:
        return build_link_message(self.domain, address, nonce, timestamp)

    def link(self, session_id: str, submission: LinkSubmission) -> WalletLink:
        """
        Verify a signed challenge and bind the address.

        The nonce is consumed before the signature is checked, so a bad
        signature forces the caller to request a new challenge.

        Returns:
            The stored WalletLink

        Raises:
            NonceError: If the nonce is missing, wrong or expired
            SignatureMismatchError: If the message or signature does not match the address
            PersistenceError: If the binding could not be saved
        """
        try:
            address = to_checksum(submission.address)
        except ValueError as e:
            raise SignatureMismatchError(str(e)) from e

        if not self.store.validate_and_consume(session_id, submission.nonce):
            logger.info(f"Rejected link for session {session_id[:8]}: invalid or expired nonce")
            raise NonceError("Invalid or expired nonce")

        if _message_field(submission.message, "Nonce") != submission.nonce:
            raise SignatureMismatchError("Signed message does not contain the challenge nonce")
        message_address = _message_field(submission.message, "Address")
        if not message_address or not same_address(message_address, address):
            raise SignatureMismatchError("Signed message does not name the submitted address")

        recovered = recover_signer(submission.message, submission.signature)
        if not same_address(recovered, address):
            logger.info(
                f"Rejected link for session {session_id[:8]}: signature from {short_address(recovered)}, "
                f"expected {short_address(address)}"
            )
            raise SignatureMismatchError("Signature does not match address")

        return self.store.bind(session_id, address)
