"""
Exceptions for the tournament ledger package.
"""
from typing import Optional


class TournamentError(Exception):
    """Base exception for all tournament ledger errors."""
    pass


class ConfigurationError(TournamentError):
    """Raised when required configuration is missing or invalid."""
    pass


class SubmissionError(TournamentError):
    """
    Raised when a state-mutating call cannot be submitted at all.

    This is fatal for the operation (for example when no signing key is
    configured) and is never retried.
    """
    pass


class LedgerRevertError(TournamentError):
    """Raised when the ledger rejects a call with a (possibly named) revert."""

    def __init__(
        self,
        message: str,
        error_name: Optional[str] = None,
        raw_error: Optional[str] = None,
        tx_hash: Optional[str] = None,
    ):
        self.error_name = error_name
        self.raw_error = raw_error
        self.tx_hash = tx_hash
        super().__init__(message)

    @property
    def user_message(self) -> str:
        return str(self)


class PrecheckError(TournamentError):
    """Raised when a client-side check rejects an action before submission."""
    pass


class AuthenticationError(TournamentError):
    """Raised when the caller's session or wallet proof cannot be verified."""
    pass


class NonceError(AuthenticationError):
    """Raised when a link challenge nonce is missing, wrong or expired."""
    pass


class SignatureMismatchError(AuthenticationError):
    """Raised when a signature does not recover to the claimed address."""
    pass


class PersistenceError(TournamentError):
    """Raised when a wallet link could not be durably written."""
    pass


class LinkRequestError(TournamentError):
    """Raised by the wallet-link HTTP client when the server rejects a request."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)
