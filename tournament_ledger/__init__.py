"""
Tournament ledger - on-chain settlement for tournament lobbies.
"""
from .claims import ClaimEligibilityEngine
from .config import LedgerConfig, validate_environment
from .exceptions import (
    AuthenticationError,
    ConfigurationError,
    LedgerRevertError,
    LinkRequestError,
    NonceError,
    PersistenceError,
    PrecheckError,
    SignatureMismatchError,
    SubmissionError,
    TournamentError,
)
from .identity import IdentityStore, LinkChallengeService, WalletContext
from .ledger import ConfirmationPoller, EventStream, LedgerReader, TransactionSubmitter
from .lobby import LobbyOrchestrator
from .models import ClaimEligibility, ClaimState, GameStatus, Lobby, LobbyActionResult
from .signer import LocalSigner, Signer
from .version import __version__

__all__ = [
    "AuthenticationError",
    "ClaimEligibility",
    "ClaimEligibilityEngine",
    "ClaimState",
    "ConfigurationError",
    "ConfirmationPoller",
    "EventStream",
    "GameStatus",
    "IdentityStore",
    "LedgerConfig",
    "LedgerReader",
    "LedgerRevertError",
    "LinkChallengeService",
    "LinkRequestError",
    "LocalSigner",
    "Lobby",
    "LobbyActionResult",
    "LobbyOrchestrator",
    "NonceError",
    "PersistenceError",
    "PrecheckError",
    "SignatureMismatchError",
    "Signer",
    "SubmissionError",
    "TournamentError",
    "TransactionSubmitter",
    "WalletContext",
    "__version__",
    "validate_environment",
]
