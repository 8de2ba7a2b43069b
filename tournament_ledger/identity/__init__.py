"""
Session identity and wallet linking.
"""
from .client import WalletLinkClient
from .context import WalletContext, WalletState
from .linking import LinkChallengeService, build_link_message, recover_signer
from .session import SessionResolver, verify_session_token
from .storage import JsonFileLinkStorage, LinkStorage, MemoryLinkStorage
from .store import IdentityStore

__all__ = [
    "IdentityStore",
    "JsonFileLinkStorage",
    "LinkChallengeService",
    "LinkStorage",
    "MemoryLinkStorage",
    "SessionResolver",
    "WalletContext",
    "WalletLinkClient",
    "WalletState",
    "build_link_message",
    "recover_signer",
    "verify_session_token",
]
