"""
Transaction signers.

Any object with an ``address`` attribute and a ``sign_transaction`` method
can be used to submit calls, so keys held in a KMS or a hardware wallet can
be plugged in without changing the submitter.
"""
import logging
from typing import Any, Dict, Optional, Protocol, Union

from eth_account import Account
from eth_account.signers.local import LocalAccount
from eth_utils import ValidationError

from .config import LedgerConfig
from .exceptions import ConfigurationError

logger = logging.getLogger(__name__)


class Signer(Protocol):
    """Protocol for transaction signers"""
    address: str

    def sign_transaction(self, transaction_dict: Dict[str, Any]) -> Any:
        """Sign transaction and return an object exposing ``raw_transaction``"""
        ...


class LocalSigner:
    """Signer backed by an in-process private key"""

    def __init__(self, private_key: Union[str, bytes]):
        try:
            self._account: LocalAccount = Account.from_key(private_key)
        except (ValueError, TypeError) as e:
            raise ConfigurationError(f"Invalid private key: {type(e).__name__}")
        self.address = self._account.address

    @classmethod
    def from_mnemonic(cls, mnemonic: str, account_path: str = "m/44'/60'/0'/0/0") -> "LocalSigner":
        """
        Derive the signer from a BIP-39 mnemonic (first account by default).
        """
        Account.enable_unaudited_hdwallet_features()
        try:
            account = Account.from_mnemonic(mnemonic.strip(), account_path=account_path)
        except (ValueError, TypeError, ValidationError) as e:
            raise ConfigurationError(f"Invalid mnemonic: {type(e).__name__}")
        return cls(account.key)

    def sign_transaction(self, transaction_dict: Dict[str, Any]) -> Any:
        return self._account.sign_transaction(transaction_dict)

    def __repr__(self) -> str:
        return f"LocalSigner(address={self.address})"


def server_signer_from_config(config: LedgerConfig) -> Optional[LocalSigner]:
    """
    Build the server signer, or None when no key material is configured.
    """
    if config.server_private_key:
        signer = LocalSigner(config.server_private_key)
    elif config.mnemonic:
        signer = LocalSigner.from_mnemonic(config.mnemonic)
    else:
        return None
    logger.info(f"Server account: {signer.address}")
    return signer
