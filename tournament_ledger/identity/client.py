"""
HTTP client for the wallet-link endpoints.

Used by game clients and tools that hold a wallet and a session token and
want the server to associate the two.
"""
import logging
from typing import Any, Callable, Dict, Optional
from urllib.parse import urlparse

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from ..exceptions import LinkRequestError
from ..models import NonceChallenge, WalletLink
from ..utils import same_address, short_address
from .linking import build_link_message

logger = logging.getLogger(__name__)

# sign_message(message, address) -> hex signature, done by the wallet
MessageSigner = Callable[[str, str], str]


class WalletLinkClient:
    """Talks to ``/wallet/me``, ``/wallet/nonce`` and ``/wallet/link``."""

    def __init__(
        self,
        base_url: str,
        token: str,
        domain: Optional[str] = None,
        timeout: int = 10,
        retry_count: int = 3,
        logger: Optional[logging.Logger] = None,
    ):
        """
        Initialize the client

        Args:
            base_url: Server base URL, e.g. https://game.example/api
            token: Session JWT or persistent id, sent as a Bearer token
            domain: Domain shown in the signed message (defaults to the URL host)
            timeout: Timeout for HTTP requests in seconds
            retry_count: Retries for connection errors and 5xx on idempotent calls
            logger: Optional logger instance
        """
        if not token:
            raise ValueError("A session token or persistent id is required")
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.domain = domain or urlparse(self.base_url).netloc
        self.timeout = timeout
        self.logger = logger or logging.getLogger(__name__)

        self.session = requests.Session()
        retries = Retry(
            total=retry_count,
            backoff_factor=0.5,
            status_forcelist=[502, 503, 504],
            allowed_methods=["GET"],
            raise_on_status=False,
        )
        self.session.mount("http://", HTTPAdapter(max_retries=retries))
        self.session.mount("https://", HTTPAdapter(max_retries=retries))

    @property
    def _headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self.token}"}

    def _request(self, method: str, path: str, json: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        url = f"{self.base_url}{path}"
        try:
            response = self.session.request(method, url, headers=self._headers, json=json, timeout=self.timeout)
        except requests.RequestException as e:
            self.logger.error(f"{method} {path} failed: {e}")
            raise LinkRequestError(f"{method} {path} failed: {e}")

        if response.status_code >= 400:
            try:
                detail = response.json().get("detail", response.text)
            except ValueError:
                detail = response.text
            self.logger.warning(f"{method} {path} returned {response.status_code}: {detail}")
            raise LinkRequestError(str(detail) or response.reason, status_code=response.status_code)

        try:
            return response.json()
        except ValueError as e:
            raise LinkRequestError(f"Invalid JSON response from {path}: {e}", status_code=response.status_code)

    def me(self) -> Optional[str]:
        """Address currently linked to this session, if any."""
        return self._request("GET", "/wallet/me").get("address")

    def request_nonce(self, address: Optional[str] = None) -> Optional[NonceChallenge]:
        """
        Ask for a link challenge.

        Returns:
            The challenge, or None if the server reports the address is already linked
        """
        payload = {"address": address} if address else {}
        data = self._request("POST", "/wallet/nonce", json=payload)
        if data.get("alreadyLinked"):
            return None
        return NonceChallenge.model_validate(data)

    def submit_link(self, address: str, message: str, signature: str, nonce: str) -> WalletLink:
        data = self._request(
            "POST",
            "/wallet/link",
            json={"address": address, "message": message, "signature": signature, "nonce": nonce},
        )
        return WalletLink.model_validate(data)

    def link_wallet_if_needed(self, address: str, sign_message: MessageSigner) -> Optional[WalletLink]:
        """
        Link ``address`` to this session unless it is already linked.

        Args:
            address: Wallet address to link
            sign_message: Wallet callback producing a personal_sign signature

        Returns:
            The new link, or None if nothing had to be done

        Raises:
            LinkRequestError: If the server rejects any step
        """
        current = self.me()
        if current and same_address(current, address):
            self.logger.debug(f"Wallet {short_address(address)} already linked")
            return None

        challenge = self.request_nonce(address)
        if challenge is None:
            return None
        message = build_link_message(self.domain, address, challenge.nonce)
        signature = sign_message(message, address)
        link = self.submit_link(address, message, signature, challenge.nonce)
        self.logger.info(f"Linked wallet {short_address(link.address)}")
        return link
