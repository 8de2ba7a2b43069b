"""
Web3 connection factory.
"""
import logging
from typing import Optional

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry
from web3 import Web3

from ..config import LedgerConfig

logger = logging.getLogger(__name__)


def build_session(retry_count: int = 3) -> requests.Session:
    """
    HTTP session for JSON-RPC traffic with transport-level retries.

    Only connection errors and 5xx responses are retried here; contract-level
    failures come back as JSON-RPC errors and are handled by the callers.
    """
    session = requests.Session()
    retries = Retry(
        total=retry_count,
        backoff_factor=0.5,
        status_forcelist=[500, 502, 503, 504],
        allowed_methods=["POST"],
        raise_on_status=False,
        connect=retry_count,
        read=retry_count,
    )
    session.mount("http://", HTTPAdapter(max_retries=retries))
    session.mount("https://", HTTPAdapter(max_retries=retries))
    return session


def build_web3(config: LedgerConfig, session: Optional[requests.Session] = None) -> Web3:
    """
    Create a Web3 instance for the configured RPC endpoint.
    """
    provider = Web3.HTTPProvider(
        config.rpc_url,
        request_kwargs={"timeout": config.request_timeout},
        session=session or build_session(config.retry_count),
    )
    logger.debug(f"Connecting to ledger RPC {config.rpc_url}")
    return Web3(provider)
