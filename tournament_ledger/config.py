"""
Environment-driven configuration for the tournament ledger.

Configuration is read from environment variables:

    RPC_URL                  Ledger JSON-RPC endpoint
    CONTRACT_ADDRESS         Tournament contract address
    SERVER_PRIVATE_KEY       Server signing key (hex), or
    MNEMONIC                 Server signing mnemonic (first account is used)
    WALLET_LINK_FILE         Path of the wallet-link JSON file
    MULTICALL_ADDRESS        Multicall3 deployment (defaults to the canonical one)
    LINK_DOMAIN              Domain shown in wallet-link messages
    TOURNAMENT_ENV_TIER      production | test | development
    TOURNAMENT_JWT_SECRET    Secret used to verify session JWTs
    TOURNAMENT_INSECURE_RPC  Set to 1 to allow a plain http RPC endpoint
"""
import os
import logging
import urllib.parse
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from .exceptions import ConfigurationError
from .utils import ZERO_ADDRESS

logger = logging.getLogger(__name__)

ENV_TIER_PRODUCTION = "production"
ENV_TIER_TEST = "test"
ENV_TIER_DEVELOPMENT = "development"

DEFAULT_RPC_URL = "https://ethereum-sepolia.publicnode.com"
MULTICALL3_ADDRESS = "0xcA11bde05977b3631167028862bE2a173976CA11"

_KEY_VARS = ("SERVER_PRIVATE_KEY", "MNEMONIC")

ENV_REQUIREMENTS: Dict[str, Dict[str, List[str]]] = {
    ENV_TIER_DEVELOPMENT: {
        "required": [],
        "optional": ["CONTRACT_ADDRESS", "RPC_URL", "WALLET_LINK_FILE", "TOURNAMENT_JWT_SECRET"],
    },
    ENV_TIER_TEST: {
        "required": ["CONTRACT_ADDRESS", "RPC_URL"],
        "optional": ["WALLET_LINK_FILE", "TOURNAMENT_JWT_SECRET", "LINK_DOMAIN"],
    },
    ENV_TIER_PRODUCTION: {
        "required": ["CONTRACT_ADDRESS", "RPC_URL", "WALLET_LINK_FILE", "LINK_DOMAIN"],
        "optional": ["TOURNAMENT_JWT_SECRET", "MULTICALL_ADDRESS"],
    },
}


def get_environment_tier(environ: Optional[Dict[str, str]] = None) -> str:
    """
    Get the current environment tier.

    Returns:
        Environment tier string (production, test, or development)
    """
    env = os.environ if environ is None else environ
    tier = env.get("TOURNAMENT_ENV_TIER", ENV_TIER_PRODUCTION).lower()
    if tier in ("prod", "production"):
        return ENV_TIER_PRODUCTION
    elif tier in ("test", "testing", "qa", "preprod", "staging"):
        return ENV_TIER_TEST
    elif tier in ("dev", "development", "local"):
        return ENV_TIER_DEVELOPMENT
    # Default to production for unknown values (safest option)
    logger.warning(f"Unknown environment tier: {tier}, defaulting to production")
    return ENV_TIER_PRODUCTION


def validate_rpc_url(url: str, allow_insecure: bool = False) -> None:
    """
    Validate that an RPC URL is secure.

    Raises:
        ConfigurationError: If the URL uses plain http for a non-local host
    """
    parsed = urllib.parse.urlparse(url)
    host = parsed.hostname or ""
    is_local = host in ("localhost", "127.0.0.1", "::1")
    if parsed.scheme not in ("http", "https"):
        raise ConfigurationError(f"Invalid RPC URL '{url}'")
    if parsed.scheme != "https" and not is_local and not allow_insecure:
        raise ConfigurationError(
            f"RPC URL must use https:// for security (got: {parsed.scheme}://). "
            "Set TOURNAMENT_INSECURE_RPC=1 to allow http for development."
        )


@dataclass
class ValidationReport:
    tier: str
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    @property
    def valid(self) -> bool:
        return not self.errors


def validate_environment(tier: Optional[str] = None, environ: Optional[Dict[str, str]] = None) -> ValidationReport:
    """
    Check the environment for the variables a tier needs.

    Missing required variables are errors; missing optional ones are warnings.
    A missing server key is an error in production and a warning elsewhere,
    since read-only and player-initiated flows still work without it.
    """
    env = os.environ if environ is None else environ
    tier = tier or get_environment_tier(env)
    requirements = ENV_REQUIREMENTS[tier]
    report = ValidationReport(tier=tier)

    logger.info(f"Validating environment variables for {tier} mode")
    for name in requirements["required"]:
        if not env.get(name, "").strip():
            report.errors.append(f"Missing required variable: {name}")
    for name in requirements["optional"]:
        if not env.get(name, "").strip():
            report.warnings.append(f"Optional variable not set: {name}")

    if not any(env.get(name, "").strip() for name in _KEY_VARS):
        message = "No SERVER_PRIVATE_KEY or MNEMONIC: server cannot start games, declare winners or cancel lobbies"
        if tier == ENV_TIER_PRODUCTION:
            report.errors.append(message)
        else:
            report.warnings.append(message)

    for error in report.errors:
        logger.error(error)
    for warning in report.warnings:
        logger.warning(warning)
    return report


@dataclass
class LedgerConfig:
    """Resolved configuration for ledger access and wallet linking"""
    rpc_url: str = DEFAULT_RPC_URL
    contract_address: str = ZERO_ADDRESS
    server_private_key: Optional[str] = field(default=None, repr=False)
    mnemonic: Optional[str] = field(default=None, repr=False)
    wallet_link_file: Optional[str] = None
    multicall_address: str = MULTICALL3_ADDRESS
    link_domain: str = "localhost"
    env_tier: str = ENV_TIER_PRODUCTION
    jwt_secret: Optional[str] = field(default=None, repr=False)
    allow_insecure_rpc: bool = False
    request_timeout: int = 30
    retry_count: int = 3

    def __post_init__(self):
        validate_rpc_url(self.rpc_url, self.allow_insecure_rpc)

    @property
    def has_server_key(self) -> bool:
        return bool(self.server_private_key or self.mnemonic)

    @classmethod
    def from_env(cls, environ: Optional[Dict[str, str]] = None) -> "LedgerConfig":
        """
        Build a configuration from environment variables.

        Raises:
            ConfigurationError: If the RPC URL is insecure
        """
        env = os.environ if environ is None else environ
        config = cls(
            rpc_url=env.get("RPC_URL", DEFAULT_RPC_URL),
            contract_address=env.get("CONTRACT_ADDRESS", ZERO_ADDRESS),
            server_private_key=env.get("SERVER_PRIVATE_KEY") or None,
            mnemonic=env.get("MNEMONIC") or env.get("mnemonic") or None,
            wallet_link_file=env.get("WALLET_LINK_FILE") or None,
            multicall_address=env.get("MULTICALL_ADDRESS", MULTICALL3_ADDRESS),
            link_domain=env.get("LINK_DOMAIN", "localhost"),
            env_tier=get_environment_tier(env),
            jwt_secret=env.get("TOURNAMENT_JWT_SECRET") or None,
            allow_insecure_rpc=env.get("TOURNAMENT_INSECURE_RPC") == "1",
        )
        logger.info(
            f"Ledger configuration: rpc={config.rpc_url} contract={config.contract_address} "
            f"server_key={'yes' if config.has_server_key else 'no'} tier={config.env_tier}"
        )
        if not config.has_server_key:
            logger.warning("No server key configured - server cannot start games or declare winners on-chain")
        return config
