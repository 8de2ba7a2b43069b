"""
Resolution of the persistent session id from an Authorization header.

Clients send either a session JWT issued by the surrounding session system or,
as a fallback, their persistent identifier cookie value wrapped as a bearer
token. JWTs are verified with a tiered approach:

- Production: signature and expiry are enforced (HS256 only)
- Test: signature is verified when a secret is available, otherwise only format and expiry
- Development: format only
"""
import logging
import re
from typing import Any, Dict, List, Optional

import jwt

from ..config import ENV_TIER_DEVELOPMENT, ENV_TIER_PRODUCTION, ENV_TIER_TEST
from ..exceptions import AuthenticationError

logger = logging.getLogger(__name__)

UNSAFE_JWT_ALGORITHMS = ["none", ""]
SUBJECT_CLAIM = "sub"

_BEARER = re.compile(r"^\s*Bearer\s+(\S+)\s*$", re.IGNORECASE)
# Persistent ids are opaque cookie values; keep them to a conservative charset
_PERSISTENT_ID = re.compile(r"^[A-Za-z0-9_\-]{8,128}$")


def is_safe_jwt_algorithm(algorithm: str) -> bool:
    return algorithm.lower() not in UNSAFE_JWT_ALGORITHMS


def _allowed_algorithms(env_tier: str) -> List[str]:
    if env_tier == ENV_TIER_PRODUCTION:
        return ["HS256"]
    return ["HS256", "HS384", "HS512", "RS256", "RS384", "RS512", "ES256", "ES384", "ES512"]


def verify_session_token(
    token: str,
    env_tier: str = ENV_TIER_PRODUCTION,
    jwt_secret: Optional[str] = None,
) -> Optional[Dict[str, Any]]:
    """
    Verify a session JWT according to the environment tier.

    Args:
        token: Encoded JWT
        env_tier: Environment tier (production, test, development)
        jwt_secret: Secret for HMAC signature verification

    Returns:
        Decoded claims, or None if the token is rejected
    """
    if not token:
        return None

    try:
        header = jwt.get_unverified_header(token)
    except jwt.DecodeError:
        logger.warning("Invalid JWT format - could not decode header")
        return None

    algorithm = header.get("alg", "")
    if not is_safe_jwt_algorithm(algorithm):
        logger.warning(f"Unsafe JWT algorithm: {algorithm}. Rejecting token.")
        return None
    allowed = _allowed_algorithms(env_tier)
    if algorithm not in allowed:
        logger.warning(f"JWT algorithm {algorithm} not allowed in {env_tier} environment")
        return None

    try:
        if env_tier == ENV_TIER_PRODUCTION:
            if not jwt_secret:
                logger.warning("Production environment requires TOURNAMENT_JWT_SECRET to be set")
                return None
            return jwt.decode(token, jwt_secret, algorithms=allowed,
                              options={"verify_signature": True, "verify_exp": True})

        if env_tier == ENV_TIER_TEST:
            if algorithm.upper().startswith("HS") and jwt_secret:
                return jwt.decode(token, jwt_secret, algorithms=[algorithm],
                                  options={"verify_signature": True, "verify_exp": True})
            return jwt.decode(token, options={"verify_signature": False, "verify_exp": True})

        return jwt.decode(token, options={"verify_signature": False, "verify_exp": False})
    except jwt.ExpiredSignatureError:
        logger.warning(f"Session token has expired (environment: {env_tier})")
        return None
    except jwt.InvalidSignatureError:
        logger.warning(f"Invalid session token signature (environment: {env_tier})")
        return None
    except jwt.PyJWTError as e:
        logger.warning(f"Session token validation failed: {e}")
        return None


def _looks_like_jwt(token: str) -> bool:
    return token.count(".") == 2


class SessionResolver:
    """Maps an Authorization header to a persistent session id."""

    def __init__(
        self,
        env_tier: str = ENV_TIER_PRODUCTION,
        jwt_secret: Optional[str] = None,
        allow_persistent_id: bool = True,
    ):
        if env_tier not in (ENV_TIER_PRODUCTION, ENV_TIER_TEST, ENV_TIER_DEVELOPMENT):
            raise ValueError(f"Unknown environment tier: {env_tier}")
        self.env_tier = env_tier
        self.jwt_secret = jwt_secret
        self.allow_persistent_id = allow_persistent_id

    def resolve(self, authorization: Optional[str]) -> str:
        """
        Resolve the session id for a request.

        Args:
            authorization: Raw Authorization header value

        Returns:
            The persistent session id

        Raises:
            AuthenticationError: If the header is missing or the token is rejected
        """
        if not authorization:
            raise AuthenticationError("Missing Authorization header")
        match = _BEARER.match(authorization)
        if not match:
            raise AuthenticationError("Authorization header must be a Bearer token")
        token = match.group(1)

        if _looks_like_jwt(token):
            claims = verify_session_token(token, self.env_tier, self.jwt_secret)
            subject = claims.get(SUBJECT_CLAIM) if claims else None
            if not subject or not isinstance(subject, str):
                raise AuthenticationError("Invalid session token")
            return subject

        if self.allow_persistent_id and _PERSISTENT_ID.match(token):
            return token
        raise AuthenticationError("Invalid session token")
