"""
Tests for session token verification and Authorization header resolution.
"""
import time

import jwt
import pytest
from unittest.mock import patch

from tournament_ledger.config import ENV_TIER_DEVELOPMENT, ENV_TIER_PRODUCTION, ENV_TIER_TEST
from tournament_ledger.exceptions import AuthenticationError
from tournament_ledger.identity.session import (
    UNSAFE_JWT_ALGORITHMS,
    SessionResolver,
    is_safe_jwt_algorithm,
    verify_session_token,
)

SECRET = "session-secret"


def make_token(sub="player-persistent-id", secret=SECRET, algorithm="HS256", exp_offset=3600, **claims):
    payload = {"sub": sub, "exp": int(time.time()) + exp_offset, **claims}
    return jwt.encode(payload, secret, algorithm=algorithm)


class TestVerifySessionToken:
    def test_is_safe_jwt_algorithm(self):
        assert is_safe_jwt_algorithm("HS256") is True
        for alg in UNSAFE_JWT_ALGORITHMS:
            assert is_safe_jwt_algorithm(alg) is False
        assert is_safe_jwt_algorithm("NONE") is False

    def test_production_valid(self):
        claims = verify_session_token(make_token(), ENV_TIER_PRODUCTION, SECRET)
        assert claims["sub"] == "player-persistent-id"

    def test_production_wrong_secret(self):
        assert verify_session_token(make_token(secret="other"), ENV_TIER_PRODUCTION, SECRET) is None

    def test_production_expired(self):
        assert verify_session_token(make_token(exp_offset=-10), ENV_TIER_PRODUCTION, SECRET) is None

    def test_production_requires_secret(self):
        assert verify_session_token(make_token(), ENV_TIER_PRODUCTION, None) is None

    def test_production_rejects_other_algorithms(self):
        token = make_token(algorithm="HS512", secret="x" * 64)
        assert verify_session_token(token, ENV_TIER_PRODUCTION, "x" * 64) is None

    def test_none_algorithm_rejected_everywhere(self):
        with patch("jwt.get_unverified_header", return_value={"alg": "none"}):
            for tier in (ENV_TIER_PRODUCTION, ENV_TIER_TEST, ENV_TIER_DEVELOPMENT):
                assert verify_session_token("a.b.c", tier, SECRET) is None

    def test_test_tier_without_secret_checks_expiry_only(self):
        assert verify_session_token(make_token(secret="anything"), ENV_TIER_TEST, None)["sub"]
        assert verify_session_token(make_token(exp_offset=-10), ENV_TIER_TEST, None) is None

    def test_test_tier_with_secret_verifies_signature(self):
        assert verify_session_token(make_token(secret="other"), ENV_TIER_TEST, SECRET) is None

    def test_development_accepts_expired(self):
        assert verify_session_token(make_token(exp_offset=-10), ENV_TIER_DEVELOPMENT, None)["sub"]

    def test_garbage(self):
        assert verify_session_token("not.a.jwt", ENV_TIER_DEVELOPMENT, None) is None
        assert verify_session_token("", ENV_TIER_DEVELOPMENT, None) is None


class TestSessionResolver:
    def test_jwt_subject_is_session_id(self):
        resolver = SessionResolver(ENV_TIER_PRODUCTION, SECRET)
        assert resolver.resolve(f"Bearer {make_token(sub='abc-123-def')}") == "abc-123-def"

    def test_bearer_is_case_insensitive(self):
        resolver = SessionResolver(ENV_TIER_PRODUCTION, SECRET)
        assert resolver.resolve(f"bearer {make_token()}") == "player-persistent-id"

    def test_persistent_id_fallback(self):
        resolver = SessionResolver(ENV_TIER_PRODUCTION, SECRET)
        assert resolver.resolve("Bearer 0f3c2a1b-persist") == "0f3c2a1b-persist"

    def test_persistent_id_disabled(self):
        resolver = SessionResolver(ENV_TIER_PRODUCTION, SECRET, allow_persistent_id=False)
        with pytest.raises(AuthenticationError):
            resolver.resolve("Bearer 0f3c2a1b-persist")

    @pytest.mark.parametrize("header", [None, "", "Basic dXNlcjpwYXNz", "Bearer", "Bearer short", "Bearer bad!chars$$"])
    def test_rejected_headers(self, header):
        resolver = SessionResolver(ENV_TIER_PRODUCTION, SECRET)
        with pytest.raises(AuthenticationError):
            resolver.resolve(header)

    def test_rejected_jwt(self):
        resolver = SessionResolver(ENV_TIER_PRODUCTION, SECRET)
        with pytest.raises(AuthenticationError):
            resolver.resolve(f"Bearer {make_token(secret='other')}")

    def test_jwt_without_subject(self):
        resolver = SessionResolver(ENV_TIER_PRODUCTION, SECRET)
        token = jwt.encode({"exp": int(time.time()) + 60}, SECRET, algorithm="HS256")
        with pytest.raises(AuthenticationError):
            resolver.resolve(f"Bearer {token}")

    def test_unknown_tier(self):
        with pytest.raises(ValueError):
            SessionResolver("staging-ish")
