"""
HTTP endpoints for wallet linking.

    GET  /wallet/me     -> {"address": "0x..." | null}
    POST /wallet/nonce  -> {"nonce": ..., "expiresAt": ...} or {"alreadyLinked": true, "address": ...}
    POST /wallet/link   -> {"address": ..., "updatedAt": ...}

Every route needs ``Authorization: Bearer <session JWT | persistent id>``.
"""
import logging
from typing import Any, Dict, Optional

from fastapi import Depends, FastAPI, Header, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from .config import LedgerConfig
from .exceptions import AuthenticationError, NonceError, PersistenceError, SignatureMismatchError
from .identity.linking import LinkChallengeService
from .identity.session import SessionResolver
from .identity.storage import JsonFileLinkStorage, MemoryLinkStorage
from .identity.store import IdentityStore
from .models import LinkSubmission
from .version import __version__

logger = logging.getLogger(__name__)


class NonceRequest(BaseModel):
    address: Optional[str] = Field(None, description="Address the caller intends to link")


class LinkRequest(BaseModel):
    address: str
    message: str
    signature: str
    nonce: str


def create_app(
    service: LinkChallengeService,
    resolver: SessionResolver,
    cors_origins: Optional[list] = None,
) -> FastAPI:
    """
    Build the wallet-link API.

    Args:
        service: Link challenge service backed by an identity store
        resolver: Maps the Authorization header to a session id
        cors_origins: Allowed CORS origins (none when omitted)

    Returns:
        FastAPI application
    """
    app = FastAPI(title="tournament-ledger", version=__version__)
    if cors_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=cors_origins,
            allow_credentials=True,
            allow_methods=["GET", "POST"],
            allow_headers=["Authorization", "Content-Type"],
        )

    def session_id(authorization: Optional[str] = Header(None)) -> str:
        try:
            return resolver.resolve(authorization)
        except AuthenticationError as e:
            raise HTTPException(status_code=401, detail=str(e))

    @app.get("/wallet/me")
    def wallet_me(sid: str = Depends(session_id)) -> Dict[str, Any]:
        return {"address": service.current_address(sid)}

    @app.post("/wallet/nonce")
    def wallet_nonce(body: Optional[NonceRequest] = None, sid: str = Depends(session_id)) -> Dict[str, Any]:
        address = body.address if body else None
        challenge = service.request_challenge(sid, address)
        if challenge is None:
            return {"alreadyLinked": True, "address": service.current_address(sid)}
        return challenge.model_dump(by_alias=True)

    @app.post("/wallet/link")
    def wallet_link(body: LinkRequest, sid: str = Depends(session_id)) -> Dict[str, Any]:
        submission = LinkSubmission(**body.model_dump())
        try:
            link = service.link(sid, submission)
        except (NonceError, SignatureMismatchError) as e:
            raise HTTPException(status_code=400, detail=str(e))
        except PersistenceError as e:
            logger.error(f"Wallet link could not be saved: {e}")
            raise HTTPException(status_code=500, detail="Failed to save wallet link")
        return link.model_dump(by_alias=True)

    @app.get("/health")
    def health() -> Dict[str, str]:
        return {"status": "ok", "version": __version__}

    return app


def app_from_config(config: LedgerConfig) -> FastAPI:
    """Wire storage, identity store, linking service and resolver from configuration."""
    if config.wallet_link_file:
        storage = JsonFileLinkStorage(config.wallet_link_file)
    else:
        logger.warning("WALLET_LINK_FILE not set - wallet links are kept in memory only")
        storage = MemoryLinkStorage()
    service = LinkChallengeService(IdentityStore(storage), domain=config.link_domain)
    resolver = SessionResolver(env_tier=config.env_tier, jwt_secret=config.jwt_secret)
    return create_app(service, resolver)
