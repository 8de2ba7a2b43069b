"""
Read-only query facade over the tournament contract.

Reads fail soft: a transport error on a single-lobby read comes back as
"no lobby" so UI-facing callers only handle one case. Callers that need to
tell a flaky RPC apart from a missing lobby use ``get_lobby_result``, which
keeps the failure visible.
"""
import logging
import threading
from typing import Any, List, Optional, Sequence, Tuple

from cachetools import TTLCache
from eth_abi import decode as abi_decode
from web3 import Web3

from .._rate_limited_log import rate_limited_log
from ..config import MULTICALL3_ADDRESS
from ..models import BatchReadResult, GameStatus, Lobby, LobbyRead, ReadStatus
from ..utils import (
    ZERO_ADDRESS, bytes32_to_string, is_zero_address, string_to_bytes32, to_checksum
)
from .abi import ERC20_ABI, LOBBY_OUTPUT_TYPES, MULTICALL3_ABI, TOURNAMENT_ABI
from .errors import error_text

logger = logging.getLogger(__name__)

NATIVE_SYMBOL = "ETH"
DEFAULT_DECIMALS = 18


class LedgerReader:
    """
    Read-side access to lobby state, token metadata and balances.

    Token metadata is fetched lazily per distinct stake asset and cached, so a
    lobby browser showing many lobbies with the same token costs one lookup.
    """

    def __init__(
        self,
        w3: Web3,
        contract_address: str,
        multicall_address: Optional[str] = MULTICALL3_ADDRESS,
        native_symbol: str = NATIVE_SYMBOL,
        metadata_ttl: int = 3600,
        logger: Optional[logging.Logger] = None,
    ):
        """
        Initialize the reader

        Args:
            w3: Connected Web3 instance
            contract_address: Tournament contract address
            multicall_address: Multicall3 deployment used for batched reads;
                None disables batching (each lobby is read on its own)
            native_symbol: Display symbol of the native currency
            metadata_ttl: Seconds to cache token symbol/decimals
            logger: Optional logger instance
        """
        self.w3 = w3
        self.contract_address = to_checksum(contract_address)
        self.contract = w3.eth.contract(address=self.contract_address, abi=TOURNAMENT_ABI)
        self.multicall = None
        if multicall_address:
            self.multicall = w3.eth.contract(address=to_checksum(multicall_address), abi=MULTICALL3_ABI)
        self.native_symbol = native_symbol
        self.logger = logger or logging.getLogger(__name__)
        self._token_cache = TTLCache(maxsize=256, ttl=metadata_ttl)
        self._token_lock = threading.RLock()

    # ------------------------------------------------------------------
    # Lobbies
    # ------------------------------------------------------------------

    def get_lobby(self, lobby_id: str) -> Optional[Lobby]:
        """
        Read a lobby.

        Returns:
            The lobby, or None when it does not exist or the read failed
        """
        return self.get_lobby_result(lobby_id).lobby

    def get_lobby_result(self, lobby_id: str, with_allowlist: bool = False) -> LobbyRead:
        """
        Read a lobby, keeping transport failures distinguishable from absence.

        Args:
            lobby_id: Human-readable lobby id
            with_allowlist: Also read whether the allowlist is enabled

        Returns:
            LobbyRead with status found, absent or failed
        """
        key = string_to_bytes32(lobby_id)
        try:
            raw = self.contract.functions.getLobby(key).call()
        except Exception as e:
            rate_limited_log(
                f"getLobby({lobby_id}) failed: {e}",
                key=f"getLobby:{lobby_id}",
                logger_instance=self.logger,
            )
            return LobbyRead(lobby_id=lobby_id, status=ReadStatus.FAILED, error=error_text(e))

        try:
            lobby = self._to_lobby(lobby_id, raw)
        except (ValueError, TypeError) as e:
            self.logger.warning(f"Malformed getLobby({lobby_id}) result: {e}")
            return LobbyRead(lobby_id=lobby_id, status=ReadStatus.FAILED, error=str(e))

        if lobby is None:
            return LobbyRead(lobby_id=lobby_id, status=ReadStatus.ABSENT)
        if with_allowlist:
            enabled = self.is_allowlist_enabled(lobby_id)
            lobby = lobby.model_copy(update={"allowlist_enabled": enabled})
        return LobbyRead(lobby_id=lobby_id, status=ReadStatus.FOUND, lobby=lobby)

    def lobby_exists(self, lobby_id: str) -> bool:
        return self.get_lobby(lobby_id) is not None

    def batch_get_lobbies(self, lobby_ids: Sequence[str]) -> BatchReadResult:
        """
        Read many lobbies in a single round trip.

        Uses Multicall3 ``aggregate3`` with failures allowed, so one failing
        entry never fails the others. Zero-host entries are reported as absent.
        If the aggregate call itself fails, every lobby is read on its own,
        still with per-entry isolation.

        Args:
            lobby_ids: Human-readable lobby ids

        Returns:
            BatchReadResult with one entry per requested id, in order
        """
        if not lobby_ids:
            return BatchReadResult()
        if self.multicall is None:
            return self._batch_fallback(lobby_ids)

        calls = [
            (self.contract_address, True, self.contract.encode_abi("getLobby", args=[string_to_bytes32(lobby_id)]))
            for lobby_id in lobby_ids
        ]
        try:
            results = self.multicall.functions.aggregate3(calls).call()
        except Exception as e:
            rate_limited_log(
                f"Multicall for {len(lobby_ids)} lobbies failed, reading individually: {e}",
                key="aggregate3",
                logger_instance=self.logger,
            )
            return self._batch_fallback(lobby_ids)

        result = BatchReadResult()
        for lobby_id, (success, return_data) in zip(lobby_ids, results):
            if not success:
                self.logger.warning(f"Failed to fetch lobby {lobby_id}: call reverted")
                result.entries.append(LobbyRead(lobby_id=lobby_id, status=ReadStatus.FAILED, error="call reverted"))
                continue
            try:
                lobby = self._to_lobby(lobby_id, abi_decode(LOBBY_OUTPUT_TYPES, bytes(return_data)))
            except Exception as e:
                self.logger.warning(f"Failed to decode lobby {lobby_id}: {e}")
                result.entries.append(LobbyRead(lobby_id=lobby_id, status=ReadStatus.FAILED, error=str(e)))
                continue
            status = ReadStatus.FOUND if lobby is not None else ReadStatus.ABSENT
            result.entries.append(LobbyRead(lobby_id=lobby_id, status=status, lobby=lobby))

        self.logger.debug(
            f"Batch read {len(lobby_ids)} lobbies: {len(result.lobbies)} found, {len(result.failures)} failed"
        )
        return result

    def _batch_fallback(self, lobby_ids: Sequence[str]) -> BatchReadResult:
        return BatchReadResult(entries=[self.get_lobby_result(lobby_id) for lobby_id in lobby_ids])

    def get_all_public_lobbies(self) -> List[str]:
        """Public lobby ids, or an empty list if the read fails."""
        try:
            keys = self.contract.functions.getAllPublicLobbies().call()
        except Exception as e:
            rate_limited_log(f"getAllPublicLobbies failed: {e}", key="getAllPublicLobbies",
                             logger_instance=self.logger)
            return []
        return [bytes32_to_string(key) for key in keys]

    def get_public_lobby_count(self) -> int:
        try:
            return int(self.contract.functions.getPublicLobbyCount().call())
        except Exception as e:
            rate_limited_log(f"getPublicLobbyCount failed: {e}", key="getPublicLobbyCount",
                             logger_instance=self.logger)
            return 0

    def list_public_lobbies(self) -> List[Lobby]:
        """
        Get all public lobbies with their details.
        """
        lobby_ids = self.get_all_public_lobbies()
        if not lobby_ids:
            return []
        lobbies = self.batch_get_lobbies(lobby_ids).lobbies
        self.logger.debug(f"Retrieved details for {len(lobbies)} of {len(lobby_ids)} public lobbies")
        return lobbies

    # ------------------------------------------------------------------
    # Allowlist, balances, roles
    # ------------------------------------------------------------------

    def is_allowlist_enabled(self, lobby_id: str) -> Optional[bool]:
        return self._soft_call("isAllowlistEnabled", string_to_bytes32(lobby_id))

    def is_allowlisted(self, lobby_id: str, account: str) -> Optional[bool]:
        return self._soft_call("isAllowlisted", string_to_bytes32(lobby_id), to_checksum(account))

    def get_claimable_balance(self, account: str, token: str = ZERO_ADDRESS) -> Optional[int]:
        """
        Amount the account may withdraw for an asset.

        Returns:
            The balance, or None if the ledger could not answer
        """
        result = self._soft_call("getClaimableBalance", to_checksum(account), to_checksum(token))
        return None if result is None else int(result)

    def get_game_server(self) -> Optional[str]:
        """Address registered on the contract as the game server."""
        return self._soft_call("gameServer")

    def get_token_allowance(self, token: str, owner: str, spender: str) -> int:
        erc20 = self.w3.eth.contract(address=to_checksum(token), abi=ERC20_ABI)
        try:
            return int(erc20.functions.allowance(to_checksum(owner), to_checksum(spender)).call())
        except Exception as e:
            self.logger.warning(f"allowance() failed for token {token}: {e}")
            return 0

    def _soft_call(self, function_name: str, *args: Any) -> Any:
        try:
            return getattr(self.contract.functions, function_name)(*args).call()
        except Exception as e:
            rate_limited_log(f"{function_name} failed: {e}", key=function_name, logger_instance=self.logger)
            return None

    # ------------------------------------------------------------------
    # Token metadata
    # ------------------------------------------------------------------

    def token_metadata(self, token: str) -> Tuple[str, int]:
        """
        Symbol and decimals of a stake asset.

        The native asset needs no lookup. For tokens a failed decimals() call
        falls back to 18, and a failed symbol() call to a short address, so a
        non-standard token never blocks lobby display.

        Returns:
            Tuple of (symbol, decimals)
        """
        if is_zero_address(token):
            return self.native_symbol, DEFAULT_DECIMALS

        cache_key = token.lower()
        with self._token_lock:
            cached = self._token_cache.get(cache_key)
        if cached is not None:
            return cached

        erc20 = self.w3.eth.contract(address=to_checksum(token), abi=ERC20_ABI)
        try:
            symbol = str(erc20.functions.symbol().call())
        except Exception as e:
            self.logger.warning(f"symbol() failed for token {token}: {e}")
            symbol = f"{token[:6]}…"
        try:
            decimals = int(erc20.functions.decimals().call())
        except Exception as e:
            self.logger.warning(f"decimals() failed for token {token}, assuming {DEFAULT_DECIMALS}: {e}")
            decimals = DEFAULT_DECIMALS

        metadata = (symbol, decimals)
        with self._token_lock:
            self._token_cache[cache_key] = metadata
        return metadata

    def _to_lobby(self, lobby_id: str, raw: Sequence[Any]) -> Optional[Lobby]:
        host, bet_amount, participants, status, winner, total_prize, stake_token = raw
        if is_zero_address(host):
            return None
        symbol, decimals = self.token_metadata(stake_token)
        return Lobby(
            lobby_id=lobby_id,
            host=to_checksum(host),
            bet_amount=int(bet_amount),
            participants=[to_checksum(p) for p in participants],
            status=GameStatus(int(status)),
            winner=to_checksum(winner),
            total_prize=int(total_prize),
            stake_token=to_checksum(stake_token),
            stake_symbol=symbol,
            stake_decimals=decimals,
        )
