"""
Data models for the tournament ledger package.
"""
from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field

from .utils import ZERO_ADDRESS, format_units, is_zero_address, same_address


class GameStatus(IntEnum):
    """On-chain lobby status. Cancellation is modeled as lobby absence."""
    CREATED = 0
    IN_PROGRESS = 1
    FINISHED = 2
    CLAIMED = 3


class Lobby(BaseModel):
    """Read-through copy of a lobby record held by the ledger"""
    lobby_id: str
    host: str
    bet_amount: int
    participants: List[str] = Field(default_factory=list)
    status: GameStatus = GameStatus.CREATED
    winner: str = ZERO_ADDRESS
    total_prize: int = 0
    stake_token: str = ZERO_ADDRESS
    stake_symbol: str = "ETH"
    stake_decimals: int = 18
    allowlist_enabled: Optional[bool] = None

    model_config = ConfigDict(frozen=True)

    @property
    def exists(self) -> bool:
        return not is_zero_address(self.host)

    @property
    def has_winner(self) -> bool:
        return not is_zero_address(self.winner)

    @property
    def is_native_stake(self) -> bool:
        return is_zero_address(self.stake_token)

    @property
    def participant_count(self) -> int:
        return len(self.participants)

    @property
    def formatted_bet_amount(self) -> str:
        return format_units(self.bet_amount, self.stake_decimals)

    def is_participant(self, address: Optional[str]) -> bool:
        return any(same_address(p, address) for p in self.participants)


class WalletLink(BaseModel):
    """A session id bound to a verified wallet address"""
    address: str
    updated_at: int = Field(..., alias="updatedAt")

    model_config = ConfigDict(populate_by_name=True)


class NonceChallenge(BaseModel):
    """A single-use link challenge"""
    nonce: str
    expires_at: int = Field(..., alias="expiresAt")

    model_config = ConfigDict(populate_by_name=True)


class LinkSubmission(BaseModel):
    """Signed proof of wallet ownership submitted by a client"""
    address: str
    message: str
    signature: str
    nonce: str


class TxReceipt(BaseModel):
    """Transaction receipt from the ledger"""
    tx_hash: str = Field(..., alias="transactionHash")
    block_number: int = Field(..., alias="blockNumber")
    status: int
    gas_used: int = Field(0, alias="gasUsed")
    from_address: Optional[str] = Field(None, alias="from")
    to_address: Optional[str] = Field(None, alias="to")

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    @property
    def succeeded(self) -> bool:
        return self.status == 1


@dataclass(frozen=True)
class FeeParameters:
    """Fixed fee parameters for outgoing calls"""
    gas_limit: int
    max_fee_per_gas: int
    max_priority_fee_per_gas: int


@dataclass
class TransactionAttempt:
    """
    A single try at submitting a call.

    Created per submission attempt and discarded after success or once the
    retry budget is exhausted.
    """
    function_name: str
    args: Tuple[Any, ...]
    sequence_number: int
    fees: FeeParameters
    attempt: int
    value: int = 0

    def to_tx_params(self, sender: str) -> Dict[str, Any]:
        params = {
            "from": sender,
            "nonce": self.sequence_number,
            "gas": self.fees.gas_limit,
            "maxFeePerGas": self.fees.max_fee_per_gas,
            "maxPriorityFeePerGas": self.fees.max_priority_fee_per_gas,
        }
        if self.value:
            params["value"] = self.value
        return params


class ReadStatus(str, Enum):
    FOUND = "found"
    ABSENT = "absent"
    FAILED = "failed"


@dataclass
class LobbyRead:
    """Outcome of a single lobby read, keeping transport failures visible."""
    lobby_id: str
    status: ReadStatus
    lobby: Optional[Lobby] = None
    error: Optional[str] = None


@dataclass
class BatchReadResult:
    """Per-entry outcome of a batched lobby read."""
    entries: List[LobbyRead] = field(default_factory=list)

    @property
    def lobbies(self) -> List[Lobby]:
        """Lobbies that were read successfully and exist."""
        return [e.lobby for e in self.entries if e.status == ReadStatus.FOUND]

    @property
    def failures(self) -> List[LobbyRead]:
        return [e for e in self.entries if e.status == ReadStatus.FAILED]


class ClaimState(str, Enum):
    CHECKING = "checking"
    ELIGIBLE = "eligible"
    NOT_ELIGIBLE = "not_eligible"
    ERROR = "error"
    TIMEOUT = "timeout"


@dataclass
class ClaimEligibility:
    """Derived claim state for one lobby and one address. Never stored."""
    state: ClaimState
    message: str
    stop: bool
    is_tournament: bool = True
    lobby: Optional[Lobby] = None
    claimable_balance: int = 0

    @property
    def eligible(self) -> bool:
        return self.state == ClaimState.ELIGIBLE


class ActionOutcome(str, Enum):
    CONFIRMED = "confirmed"
    UNCONFIRMED = "unconfirmed"


class LobbyActionResult(BaseModel):
    """Result of a submitted lobby action"""
    tx_hash: str
    lobby_id: str
    actor: str
    outcome: ActionOutcome
    lobby: Optional[Lobby] = None
    message: str = ""

    @property
    def confirmed(self) -> bool:
        return self.outcome == ActionOutcome.CONFIRMED


class LedgerEvent(BaseModel):
    """A decoded contract event"""
    name: str
    lobby_id: Optional[str] = None
    args: Dict[str, Any] = Field(default_factory=dict)
    block_number: Optional[int] = None
    tx_hash: Optional[str] = None
