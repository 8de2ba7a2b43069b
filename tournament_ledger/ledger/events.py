"""
Cancellable streams of decoded contract events.

A stream owns one log filter per watched event. Iterating it polls the
filters at a fixed interval and yields ``LedgerEvent`` objects until
``close()`` is called, at which point the filters are uninstalled.
"""
import heapq
import logging
import threading
from typing import Any, Iterable, Iterator, List, Optional, Sequence

from web3 import Web3

from .._rate_limited_log import rate_limited_log
from ..models import LedgerEvent
from ..utils import bytes32_to_string, string_to_bytes32, to_checksum
from .abi import TOURNAMENT_ABI

logger = logging.getLogger(__name__)

LOBBY_EVENTS = (
    "LobbyCreated",
    "ParticipantJoined",
    "GameStarted",
    "WinnerDeclared",
    "GameFinished",
    "PrizeClaimed",
    "LobbyCanceled",
)


def decode_log(entry: Any) -> LedgerEvent:
    """Convert a web3 event log into a LedgerEvent."""
    args = dict(entry["args"])
    lobby_id = None
    raw_id = args.get("lobbyId")
    if raw_id is not None:
        lobby_id = bytes32_to_string(raw_id)
        args["lobbyId"] = lobby_id
    tx_hash = entry.get("transactionHash")
    if tx_hash is not None and not isinstance(tx_hash, str):
        tx_hash = "0x" + bytes(tx_hash).hex()
    return LedgerEvent(
        name=entry["event"],
        lobby_id=lobby_id,
        args=args,
        block_number=entry.get("blockNumber"),
        tx_hash=tx_hash,
    )


class EventStream:
    """
    Iterator over tournament contract events.

    Example:
        stream = EventStream(w3, contract_address, ["GameStarted"], lobby_id="abc123")
        for event in stream:
            if event.name == "GameStarted":
                stream.close()
    """

    def __init__(
        self,
        w3: Web3,
        contract_address: str,
        event_names: Sequence[str] = LOBBY_EVENTS,
        lobby_id: Optional[str] = None,
        poll_interval: float = 2.0,
        from_block: Any = "latest",
        logger: Optional[logging.Logger] = None,
    ):
        unknown = [name for name in event_names if name not in LOBBY_EVENTS]
        if unknown:
            raise ValueError(f"Unknown events: {', '.join(unknown)}")
        self.w3 = w3
        self.contract = w3.eth.contract(address=to_checksum(contract_address), abi=TOURNAMENT_ABI)
        self.event_names = tuple(event_names)
        self.lobby_id = lobby_id
        self.poll_interval = poll_interval
        self.logger = logger or logging.getLogger(__name__)
        self._closed = threading.Event()
        self._pending: List[LedgerEvent] = []

        argument_filters = {"lobbyId": string_to_bytes32(lobby_id)} if lobby_id else None
        self._filters = []
        for name in self.event_names:
            event = getattr(self.contract.events, name)
            self._filters.append(event.create_filter(from_block=from_block, argument_filters=argument_filters))
        self.logger.debug(f"Watching {', '.join(self.event_names)} for lobby {lobby_id or '*'}")

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def poll(self) -> List[LedgerEvent]:
        """
        Fetch events that arrived since the last poll, oldest first.

        Returns:
            Decoded events; empty once the stream is closed
        """
        if self.closed:
            return []
        events: List[LedgerEvent] = []
        for log_filter in self._filters:
            try:
                entries = log_filter.get_new_entries()
            except Exception as e:
                rate_limited_log(
                    f"Event filter poll failed: {e}",
                    key=f"events:{self.lobby_id}",
                    logger_instance=self.logger,
                )
                continue
            events.extend(decode_log(entry) for entry in entries)
        events.sort(key=lambda event: event.block_number or 0)
        if self.closed:
            return []
        return events

    def __iter__(self) -> Iterator[LedgerEvent]:
        return self

    def __next__(self) -> LedgerEvent:
        while not self._pending:
            if self.closed:
                raise StopIteration
            self._pending = self.poll()
            if not self._pending and self._closed.wait(self.poll_interval):
                raise StopIteration
        return self._pending.pop(0)

    def close(self) -> None:
        """Stop the stream and uninstall its filters."""
        if self._closed.is_set():
            return
        self._closed.set()
        for log_filter in self._filters:
            try:
                self.w3.eth.uninstall_filter(log_filter.filter_id)
            except Exception as e:
                self.logger.debug(f"Could not uninstall filter {log_filter.filter_id}: {e}")
        self._pending = []

    def __enter__(self) -> "EventStream":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()


def merge_streams(streams: Iterable[EventStream]) -> List[LedgerEvent]:
    """
    Poll several streams once and merge their events in block order.
    """
    batches = [stream.poll() for stream in streams]
    return list(heapq.merge(*batches, key=lambda event: event.block_number or 0))
