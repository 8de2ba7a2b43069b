"""
Explicit wallet identity passed to components that need the current player.
"""
import logging
import threading
from dataclasses import dataclass, replace
from typing import Callable, List, Optional

from ..utils import to_checksum

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class WalletState:
    """Snapshot of the current identity"""
    session_id: Optional[str] = None
    address: Optional[str] = None

    @property
    def connected(self) -> bool:
        return self.address is not None


Listener = Callable[[WalletState], None]


class WalletContext:
    """
    Holds the current wallet state and notifies subscribers when it changes.

    Example:
        context = WalletContext(session_id="abc")
        unsubscribe = context.subscribe(lambda state: print(state.address))
        context.update(address="0x...")
        unsubscribe()
    """

    def __init__(self, session_id: Optional[str] = None, address: Optional[str] = None):
        self._state = WalletState(session_id=session_id, address=to_checksum(address) if address else None)
        self._listeners: List[Listener] = []
        self._lock = threading.RLock()

    @property
    def state(self) -> WalletState:
        with self._lock:
            return self._state

    @property
    def address(self) -> Optional[str]:
        return self.state.address

    @property
    def session_id(self) -> Optional[str]:
        return self.state.session_id

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """
        Register a listener called with every new state.

        Returns:
            Function that removes the listener
        """
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def update(self, address: Optional[str] = None, session_id: Optional[str] = None) -> WalletState:
        """
        Replace the address (and optionally the session id) and notify listeners.

        Pass ``address=None`` to disconnect. Listeners are not called when
        nothing changed.
        """
        normalized = to_checksum(address) if address else None
        with self._lock:
            changes = {"address": normalized}
            if session_id is not None:
                changes["session_id"] = session_id
            new_state = replace(self._state, **changes)
            if new_state == self._state:
                return new_state
            self._state = new_state
            listeners = list(self._listeners)

        for listener in listeners:
            try:
                listener(new_state)
            except Exception as e:
                logger.error(f"Wallet listener failed: {e}")
        return new_state

    def disconnect(self) -> WalletState:
        return self.update(address=None)
