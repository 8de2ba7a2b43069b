"""
Storage backends for wallet links.

The identity store talks to storage only through ``LinkStorage``, so the
JSON file can be swapped for a key-value store or a database without
touching the linking logic.
"""
import json
import logging
import os
import stat
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, Optional

import portalocker

from ..exceptions import PersistenceError
from ..models import WalletLink

logger = logging.getLogger(__name__)

LOCK_TIMEOUT = 10


class LinkStorage(ABC):
    """Durable session id -> WalletLink mapping"""

    @abstractmethod
    def get(self, session_id: str) -> Optional[WalletLink]:
        ...

    @abstractmethod
    def set(self, session_id: str, link: WalletLink) -> None:
        """Persist a link. Must raise PersistenceError if the write fails."""
        ...

    @abstractmethod
    def delete(self, session_id: str) -> None:
        ...

    @abstractmethod
    def load_all(self) -> Dict[str, WalletLink]:
        ...

    def read_back(self, session_id: str) -> Optional[WalletLink]:
        """Read a link from the durable copy rather than any in-memory cache."""
        return self.get(session_id)


class MemoryLinkStorage(LinkStorage):
    """Non-durable storage for tests and single-process development"""

    def __init__(self):
        self._links: Dict[str, WalletLink] = {}
        self._lock = threading.RLock()

    def get(self, session_id: str) -> Optional[WalletLink]:
        with self._lock:
            return self._links.get(session_id)

    def set(self, session_id: str, link: WalletLink) -> None:
        with self._lock:
            self._links[session_id] = link

    def delete(self, session_id: str) -> None:
        with self._lock:
            self._links.pop(session_id, None)

    def load_all(self) -> Dict[str, WalletLink]:
        with self._lock:
            return dict(self._links)


class JsonFileLinkStorage(LinkStorage):
    """
    Wallet links in a single JSON file, process safe.

    The file holds ``{session_id: {"address": ..., "updatedAt": ...}}``. It is
    loaded fully into memory on start and rewritten fully on every mutation,
    under a ``portalocker`` lock shared with other processes.
    """

    def __init__(self, path: str):
        """
        Initialize the storage.

        Args:
            path: Location of the JSON file; parent directories are created
        """
        self.path = Path(path)
        self._lock = threading.RLock()
        self._ensure_file()
        self._links: Dict[str, WalletLink] = self._read()
        logger.info(f"Loaded {len(self._links)} wallet links from {self.path}")

    def _ensure_file(self) -> None:
        directory = self.path.parent
        if not directory.exists():
            directory.mkdir(parents=True, exist_ok=True)
        if not self.path.exists():
            with portalocker.Lock(self._lock_path, timeout=LOCK_TIMEOUT):
                if not self.path.exists():
                    with open(self.path, "w") as f:
                        json.dump({}, f)
        # Links identify players; keep the file private (Unix/Linux/Mac only)
        if os.name == "posix":
            os.chmod(self.path, stat.S_IRUSR | stat.S_IWUSR)

    @property
    def _lock_path(self) -> str:
        return str(self.path) + ".lock"

    def _read(self) -> Dict[str, WalletLink]:
        with portalocker.Lock(self._lock_path, timeout=LOCK_TIMEOUT):
            try:
                with open(self.path, "r") as f:
                    raw = json.load(f)
            except FileNotFoundError:
                return {}
            except json.JSONDecodeError as e:
                logger.error(f"Wallet link file {self.path} is corrupt, starting empty: {e}")
                return {}

        links = {}
        for session_id, entry in raw.items():
            try:
                links[session_id] = WalletLink.model_validate(entry)
            except ValueError as e:
                logger.warning(f"Skipping malformed wallet link for session {session_id}: {e}")
        return links

    def _write(self, links: Dict[str, WalletLink]) -> None:
        data = {sid: link.model_dump(by_alias=True) for sid, link in links.items()}
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        try:
            with portalocker.Lock(self._lock_path, timeout=LOCK_TIMEOUT):
                with open(tmp_path, "w") as f:
                    json.dump(data, f, indent=2)
                    f.flush()
                    os.fsync(f.fileno())
                os.replace(tmp_path, self.path)
        except (OSError, portalocker.LockException) as e:
            logger.error(f"Failed to write wallet links to {self.path}: {e}")
            raise PersistenceError(f"Failed to save wallet link: {e}") from e

    def get(self, session_id: str) -> Optional[WalletLink]:
        with self._lock:
            return self._links.get(session_id)

    def set(self, session_id: str, link: WalletLink) -> None:
        with self._lock:
            updated = dict(self._links)
            updated[session_id] = link
            self._write(updated)
            self._links = updated

    def delete(self, session_id: str) -> None:
        with self._lock:
            if session_id not in self._links:
                return
            updated = dict(self._links)
            del updated[session_id]
            self._write(updated)
            self._links = updated

    def load_all(self) -> Dict[str, WalletLink]:
        with self._lock:
            return dict(self._links)

    def read_back(self, session_id: str) -> Optional[WalletLink]:
        return self._read().get(session_id)

    def reload(self) -> Dict[str, WalletLink]:
        """Re-read the file, picking up writes from other processes."""
        with self._lock:
            self._links = self._read()
            return dict(self._links)
