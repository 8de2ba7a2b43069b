"""
Thread-safe rate-limited logging.

Read paths against the ledger RPC fail soft and are polled repeatedly, so a
flaky endpoint would otherwise flood the logs with the same warning every
couple of seconds per open view.
"""
import logging
import threading
from typing import Optional

from cachetools import TTLCache

logger = logging.getLogger(__name__)

_seen = TTLCache(maxsize=512, ttl=60)
_seen_lock = threading.RLock()


def rate_limited_log(
    message: str,
    level: str = "warning",
    key: Optional[str] = None,
    logger_instance: Optional[logging.Logger] = None,
) -> bool:
    """
    Log a message at most once per minute per key.

    Args:
        message: Message to log
        level: Log level (debug, info, warning, error, critical)
        key: Dedupe key; defaults to the message itself. Pass a stable key
            when the message embeds variable details such as error text.
        logger_instance: Logger to use (defaults to module logger)

    Returns:
        True if the message was emitted, False if it was suppressed
    """
    log_instance = logger_instance or logger
    log_method = getattr(log_instance, level.lower(), log_instance.warning)
    cache_key = f"{log_instance.name}:{level}:{key or message}"

    with _seen_lock:
        if cache_key in _seen:
            return False
        _seen[cache_key] = True

    log_method(message)
    return True


def reset_rate_limits() -> None:
    """Forget every suppressed key (used by tests)."""
    with _seen_lock:
        _seen.clear()
