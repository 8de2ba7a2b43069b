"""
Backoff policies shared by transaction submission and confirmation polling.
"""
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Optional

LINEAR = "linear"
EXPONENTIAL = "exponential"
CONSTANT = "constant"


def _no_sleep(_seconds: float) -> None:
    return None


@dataclass(frozen=True)
class BackoffPolicy:
    """
    Attempt budget plus the delay between attempts.

    Attributes:
        max_attempts: Total number of attempts, including the first
        base_delay: Delay unit in seconds
        multiplier: Growth factor for exponential mode
        mode: One of "linear" (attempt * base_delay), "exponential"
            (base_delay * multiplier ** (attempt - 1)) or "constant"
        sleep: Sleep function, replaceable for tests. When unset, waits use
            ``time.sleep``, or the cancel event passed to ``wait`` so a
            cancelled poll wakes up early. When set, it is used for every wait.
    """
    max_attempts: int = 3
    base_delay: float = 0.25
    multiplier: float = 2.0
    mode: str = LINEAR
    sleep: Optional[Callable[[float], None]] = field(default=None, compare=False, repr=False)

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.base_delay < 0:
            raise ValueError("base_delay must not be negative")
        if self.mode not in (LINEAR, EXPONENTIAL, CONSTANT):
            raise ValueError(f"Unknown backoff mode: {self.mode}")

    def delay_for(self, attempt: int) -> float:
        """Delay to wait after the given (1-based) failed attempt."""
        if self.mode == CONSTANT:
            return self.base_delay
        if self.mode == EXPONENTIAL:
            return self.base_delay * (self.multiplier ** (attempt - 1))
        return self.base_delay * attempt

    def wait(self, attempt: int, cancel_event: Optional[threading.Event] = None) -> bool:
        """
        Wait out the delay after ``attempt``.

        Returns:
            True if ``cancel_event`` is set once the wait is over
        """
        delay = self.delay_for(attempt)
        if self.sleep is not None:
            self.sleep(delay)
        elif cancel_event is not None:
            return cancel_event.wait(delay)
        else:
            time.sleep(delay)
        return cancel_event is not None and cancel_event.is_set()

    @classmethod
    def fixed_interval(cls, max_attempts: int, interval: float) -> "BackoffPolicy":
        return cls(max_attempts=max_attempts, base_delay=interval, mode=CONSTANT)

    @classmethod
    def immediate(cls, max_attempts: int = 3) -> "BackoffPolicy":
        """A zero-delay policy, mostly useful in tests."""
        return cls(max_attempts=max_attempts, base_delay=0.0, mode=CONSTANT, sleep=_no_sleep)


# Server writes: 3 attempts, 250ms * attempt
SUBMIT_POLICY = BackoffPolicy(max_attempts=3, base_delay=0.25, mode=LINEAR)
# State confirmation: 30 checks, 2s apart
CONFIRM_POLICY = BackoffPolicy.fixed_interval(max_attempts=30, interval=2.0)
# Claim eligibility: 15 checks, 2s apart
CLAIM_POLICY = BackoffPolicy.fixed_interval(max_attempts=15, interval=2.0)
