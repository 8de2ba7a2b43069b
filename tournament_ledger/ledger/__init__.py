"""
Access to the external tournament ledger: reads, writes, polling and events.
"""
from .errors import translate_error
from .events import EventStream, merge_streams
from .poller import ConfirmationPoller, PollHandle, PollResult
from .provider import build_web3
from .reader import LedgerReader
from .submitter import TransactionSubmitter

__all__ = [
    "ConfirmationPoller",
    "EventStream",
    "LedgerReader",
    "PollHandle",
    "PollResult",
    "TransactionSubmitter",
    "build_web3",
    "merge_streams",
    "translate_error",
]
