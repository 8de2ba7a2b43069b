"""
Tests for decoded, cancellable event streams.
"""
import threading

import pytest
from unittest.mock import MagicMock

from tournament_ledger.ledger.events import EventStream, decode_log, merge_streams
from tournament_ledger.utils import string_to_bytes32

from tests.test_helpers import CONTRACT_ADDRESS, HOST_ADDRESS, PLAYER_ADDRESS


def emit(ledger, event, lobby_id, block, **args):
    ledger.logs.append({
        "event": event,
        "args": {"lobbyId": string_to_bytes32(lobby_id), **args},
        "blockNumber": block,
        "transactionHash": bytes.fromhex("ab" * 32),
    })


class TestDecodeLog:
    def test_decode(self):
        entry = {
            "event": "ParticipantJoined",
            "args": {"lobbyId": string_to_bytes32("abc123"), "participant": PLAYER_ADDRESS},
            "blockNumber": 12,
            "transactionHash": bytes.fromhex("cd" * 32),
        }
        event = decode_log(entry)
        assert event.name == "ParticipantJoined"
        assert event.lobby_id == "abc123"
        assert event.args == {"lobbyId": "abc123", "participant": PLAYER_ADDRESS}
        assert event.block_number == 12
        assert event.tx_hash == "0x" + "cd" * 32


class TestEventStream:
    def test_unknown_event(self, w3):
        with pytest.raises(ValueError):
            EventStream(w3, CONTRACT_ADDRESS, ["Transfer"])

    def test_filters_by_lobby(self, w3, ledger):
        stream = EventStream(w3, CONTRACT_ADDRESS, ["GameStarted"], lobby_id="abc123")
        emit(ledger, "GameStarted", "other", 5)
        emit(ledger, "GameStarted", "abc123", 6)
        events = stream.poll()
        assert [e.lobby_id for e in events] == ["abc123"]
        assert stream.poll() == []

    def test_orders_by_block(self, w3, ledger):
        stream = EventStream(w3, CONTRACT_ADDRESS)
        emit(ledger, "GameStarted", "a", 9)
        emit(ledger, "LobbyCreated", "b", 3, host=HOST_ADDRESS, betAmount=1)
        assert [e.block_number for e in stream.poll()] == [3, 9]

    def test_iteration_and_close(self, w3, ledger):
        stream = EventStream(w3, CONTRACT_ADDRESS, ["GameStarted"], poll_interval=0.01)
        emit(ledger, "GameStarted", "a", 1)
        emit(ledger, "GameStarted", "b", 2)
        seen = []
        for event in stream:
            seen.append(event.lobby_id)
            if len(seen) == 2:
                stream.close()
        assert seen == ["a", "b"]
        assert stream.closed
        assert len(w3.eth.uninstalled) == 1

    def test_close_from_other_thread_ends_iteration(self, w3):
        stream = EventStream(w3, CONTRACT_ADDRESS, ["GameStarted"], poll_interval=30)
        result = []
        thread = threading.Thread(target=lambda: result.extend(stream))
        thread.start()
        stream.close()
        thread.join(timeout=5)
        assert not thread.is_alive()
        assert result == []

    def test_filter_errors_are_skipped(self, w3, ledger):
        stream = EventStream(w3, CONTRACT_ADDRESS, ["GameStarted", "LobbyCanceled"])
        stream._filters[0].get_new_entries = MagicMock(side_effect=ConnectionError("filter not found"))
        emit(ledger, "LobbyCanceled", "a", 4)
        assert [e.name for e in stream.poll()] == ["LobbyCanceled"]

    def test_closed_stream_returns_nothing(self, w3, ledger):
        stream = EventStream(w3, CONTRACT_ADDRESS, ["GameStarted"])
        stream.close()
        stream.close()
        emit(ledger, "GameStarted", "a", 1)
        assert stream.poll() == []
        assert list(stream) == []

    def test_merge_streams(self, w3, ledger):
        first = EventStream(w3, CONTRACT_ADDRESS, ["GameStarted"], lobby_id="a")
        second = EventStream(w3, CONTRACT_ADDRESS, ["GameStarted"], lobby_id="b")
        emit(ledger, "GameStarted", "b", 2)
        emit(ledger, "GameStarted", "a", 7)
        emit(ledger, "GameStarted", "b", 5)
        merged = merge_streams([first, second])
        assert [(e.lobby_id, e.block_number) for e in merged] == [("b", 2), ("b", 5), ("a", 7)]
