"""Unit tests for stats computation and broadcasting."""

from unittest.mock import MagicMock

from tests.helpers.fakes import FakeConnection
from vocaline.registry import ConnectionRegistry
from vocaline.session import SessionState
from vocaline.stats import StatsBroadcaster, StatsSnapshot


def populate(registry: ConnectionRegistry, waiting: int, pairs: int, idle: int) -> None:
    for _ in range(waiting):
        session_id = registry.register(FakeConnection())
        registry.require(session_id).transition_state(SessionState.WAITING)
        registry.pool.enqueue(session_id)

    for _ in range(pairs):
        first = registry.register(FakeConnection())
        second = registry.register(FakeConnection())
        for me, peer in ((first, second), (second, first)):
            record = registry.require(me)
            record.transition_state(SessionState.WAITING)
            record.partner = peer
            record.transition_state(SessionState.PAIRED)

    for _ in range(idle):
        registry.register(FakeConnection())


def test_compute_counts() -> None:
    registry = ConnectionRegistry()
    populate(registry, waiting=3, pairs=2, idle=1)

    snapshot = StatsBroadcaster(registry, MagicMock()).compute()

    assert snapshot == StatsSnapshot(connected_users=8, waiting_users=3, active_conversations=2)


def test_compute_empty() -> None:
    snapshot = StatsBroadcaster(ConnectionRegistry(), MagicMock()).compute()
    assert snapshot == StatsSnapshot(0, 0, 0)


def test_broadcast_reaches_every_session() -> None:
    registry = ConnectionRegistry()
    populate(registry, waiting=1, pairs=1, idle=1)
    send = MagicMock(return_value=True)

    snapshot = StatsBroadcaster(registry, send).broadcast()

    expected = {
        "type": "stats_update",
        "payload": {"connectedUsers": 4, "waitingUsers": 1, "activeConversations": 1},
    }
    assert snapshot.connected_users == 4
    assert send.call_count == 4
    assert {call.args[0] for call in send.call_args_list} == {r.id for r in registry.records()}
    assert all(call.args[1] == expected for call in send.call_args_list)


def test_broadcast_continues_past_unwritable_sessions() -> None:
    registry = ConnectionRegistry()
    populate(registry, waiting=0, pairs=0, idle=3)
    send = MagicMock(side_effect=[False, True, True])

    StatsBroadcaster(registry, send).broadcast()

    assert send.call_count == 3


def test_broadcast_with_no_sessions() -> None:
    send = MagicMock()

    snapshot = StatsBroadcaster(ConnectionRegistry(), send).broadcast()

    assert snapshot == StatsSnapshot(0, 0, 0)
    send.assert_not_called()
