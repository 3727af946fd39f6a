"""Test doubles for driving the session coordinator without a network.

Provides:
- FakeConnection: records every envelope handed to it
- FakeScheduler: collects delayed calls and runs them on demand, in order
- FirstChoiceRandom: random source that always picks the first candidate
- assert_invariants: pairing symmetry and waiting pool consistency checks
"""

import itertools
import random
from collections.abc import Callable, Sequence
from typing import Any, TypeVar

from vocaline.coordinator import Scheduler, SessionCoordinator
from vocaline.session import SessionState
from vocaline.transport.base import ClientConnection

_port_counter = itertools.count(50000)

T = TypeVar("T")


class FakeConnection(ClientConnection):
    """In-memory client connection."""

    def __init__(self, writable: bool = True) -> None:
        self.sent: list[dict[str, Any]] = []
        self.writable = writable
        self.closed = False
        self._address = f"127.0.0.1:{next(_port_counter)}"

    def send(self, envelope: dict[str, Any]) -> bool:
        if self.closed or not self.writable:
            return False
        self.sent.append(envelope)
        return True

    async def close(self) -> None:
        self.closed = True

    @property
    def remote_address(self) -> str:
        return self._address

    @property
    def is_open(self) -> bool:
        return not self.closed

    def types(self) -> list[str]:
        """Envelope types received, in order."""
        return [envelope["type"] for envelope in self.sent]

    def payloads(self, message_type: str) -> list[dict[str, Any]]:
        """Payloads of every envelope of the given type, in order."""
        return [e["payload"] for e in self.sent if e["type"] == message_type]

    def last(self, message_type: str) -> dict[str, Any] | None:
        """Payload of the most recent envelope of the given type."""
        payloads = self.payloads(message_type)
        return payloads[-1] if payloads else None

    def clear(self) -> None:
        self.sent.clear()


class FakeHandle:
    """Cancellable handle returned by FakeScheduler."""

    def __init__(self, delay: float, callback: Callable[[], None]) -> None:
        self.delay = delay
        self.callback = callback
        self.cancelled = False
        self.ran = False

    def cancel(self) -> None:
        self.cancelled = True


class FakeScheduler(Scheduler):
    """Deterministic scheduler: callbacks run only when the test says so.

    Pending callbacks run in the order they were scheduled, so whichever
    attempt was scheduled first is the one that gets to match.
    """

    def __init__(self) -> None:
        self.handles: list[FakeHandle] = []

    def call_later(self, delay: float, callback: Callable[[], None]) -> FakeHandle:
        handle = FakeHandle(delay, callback)
        self.handles.append(handle)
        return handle

    @property
    def pending(self) -> list[FakeHandle]:
        return [h for h in self.handles if not h.cancelled and not h.ran]

    def run_next(self) -> bool:
        """Run the oldest pending callback.

        Returns:
            False if nothing was pending
        """
        pending = self.pending
        if not pending:
            return False
        handle = pending[0]
        handle.ran = True
        handle.callback()
        return True

    def run_pending(self) -> int:
        """Run pending callbacks (including newly scheduled ones) until none remain."""
        count = 0
        while self.run_next():
            count += 1
        return count


class FirstChoiceRandom(random.Random):
    """Random source whose choice is always the first element (pool order)."""

    def choice(self, seq: Sequence[T]) -> T:  # type: ignore[override]
        return seq[0]


def assert_invariants(coordinator: SessionCoordinator) -> None:
    """Check pairing symmetry and pool membership across every record."""
    registry = coordinator.registry
    snapshot = coordinator.pool.snapshot()

    assert len(snapshot) == len(set(snapshot)), f"Duplicate pool entries: {snapshot}"

    for session_id in snapshot:
        assert session_id in registry, f"Pool holds unregistered session {session_id}"

    for record in registry.records():
        if record.partner is not None:
            partner = registry.get(record.partner)
            assert partner is not None, f"{record.id} paired with unknown {record.partner}"
            assert partner.partner == record.id, f"Asymmetric pairing {record.id}/{partner.id}"
            assert record.state is SessionState.PAIRED
            assert record.excluded_partner != record.partner, (
                f"{record.id} excludes its current partner {record.partner}"
            )
        else:
            assert record.state is not SessionState.PAIRED

        in_pool = record.id in coordinator.pool
        assert in_pool == (record.state is SessionState.WAITING), (
            f"{record.id} state={record.state.value} in_pool={in_pool}"
        )
