"""Ordered pool of sessions waiting for a partner."""

from collections.abc import Iterator


class WaitingPool:
    """Front-to-back ordered set of session ids (front is served first).

    Every enqueue is idempotent: a session already queued is never
    duplicated. ``enqueue_front`` moves an existing entry to the front.
    """

    def __init__(self) -> None:
        # dict preserves insertion order and gives O(1) membership checks
        self._entries: dict[str, None] = {}

    def enqueue(self, session_id: str) -> bool:
        """Append a session to the back of the pool.

        Returns:
            True if the session was added, False if it was already queued
        """
        if session_id in self._entries:
            return False
        self._entries[session_id] = None
        return True

    def enqueue_front(self, session_id: str) -> None:
        """Place a session at the front of the pool, moving it if already queued."""
        self._entries.pop(session_id, None)
        self._entries = {session_id: None, **self._entries}

    def remove(self, session_id: str) -> bool:
        """Remove a session from the pool (no-op if absent).

        Returns:
            True if the session was queued
        """
        if session_id not in self._entries:
            return False
        del self._entries[session_id]
        return True

    def snapshot(self) -> tuple[str, ...]:
        """Current pool contents in priority order."""
        return tuple(self._entries)

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[str]:
        return iter(self.snapshot())
