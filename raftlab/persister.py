"""Thread-safe holder for a Raft peer's persistent state and snapshot."""

from __future__ import annotations

import threading


class Persister:
    """Keeps Raft state and a service snapshot, saved together atomically."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._raftstate = b""
        self._snapshot = b""

    def checkpoint(self) -> "Persister":
        """Return an independent copy of this persister."""
        with self._lock:
            copy = Persister()
            copy._raftstate = self._raftstate
            copy._snapshot = self._snapshot
            return copy

    def read_raft_state(self) -> bytes:
        with self._lock:
            return self._raftstate

    def raft_state_size(self) -> int:
        with self._lock:
            return len(self._raftstate)

    def save(self, raftstate: bytes | None, snapshot: bytes | None) -> None:
        """Save Raft state and snapshot as one atomic action."""
        with self._lock:
            self._raftstate = bytes(raftstate or b"")
            self._snapshot = bytes(snapshot or b"")

    def read_snapshot(self) -> bytes:
        with self._lock:
            return self._snapshot

    def snapshot_size(self) -> int:
        with self._lock:
            return len(self._snapshot)