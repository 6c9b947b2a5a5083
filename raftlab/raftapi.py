"""The interface a Raft peer offers and the message it delivers on apply."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any


@dataclass
class ApplyMsg:
    """A committed log entry or an installed snapshot; exactly one is valid."""

    command_valid: bool = False
    command: Any = None
    command_index: int = 0

    snapshot_valid: bool = False
    snapshot: bytes | None = None
    snapshot_term: int = 0
    snapshot_index: int = 0

    @classmethod
    def command_msg(cls, command: Any, index: int) -> "ApplyMsg":
        return cls(command_valid=True, command=command, command_index=index)

    @classmethod
    def snapshot_msg(cls, snapshot: bytes, term: int, index: int) -> "ApplyMsg":
        return cls(
            snapshot_valid=True,
            snapshot=snapshot,
            snapshot_term=term,
            snapshot_index=index,
        )


class RaftApi(ABC):
    """What a Raft peer exposes to the service or tester above it."""

    @abstractmethod
    def start(self, command: Any) -> tuple[int, int, bool]:
        """Start agreement; return (index, term, is_leader)."""

    @abstractmethod
    def get_state(self) -> tuple[int, bool]:
        """Return (current term, whether this peer believes it leads)."""

    @abstractmethod
    def snapshot(self, index: int, snapshot: bytes) -> None:
        """The service has snapshotted everything through index."""

    @abstractmethod
    def persist_bytes(self) -> int:
        """Size in bytes of the persisted Raft state."""