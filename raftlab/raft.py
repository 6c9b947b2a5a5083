"""A Raft peer: leader election and heartbeats over pluggable RPC ends."""

from __future__ import annotations

import logging
import queue
import random
import threading
import time
from dataclasses import dataclass
from enum import IntEnum
from typing import Any, Protocol, Sequence

from raftlab.persister import Persister
from raftlab.raftapi import RaftApi
from raftlab.transport import decode, encode

log = logging.getLogger(__name__)

DEBUG = False

# Steady leader heartbeats (at most ten a second) versus short follower polls.
HEARTBEAT_INTERVAL = 0.1
ELECTION_POLL_INTERVAL = 0.01

NO_VOTE = -1


def dprintf(fmt: str, *args: Any) -> None:
    """Log a debug message when DEBUG is on."""
    if DEBUG:
        log.debug(fmt, *args)


def random_election_timeout() -> int:
    """A randomized election timeout in milliseconds, in [250, 550)."""
    return 250 + random.randrange(300)


class Role(IntEnum):
    FOLLOWER = 0
    LEADER = 1
    CANDIDATE = 2


class PeerEnd(Protocol):
    def call(self, method: str, args: Any) -> Any:
        """Return the reply, or None (or raise ConnectionError) if the call failed."""


@dataclass
class LogEntry:
    """One log entry, carrying the term it was created in."""

    term: int
    command: Any = None


@dataclass
class RequestVoteArgs:
    term: int
    candidate_id: int
    last_log_index: int
    last_log_term: int


@dataclass
class RequestVoteReply:
    term: int = 0
    vote_granted: bool = False


@dataclass
class AppendEntriesArgs:
    """A heartbeat from the leader; term is the leader's term."""

    term: int


@dataclass
class AppendEntriesReply:
    term: int = 0
    success: bool = False


class Raft(RaftApi):
    """A single Raft peer."""

    def __init__(
        self,
        peers: Sequence[PeerEnd],
        me: int,
        persister: Persister,
        apply_queue: "queue.Queue[Any] | None" = None,
    ) -> None:
        self._lock = threading.Lock()
        self._peers = list(peers)
        self._persister = persister
        self._me = me
        self._apply_queue = apply_queue
        self._dead = threading.Event()

        self._current_term = 0
        self._voted_for = NO_VOTE
        self._log: list[LogEntry] = [LogEntry(term=0)]  # dummy at index 0
        self._commit_index = 0
        self._last_applied = 0

        self._role = Role.FOLLOWER
        self._election_deadline: float | None = None
        self._votes_received = 0

        self._read_persist(persister.read_raft_state())

    # ---- state ---------------------------------------------------------------

    def get_state(self) -> tuple[int, bool]:
        with self._lock:
            return self._current_term, self._role == Role.LEADER

    def _encode_state(self) -> bytes:
        return encode(
            {
                "term": self._current_term,
                "voted_for": self._voted_for,
                "log": [(e.term, e.command) for e in self._log],
            }
        )

    def _persist(self) -> None:
        # Caller holds _lock.
        self._persister.save(self._encode_state(), self._persister.read_snapshot())

    def _read_persist(self, data: bytes | None) -> None:
        if not data:
            return
        try:
            state = decode(data)
        except Exception as exc:
            raise ValueError(f"cannot decode persisted state: {exc}") from exc
        if not isinstance(state, dict):
            raise ValueError("cannot decode persisted state: not a mapping")
        try:
            self._current_term = int(state["term"])
            self._voted_for = int(state["voted_for"])
            self._log = [LogEntry(term=int(t), command=c) for t, c in state["log"]]
        except (KeyError, TypeError, ValueError) as exc:
            raise ValueError(f"cannot decode persisted state: {exc}") from exc
        if not self._log:
            self._log = [LogEntry(term=0)]

    def persist_bytes(self) -> int:
        with self._lock:
            return self._persister.raft_state_size()

    def snapshot(self, index: int, snapshot: bytes) -> None:
        """Store the service's snapshot covering everything through index."""
        with self._lock:
            dprintf("%d: snapshot through %d", self._me, index)
            self._persister.save(self._encode_state(), snapshot)

    # ---- helpers (caller holds _lock) -----------------------------------------

    @staticmethod
    def _new_deadline() -> float:
        return time.monotonic() + random_election_timeout() / 1000.0

    def _adopt_term(self, term: int) -> None:
        self._current_term = term
        self._voted_for = NO_VOTE
        self._role = Role.FOLLOWER
        self._persist()

    def _call(self, server: int, method: str, args: Any) -> Any:
        try:
            return self._peers[server].call(method, args)
        except ConnectionError:
            return None

    # ---- RPC handlers ----------------------------------------------------------

    def append_entries(self, args: AppendEntriesArgs) -> AppendEntriesReply:
        """Handle a heartbeat: reject stale leaders, otherwise follow and reset the timer."""
        with self._lock:
            if args.term < self._current_term:
                return AppendEntriesReply(term=self._current_term, success=False)
            if args.term > self._current_term:
                self._adopt_term(args.term)
            self._role = Role.FOLLOWER
            self._election_deadline = self._new_deadline()
            return AppendEntriesReply(term=self._current_term, success=True)

    def request_vote(self, args: RequestVoteArgs) -> RequestVoteReply:
        """Grant a vote if the term is current, we are free to vote, and the log is up to date."""
        with self._lock:
            reply = RequestVoteReply(term=self._current_term, vote_granted=False)
            if args.term < self._current_term:
                return reply
            if args.term > self._current_term:
                self._adopt_term(args.term)

            last_idx = len(self._log) - 1
            last_term = self._log[last_idx].term
            up_to_date = args.last_log_term > last_term or (
                args.last_log_term == last_term and args.last_log_index >= last_idx
            )
            if self._voted_for in (NO_VOTE, args.candidate_id) and up_to_date:
                self._voted_for = args.candidate_id
                reply.vote_granted = True
                self._election_deadline = self._new_deadline()
                self._persist()
            reply.term = self._current_term
            return reply

    # ---- service interface -------------------------------------------------------

    def start(self, command: Any) -> tuple[int, int, bool]:
        """Return (index, term, is_leader); entries are not replicated yet."""
        with self._lock:
            return -1, self._current_term, self._role == Role.LEADER

    def kill(self) -> None:
        """Stop the background ticker."""
        self._dead.set()

    # ---- elections and heartbeats ---------------------------------------------------

    def _do_election(self) -> None:
        with self._lock:
            if self._role == Role.LEADER:
                return
            if self._election_deadline is None:
                self._election_deadline = self._new_deadline()
                return
            if time.monotonic() <= self._election_deadline:
                return

            self._current_term += 1
            self._role = Role.CANDIDATE
            self._voted_for = self._me
            self._votes_received = 1
            self._persist()
            term = self._current_term
            last_idx = len(self._log) - 1
            args = RequestVoteArgs(
                term=term,
                candidate_id=self._me,
                last_log_index=last_idx,
                last_log_term=self._log[last_idx].term,
            )
            self._election_deadline = self._new_deadline()
            dprintf("%d: starting election for term %d", self._me, term)

        for peer in range(len(self._peers)):
            if peer == self._me:
                continue
            threading.Thread(
                target=self._solicit_vote, args=(peer, term, args), daemon=True
            ).start()

    def _solicit_vote(self, peer: int, term: int, args: RequestVoteArgs) -> None:
        reply = self._call(peer, "Raft.RequestVote", args)
        with self._lock:
            if self._current_term != term or self._role != Role.CANDIDATE:
                return
            if reply is None:
                return
            if reply.term > self._current_term:
                self._adopt_term(reply.term)
                self._election_deadline = self._new_deadline()
                return
            if reply.vote_granted:
                self._votes_received += 1
                if self._votes_received > len(self._peers) // 2:
                    self._role = Role.LEADER
                    dprintf("%d: leader for term %d", self._me, term)

    def _heartbeat(self, peer: int, term: int) -> None:
        reply = self._call(peer, "Raft.AppendEntries", AppendEntriesArgs(term=term))
        if reply is None:
            return
        with self._lock:
            if reply.term > self._current_term:
                self._adopt_term(reply.term)
                self._election_deadline = self._new_deadline()

    def _tick_follower(self) -> None:
        with self._lock:
            if self._election_deadline is None:
                self._election_deadline = self._new_deadline()
                return
            timed_out = (
                self._role in (Role.FOLLOWER, Role.CANDIDATE)
                and time.monotonic() > self._election_deadline
            )
        if timed_out:
            self._do_election()

    def _ticker(self) -> None:
        while not self._dead.is_set():
            with self._lock:
                role = self._role
                term = self._current_term
            if role == Role.LEADER:
                for peer in range(len(self._peers)):
                    if peer == self._me:
                        continue
                    threading.Thread(
                        target=self._heartbeat, args=(peer, term), daemon=True
                    ).start()
                self._dead.wait(HEARTBEAT_INTERVAL)
            else:
                self._tick_follower()
                self._dead.wait(ELECTION_POLL_INTERVAL)


def make(
    peers: Sequence[PeerEnd],
    me: int,
    persister: Persister,
    apply_queue: "queue.Queue[Any] | None",
) -> Raft:
    """Create a Raft peer and start its background ticker."""
    rf = Raft(peers, me, persister, apply_queue)
    threading.Thread(target=rf._ticker, daemon=True).start()
    return rf