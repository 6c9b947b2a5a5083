"""A Raft server: drives a Raft peer and reports what it applies to the tester."""

from __future__ import annotations

import logging
import queue
import threading
from typing import Any, Protocol, Sequence

from raftlab.persister import Persister
from raftlab.proxy import GetStateArgs, GetStateReply, StartArgs, StartReply
from raftlab.raft import PeerEnd, make
from raftlab.raftapi import ApplyMsg, RaftApi
from raftlab.transport import decode, encode

log = logging.getLogger(__name__)

SNAPSHOT_INTERVAL = 10


class SnapshotError(Exception):
    """A snapshot could not be decoded or does not match what was expected."""


class TesterLink(Protocol):
    """What a server needs from the tester."""

    def check_logs(self, index: int, msg: ApplyMsg) -> tuple[str, bool]: ...

    def ingest_log(self, index: int, log: dict[int, Any]) -> None: ...

    def apply_err(self, index: int, err: str) -> None: ...


class TimelineLink(Protocol):
    def get_timestamp(self) -> int: ...

    def post_info_interval(self, start: int, desp: str, details: str) -> None: ...


def encode_snapshot(index: int, log: Sequence[Any]) -> bytes:
    """Encode the last included index and the commands up to it."""
    return encode((index, list(log)))


def decode_snapshot(data: bytes | None) -> tuple[int, list[Any]]:
    """Decode a snapshot made by encode_snapshot; raise SnapshotError if it is malformed."""
    if data is None:
        raise SnapshotError("nil snapshot")
    try:
        index, entries = decode(data)
    except Exception as exc:
        raise SnapshotError("failed to decode snapshot") from exc
    if not isinstance(index, int) or not isinstance(entries, list):
        raise SnapshotError("failed to decode snapshot")
    return index, entries


class RaftServer:
    """Starts commands on a Raft peer and checks the entries it applies."""

    def __init__(self, tester: TesterLink, me: int, persister: Persister) -> None:
        self._tester = tester
        self.me = me
        self.persister = persister
        self.last_applied = 0
        self.raft: RaftApi | None = None
        self.apply_queue: queue.Queue[ApplyMsg | None] = queue.Queue()
        self.annotator: TimelineLink | None = None
        self._lock = threading.Lock()
        self._log: dict[int, Any] = {}

    @property
    def log(self) -> dict[int, Any]:
        """A copy of the applied commands, by index."""
        with self._lock:
            return dict(self._log)

    def _get_raft(self) -> RaftApi | None:
        with self._lock:
            return self.raft

    def start(self, command: Any) -> tuple[int, int, bool]:
        rf = self._get_raft()
        if rf is None:
            return 0, 0, False
        return rf.start(command)

    def get_state(self) -> tuple[int, bool]:
        rf = self._get_raft()
        if rf is None:
            raise RuntimeError("no raft peer")
        return rf.get_state()

    def ingest_snapshot(self, snapshot: bytes | None, index: int) -> None:
        """Replace the applied log with a snapshot's; index -1 accepts any snapshot."""
        with self._lock:
            last_included, entries = decode_snapshot(snapshot)
            if index != -1 and index != last_included:
                raise SnapshotError(
                    f"server {self.me} snapshot doesn't match m.SnapshotIndex"
                )
            self._log = dict(enumerate(entries))
            self.last_applied = last_included

    def GetStateRPC(self, args: GetStateArgs) -> GetStateReply:
        term, leader = self.get_state()
        return GetStateReply(term=term, leader=leader)

    def StartRPC(self, args: StartArgs) -> StartReply:
        index, term, leader = self.start(args.command)
        return StartReply(index=index, term=term, leader=leader)

    # ---- appliers ------------------------------------------------------------

    def _drain(self, handle) -> None:
        # A None message ends the loop; errors are reported and reading goes on.
        while True:
            m = self.apply_queue.get()
            try:
                if m is None:
                    return
                handle(m)
            finally:
                self.apply_queue.task_done()

    def _applier(self) -> None:
        self._drain(self._apply_plain)

    def _apply_plain(self, m: ApplyMsg) -> None:
        if not m.command_valid:
            return
        err, prevok = self._tester.check_logs(self.me, m)
        if m.command_index > 1 and not prevok:
            err = f"server {self.me} apply out of order {m.command_index}"
        if err:
            self._tester.apply_err(self.me, err)

    def _applier_snap(self) -> None:
        if self._get_raft() is None:
            return
        self._drain(self._apply_with_snapshots)

    def _apply_with_snapshots(self, m: ApplyMsg) -> None:
        err = ""
        if m.snapshot_valid:
            try:
                self.ingest_snapshot(m.snapshot, m.snapshot_index)
            except SnapshotError as exc:
                err = str(exc)
            self._tester.ingest_log(self.me, self.log)
        elif m.command_valid:
            if m.command_index != self.last_applied + 1:
                err = (
                    f"server {self.me} apply out of order, expected index "
                    f"{self.last_applied + 1}, got {m.command_index}"
                )
            if not err:
                err, prevok = self._tester.check_logs(self.me, m)
                if err != "ErrRPC" and m.command_index > 1 and not prevok:
                    err = f"server {self.me} apply out of order {m.command_index}"
            with self._lock:
                self._log[m.command_index] = m.command
                self.last_applied = m.command_index
                if (m.command_index + 1) % SNAPSHOT_INTERVAL == 0:
                    entries = [self._log.get(j) for j in range(m.command_index + 1)]
                else:
                    entries = None
            if entries is not None:
                self._take_snapshot(m.command_index, entries)
        if err:
            self._tester.apply_err(self.me, err)

    def _take_snapshot(self, index: int, entries: list[Any]) -> None:
        annotator = self.annotator
        start = annotator.get_timestamp() if annotator is not None else 0
        rf = self._get_raft()
        if rf is not None:
            rf.snapshot(index, encode_snapshot(index, entries))
        if annotator is not None:
            annotator.post_info_interval(
                start,
                f"snapshot created by {self.me}",
                f"snapshot created by server {self.me} after applying the command at index {index}",
            )


def new_raft_server(
    tester: TesterLink,
    ends: Sequence[PeerEnd],
    group: int,
    srv: int,
    persister: Persister,
    snapshot: bool,
) -> RaftServer:
    """Create a Raft peer with its server, optionally restoring and taking snapshots."""
    # Copy the initial snapshot before the peer starts and may persist.
    initial = persister.read_snapshot()
    rs = RaftServer(tester, srv, persister)
    rs.raft = make(ends, srv, persister, rs.apply_queue)
    if snapshot:
        if initial:
            try:
                rs.ingest_snapshot(initial, -1)
            except SnapshotError as exc:
                tester.apply_err(srv, str(exc))
                rs.raft.kill()
                raise
            tester.ingest_log(srv, rs.log)
        target = rs._applier_snap
    else:
        target = rs._applier
    threading.Thread(target=target, daemon=True).start()
    return rs