"""Client-side stubs: the tester calling a Raft server, and a server calling the tester."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Protocol

from raftlab.raftapi import ApplyMsg

log = logging.getLogger(__name__)


class Caller(Protocol):
    def call(self, method: str, args: Any) -> Any:
        """Return the reply; raise ConnectionError if the call failed."""


@dataclass
class GetStateArgs:
    pass


@dataclass
class GetStateReply:
    term: int = 0
    leader: bool = False


@dataclass
class StartArgs:
    command: Any


@dataclass
class StartReply:
    index: int = 0
    term: int = 0
    leader: bool = False


@dataclass
class CheckLogsArgs:
    index: int
    msg: ApplyMsg


@dataclass
class CheckLogsReply:
    err: str = ""
    prevok: bool = False


@dataclass
class IngestLogArgs:
    index: int
    log: dict[int, Any]


@dataclass
class ApplyErrArgs:
    index: int
    err: str


class RaftProxy:
    """Forwards Raft calls from the tester to a server process."""

    def __init__(self, client: Caller) -> None:
        self._client = client

    def get_state(self) -> tuple[int, bool]:
        """Return (term, is_leader); (0, False) if the server cannot be reached."""
        try:
            reply = self._client.call("rfsrv.GetStateRPC", GetStateArgs())
        except ConnectionError:
            log.warning("rfp.GetState failed")
            reply = None
        if reply is None:
            reply = GetStateReply()
        return reply.term, reply.leader

    def start(self, command: Any) -> tuple[int, int, bool]:
        """Return (index, term, is_leader); (0, 0, False) if the server cannot be reached."""
        try:
            reply = self._client.call("rfsrv.StartRPC", StartArgs(command=command))
        except ConnectionError:
            reply = None
        if reply is None:
            reply = StartReply()
        return reply.index, reply.term, reply.leader


class TesterProxy:
    """Reports a server's applied entries and errors to the tester."""

    def __init__(self, client: Caller) -> None:
        self._client = client

    def check_logs(self, index: int, msg: ApplyMsg) -> tuple[str, bool]:
        """Return (error text, whether the previous entry was present)."""
        try:
            reply = self._client.call("Test.CheckLogsRPC", CheckLogsArgs(index=index, msg=msg))
        except ConnectionError:
            return "ErrRPC", False
        if reply is None:
            return "ErrRPC", False
        return reply.err, reply.prevok

    def ingest_log(self, index: int, log: dict[int, Any]) -> None:
        try:
            self._client.call("Test.IngestLogRPC", IngestLogArgs(index=index, log=dict(log)))
        except ConnectionError:
            pass

    def apply_err(self, index: int, err: str) -> None:
        try:
            self._client.call("Test.ApplyErrRPC", ApplyErrArgs(index=index, err=err))
        except ConnectionError:
            pass