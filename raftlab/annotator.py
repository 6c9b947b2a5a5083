"""Annotations posted by server processes to the tester over RPC."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from raftlab.annotation import Annotator, Color, annotator, timestamp
from raftlab.sockrpc import RPCClient, RPCError

SERVICE = "TesterRPC"


@dataclass
class PostAnnotatorPointArgs:
    tag: str
    desp: str
    details: str


@dataclass
class GetAnnotatorTimestampArgs:
    pass


@dataclass
class GetAnnotatorTimestampReply:
    timestamp: int = 0


@dataclass
class PostAnnotatorInfoIntervalArgs:
    start: int
    desp: str
    details: str


class TesterClient:
    """A server's connection to the tester."""

    def __init__(self, rpc_client: RPCClient) -> None:
        self.rpc_client = rpc_client

    def call(self, method: str, args: Any) -> Any:
        """Call a tester method; raise RPCError on failure."""
        return self.rpc_client.call(method, args)


class AnnotatorClient:
    """Posts annotations to the tester; failures are silently dropped."""

    def __init__(self, client: RPCClient | TesterClient) -> None:
        self._client = client

    def annotate(self, tag: str, desp: str, details: str) -> None:
        try:
            self._client.call(f"{SERVICE}.PostAnnotatorPoint", PostAnnotatorPointArgs(tag, desp, details))
        except RPCError:
            pass

    def get_timestamp(self) -> int:
        """The tester's current annotation timestamp, or 0 if it cannot be reached."""
        try:
            reply = self._client.call(f"{SERVICE}.GetAnnotatorTimestamp", GetAnnotatorTimestampArgs())
        except RPCError:
            return 0
        return reply.timestamp

    def post_info_interval(self, start: int, desp: str, details: str) -> None:
        try:
            self._client.call(
                f"{SERVICE}.PostAnnotatorInfoInterval",
                PostAnnotatorInfoIntervalArgs(start, desp, details),
            )
        except RPCError:
            pass


class AnnotatorService:
    """Tester-side handlers that record annotations posted by servers."""

    def __init__(self, target: Annotator | None = None) -> None:
        self._annotator = target if target is not None else annotator

    def PostAnnotatorPoint(self, args: PostAnnotatorPointArgs) -> None:
        self._annotator.point(args.tag, args.desp, args.details, Color.USER)

    def GetAnnotatorTimestamp(self, args: GetAnnotatorTimestampArgs) -> GetAnnotatorTimestampReply:
        return GetAnnotatorTimestampReply(timestamp=timestamp())

    def PostAnnotatorInfoInterval(self, args: PostAnnotatorInfoIntervalArgs) -> None:
        self._annotator.info_interval(args.start, args.desp, args.details)