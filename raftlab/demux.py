"""Several concurrent calls over one connection, matched to replies by tag."""

from __future__ import annotations

import logging
import queue
import threading
from dataclasses import dataclass
from typing import Protocol

from raftlab.transport import CallMap, Transport, TransportClosed, decode, encode

log = logging.getLogger(__name__)


@dataclass
class InitMsg:
    """First message on a connection: the caller's end name."""

    clnt: str


@dataclass
class _Reply:
    data: bytes | None
    ok: bool
    err: Exception | None


class RequestServer(Protocol):
    def serve_request(self, client_end: str, req: bytes | None) -> tuple[bytes | None, bool]:
        ...


class DemuxClient:
    """Sends tagged requests over a transport and hands each reply to its caller."""

    def __init__(self, client_end: str, server_end: str, transport: Transport) -> None:
        self._callmap = CallMap()
        self._transport = transport
        self._lock = threading.Lock()
        self._next_tag = 0
        self._client_end = client_end
        self._server_end = server_end
        transport.write_call(self._tag(), encode(InitMsg(clnt=client_end)), True)
        self._reader_thread = threading.Thread(target=self._reader, daemon=True)
        self._reader_thread.start()

    def __enter__(self) -> "DemuxClient":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def _tag(self) -> int:
        with self._lock:
            tag = self._next_tag
            self._next_tag = (self._next_tag + 1) & 0xFFFFFFFF
            return tag

    def _reply(self, tag: int, data: bytes | None, ok: bool, err: Exception | None) -> None:
        waiter = self._callmap.remove(tag)
        if waiter is None:
            log.error("%s: reply for tag %s has no matching request", self._server_end, tag)
            return
        waiter.put(_Reply(data, ok, err))

    def _reader(self) -> None:
        while True:
            try:
                tag, data, ok = self._transport.read_call()
            except Exception:  # any failure ends the connection
                self._callmap.close()
                break
            self._reply(tag, data, ok, None)
        for tag in self._callmap.outstanding():
            self._reply(tag, None, False, TransportClosed("reader reply fail"))

    def send_receive(self, data: bytes | None) -> tuple[bytes | None, bool]:
        """Send a request and wait for its reply; raise TransportClosed if the link fails."""
        tag = self._tag()
        waiter: queue.Queue[_Reply] = queue.Queue(maxsize=1)
        self._callmap.put(tag, waiter)
        try:
            self._transport.write_call(tag, data, True)
        except TransportClosed:
            # The reader will see the failure and answer the waiter.
            pass
        reply = waiter.get()
        if reply.err is not None:
            raise reply.err
        return reply.data, reply.ok

    def close(self) -> None:
        if self._callmap.is_closed():
            return
        try:
            self._transport.close()
        except OSError as exc:
            log.warning("%s: close transport: %s", self._server_end, exc)
        self._callmap.close()

    def is_closed(self) -> bool:
        return self._callmap.is_closed()


class DemuxServer:
    """Reads tagged requests from one client and answers each in its own thread."""

    def __init__(self, server_end: str, server: RequestServer, transport: Transport) -> None:
        self._lock = threading.Lock()
        self._server = server
        self._closed = False
        self._transport = transport
        self._server_end = server_end
        _, data, _ = transport.read_call()
        msg = decode(data) if data is not None else None
        if not isinstance(msg, InitMsg):
            raise ValueError("connection did not start with an init message")
        self._client_end = msg.clnt
        self._reader_thread = threading.Thread(target=self._reader, daemon=True)
        self._reader_thread.start()

    def client_end(self) -> str:
        return self._client_end

    def _set_closed(self) -> bool:
        with self._lock:
            was = self._closed
            self._closed = True
            return was

    def _reader(self) -> None:
        while True:
            try:
                tag, req, _ = self._transport.read_call()
            except TransportClosed:
                self._set_closed()
                break
            except Exception as exc:
                log.warning(
                    "%s: reader: client %s read error %s", self._server_end, self._client_end, exc
                )
                break
            threading.Thread(target=self._serve, args=(tag, req), daemon=True).start()

    def _serve(self, tag: int, req: bytes | None) -> None:
        try:
            rep, ok = self._server.serve_request(self._client_end, req)
        except Exception:
            log.exception("%s: request from %s failed", self._server_end, self._client_end)
            rep, ok = None, False
        try:
            self._transport.write_call(tag, rep, ok)
        except TransportClosed:
            pass

    def close(self) -> None:
        if self._set_closed():
            return
        log.info("%s: close client %s", self._server_end, self._client_end)
        try:
            self._transport.close()
        except OSError as exc:
            log.warning("%s: close transport client %s: %s", self._server_end, self._client_end, exc)