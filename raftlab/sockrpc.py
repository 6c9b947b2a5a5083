"""Named RPC over Unix-domain sockets, multiplexed with the demux layer."""

from __future__ import annotations

import logging
import os
import socket
import threading
import time
from contextlib import suppress
from dataclasses import dataclass
from typing import Any

from raftlab.demux import DemuxClient, DemuxServer
from raftlab.transport import Transport, TransportClosed, decode, encode

log = logging.getLogger(__name__)

MAX_RETRY = 100
RETRY_DELAY = 0.1


class RPCError(ConnectionError):
    """An RPC could not be delivered or the server did not answer it."""


def sock_name(end_name: str) -> str:
    """Path of the Unix socket for an end name."""
    return "/tmp/6.5840-" + end_name


@dataclass
class RPCArgs:
    method: str
    args: bytes | None


def _dial(client_end: str, server_end: str, retries: int, delay: float) -> socket.socket:
    last: OSError | None = None
    for _ in range(retries):
        sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
        try:
            sock.connect(sock_name(server_end))
            return sock
        except OSError as exc:
            sock.close()
            last = exc
            time.sleep(delay)
    raise ConnectionError(f"{client_end}: dial {server_end}: {last}")


class RPCClient:
    """Calls methods on the RPC server listening at server_end."""

    def __init__(
        self,
        client_end: str,
        server_end: str,
        retries: int = MAX_RETRY,
        delay: float = RETRY_DELAY,
    ) -> None:
        self._client_end = client_end
        self._server_end = server_end
        sock = _dial(client_end, server_end, retries, delay)
        try:
            self._dmx = DemuxClient(client_end, server_end, Transport(sock))
        except TransportClosed as exc:
            sock.close()
            raise ConnectionError(f"{client_end}: demux to {server_end}: {exc}") from exc

    def __enter__(self) -> "RPCClient":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def server(self) -> str:
        return self._server_end

    def close(self) -> None:
        self._dmx.close()

    def rpc(self, method: str, args: bytes | None) -> tuple[bytes | None, bool]:
        """Send already-encoded args; return (encoded reply, ok)."""
        try:
            return self._dmx.send_receive(encode(RPCArgs(method=method, args=args)))
        except TransportClosed:
            return None, False

    def call(self, method: str, args: Any) -> Any:
        """Call method with args and return its decoded reply; raise RPCError on failure."""
        rep, ok = self.rpc(method, encode(args))
        if not ok:
            raise RPCError(f"{method} to {self._server_end} failed")
        return decode(rep) if rep is not None else None


class RPCServer:
    """Listens on a Unix socket and dispatches "Service.Method" calls to registered objects."""

    def __init__(self, sock: str) -> None:
        self._sock = sock
        self._lock = threading.Lock()
        self._services: dict[str, Any] = {}
        self._conns: list[DemuxServer] = []
        self._closed = threading.Event()
        path = sock_name(sock)
        with suppress(FileNotFoundError):
            os.unlink(path)
        self._listener = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
        self._listener.bind(path)
        self._listener.listen()
        self._listener.settimeout(RETRY_DELAY)
        self._thread = threading.Thread(target=self._listen, daemon=True)
        self._thread.start()

    def __enter__(self) -> "RPCServer":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def close(self) -> None:
        """Stop accepting connections and drop the open ones."""
        self._closed.set()
        self._listener.close()
        with suppress(FileNotFoundError):
            os.unlink(sock_name(self._sock))
        with self._lock:
            conns, self._conns = self._conns, []
        for conn in conns:
            conn.close()

    def name(self) -> str:
        return self._sock

    def add_service(self, service: Any, name: str | None = None) -> None:
        """Register service under name, by default its class name."""
        with self._lock:
            self._services[name or type(service).__name__] = service

    def _listen(self) -> None:
        while not self._closed.is_set():
            try:
                conn, _ = self._listener.accept()
            except TimeoutError:
                continue
            except OSError:
                return
            conn.settimeout(None)
            try:
                dmx = DemuxServer(self._sock, self, Transport(conn))
            except Exception as exc:
                log.warning("%s: bad connection: %s", self._sock, exc)
                conn.close()
                continue
            with self._lock:
                if not self._closed.is_set():
                    self._conns.append(dmx)
                    continue
            dmx.close()

    def serve_request(self, client_end: str, data: bytes | None) -> tuple[bytes | None, bool]:
        """Decode a request, run its method and return (encoded reply, ok)."""
        try:
            req = decode(data) if data is not None else None
        except Exception as exc:
            log.warning("%s: undecodable request from %s: %s", self._sock, client_end, exc)
            return None, False
        if not isinstance(req, RPCArgs):
            return None, False
        svc_name, _, meth_name = req.method.partition(".")
        with self._lock:
            svc = self._services.get(svc_name)
        handler = None
        if svc is not None and meth_name and not meth_name.startswith("_"):
            handler = getattr(svc, meth_name, None)
        if not callable(handler):
            log.warning("%s: unknown method %s", self._sock, req.method)
            return None, False
        try:
            args = decode(req.args) if req.args is not None else None
            reply = handler(args)
            return encode(reply), True
        except Exception:
            log.exception("%s: %s failed", self._sock, req.method)
            return None, False