"""Length-prefixed tagged messages over a stream socket, and outstanding-call tracking."""

from __future__ import annotations

import pickle
import socket
import struct
import threading
from dataclasses import dataclass
from typing import Any

MSGLEN = 65536

_HEADER = struct.Struct("<I")


class TransportClosed(ConnectionError):
    """The connection is closed or ended in the middle of a message."""


def encode(obj: Any) -> bytes:
    """Serialize an object for the wire."""
    return pickle.dumps(obj, protocol=pickle.HIGHEST_PROTOCOL)


def decode(data: bytes) -> Any:
    """Deserialize bytes produced by encode()."""
    return pickle.loads(data)


@dataclass
class Message:
    tag: int
    data: bytes | None
    ok: bool


class Transport:
    """Reads and writes (tag, data, ok) frames on a connected socket."""

    def __init__(self, sock: socket.socket) -> None:
        self._sock = sock
        self._reader = sock.makefile("rb", buffering=MSGLEN)
        self._writer = sock.makefile("wb", buffering=MSGLEN)
        self._write_lock = threading.Lock()

    def __enter__(self) -> "Transport":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def _read_exact(self, n: int, at_boundary: bool = False) -> bytes:
        try:
            data = self._reader.read(n)
        except (OSError, ValueError) as exc:
            raise TransportClosed(str(exc)) from exc
        if data is None or (not data and at_boundary and n > 0):
            raise TransportClosed("EOF")
        if len(data) != n:
            raise TransportClosed("short read")
        return data

    def read_call(self) -> tuple[int, bytes | None, bool]:
        """Block for the next frame and return (tag, data, ok)."""
        (n,) = _HEADER.unpack(self._read_exact(_HEADER.size, at_boundary=True))
        msg = decode(self._read_exact(n))
        if not isinstance(msg, Message):
            raise ValueError("malformed frame")
        return msg.tag, msg.data, msg.ok

    def write_call(self, tag: int, data: bytes | None, ok: bool) -> None:
        body = encode(Message(tag=tag, data=data, ok=ok))
        with self._write_lock:
            try:
                self._writer.write(_HEADER.pack(len(body)) + body)
                self._writer.flush()
            except (OSError, ValueError) as exc:
                raise TransportClosed(str(exc)) from exc

    def close(self) -> None:
        """Close the connection, waking any blocked reader."""
        try:
            self._sock.shutdown(socket.SHUT_RDWR)
        except OSError:
            pass
        for f in (self._reader, self._writer):
            try:
                f.close()
            except (OSError, ValueError):
                pass
        self._sock.close()


class CallMap:
    """Outstanding calls, keyed by tag, each with a waiter to hand the reply to."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._closed = False
        self._calls: dict[int, Any] = {}

    def close(self) -> None:
        with self._lock:
            self._closed = True

    def is_closed(self) -> bool:
        with self._lock:
            return self._closed

    def put(self, tag: int, waiter: Any) -> None:
        with self._lock:
            if self._closed:
                raise TransportClosed("conn closed")
            self._calls[tag] = waiter

    def remove(self, tag: int) -> Any | None:
        """Take and return the waiter for tag, or None if there is none."""
        with self._lock:
            return self._calls.pop(tag, None)

    def outstanding(self) -> list[int]:
        with self._lock:
            return list(self._calls)