"""Timeline annotations collected during a test run, for later visualization."""

from __future__ import annotations

import html
import json
import os
import tempfile
import threading
import time
from dataclasses import asdict, dataclass
from enum import Enum


class Color(str, Enum):
    INFO = "#FAFAFA"
    NEUTRAL = "#FFECB3"
    SUCCESS = "#C8E6C9"
    FAILURE = "#FFCDD2"
    FAULT = "#B3E5FC"
    USER = "#FFF176"


class Tag(str, Enum):
    CHECKER = "$ Checker"
    PARTITION = "$ Failure"
    INFO = "$ Test Info"


def _text(value: str | Enum) -> str:
    return value.value if isinstance(value, Enum) else value


def _go_list(items: list[int]) -> str:
    return "[" + " ".join(str(i) for i in items) + "]"


def timestamp() -> int:
    """Nanoseconds since the Unix epoch."""
    return time.time_ns()


@dataclass
class Annotation:
    """One annotation; end is 0 for a point in time."""

    tag: str
    start: int
    description: str
    details: str
    background_color: str
    end: int = 0


@dataclass
class _Continuous:
    start: int
    desp: str
    details: str
    color: str


class Annotator:
    """Collects point, interval and continuous annotations plus cluster fault state."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._annotations: list[Annotation] = []
        self._continuous: dict[str, _Continuous] = {}
        self._finalized = False

        self._info_lock = threading.Lock()
        self._nservers = 0
        self._connected: list[bool] = []
        self._crashed: list[bool] = []
        self._ckbegin_ts = 0
        self._ckbegin_details = ""

    @property
    def annotations(self) -> list[Annotation]:
        """A copy of the concrete annotations recorded so far."""
        with self._lock:
            return list(self._annotations)

    # ---- basic annotations -------------------------------------------------

    def _finalize(self) -> list[Annotation]:
        with self._lock:
            result = list(self._annotations)
            t = timestamp()
            for tag, cont in self._continuous.items():
                result.append(
                    Annotation(tag, cont.start, cont.desp, cont.details, cont.color, end=t)
                )
            self._finalized = True
            return result

    def finalize(self, end: str) -> list[Annotation]:
        """Close ongoing annotations and return everything, ending with an info point."""
        result = self._finalize()
        result.append(Annotation(Tag.INFO.value, timestamp(), end, end, Color.INFO.value))
        return result

    def point(self, tag, desp: str, details: str, color=Color.USER) -> None:
        with self._lock:
            self._annotations.append(
                Annotation(_text(tag), timestamp(), desp, details, _text(color))
            )

    def interval(self, tag, start: int, desp: str, details: str, color=Color.USER) -> None:
        with self._lock:
            self._annotations.append(
                Annotation(_text(tag), start, desp, details, _text(color), end=timestamp())
            )

    def continuous(self, tag, desp: str, details: str, color=Color.USER) -> None:
        """Begin a continuous annotation, concluding any earlier one with the same tag."""
        tag = _text(tag)
        with self._lock:
            prev = self._continuous.get(tag)
            t = timestamp()
            if prev is not None:
                self._annotations.append(
                    Annotation(tag, prev.start, prev.desp, prev.details, prev.color, end=t)
                )
            self._continuous[tag] = _Continuous(t, desp, details, _text(color))

    def continuous_end(self, tag) -> None:
        """Conclude the ongoing continuous annotation for tag, if any."""
        tag = _text(tag)
        with self._lock:
            cont = self._continuous.pop(tag, None)
            if cont is None:
                return
            self._annotations.append(
                Annotation(tag, cont.start, cont.desp, cont.details, cont.color, end=timestamp())
            )

    def info(self, desp: str, details: str) -> None:
        self.point(Tag.INFO, desp, details, Color.INFO)

    def info_interval(self, start: int, desp: str, details: str) -> None:
        self.interval(Tag.INFO, start, desp, details, Color.INFO)

    def begin_test(self, desp: str, nservers: int) -> None:
        """Reset all state for a new test with nservers servers."""
        details = f"{desp} ({nservers} servers)"
        with self._info_lock:
            self._nservers = nservers
            self._connected = [True] * nservers
            self._crashed = [False] * nservers
            self._ckbegin_ts = 0
            self._ckbegin_details = ""
        self.clear()
        self.info(details, details)

    # ---- checkers ----------------------------------------------------------

    def checker_begin(self, details: str) -> None:
        with self._info_lock:
            self._ckbegin_ts = timestamp()
            self._ckbegin_details = details

    def checker_end(self, desp: str, details: str, color) -> None:
        """Record a checker result, as an interval if a checker began, else a point."""
        with self._info_lock:
            if self._ckbegin_ts == 0:
                self.point(Tag.CHECKER, desp, details, color)
                return
            d = f"{self._ckbegin_details}: {details}"
            self.interval(Tag.CHECKER, self._ckbegin_ts, desp, d, color)
            self._ckbegin_ts = 0

    def checker_success(self, desp: str, details: str) -> None:
        self.checker_end(desp, details, Color.SUCCESS)

    def checker_failure(self, desp: str, details: str) -> None:
        self.checker_end(desp, details, Color.FAILURE)

    def checker_neutral(self, desp: str, details: str) -> None:
        self.checker_end(desp, details, Color.NEUTRAL)

    def set_finalized(self) -> None:
        with self._lock:
            self._finalized = True

    def is_finalized(self) -> bool:
        with self._lock:
            return self._finalized

    def checker_failure_before_exit(self, desp: str, details: str) -> None:
        self.checker_failure(desp, details)
        self.cleanup(True, "test failed")

    # ---- faults ------------------------------------------------------------

    def connection(self, connected: list[bool]) -> None:
        """Record the connectivity of each server, annotating if it changed."""
        with self._info_lock:
            if list(connected) == self._connected:
                return
            n = min(len(connected), len(self._connected))
            self._connected[:n] = list(connected)[:n]
            self._fault()

    def _fault(self) -> None:
        # Caller holds _info_lock.
        if all(self._connected) and not any(self._crashed):
            self.continuous_end(Tag.PARTITION)
            return
        conn: list[int] = []
        crashes: list[int] = []
        parts = ["partition = "]
        for sid, is_connected in enumerate(self._connected):
            if self._crashed[sid]:
                crashes.append(sid)
                continue
            if is_connected:
                conn.append(sid)
            else:
                parts.append(f"[{sid}] ")
        if conn:
            parts.append(_go_list(conn))
        if crashes:
            parts.append(f" / crash = {_go_list(crashes)}")
        text = "".join(parts)
        self.continuous(Tag.PARTITION, text, text, Color.FAULT)

    def two_partitions(self, p1: list[int], p2: list[int]) -> None:
        text = f"partition = {_go_list(list(p1))} {_go_list(list(p2))}"
        self.continuous(Tag.PARTITION, text, text, Color.FAULT)

    def clear_failure(self) -> None:
        with self._info_lock:
            self._crashed = [False] * len(self._crashed)
            self._connected = [True] * len(self._connected)
            self.continuous_end(Tag.PARTITION)

    def shutdown(self, servers: list[int]) -> None:
        with self._info_lock:
            changed = False
            for sid in servers:
                if not self._crashed[sid]:
                    changed = True
                self._crashed[sid] = True
            if changed:
                self._fault()

    def shutdown_all(self) -> None:
        with self._info_lock:
            n = self._nservers
        self.shutdown(list(range(n)))

    def restart(self, servers: list[int]) -> None:
        with self._info_lock:
            changed = False
            for sid in servers:
                if self._crashed[sid]:
                    changed = True
                self._crashed[sid] = False
            if changed:
                self._fault()

    def restart_all(self) -> None:
        with self._info_lock:
            n = self._nservers
        self.restart(list(range(n)))

    # ---- lifecycle ---------------------------------------------------------

    def clear(self) -> None:
        with self._lock:
            self._annotations = []
            self._continuous = {}
            self._finalized = False

    def cleanup(self, failed: bool, end: str) -> str | None:
        """Write a visualization file when called for; return its path, else None."""
        enabled = os.environ.get("VIS_ENABLE", "")
        if enabled == "never" or (not failed and enabled != "always") or self.is_finalized():
            self.clear()
            return None

        annotations = self._finalize()
        if not annotations:
            return None
        annotations.append(Annotation(Tag.INFO.value, timestamp(), end, end, Color.INFO.value))

        fpath = os.environ.get("VIS_FILE", "")
        try:
            if fpath:
                fh = open(fpath, "w", encoding="utf-8")
            else:
                fd, fpath = tempfile.mkstemp(prefix="porcupine-", suffix=".html")
                fh = os.fdopen(fd, "w", encoding="utf-8")
        except OSError as exc:
            print(f"info: failed to open visualization file {fpath} ({exc})")
            return None
        with fh:
            fh.write(_render(annotations))
        print(f"info: wrote visualization to {fpath}")
        return fpath


def _render(annotations: list[Annotation]) -> str:
    data = json.dumps([asdict(a) for a in annotations]).replace("</", "<\\/")
    rows = "\n".join(
        f'<tr style="background:{html.escape(a.background_color)}">'
        f"<td>{html.escape(a.tag)}</td><td>{a.start}</td><td>{a.end}</td>"
        f"<td>{html.escape(a.description)}</td><td>{html.escape(a.details)}</td></tr>"
        for a in annotations
    )
    return (
        "<!DOCTYPE html>\n<html><head><meta charset=\"utf-8\"><title>annotations</title>"
        "</head><body>\n<table>\n<tr><th>tag</th><th>start</th><th>end</th>"
        "<th>description</th><th>details</th></tr>\n"
        f"{rows}\n</table>\n<script type=\"application/json\" id=\"annotations\">"
        f"{data}</script>\n</body></html>\n"
    )


annotator = Annotator()