"""Shard configurations: which replica group serves each shard."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field

log = logging.getLogger(__name__)

NSHARDS = 12
NUM_FIRST = 1
GID1 = 1

_FNV_OFFSET = 0x811C9DC5
_FNV_PRIME = 0x01000193


class ConfigError(Exception):
    """A configuration change or check found an inconsistency."""


def key_to_shard(key: str) -> int:
    """Return the shard a key belongs to (32-bit FNV-1a modulo NSHARDS)."""
    h = _FNV_OFFSET
    for b in key.encode():
        h ^= b
        h = (h * _FNV_PRIME) & 0xFFFFFFFF
    return h % NSHARDS


@dataclass
class ShardConfig:
    """A numbered assignment of shards to groups, and groups to servers."""

    num: int = 0
    shards: list[int] = field(default_factory=lambda: [0] * NSHARDS)
    groups: dict[int, list[str]] = field(default_factory=dict)

    def to_json(self) -> str:
        groups = {str(gid): list(self.groups[gid]) for gid in sorted(self.groups, key=str)}
        doc = {"Num": self.num, "Shards": list(self.shards), "Groups": groups}
        return json.dumps(doc, separators=(",", ":"))

    __str__ = to_json

    @classmethod
    def from_json(cls, text: str) -> "ShardConfig":
        try:
            doc = json.loads(text)
        except ValueError as exc:
            raise ConfigError(f"unmarshal error: {exc}") from exc
        if not isinstance(doc, dict):
            raise ConfigError("unmarshal error: not an object")
        try:
            shards = [int(g) for g in (doc.get("Shards") or [])][:NSHARDS]
            shards += [0] * (NSHARDS - len(shards))
            groups = {int(k): list(v) for k, v in (doc.get("Groups") or {}).items()}
            num = int(doc.get("Num") or 0)
        except (TypeError, ValueError) as exc:
            raise ConfigError(f"unmarshal error: {exc}") from exc
        return cls(num=num, shards=shards, groups=groups)

    def copy(self) -> "ShardConfig":
        return ShardConfig(
            num=self.num,
            shards=list(self.shards),
            groups={gid: list(srvs) for gid, srvs in self.groups.items()},
        )

    def _analyze(self) -> tuple[int, int, int, int]:
        """Return (most-loaded gid, its count, least-loaded gid, its count)."""
        counts: dict[int, int] = {}
        for g in self.shards:
            counts[g] = counts.get(g, 0) + 1
        most_n, most_g = -1, -1
        least_n, least_g = 257, -1
        for g in sorted(self.groups):
            n = counts.get(g, 0)
            if n < least_n:
                least_n, least_g = n, g
            if n > most_n:
                most_n, most_g = n, g
        return most_g, most_n, least_g, least_n

    def rebalance(self) -> None:
        """Spread shards evenly over the current groups."""
        if not self.groups:
            self.shards = [0] * NSHARDS
            return

        for s, g in enumerate(list(self.shards)):
            if g not in self.groups:
                self.shards[s] = self._analyze()[2]

        while True:
            most_g, most_n, least_g, least_n = self._analyze()
            if most_n < least_n + 2:
                break
            self.shards[self.shards.index(most_g)] = least_g

    def join(self, servers: dict[int, list[str]]) -> bool:
        """Add groups; False if one is already present."""
        changed = False
        for gid, srvs in servers.items():
            if gid in self.groups:
                log.warning("re-Join %s", gid)
                return False
            for xgid, xsrvs in self.groups.items():
                for s in xsrvs:
                    if s in srvs:
                        raise ConfigError(
                            f"Join({gid}) puts server {s} in groups {xgid} and {gid}"
                        )
            self.groups[gid] = list(srvs)
            changed = True
        if not changed:
            raise ConfigError("Join but no change")
        self.num += 1
        return True

    def leave(self, gids: list[int]) -> bool:
        """Remove groups; False if one is not present."""
        changed = False
        for gid in gids:
            if gid not in self.groups:
                log.warning("Leave(%s) but not in config", gid)
                return False
            del self.groups[gid]
            changed = True
        if not changed:
            raise ConfigError("Leave but no change")
        self.num += 1
        return True

    def join_balance(self, servers: dict[int, list[str]]) -> bool:
        if not self.join(servers):
            return False
        self.rebalance()
        return True

    def leave_balance(self, gids: list[int]) -> bool:
        if not self.leave(gids):
            return False
        self.rebalance()
        return True

    def gid_servers(self, shard: int) -> tuple[int, list[str] | None, bool]:
        """Return (gid, servers, found) for the group serving shard."""
        gid = self.shards[shard]
        srvs = self.groups.get(gid)
        return gid, srvs, srvs is not None

    def is_member(self, gid: int) -> bool:
        return gid in self.shards

    def check_config(self, groups: list[int]) -> None:
        """Raise ConfigError unless exactly these groups serve a balanced assignment."""
        if len(self.groups) != len(groups):
            raise ConfigError(f"wanted {len(groups)} groups, got {len(self.groups)}")
        for g in groups:
            if g not in self.groups:
                raise ConfigError(f"missing group {g}")
        if groups:
            for s, g in enumerate(self.shards):
                if g not in self.groups:
                    raise ConfigError(f"shard {s} -> invalid group {g}")
        counts: dict[int, int] = {}
        for g in self.shards:
            counts[g] = counts.get(g, 0) + 1
        lo, hi = 257, 0
        for g in self.groups:
            n = counts.get(g, 0)
            hi = max(hi, n)
            lo = min(lo, n)
        if hi > lo + 1:
            raise ConfigError(f"max {hi} too much larger than min {lo}")


@dataclass
class FreezeShardArgs:
    shard: int
    num: int


@dataclass
class FreezeShardReply:
    state: bytes = b""
    num: int = 0
    err: str = ""


@dataclass
class InstallShardArgs:
    shard: int
    state: bytes
    num: int


@dataclass
class InstallShardReply:
    err: str = ""


@dataclass
class DeleteShardArgs:
    shard: int
    num: int


@dataclass
class DeleteShardReply:
    err: str = ""