from __future__ import annotations
from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import Optional, Tuple
import time

Identity = Tuple[int, int]  # (port, pid)


@dataclass(frozen=True)
class PortEntry:
    pid: int
    port: int
    protocol: str = "TCP"
    process_name: str = "Unknown"
    process_path: str = ""
    is_protected: bool = False
    local_address: str = ""

    def __post_init__(self):
        if not 1 <= self.port <= 65535:
            raise ValueError(f"port out of range: {self.port}")

    @property
    def identity(self) -> Identity:
        # a port can be reused by another pid between two polls
        return (self.port, self.pid)

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class Snapshot:
    entries: Tuple[PortEntry, ...] = ()
    timestamp: float = field(default_factory=time.time)
    is_privileged: bool = False

    def __post_init__(self):
        object.__setattr__(self, "entries", tuple(self.entries))

    def identities(self):
        return {e.identity for e in self.entries}

    def find(self, identity: Identity) -> Optional[PortEntry]:
        for e in self.entries:
            if e.identity == identity:
                return e
        return None

    def find_port(self, port: int) -> Optional[PortEntry]:
        for e in self.entries:
            if e.port == port:
                return e
        return None

    def __len__(self):
        return len(self.entries)


class ChangeState(str, Enum):
    NEW = "new"
    REMOVED = "removed"
    STABLE = "stable"


@dataclass(frozen=True)
class KillResult:
    success: bool
    message: str
    port: int = 0


@dataclass(frozen=True)
class ProcessDetails:
    pid: int
    name: str
    path: str = ""
    memory_bytes: int = 0
    cpu_percent: float = 0.0
    children: Tuple[int, ...] = ()

    @classmethod
    def fallback(cls, entry: PortEntry) -> "ProcessDetails":
        return cls(pid=entry.pid, name=entry.process_name, path=entry.process_path)


@dataclass(frozen=True)
class Notice:
    message: str
    level: str = "info"  # 'success', 'error', 'info'
    expires_at: float = 0.0
