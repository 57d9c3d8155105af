"""Data models for daemonspawn."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from pathlib import Path


class Liveness(enum.Enum):
    """State of one instance, derived from its pidfile on every query."""

    ALIVE = "alive"
    STALE = "stale"
    ABSENT = "absent"


class ShutdownOutcome(enum.Enum):
    """How a stop request for a single pid ended."""

    STOPPED = "stopped"
    KILLED = "killed"
    NOT_RUNNING = "not_running"
    DENIED = "denied"


@dataclass
class InstanceHandle:
    """One running or formerly-running daemon instance."""

    index: int
    pid_file: Path
    pid: int | None = None
    state: Liveness = Liveness.ABSENT


@dataclass
class StartReport:
    """Aggregate result of a start pass over the group."""

    started: list[InstanceHandle] = field(default_factory=list)
    running: list[InstanceHandle] = field(default_factory=list)
    failed: list[tuple[InstanceHandle, str]] = field(default_factory=list)

    @property
    def already_started(self) -> bool:
        return bool(self.running)

    @property
    def ok(self) -> bool:
        return not self.failed


@dataclass
class StopReport:
    """Aggregate result of a stop pass over the group."""

    stopped: list[tuple[InstanceHandle, ShutdownOutcome]] = field(default_factory=list)
    stale: list[InstanceHandle] = field(default_factory=list)
    no_pidfiles: bool = False

    @property
    def denied(self) -> list[InstanceHandle]:
        return [h for h, outcome in self.stopped if outcome is ShutdownOutcome.DENIED]

    @property
    def ok(self) -> bool:
        return not self.denied


@dataclass
class StatusReport:
    """Per-instance liveness of the group."""

    instances: list[InstanceHandle] = field(default_factory=list)

    @property
    def pids(self) -> list[int]:
        return [h.pid for h in self.instances if h.state is Liveness.ALIVE and h.pid is not None]

    @property
    def running(self) -> list[InstanceHandle]:
        return [h for h in self.instances if h.state is Liveness.ALIVE]
