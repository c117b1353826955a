"""Discovery run lifecycle records."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


class RunStatus(Enum):
    """Lifecycle state of a discovery run.

    Valid transitions: QUEUED -> RUNNING -> SUCCEEDED | FAILED.
    """

    QUEUED = "queued"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (RunStatus.SUCCEEDED, RunStatus.FAILED)


class LogLevel(Enum):
    """Severity of a run log line."""

    INFO = "info"
    WARN = "warn"
    ERROR = "error"


@dataclass(frozen=True)
class DiscoveryRun:
    """A unit of scheduled discovery work."""

    id: str
    status: RunStatus
    scope: str | None = None
    stats: dict = field(default_factory=dict)
    started_at: datetime | None = None
    completed_at: datetime | None = None
    last_error: str | None = None


@dataclass(frozen=True)
class DiscoveryRunLog:
    """An append-only log line attached to a run."""

    run_id: str
    level: LogLevel
    message: str
    created_at: datetime | None = None


@dataclass(frozen=True)
class ServiceRecord:
    """An open port seen on a device by the port scan."""

    protocol: str
    port: int
    name: str | None = None
    state: str = "open"
    source: str = "nmap"
