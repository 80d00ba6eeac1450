"""Data models for snaptop."""

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import IntEnum
from types import MappingProxyType


class ThreadState(IntEnum):
    """Scheduler state of a single thread."""

    INITIALIZED = 0
    READY = 1
    RUNNING = 2
    STANDBY = 3
    TERMINATED = 4
    WAITING = 5
    TRANSITION = 6
    UNKNOWN = 7


class WaitReason(IntEnum):
    """Why a waiting thread is waiting. Only the values snaptop inspects."""

    EXECUTIVE = 0
    SUSPENDED = 5


@dataclass(slots=True, frozen=True)
class ThreadFact:
    """State of one thread of a process."""

    state: ThreadState
    wait_reason: WaitReason | None = None


@dataclass(slots=True, frozen=True)
class RawProcess:
    """Per-process facts as read from the host. Unreadable fields are None."""

    pid: int
    name: str | None = None
    working_set_bytes: float | None = None
    paged_mem_bytes: float | None = None
    nonpaged_mem_bytes: float | None = None
    cpu_seconds: float | None = None
    command_line: str | None = None
    threads: tuple[ThreadFact, ...] = ()


@dataclass(slots=True, frozen=True)
class RawSample:
    """One tick worth of host metrics, keyed by counter name."""

    counters: dict[str, float]
    processes: list[RawProcess] = field(default_factory=list)

    def get(self, key: str) -> float:
        """Return a counter value, reading an absent counter as 0."""
        value = self.counters.get(key)
        return float(value) if value is not None else 0.0


@dataclass(slots=True, frozen=True)
class CpuStats:
    """System-wide CPU percentages in [0, 100]."""

    utilization: float
    idle: float
    user: float
    privileged: float
    interrupt: float  # interrupt + DPC


@dataclass(slots=True, frozen=True)
class MemoryStats:
    """System memory figures in MiB."""

    total_mb: float
    free_mb: float
    cached_mb: float
    paged_pool_mb: float
    nonpaged_pool_mb: float
    committed_mb: float
    commit_limit_mb: float

    @property
    def in_use_mb(self) -> float:
        """Memory in use, always derived from total and free."""
        return self.total_mb - self.free_mb


@dataclass(slots=True, frozen=True)
class ProcessFact:
    """Immutable per-process record of one snapshot."""

    pid: int
    name: str
    working_set_bytes: float
    paged_mem_bytes: float
    nonpaged_mem_bytes: float
    cpu_seconds: float  # cumulative user + kernel time
    command_line: str
    threads: tuple[ThreadFact, ...] = ()


@dataclass(slots=True, frozen=True)
class TaskCounts:
    """Process counts per task state. Buckets may overlap."""

    running: int = 0
    ready: int = 0
    suspended: int = 0
    wait: int = 0


@dataclass(slots=True, frozen=True)
class Snapshot:
    """Internally consistent view of the system for one tick."""

    cpu: CpuStats
    memory: MemoryStats
    processes: tuple[ProcessFact, ...]
    timestamp: float
    uptime_seconds: float = 0.0
    user_count: int = 0
    task_counts: TaskCounts = field(default_factory=TaskCounts)
    cpu_rates: Mapping[int, float] = field(default_factory=dict, hash=False)  # pid -> CPU%

    def __post_init__(self) -> None:
        """Freeze the rate table into a read-only copy."""
        object.__setattr__(self, "cpu_rates", MappingProxyType(dict(self.cpu_rates)))

    def cpu_rate(self, pid: int) -> float:
        """CPU% of a process since the previous tick, 0 when unknown."""
        return self.cpu_rates.get(pid, 0.0)
