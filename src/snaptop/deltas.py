"""Per-process CPU rates between two ticks."""

from collections.abc import Mapping
from dataclasses import dataclass, field
from types import MappingProxyType

from snaptop.models import Snapshot


@dataclass(slots=True, frozen=True)
class PrevState:
    """What the previous tick leaves behind for rate computation."""

    timestamp: float
    cpu_seconds: Mapping[int, float] = field(default_factory=dict)

    @classmethod
    def from_snapshot(cls, snapshot: Snapshot) -> "PrevState":
        """Keep the timestamp and cumulative CPU time of every process."""
        cpu_seconds = {proc.pid: proc.cpu_seconds for proc in snapshot.processes}
        return cls(timestamp=snapshot.timestamp, cpu_seconds=MappingProxyType(cpu_seconds))


def cpu_percent(
    current_seconds: float,
    prev_seconds: float,
    elapsed: float,
    core_count: int,
) -> float:
    """
    CPU% over an interval, normalized to all logical cores.

    Returns 0 when no time has passed or when the cumulative counter went
    backwards (a reused pid).
    """
    if elapsed <= 0 or core_count <= 0:
        return 0.0
    percent = (current_seconds - prev_seconds) / (elapsed * core_count) * 100.0
    return max(0.0, percent)


def compute_rates(
    current: Snapshot,
    prev: PrevState | None,
    core_count: int,
) -> dict[int, float]:
    """
    CPU% since the previous tick for every process in the current snapshot.

    Processes with no previous reading (first tick, or newly started) get
    0. Processes only present in the previous tick are not reported.
    """
    if prev is None:
        return {proc.pid: 0.0 for proc in current.processes}

    elapsed = current.timestamp - prev.timestamp
    rates: dict[int, float] = {}
    for proc in current.processes:
        prev_seconds = prev.cpu_seconds.get(proc.pid)
        if prev_seconds is None:
            rates[proc.pid] = 0.0
        else:
            rates[proc.pid] = cpu_percent(proc.cpu_seconds, prev_seconds, elapsed, core_count)
    return rates
