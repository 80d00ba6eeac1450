"""Turns raw host samples into Snapshot values."""

from snaptop.models import CpuStats, MemoryStats, ProcessFact, RawProcess, RawSample, Snapshot

BYTES_PER_MIB = 1024**2


def to_mib(size: float) -> float:
    """Convert bytes to MiB (2**20 bytes)."""
    return size / BYTES_PER_MIB


def _percent(value: float) -> float:
    return min(100.0, max(0.0, value))


def build_cpu(raw: RawSample) -> CpuStats:
    """CPU percentages from a raw sample; interrupt includes DPC time."""
    idle = _percent(raw.get("cpu.idle"))
    return CpuStats(
        utilization=100.0 - idle,
        idle=idle,
        user=_percent(raw.get("cpu.user")),
        privileged=_percent(raw.get("cpu.privileged")),
        interrupt=_percent(raw.get("cpu.interrupt") + raw.get("cpu.dpc")),
    )


def build_memory(raw: RawSample) -> MemoryStats:
    """Memory figures in MiB from a raw sample."""
    return MemoryStats(
        total_mb=to_mib(raw.get("memory.total")),
        free_mb=to_mib(raw.get("memory.free")),
        cached_mb=to_mib(raw.get("memory.cached")),
        paged_pool_mb=to_mib(raw.get("memory.paged_pool")),
        nonpaged_pool_mb=to_mib(raw.get("memory.nonpaged_pool")),
        committed_mb=to_mib(raw.get("memory.committed")),
        commit_limit_mb=to_mib(raw.get("memory.commit_limit")),
    )


def build_process(raw: RawProcess) -> ProcessFact:
    """Fill unreadable process fields with zero values."""
    name = raw.name or ""
    return ProcessFact(
        pid=raw.pid,
        name=name,
        working_set_bytes=raw.working_set_bytes or 0.0,
        paged_mem_bytes=raw.paged_mem_bytes or 0.0,
        nonpaged_mem_bytes=raw.nonpaged_mem_bytes or 0.0,
        cpu_seconds=raw.cpu_seconds or 0.0,
        command_line=raw.command_line or name,
        threads=raw.threads,
    )


def build_snapshot(raw: RawSample, now: float) -> Snapshot:
    """
    Build the Snapshot for one tick.

    Never fails: absent counters and fields read as 0, giving a degraded but
    renderable Snapshot. Task counts and CPU rates are left empty; they are
    derived in later stages.

    Args:
        raw: The sample collected for this tick.
        now: Capture instant in epoch seconds.
    """
    return Snapshot(
        cpu=build_cpu(raw),
        memory=build_memory(raw),
        processes=tuple(build_process(proc) for proc in raw.processes),
        timestamp=now,
        uptime_seconds=max(0.0, raw.get("system.uptime")),
        user_count=int(raw.get("system.users")),
    )
