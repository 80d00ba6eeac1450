"""Fixed-width text rendering of snapshots.

Every function here is pure. Numeric columns have fixed widths so that a
frame redrawn on the next tick lands on exactly the same columns.
"""

from datetime import datetime

from snaptop.models import CpuStats, MemoryStats, ProcessFact, Snapshot, TaskCounts
from snaptop.snapshot import BYTES_PER_MIB, to_mib

BANNER = "snaptop -"
DEFAULT_TOP_N = 15
MEM_WIDTH = 10
NAME_WIDTH = 16

PROCESS_HEADER = (
    f"{'PID':>7} {'NAME':<{NAME_WIDTH}} {'%CPU':>6} {'%MEM':>6} "
    f"{'WS(MiB)':>{MEM_WIDTH}} {'PAGED':>{MEM_WIDTH}} {'NPAGED':>{MEM_WIDTH}}  COMMAND"
)


def format_mib(size_mb: float) -> str:
    """Render a MiB figure right-aligned in a fixed column."""
    return f"{size_mb:{MEM_WIDTH}.1f}"


def format_uptime(seconds: float) -> str:
    """
    Uptime phrase for the summary line.

    At least one day gives "up D days, H:M,", at least one hour gives
    "up H:M," and anything shorter gives "up M min,". Fields are not
    zero-padded.
    """
    days = int(seconds // 86400)
    hours = int((seconds % 86400) // 3600)
    minutes = int((seconds % 3600) // 60)
    if days >= 1:
        return f"up {days} days, {hours}:{minutes},"
    if hours >= 1:
        return f"up {hours}:{minutes},"
    return f"up {minutes} min,"


def format_users(count: int) -> str:
    """User count phrase: "1 user," but "0 users," and "2 users,"."""
    noun = "user" if count == 1 else "users"
    return f"{count} {noun},"


def format_clock(timestamp: float) -> str:
    """Local wall-clock time of a timestamp as HH:MM:SS."""
    return datetime.fromtimestamp(timestamp).strftime("%H:%M:%S")


def format_summary_line(snapshot: Snapshot, core_count: int) -> str:
    """Banner, clock, uptime, users and core count."""
    return " ".join(
        [
            BANNER,
            format_clock(snapshot.timestamp),
            format_uptime(snapshot.uptime_seconds),
            format_users(snapshot.user_count),
            f"{core_count} cores",
        ]
    )


def format_tasks_line(counts: TaskCounts, total: int) -> str:
    """Task state totals."""
    return (
        f"Tasks: {total:4d} total, {counts.running:4d} running, {counts.ready:4d} ready, "
        f"{counts.suspended:4d} suspended, {counts.wait:4d} waiting"
    )


def format_cpu_line(cpu: CpuStats) -> str:
    """System CPU percentages with one decimal."""
    return (
        f"%Cpu(s): {cpu.utilization:5.1f} used, {cpu.idle:5.1f} idle, "
        f"{cpu.user:5.1f} user, {cpu.privileged:5.1f} priv, {cpu.interrupt:5.1f} intr"
    )


def format_memory_lines(memory: MemoryStats) -> list[str]:
    """Physical memory, kernel pools and commit charge in MiB."""
    return [
        f"MiB Mem : {format_mib(memory.total_mb)} total, {format_mib(memory.free_mb)} free, "
        f"{format_mib(memory.in_use_mb)} used, {format_mib(memory.cached_mb)} cached",
        f"MiB Pool: {format_mib(memory.paged_pool_mb)} paged, "
        f"{format_mib(memory.nonpaged_pool_mb)} nonpaged",
        f"MiB Comm: {format_mib(memory.committed_mb)} commit, "
        f"{format_mib(memory.commit_limit_mb)} limit",
    ]


def memory_percent(proc: ProcessFact, memory: MemoryStats) -> float:
    """Working set as a percentage of physical memory."""
    total_bytes = memory.total_mb * BYTES_PER_MIB
    if total_bytes <= 0:
        return 0.0
    return proc.working_set_bytes / total_bytes * 100.0


def sort_processes(snapshot: Snapshot) -> list[ProcessFact]:
    """Processes by CPU% descending; ties keep their enumeration order."""
    return sorted(snapshot.processes, key=lambda p: snapshot.cpu_rate(p.pid), reverse=True)


def printable(text: str) -> str:
    """Replace newlines and other control characters with spaces."""
    return "".join(c if c.isprintable() else " " for c in text)


def format_process_row(proc: ProcessFact, snapshot: Snapshot) -> str:
    """One row of the process table. Always a single physical line."""
    name = printable(proc.name)[:NAME_WIDTH]
    return (
        f"{proc.pid:>7} {name:<{NAME_WIDTH}} {snapshot.cpu_rate(proc.pid):6.1f} "
        f"{memory_percent(proc, snapshot.memory):6.2f} "
        f"{format_mib(to_mib(proc.working_set_bytes))} "
        f"{format_mib(to_mib(proc.paged_mem_bytes))} "
        f"{format_mib(to_mib(proc.nonpaged_mem_bytes))}  {printable(proc.command_line)}"
    )


def format_process_table(snapshot: Snapshot, top_n: int = DEFAULT_TOP_N) -> list[str]:
    """Header plus the top_n busiest processes."""
    rows = sort_processes(snapshot)[: max(0, top_n)]
    return [PROCESS_HEADER] + [format_process_row(proc, snapshot) for proc in rows]


def format_frame(
    snapshot: Snapshot,
    core_count: int,
    top_n: int = DEFAULT_TOP_N,
    width: int | None = None,
) -> list[str]:
    """
    Render a fully derived snapshot as one frame of text lines.

    Args:
        snapshot: Snapshot with task counts and CPU rates filled in.
        core_count: Logical core count, shown in the summary line.
        top_n: Number of process rows to show.
        width: If given, every line is cut to this many characters.
    """
    lines = [
        format_summary_line(snapshot, core_count),
        format_tasks_line(snapshot.task_counts, len(snapshot.processes)),
        format_cpu_line(snapshot.cpu),
        *format_memory_lines(snapshot.memory),
        "",
        *format_process_table(snapshot, top_n),
    ]
    if width is not None:
        lines = [line[:width] for line in lines]
    return lines
