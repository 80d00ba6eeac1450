"""Host metric collection for snaptop."""

import ctypes
import logging
import sys
import time
from pathlib import Path

import psutil

from snaptop.errors import CounterUnavailable
from snaptop.models import RawProcess, RawSample, ThreadFact, ThreadState, WaitReason

logger = logging.getLogger(__name__)

# Attributes fetched per process in one process_iter() pass
PROCESS_ATTRS = ["pid", "name", "memory_info", "cpu_times", "cmdline", "status"]

# /proc/meminfo fields (kB) mapped to counter keys
MEMINFO_FIELDS = {
    "Committed_AS": "memory.committed",
    "CommitLimit": "memory.commit_limit",
    "SReclaimable": "memory.paged_pool",
    "SUnreclaim": "memory.nonpaged_pool",
}

# Linux thread state letters that mean "stopped"
_STOPPED_STATES = ("T", "t")


def _thread_from_state_letter(letter: str) -> ThreadFact:
    """Map a /proc task state letter onto a ThreadFact."""
    if letter == "R":
        return ThreadFact(ThreadState.RUNNING)
    if letter in _STOPPED_STATES:
        return ThreadFact(ThreadState.WAITING, WaitReason.SUSPENDED)
    return ThreadFact(ThreadState.WAITING, WaitReason.EXECUTIVE)


def _thread_from_status(status: str | None) -> ThreadFact:
    """Synthesize a single thread from a psutil status on hosts without a thread table."""
    if status == psutil.STATUS_RUNNING:
        return ThreadFact(ThreadState.RUNNING)
    if status == psutil.STATUS_STOPPED:
        return ThreadFact(ThreadState.WAITING, WaitReason.SUSPENDED)
    return ThreadFact(ThreadState.WAITING, WaitReason.EXECUTIVE)


def read_linux_threads(pid: int, proc_root: Path = Path("/proc")) -> tuple[ThreadFact, ...]:
    """
    Read the scheduler state of every thread of a Linux process.

    Returns an empty tuple if the process vanished while reading.
    """
    threads: list[ThreadFact] = []
    try:
        task_dirs = sorted((proc_root / str(pid) / "task").iterdir())
    except OSError:
        return ()

    for task_dir in task_dirs:
        try:
            stat = (task_dir / "stat").read_text()
        except OSError:
            continue  # thread exited
        # comm may contain spaces and parens; the state follows the last ')'
        fields = stat.rsplit(")", 1)[-1].split()
        if fields:
            threads.append(_thread_from_state_letter(fields[0]))
    return tuple(threads)


# NtQuerySystemInformation class and status codes
SYSTEM_PROCESS_INFORMATION = 5
STATUS_INFO_LENGTH_MISMATCH = 0xC0000004


class UnicodeString(ctypes.Structure):
    _fields_ = [
        ("Length", ctypes.c_uint16),
        ("MaximumLength", ctypes.c_uint16),
        ("Buffer", ctypes.c_void_p),
    ]


class SystemProcessInformation(ctypes.Structure):
    """One process entry; its thread entries follow it directly."""

    _fields_ = [
        ("NextEntryOffset", ctypes.c_uint32),
        ("NumberOfThreads", ctypes.c_uint32),
        ("WorkingSetPrivateSize", ctypes.c_int64),
        ("HardFaultCount", ctypes.c_uint32),
        ("NumberOfThreadsHighWatermark", ctypes.c_uint32),
        ("CycleTime", ctypes.c_uint64),
        ("CreateTime", ctypes.c_int64),
        ("UserTime", ctypes.c_int64),
        ("KernelTime", ctypes.c_int64),
        ("ImageName", UnicodeString),
        ("BasePriority", ctypes.c_int32),
        ("UniqueProcessId", ctypes.c_void_p),
        ("InheritedFromUniqueProcessId", ctypes.c_void_p),
        ("HandleCount", ctypes.c_uint32),
        ("SessionId", ctypes.c_uint32),
        ("UniqueProcessKey", ctypes.c_size_t),
        ("PeakVirtualSize", ctypes.c_size_t),
        ("VirtualSize", ctypes.c_size_t),
        ("PageFaultCount", ctypes.c_uint32),
        ("PeakWorkingSetSize", ctypes.c_size_t),
        ("WorkingSetSize", ctypes.c_size_t),
        ("QuotaPeakPagedPoolUsage", ctypes.c_size_t),
        ("QuotaPagedPoolUsage", ctypes.c_size_t),
        ("QuotaPeakNonPagedPoolUsage", ctypes.c_size_t),
        ("QuotaNonPagedPoolUsage", ctypes.c_size_t),
        ("PagefileUsage", ctypes.c_size_t),
        ("PeakPagefileUsage", ctypes.c_size_t),
        ("PrivatePageCount", ctypes.c_size_t),
        ("ReadOperationCount", ctypes.c_int64),
        ("WriteOperationCount", ctypes.c_int64),
        ("OtherOperationCount", ctypes.c_int64),
        ("ReadTransferCount", ctypes.c_int64),
        ("WriteTransferCount", ctypes.c_int64),
        ("OtherTransferCount", ctypes.c_int64),
    ]


class SystemThreadInformation(ctypes.Structure):
    _fields_ = [
        ("KernelTime", ctypes.c_int64),
        ("UserTime", ctypes.c_int64),
        ("CreateTime", ctypes.c_int64),
        ("WaitTime", ctypes.c_uint32),
        ("StartAddress", ctypes.c_void_p),
        ("UniqueProcess", ctypes.c_void_p),
        ("UniqueThread", ctypes.c_void_p),
        ("Priority", ctypes.c_int32),
        ("BasePriority", ctypes.c_int32),
        ("ContextSwitches", ctypes.c_uint32),
        ("ThreadState", ctypes.c_uint32),
        ("WaitReason", ctypes.c_uint32),
    ]


def _thread_from_kernel(state: int, wait_reason: int) -> ThreadFact:
    """Map a kernel thread state and wait reason onto a ThreadFact."""
    try:
        thread_state = ThreadState(state)
    except ValueError:
        thread_state = ThreadState.UNKNOWN
    if thread_state is not ThreadState.WAITING:
        return ThreadFact(thread_state)
    try:
        return ThreadFact(thread_state, WaitReason(wait_reason))
    except ValueError:
        return ThreadFact(thread_state)


def _thread_from_windows_status(status: str | None) -> ThreadFact:
    """
    Synthesize a thread when the kernel thread table could not be read.

    On Windows psutil reports every process that is not suspended as
    running, so that status says nothing about the scheduler state.
    """
    if status == psutil.STATUS_STOPPED:
        return ThreadFact(ThreadState.WAITING, WaitReason.SUSPENDED)
    return ThreadFact(ThreadState.UNKNOWN)


def parse_process_threads(buffer: bytes) -> dict[int, tuple[ThreadFact, ...]]:
    """Walk a SystemProcessInformation buffer into pid -> thread facts."""
    proc_size = ctypes.sizeof(SystemProcessInformation)
    thread_size = ctypes.sizeof(SystemThreadInformation)
    threads_by_pid: dict[int, tuple[ThreadFact, ...]] = {}

    offset = 0
    while offset + proc_size <= len(buffer):
        entry = SystemProcessInformation.from_buffer_copy(buffer, offset)
        threads: list[ThreadFact] = []
        for index in range(entry.NumberOfThreads):
            start = offset + proc_size + index * thread_size
            if start + thread_size > len(buffer):
                break
            thread = SystemThreadInformation.from_buffer_copy(buffer, start)
            threads.append(_thread_from_kernel(thread.ThreadState, thread.WaitReason))
        # The idle process has a NULL id
        threads_by_pid[entry.UniqueProcessId or 0] = tuple(threads)

        if entry.NextEntryOffset == 0:
            break
        offset += entry.NextEntryOffset
    return threads_by_pid


def read_windows_threads() -> dict[int, tuple[ThreadFact, ...]]:
    """
    Read the state and wait reason of every thread on a Windows host.

    One NtQuerySystemInformation call covers all processes, so this is
    done once per sample rather than once per process.

    Raises:
        OSError: If the kernel refuses the query.
    """
    query = ctypes.windll.ntdll.NtQuerySystemInformation
    query.argtypes = [
        ctypes.c_uint32,
        ctypes.c_void_p,
        ctypes.c_uint32,
        ctypes.POINTER(ctypes.c_uint32),
    ]
    query.restype = ctypes.c_int32

    size = 256 * 1024
    while True:
        buffer = ctypes.create_string_buffer(size)
        needed = ctypes.c_uint32()
        status = query(SYSTEM_PROCESS_INFORMATION, buffer, size, ctypes.byref(needed)) & 0xFFFFFFFF
        if status == STATUS_INFO_LENGTH_MISMATCH:
            # The process table can grow between calls
            size = max(size * 2, needed.value + 64 * 1024)
            continue
        if status != 0:
            raise OSError(f"NtQuerySystemInformation failed with status {status:#010x}")
        return parse_process_threads(buffer.raw[: needed.value or size])


def read_meminfo(path: Path = Path("/proc/meminfo")) -> dict[str, float]:
    """Read commit and kernel pool counters from /proc/meminfo, in bytes."""
    counters: dict[str, float] = {}
    try:
        text = path.read_text()
    except OSError:
        return counters

    for line in text.splitlines():
        name, _, rest = line.partition(":")
        key = MEMINFO_FIELDS.get(name.strip())
        if key is None:
            continue
        parts = rest.split()
        try:
            counters[key] = float(parts[0]) * 1024
        except (IndexError, ValueError):
            continue
    return counters


def read_windows_performance_info() -> dict[str, float]:
    """Read commit, cache and kernel pool counters via GetPerformanceInfo."""
    from ctypes import wintypes

    class PerformanceInformation(ctypes.Structure):
        _fields_ = [
            ("cb", wintypes.DWORD),
            ("CommitTotal", ctypes.c_size_t),
            ("CommitLimit", ctypes.c_size_t),
            ("CommitPeak", ctypes.c_size_t),
            ("PhysicalTotal", ctypes.c_size_t),
            ("PhysicalAvailable", ctypes.c_size_t),
            ("SystemCache", ctypes.c_size_t),
            ("KernelTotal", ctypes.c_size_t),
            ("KernelPaged", ctypes.c_size_t),
            ("KernelNonpaged", ctypes.c_size_t),
            ("PageSize", ctypes.c_size_t),
            ("HandleCount", wintypes.DWORD),
            ("ProcessCount", wintypes.DWORD),
            ("ThreadCount", wintypes.DWORD),
        ]

    info = PerformanceInformation()
    info.cb = ctypes.sizeof(info)
    if not ctypes.windll.psapi.GetPerformanceInfo(ctypes.byref(info), info.cb):
        return {}

    page = float(info.PageSize)
    return {
        "memory.committed": info.CommitTotal * page,
        "memory.commit_limit": info.CommitLimit * page,
        "memory.cached": info.SystemCache * page,
        "memory.paged_pool": info.KernelPaged * page,
        "memory.nonpaged_pool": info.KernelNonpaged * page,
    }


class MetricSource:
    """
    Reads every counter and process fact one tick needs, using psutil.

    System-wide CPU and memory counters are read back to back before the
    process table is walked, to keep them as close together in time as
    possible. Individual counters that cannot be read are left out of the
    sample; only a failure of the system-wide queries raises
    CounterUnavailable.
    """

    def __init__(self) -> None:
        """Initialize the MetricSource and prime the CPU percent counters."""
        self._is_windows = sys.platform == "win32"
        self._is_linux = sys.platform.startswith("linux")
        # First call returns meaningless values; later calls measure since this one
        psutil.cpu_times_percent(interval=None)

    def logical_core_count(self) -> int:
        """Number of logical CPUs. Query once; it is constant for the process lifetime."""
        return psutil.cpu_count(logical=True) or 1

    def sample(self) -> RawSample:
        """Collect one RawSample for the current tick."""
        try:
            cpu = psutil.cpu_times_percent(interval=None)
            mem = psutil.virtual_memory()
            boot_time = psutil.boot_time()
        except (OSError, psutil.Error) as exc:
            raise CounterUnavailable(f"system counters unavailable: {exc}") from exc

        counters: dict[str, float] = {
            "cpu.idle": cpu.idle,
            "cpu.user": cpu.user,
            "cpu.privileged": cpu.system,
            "memory.total": float(mem.total),
            "memory.free": float(mem.available),
            "system.uptime": max(0.0, time.time() - boot_time),
        }
        counters.update(self._interrupt_counters(cpu))
        if hasattr(mem, "cached"):
            counters["memory.cached"] = float(mem.cached)
        counters.update(self._extra_memory_counters())

        try:
            counters["system.users"] = float(len(psutil.users()))
        except (OSError, psutil.Error):
            logger.debug("user count unavailable this tick")

        processes = self._collect_processes()
        return RawSample(counters=counters, processes=processes)

    def _interrupt_counters(self, cpu) -> dict[str, float]:
        """Interrupt and deferred-procedure time, under whatever names the host uses."""
        counters: dict[str, float] = {}
        if hasattr(cpu, "interrupt"):
            counters["cpu.interrupt"] = cpu.interrupt
            counters["cpu.dpc"] = getattr(cpu, "dpc", 0.0)
        elif hasattr(cpu, "irq"):
            counters["cpu.interrupt"] = cpu.irq
            counters["cpu.dpc"] = getattr(cpu, "softirq", 0.0)
        return counters

    def _extra_memory_counters(self) -> dict[str, float]:
        """Commit and pool counters that psutil does not expose."""
        if self._is_windows:
            try:
                return read_windows_performance_info()
            except OSError:
                logger.debug("GetPerformanceInfo failed", exc_info=True)
                return {}
        if self._is_linux:
            return read_meminfo()
        return {}

    def _windows_threads(self) -> dict[int, tuple[ThreadFact, ...]]:
        """The kernel thread table, or an empty one if it cannot be read."""
        try:
            return read_windows_threads()
        except OSError:
            logger.debug("NtQuerySystemInformation failed", exc_info=True)
            return {}

    def _process_threads(
        self,
        pid: int,
        status: str | None,
        windows_threads: dict[int, tuple[ThreadFact, ...]],
    ) -> tuple[ThreadFact, ...]:
        """Thread facts of one process from the best source the host offers."""
        if self._is_linux:
            return read_linux_threads(pid)
        if self._is_windows:
            threads = windows_threads.get(pid)
            return threads if threads else (_thread_from_windows_status(status),)
        return (_thread_from_status(status),)

    def _collect_processes(self) -> list[RawProcess]:
        """
        Collect raw facts for all processes.

        Processes that vanish mid-poll are skipped; fields that cannot be
        read because of AccessDenied come back as None.
        """
        processes: list[RawProcess] = []
        windows_threads = self._windows_threads() if self._is_windows else {}

        for proc in psutil.process_iter(attrs=PROCESS_ATTRS, ad_value=None):
            try:
                info = proc.info
                pid = info.get("pid", proc.pid)

                cmdline = info.get("cmdline") or []
                command_line = " ".join(cmdline) if cmdline else None

                cpu_times = info.get("cpu_times")
                cpu_seconds = cpu_times.user + cpu_times.system if cpu_times else None

                working_set, paged, nonpaged = self._process_memory(info.get("memory_info"))

                threads = self._process_threads(pid, info.get("status"), windows_threads)

                processes.append(
                    RawProcess(
                        pid=pid,
                        name=info.get("name"),
                        working_set_bytes=working_set,
                        paged_mem_bytes=paged,
                        nonpaged_mem_bytes=nonpaged,
                        cpu_seconds=cpu_seconds,
                        command_line=command_line,
                        threads=threads,
                    )
                )
            except (psutil.NoSuchProcess, psutil.ZombieProcess):
                continue

        return processes

    def _process_memory(self, mem_info) -> tuple[float | None, float | None, float | None]:
        """Working set, paged and non-paged bytes of one process."""
        if mem_info is None:
            return None, None, None
        working_set = float(mem_info.rss)
        if hasattr(mem_info, "pagefile"):
            paged = float(mem_info.pagefile)
        else:
            paged = float(max(0, mem_info.vms - mem_info.rss))
        nonpaged = float(getattr(mem_info, "nonpaged_pool", 0))
        return working_set, paged, nonpaged

