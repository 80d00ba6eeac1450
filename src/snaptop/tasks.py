"""Task-state classification."""

from collections.abc import Iterable

from snaptop.models import ProcessFact, TaskCounts, ThreadState, WaitReason


def has_thread_in(proc: ProcessFact, state: ThreadState) -> bool:
    """True if any thread of the process is in the given state."""
    return any(thread.state == state for thread in proc.threads)


def is_suspended(proc: ProcessFact) -> bool:
    """True if any thread of the process waits because it was suspended."""
    return any(thread.wait_reason == WaitReason.SUSPENDED for thread in proc.threads)


def classify_tasks(processes: Iterable[ProcessFact]) -> TaskCounts:
    """
    Count processes per task state.

    A process is running if it has a running thread, ready if it has a ready
    thread and suspended if it has a suspended thread. Those buckets are
    independent, so one process can be both running and ready.

    Wait is counted in two passes: first every process without a suspended
    thread, then the running ones among them are taken back out. A process
    is never shown as both running and waiting.
    """
    running = ready = suspended = 0
    not_suspended = running_not_suspended = 0

    for proc in processes:
        proc_running = has_thread_in(proc, ThreadState.RUNNING)
        proc_suspended = is_suspended(proc)

        if proc_running:
            running += 1
        if has_thread_in(proc, ThreadState.READY):
            ready += 1
        if proc_suspended:
            suspended += 1
        else:
            not_suspended += 1
            if proc_running:
                running_not_suspended += 1

    return TaskCounts(
        running=running,
        ready=ready,
        suspended=suspended,
        wait=not_suspended - running_not_suspended,
    )
