"""Tests for the RenderLoop class."""

import threading
import time
from queue import Queue

import pytest

from snaptop.errors import CounterUnavailable
from snaptop.models import RawProcess, RawSample, ThreadFact, ThreadState
from snaptop.monitor import LoopState, RenderLoop
from snaptop.source import MetricSource

MIB = 1024 * 1024


def sample(*processes: RawProcess) -> RawSample:
    return RawSample(
        counters={
            "cpu.idle": 50.0,
            "cpu.user": 40.0,
            "cpu.privileged": 10.0,
            "memory.total": 1024 * MIB,
            "memory.free": 512 * MIB,
            "system.uptime": 600.0,
            "system.users": 1.0,
        },
        processes=list(processes),
    )


def running(pid: int, cpu_seconds: float, name: str | None = None) -> RawProcess:
    return RawProcess(
        pid=pid,
        name=name or f"p{pid}",
        working_set_bytes=MIB,
        cpu_seconds=cpu_seconds,
        threads=(ThreadFact(ThreadState.RUNNING),),
    )


class FakeSource:
    """Replays samples; an exception in the script is raised instead."""

    def __init__(self, script, cores: int = 2) -> None:
        self._script = list(script)
        self._cores = cores
        self.core_queries = 0

    def sample(self) -> RawSample:
        item = self._script.pop(0) if len(self._script) > 1 else self._script[0]
        if isinstance(item, Exception):
            raise item
        return item

    def logical_core_count(self) -> int:
        self.core_queries += 1
        return self._cores


class FakeClock:
    def __init__(self, *times: float) -> None:
        self._times = list(times)

    def __call__(self) -> float:
        return self._times.pop(0) if len(self._times) > 1 else self._times[0]


def row_for(frame: list[str], name: str) -> str:
    return next(line for line in frame if f" {name} " in line)


class TestRenderLoopTicks:
    """Tests for single ticks of the RenderLoop."""

    def test_core_count_queried_once(self):
        """Test the core count is looked up at construction only."""
        source = FakeSource([sample(running(1, 0.0))], cores=4)
        loop = RenderLoop(source, lambda frame: None, clock=FakeClock(1.0, 2.0, 3.0))

        loop.tick()
        loop.tick()
        loop.tick()

        assert source.core_queries == 1
        assert loop.core_count == 4

    def test_explicit_core_count_skips_query(self):
        """Test a supplied core count is used as is."""
        source = FakeSource([sample()])
        loop = RenderLoop(source, lambda frame: None, core_count=16)

        assert source.core_queries == 0
        assert loop.core_count == 16

    def test_priming_then_steady(self):
        """Test the loop leaves PRIMING after the first successful tick."""
        loop = RenderLoop(FakeSource([sample()]), lambda frame: None)
        assert loop.state is LoopState.PRIMING

        loop.tick()
        assert loop.state is LoopState.STEADY

        loop.tick()
        assert loop.state is LoopState.STEADY

    def test_first_tick_reports_zero_cpu(self):
        """Test every process shows 0.0% on the first tick."""
        frames: list[list[str]] = []
        source = FakeSource([sample(running(1, 900.0, "busy"), running(2, 5.0, "idle"))])
        loop = RenderLoop(source, frames.append, clock=FakeClock(100.0))

        loop.tick()

        assert "    0.0 " in row_for(frames[0], "busy")
        assert "    0.0 " in row_for(frames[0], "idle")

    def test_second_tick_reports_rates_sorted(self):
        """Test the busiest process is listed first once rates exist."""
        frames: list[list[str]] = []
        source = FakeSource(
            [
                sample(running(1, 10.0, "slow"), running(2, 10.0, "fast")),
                sample(running(1, 10.2, "slow"), running(2, 11.0, "fast")),
            ],
            cores=2,
        )
        loop = RenderLoop(source, frames.append, clock=FakeClock(100.0, 101.0))

        loop.tick()
        frame = loop.tick()

        assert frame is frames[-1]
        header = frame.index(next(line for line in frame if line.lstrip().startswith("PID")))
        assert " fast " in frame[header + 1]
        assert " slow " in frame[header + 2]
        assert "   50.0 " in row_for(frame, "fast")
        assert "   10.0 " in row_for(frame, "slow")

    def test_task_counts_in_frame(self):
        """Test the tasks line reflects the classified processes."""
        frames: list[list[str]] = []
        loop = RenderLoop(FakeSource([sample(running(1, 0.0), running(2, 0.0))]), frames.append)

        loop.tick()

        assert frames[0][1].startswith("Tasks:    2 total,    2 running")
        assert frames[0][1].endswith("   0 waiting")

    def test_failed_tick_emits_nothing(self):
        """Test a CounterUnavailable tick is skipped."""
        frames: list[list[str]] = []
        source = FakeSource([CounterUnavailable("down"), sample()])
        loop = RenderLoop(source, frames.append)

        assert loop.tick() is None
        assert frames == []
        assert loop.state is LoopState.PRIMING

        assert loop.tick() is not None
        assert len(frames) == 1

    def test_failed_tick_keeps_previous_state(self):
        """Test a failure in between does not disturb the next rate."""
        frames: list[list[str]] = []
        source = FakeSource(
            [
                sample(running(1, 10.0, "worker")),
                CounterUnavailable("blip"),
                sample(running(1, 11.0, "worker")),
            ],
            cores=1,
        )
        loop = RenderLoop(source, frames.append, clock=FakeClock(100.0, 102.0))

        loop.tick()
        assert loop.tick() is None
        loop.tick()

        # 1 cpu-second over the 2 seconds since the last good tick
        assert "   50.0 " in row_for(frames[-1], "worker")

    def test_failed_tick_is_logged(self, caplog):
        """Test skipped ticks are reported at WARNING level."""
        loop = RenderLoop(FakeSource([CounterUnavailable("no counters")]), lambda frame: None)

        with caplog.at_level("WARNING", logger="snaptop.monitor"):
            loop.tick()

        assert "no counters" in caplog.text

    def test_width_limits_lines(self):
        """Test frames are cut to the configured width."""
        frames: list[list[str]] = []
        loop = RenderLoop(FakeSource([sample(running(1, 0.0))]), frames.append, width=30)

        loop.tick()

        assert all(len(line) <= 30 for line in frames[0])


class TestRenderLoopRun:
    """Tests for running the RenderLoop."""

    def test_interval_minimum(self):
        """Test the interval has a minimum value."""
        loop = RenderLoop(FakeSource([sample()]), lambda frame: None)

        loop.interval = 0.01
        assert loop.interval >= 0.1

    def test_default_interval(self):
        """Test the default interval is one second."""
        loop = RenderLoop(FakeSource([sample()]), lambda frame: None)
        assert loop.interval == 1.0

    def test_run_max_ticks(self):
        """Test run() returns after the requested number of ticks."""
        frames: list[list[str]] = []
        loop = RenderLoop(FakeSource([sample()]), frames.append, interval=0.1)

        loop.run(max_ticks=3)

        assert len(frames) == 3

    def test_run_counts_failed_ticks(self):
        """Test failed ticks count toward max_ticks and the loop keeps going."""
        frames: list[list[str]] = []
        source = FakeSource([CounterUnavailable("x"), sample()])
        loop = RenderLoop(source, frames.append, interval=0.1)

        loop.run(max_ticks=2)

        assert len(frames) == 1

    def test_run_survives_sink_errors(self, caplog):
        """Test an unexpected exception is logged and the loop continues."""
        calls = []

        def flaky_sink(frame):
            calls.append(frame)
            if len(calls) == 1:
                raise RuntimeError("sink broke")

        loop = RenderLoop(FakeSource([sample()]), flaky_sink, interval=0.1)

        with caplog.at_level("ERROR", logger="snaptop.monitor"):
            loop.run(max_ticks=2)

        assert len(calls) == 2
        assert "unexpected error during tick" in caplog.text
        # The broken tick did not become the previous state
        assert loop.state is LoopState.STEADY

    def test_start_stop(self):
        """Test RenderLoop can be started and stopped."""
        queue: Queue[list[str]] = Queue()
        loop = RenderLoop(FakeSource([sample()]), queue.put, interval=0.1)

        assert not loop.is_running

        loop.start()
        assert loop.is_running

        loop.stop()
        assert not loop.is_running

    def test_start_idempotent(self):
        """Test starting an already running loop is safe."""
        loop = RenderLoop(FakeSource([sample()]), lambda frame: None, interval=0.1)

        loop.start()
        thread1 = loop._thread

        loop.start()  # Should not create a new thread
        thread2 = loop._thread

        assert thread1 is thread2
        loop.stop()

    def test_daemon_thread(self):
        """Test the loop thread is a daemon thread."""
        loop = RenderLoop(FakeSource([sample()]), lambda frame: None, interval=0.1)

        loop.start()

        try:
            assert loop._thread is not None
            assert loop._thread.daemon is True
            assert loop._thread.name == "RenderLoop"
        finally:
            loop.stop()

    def test_thread_emits_frames(self):
        """Test the background thread pushes frames to the sink."""
        queue: Queue[list[str]] = Queue()
        loop = RenderLoop(FakeSource([sample()]), queue.put, interval=0.1)

        loop.start()
        try:
            first = queue.get(timeout=2.0)
            second = queue.get(timeout=2.0)
            assert first[0].startswith("snaptop - ")
            assert second[0].startswith("snaptop - ")
        finally:
            loop.stop()

    def test_stop_interrupts_wait(self):
        """Test stop() does not wait out a long interval."""
        emitted = threading.Event()
        loop = RenderLoop(FakeSource([sample()]), lambda frame: emitted.set(), interval=30.0)

        loop.start()
        assert emitted.wait(timeout=2.0)

        started = time.monotonic()
        loop.stop()
        assert time.monotonic() - started < 5.0
        assert not loop.is_running

    def test_ticks_do_not_overlap(self):
        """Test a slow tick delays the next one instead of overlapping it."""
        active = []
        overlaps = []

        def slow_sink(frame):
            if active:
                overlaps.append(frame)
            active.append(frame)
            time.sleep(0.15)
            active.pop()

        loop = RenderLoop(FakeSource([sample()]), slow_sink, interval=0.1)
        loop.start()
        time.sleep(0.6)
        loop.stop()

        assert overlaps == []


class TestRenderLoopWithHost:
    """Tests that run the loop against the real host."""

    def test_two_ticks_on_host(self):
        """Test the loop renders frames from live psutil data."""
        frames: list[list[str]] = []
        loop = RenderLoop(MetricSource(), frames.append, interval=0.1, top_n=5)

        loop.run(max_ticks=2)

        assert len(frames) == 2
        assert frames[1][0].startswith("snaptop - ")
        # header plus up to five rows
        assert len(frames[1]) <= 7 + 1 + 5

    @pytest.mark.parametrize("top_n", [0, 3])
    def test_top_n_on_host(self, top_n):
        """Test the table depth follows top_n."""
        frames: list[list[str]] = []
        RenderLoop(MetricSource(), frames.append, top_n=top_n).tick()

        assert len(frames[0]) <= 7 + 1 + top_n


class TestPrevStateLifecycle:
    """Tests that only one previous tick is ever retained."""

    def test_previous_state_replaced_wholesale(self):
        """Test vanished pids are dropped instead of accumulating."""
        script = [
            sample(*(running(pid, 1.0) for pid in range(start, start + 50)))
            for start in range(0, 500, 50)
        ]
        loop = RenderLoop(FakeSource(script), lambda frame: None)

        for _ in range(len(script)):
            loop.tick()

        assert set(loop._prev.cpu_seconds) == set(range(450, 500))

    def test_previous_state_from_last_good_tick(self):
        """Test the retained table belongs to the last successful tick."""
        source = FakeSource(
            [sample(running(1, 3.0)), CounterUnavailable("x"), sample(running(2, 4.0))]
        )
        loop = RenderLoop(source, lambda frame: None, clock=FakeClock(10.0, 20.0))

        loop.tick()
        loop.tick()
        assert dict(loop._prev.cpu_seconds) == {1: 3.0}
        assert loop._prev.timestamp == 10.0

        loop.tick()
        assert dict(loop._prev.cpu_seconds) == {2: 4.0}
        assert loop._prev.timestamp == 20.0
