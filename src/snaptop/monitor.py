"""Sampling and render loop for snaptop."""

import dataclasses
import logging
import threading
import time
from collections.abc import Callable
from enum import Enum
from typing import Protocol

from snaptop.deltas import PrevState, compute_rates
from snaptop.errors import CounterUnavailable
from snaptop.formatting import DEFAULT_TOP_N, format_frame
from snaptop.models import RawSample
from snaptop.snapshot import build_snapshot
from snaptop.tasks import classify_tasks

logger = logging.getLogger(__name__)

Frame = list[str]
Sink = Callable[[Frame], None]

MIN_INTERVAL = 0.1


class Source(Protocol):
    """What the loop needs from a metric source."""

    def sample(self) -> RawSample: ...

    def logical_core_count(self) -> int: ...


class LoopState(Enum):
    """Whether a previous tick is available for rate computation."""

    PRIMING = "priming"
    STEADY = "steady"


class RenderLoop:
    """
    Drives one fetch, derive, format and emit cycle per tick.

    The loop owns the previous-tick state and nothing else reads or writes
    it. Ticks run strictly one after another, either on the calling thread
    via run() or on a daemon thread via start().
    """

    def __init__(
        self,
        source: Source,
        sink: Sink,
        interval: float = 1.0,
        top_n: int = DEFAULT_TOP_N,
        core_count: int | None = None,
        width: int | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """
        Initialize the RenderLoop.

        Args:
            source: Where raw samples come from.
            sink: Receives one formatted frame per successful tick.
            interval: Seconds between tick starts. Default 1.0s.
            top_n: Number of rows in the process table.
            core_count: Logical core count. Queried once from the source if omitted.
            width: Optional line width to cut frames to.
            clock: Returns the capture instant of a tick in seconds.
        """
        self._source = source
        self._sink = sink
        self._interval = max(MIN_INTERVAL, interval)
        self._top_n = top_n
        self._width = width
        self._clock = clock
        self._core_count = core_count if core_count is not None else source.logical_core_count()
        self._prev: PrevState | None = None
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        logger.info("render loop using %d logical cores", self._core_count)

    @property
    def interval(self) -> float:
        """Get the current tick interval."""
        return self._interval

    @interval.setter
    def interval(self, value: float) -> None:
        """Set the tick interval."""
        self._interval = max(MIN_INTERVAL, value)

    @property
    def core_count(self) -> int:
        """Get the logical core count used to normalize CPU rates."""
        return self._core_count

    @property
    def state(self) -> LoopState:
        """PRIMING until the first successful tick, STEADY afterwards."""
        return LoopState.PRIMING if self._prev is None else LoopState.STEADY

    @property
    def is_running(self) -> bool:
        """Check if the loop thread is running."""
        return self._thread is not None and self._thread.is_alive()

    def tick(self) -> Frame | None:
        """
        Run one complete tick.

        Returns the emitted frame, or None if the source could not be
        queried. A failed tick leaves the previous-tick state untouched.
        """
        try:
            raw = self._source.sample()
        except CounterUnavailable as exc:
            logger.warning("skipping tick: %s", exc)
            return None

        snapshot = build_snapshot(raw, self._clock())
        rates = compute_rates(snapshot, self._prev, self._core_count)
        snapshot = dataclasses.replace(
            snapshot,
            cpu_rates=rates,
            task_counts=classify_tasks(snapshot.processes),
        )
        frame = format_frame(snapshot, self._core_count, self._top_n, self._width)
        self._sink(frame)

        if self._prev is None:
            logger.debug("first sample taken, rates available from next tick")
        self._prev = PrevState.from_snapshot(snapshot)
        return frame

    def run(self, max_ticks: int | None = None) -> None:
        """
        Tick until stopped, or until max_ticks ticks have been attempted.

        A tick that overruns the interval delays the next one; missed ticks
        are not made up.
        """
        ticks = 0
        while not self._stop_event.is_set():
            if max_ticks is not None and ticks >= max_ticks:
                break
            started = time.monotonic()
            try:
                self.tick()
            except Exception:
                logger.exception("unexpected error during tick")
            ticks += 1

            if max_ticks is not None and ticks >= max_ticks:
                break
            remaining = self._interval - (time.monotonic() - started)
            # Wait for the rest of the interval or until stop is requested
            self._stop_event.wait(timeout=max(0.0, remaining))

    def start(self) -> None:
        """Start the loop in a daemon thread."""
        if self.is_running:
            return

        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self.run,
            daemon=True,
            name="RenderLoop",
        )
        self._thread.start()

    def stop(self, timeout: float | None = 5.0) -> None:
        """
        Stop the loop thread.

        Args:
            timeout: How long to wait for the thread to stop (seconds).
        """
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            self._thread = None
