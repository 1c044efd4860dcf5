"""In-process host for the periodic sweeps.

Three timer threads submit their sweep to a shared fixed-size worker pool.
A non-blocking lock per sweep kind keeps a slow sweep from overlapping with
the next tick of the same kind; different kinds may run concurrently.
"""

from __future__ import annotations

import logging
import signal
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from datetime import datetime
from enum import Enum
from typing import Callable

from config import SchedulerConfig, settings
from logging_config import SWEEP, log_context
from scheduler.sweeps import SweepRunner

logger = logging.getLogger(__name__)


class SweepKind(str, Enum):
    """Periodic sweep kinds."""

    DEADLINE = "deadline"
    BOTTLENECK = "bottleneck"
    RECURRENCE = "recurrence"


class SchedulerOrchestrator:
    """Run deadline, bottleneck, and recurrence sweeps on fixed intervals."""

    def __init__(
        self,
        runner: SweepRunner,
        *,
        config: SchedulerConfig | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        """Initialize the orchestrator with a sweep runner and cadence config."""
        self._runner = runner
        self._config = config or settings.scheduler
        self._clock = clock
        self._locks = {kind: threading.Lock() for kind in SweepKind}
        self._stop_event = threading.Event()
        self._executor: ThreadPoolExecutor | None = None
        self._timers: list[threading.Thread] = []

    @property
    def running(self) -> bool:
        """Return True while timer threads are active."""
        return self._executor is not None and not self._stop_event.is_set()

    def intervals(self) -> dict[SweepKind, int]:
        """Return the configured interval in seconds for each sweep kind."""
        return {
            SweepKind.DEADLINE: self._config.deadline_interval_seconds,
            SweepKind.BOTTLENECK: self._config.bottleneck_interval_seconds,
            SweepKind.RECURRENCE: self._config.recurrence_interval_seconds,
        }

    def run_sweep(self, kind: SweepKind | str) -> object | None:
        """Run one sweep now, or return None if one of this kind is running."""
        kind = SweepKind(kind)
        lock = self._locks[kind]
        if not lock.acquire(blocking=False):
            logger.info("Skipping %s sweep; previous sweep still running.", kind.value)
            return None
        try:
            with log_context({SWEEP: kind.value}):
                now = self._clock() if self._clock else None
                return self._dispatch(kind, now)
        finally:
            lock.release()

    def _dispatch(self, kind: SweepKind, now: datetime | None) -> object:
        if kind is SweepKind.DEADLINE:
            return self._runner.run_deadline_sweep(now)
        if kind is SweepKind.BOTTLENECK:
            return self._runner.run_bottleneck_sweep(now)
        return self._runner.run_recurrence_sweep(now)

    def _run_guarded(self, kind: SweepKind) -> object | None:
        try:
            return self.run_sweep(kind)
        except Exception:
            logger.exception("%s sweep failed.", kind.value)
            return None

    def submit(self, kind: SweepKind | str) -> Future | None:
        """Queue a sweep on the worker pool; None after shutdown has begun."""
        if self._executor is None or self._stop_event.is_set():
            return None
        return self._executor.submit(self._run_guarded, SweepKind(kind))

    def _timer_loop(self, kind: SweepKind, interval: int, run_immediately: bool) -> None:
        if not run_immediately and self._stop_event.wait(interval):
            return
        while not self._stop_event.is_set():
            self.submit(kind)
            if self._stop_event.wait(interval):
                return

    def start(self, *, run_immediately: bool = True) -> None:
        """Start the worker pool and one timer thread per sweep kind."""
        if self._executor is not None:
            raise RuntimeError("Orchestrator already started.")
        self._stop_event.clear()
        self._executor = ThreadPoolExecutor(
            max_workers=self._config.max_workers,
            thread_name_prefix="sweep",
        )
        for kind, interval in self.intervals().items():
            timer = threading.Thread(
                target=self._timer_loop,
                args=(kind, interval, run_immediately),
                name=f"sweep-timer-{kind.value}",
                daemon=True,
            )
            timer.start()
            self._timers.append(timer)
        logger.info("Scheduler orchestrator started with %s workers.", self._config.max_workers)

    def stop(self, *, timeout: float | None = None) -> None:
        """Stop scheduling new sweeps and wait for in-flight sweeps to finish."""
        self._stop_event.set()
        for timer in self._timers:
            timer.join(timeout=timeout)
        self._timers = []
        if self._executor is not None:
            self._executor.shutdown(wait=True, cancel_futures=True)
            self._executor = None
        logger.info("Scheduler orchestrator stopped.")

    def run_forever(self, *, poll_seconds: float = 1.0) -> None:
        """Run until SIGINT or SIGTERM, then shut down gracefully."""

        def _handle_shutdown(_signum: int, _frame: object) -> None:
            self._stop_event.set()

        signal.signal(signal.SIGINT, _handle_shutdown)
        signal.signal(signal.SIGTERM, _handle_shutdown)
        self.start()
        try:
            while not self._stop_event.wait(poll_seconds):
                pass
        finally:
            self.stop()
