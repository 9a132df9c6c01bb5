"""Interval scheduler that triggers ingestion runs from a daemon thread."""

from __future__ import annotations

import logging
import threading
from time import perf_counter
from typing import Callable

from pricememory.schemas.ingestion import IngestionRunSummary

logger = logging.getLogger(__name__)


class IngestionScheduler:
    """Call `trigger` every `interval_seconds` until stopped.

    The trigger is expected to be `IngestionOrchestrator.run`, so a tick that
    lands while a manual run is active just observes `busy` and waits for the
    next interval.
    """

    def __init__(
        self,
        trigger: Callable[[], IngestionRunSummary],
        *,
        interval_seconds: float,
        run_immediately: bool = False,
    ) -> None:
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        self._trigger = trigger
        self._interval_seconds = interval_seconds
        self._run_immediately = run_immediately
        self._shutdown_event = threading.Event()
        self._thread: threading.Thread | None = None
        self.ticks = 0

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.running:
            return
        self._shutdown_event.clear()
        self._thread = threading.Thread(target=self._loop, name="ingestion-scheduler", daemon=True)
        self._thread.start()
        logger.info("scheduler.started interval_seconds=%.1f", self._interval_seconds)

    def stop(self, timeout: float | None = 5.0) -> None:
        self._shutdown_event.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            self._thread = None
        logger.info("scheduler.stopped ticks=%d", self.ticks)

    def _loop(self) -> None:
        if not self._run_immediately and self._shutdown_event.wait(timeout=self._interval_seconds):
            return
        while not self._shutdown_event.is_set():
            self._tick()
            if self._shutdown_event.wait(timeout=self._interval_seconds):
                return

    def _tick(self) -> IngestionRunSummary | None:
        started = perf_counter()
        self.ticks += 1
        try:
            summary = self._trigger()
        except Exception:
            # A failed tick must not kill the thread; the next interval retries.
            logger.exception("scheduler.tick_failed elapsed_ms=%.2f", (perf_counter() - started) * 1000.0)
            return None
        logger.info(
            "scheduler.tick status=%s processed=%d total_ms=%.2f",
            summary.status,
            summary.processed,
            (perf_counter() - started) * 1000.0,
        )
        return summary
