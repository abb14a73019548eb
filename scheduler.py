"""
Fixed-interval background sweeps (deal expiry, abandoned orders).

Sweeps share the database with request handlers without any locking;
last write wins.
"""
from threading import Event, Thread
from typing import Any, Callable, Optional

import structlog

log = structlog.get_logger(__name__)


class PeriodicTask:
    def __init__(self, name: str, interval_seconds: float, fn: Callable[[], Any]):
        self.name = name
        self.interval_seconds = interval_seconds
        self.fn = fn
        self._stop = Event()
        self._thread: Optional[Thread] = None

    def run_once(self) -> Any:
        """Run the sweep once; a failure is logged and the schedule carries on."""
        try:
            result = self.fn()
        except Exception:
            log.exception("periodic_task_failed", task=self.name)
            return None
        log.debug("periodic_task_ran", task=self.name, result=result)
        return result

    def _loop(self) -> None:
        self.run_once()
        while not self._stop.wait(self.interval_seconds):
            self.run_once()

    def start(self) -> None:
        if self._thread and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = Thread(target=self._loop, name=self.name, daemon=True)
        self._thread.start()
        log.info("periodic_task_started", task=self.name, interval_seconds=self.interval_seconds)

    def stop(self, timeout: Optional[float] = 5.0) -> None:
        self._stop.set()
        if self._thread:
            self._thread.join(timeout)
            self._thread = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()
