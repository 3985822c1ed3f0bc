import logging
import threading
import time
from typing import Callable, Optional

from expiringmap.cache.quietly import run_quietly

log = logging.getLogger("expiringmap.scheduler")


class SweepScheduler:
    """
    Runs `task` at a fixed rate on a single daemon thread.
    A failing run is reported to `on_error` and the schedule continues.
    """
    def __init__(self, task: Callable[[], object], interval: float,
                 name: str = "ExpiringMap-CleanupScheduler",
                 initial_delay: Optional[float] = None,
                 on_error: Optional[Callable[[Exception], None]] = None):
        if interval <= 0:
            raise ValueError("interval must be greater than 0")
        self._task = task
        self._interval = interval
        self._initial_delay = interval / 2 if initial_delay is None else initial_delay
        self._on_error = on_error
        self._stop_event = threading.Event()
        self._thread = threading.Thread(target=self._run, name=name, daemon=True)

    def start(self) -> None:
        self._thread.start()
        log.debug("sweep scheduler started", extra={"extra_fields": {"thread": self._thread.name, "interval": self._interval}})

    def _run(self) -> None:
        next_run = time.monotonic() + self._initial_delay
        while not self._stop_event.wait(max(0.0, next_run - time.monotonic())):
            run_quietly(self._task, on_error=self._on_error)
            next_run += self._interval
            now = time.monotonic()
            if next_run < now:
                # skip missed periods instead of running back to back
                missed = int((now - next_run) // self._interval) + 1
                next_run += missed * self._interval

    def stop(self, timeout: Optional[float] = None) -> bool:
        """
        Signal the thread and wait up to `timeout` seconds for it to exit.
        Returns True if the thread is no longer running.
        """
        self._stop_event.set()
        if self._thread.is_alive() and self._thread is not threading.current_thread():
            self._thread.join(timeout)
        stopped = not self._thread.is_alive() or self._thread is threading.current_thread()
        if not stopped:
            log.warning("sweep scheduler did not stop in time", extra={"extra_fields": {"thread": self._thread.name}})
        else:
            log.debug("sweep scheduler stopped", extra={"extra_fields": {"thread": self._thread.name}})
        return stopped

    @property
    def running(self) -> bool:
        return self._thread.is_alive() and not self._stop_event.is_set()
