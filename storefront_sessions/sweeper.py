"""
Session Sweeper - Periodic Expired-Session Cleanup

Runs a sweep callable on a background thread at a fixed interval until
stopped. stop() wakes the thread immediately instead of waiting out the
current interval.
"""

import logging
import threading
from typing import Callable, Optional

logger = logging.getLogger('storefront.sessions')


class SessionSweeper:
    """Cancellable background job that calls `sweep` every `interval` seconds."""

    def __init__(self, sweep: Callable[[], int], interval: float = 300.0):
        if interval <= 0:
            raise ValueError("interval must be positive")
        self._sweep = sweep
        self.interval = interval
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self.runs = 0

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        """Start the background thread."""
        if self.running:
            if not self._stop_event.is_set():
                return
            # A stop timed out mid-sweep; let that thread finish before replacing it
            self._thread.join()

        self._stop_event.clear()
        self._thread = threading.Thread(target=self._loop, name="session-sweeper", daemon=True)
        self._thread.start()
        logger.info("Session sweeper started (every %.0fs)", self.interval)

    def stop(self, timeout: float = 2.0) -> None:
        """Stop the background thread and wait up to `timeout` for it to exit."""
        self._stop_event.set()
        if self._thread is None:
            return
        if self._thread.is_alive():
            self._thread.join(timeout=timeout)
        if self._thread.is_alive():
            logger.warning("Session sweeper still finishing a sweep after %.1fs", timeout)
            return
        self._thread = None

    def run_once(self) -> int:
        """Run a single sweep now. Returns the number of sessions removed."""
        removed = self._sweep()
        self.runs += 1
        return removed

    def _loop(self) -> None:
        # wait() returns True as soon as stop() is called
        while not self._stop_event.wait(self.interval):
            try:
                self.run_once()
            except Exception as e:
                logger.error("Session sweep error: %s", e)
