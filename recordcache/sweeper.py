from __future__ import annotations

import logging
import threading
from typing import Callable

logger = logging.getLogger("recordcache.sweeper")


class CacheSweeper:
    """Runs ``callback`` every ``interval_seconds`` on a daemon thread until stopped.

    A failing cycle is logged and the schedule continues.
    """

    def __init__(self, callback: Callable[[], object], *, interval_seconds: float, name: str = "cache-sweeper") -> None:
        if interval_seconds <= 0:
            raise ValueError("Sweep interval must be positive.")
        self.interval_seconds = interval_seconds
        self._callback = callback
        self._stopped = threading.Event()
        self._thread = threading.Thread(target=self._run, name=name, daemon=True)

    @property
    def running(self) -> bool:
        return self._thread.is_alive()

    def start(self) -> None:
        if self._thread.is_alive() or self._stopped.is_set():
            return
        self._thread.start()
        logger.debug("Sweeper started (interval=%.1fs)", self.interval_seconds)

    def stop(self, timeout: float | None = 5.0) -> None:
        self._stopped.set()
        if self._thread.is_alive() and self._thread is not threading.current_thread():
            self._thread.join(timeout)
        logger.debug("Sweeper stopped")

    def _run(self) -> None:
        while not self._stopped.wait(self.interval_seconds):
            try:
                self._callback()
            except Exception:
                logger.exception("Cache sweep failed; retrying in %.1fs", self.interval_seconds)
