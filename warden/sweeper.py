"""
Fixed-interval background jobs (cache eviction, ban expiry).
"""

import logging
import threading
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class PeriodicTask:
    """Runs ``target`` every ``interval`` seconds on a daemon thread.

    Exceptions from the target are logged and the loop keeps going, one failed
    sweep must not stop later ones.
    """

    def __init__(self, name: str, interval: float, target: Callable[[], object]):
        self.name = name
        self.interval = interval
        self.target = target
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def run_once(self) -> None:
        try:
            result = self.target()
            logger.debug(f"{self.name} finished: {result}")
        except Exception:
            logger.exception(f"Error in periodic task {self.name}")

    def _loop(self) -> None:
        logger.info(f"Periodic task {self.name} started (every {self.interval}s)")
        while not self._stop_event.wait(self.interval):
            self.run_once()
        logger.info(f"Periodic task {self.name} stopped")

    def start(self) -> None:
        if self.is_running:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._loop, name=self.name, daemon=True)
        self._thread.start()

    def stop(self, timeout: float = 5.0) -> None:
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
