"""Cancellable periodic triggers."""

import logging
import threading
from typing import Callable

logger = logging.getLogger(__name__)


class IntervalTimer(threading.Thread):
    """
    Calls a function every ``interval`` seconds until cancelled.

    The first call happens one interval after start(). Exceptions raised by
    the function are logged and the timer keeps running.
    """

    def __init__(self, interval: float, function: Callable[[], None], name: str = "interval-timer"):
        super().__init__(name=name, daemon=True)
        self.interval = interval
        self.function = function
        self._stopped = threading.Event()

    def run(self) -> None:
        while not self._stopped.wait(self.interval):
            try:
                self.function()
            except Exception as e:
                logger.error(f"{self.name} tick failed: {e}", exc_info=True)

    def cancel(self) -> None:
        """Stop after the current tick, if one is running."""
        self._stopped.set()

    @property
    def cancelled(self) -> bool:
        return self._stopped.is_set()
