"""Registry of the watches departures are broadcast for."""

import logging
import threading
from typing import Iterator, List

from .models import Watch

logger = logging.getLogger(__name__)


class WatchRegistry:
    """Append-only collection of registered watches."""

    def __init__(self):
        self._watches: List[Watch] = []
        self._lock = threading.Lock()

    def add(self, watch: Watch) -> None:
        with self._lock:
            self._watches.append(watch)
        if watch.is_empty:
            logger.info(f"Registered watch {watch.filter} matches nothing")

    def snapshot(self) -> List[Watch]:
        """The watches registered so far, safe to iterate while others are added."""
        with self._lock:
            return list(self._watches)

    def clear(self) -> None:
        with self._lock:
            self._watches.clear()

    def __iter__(self) -> Iterator[Watch]:
        return iter(self.snapshot())

    def __len__(self) -> int:
        return len(self._watches)
