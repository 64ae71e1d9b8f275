"""Main DepartureFeed class."""

import logging
import threading
from datetime import datetime
from typing import Callable, List, Optional

from .broadcast import BroadcastEngine
from .config import FeedConfig
from .models import Departure, Watch, WatchFilter
from .query_resolver import resolve_watch
from .schedule_store import ScheduleBusyError, ScheduleStore
from .scheduler import IntervalTimer
from .watch_registry import WatchRegistry

logger = logging.getLogger(__name__)


class DepartureFeed:
    """
    Upcoming departures, with realtime delays, for a set of watched stops.

    This class provides methods to:
    - Import the static schedule and signal when it's ready
    - Register watches (route name, stop name, direction)
    - Broadcast the departures for every watch, on demand or every minute
    - Refresh the realtime overlay every five minutes

    Every operation that touches the schedule holds the store's lock, so
    calls from the timers and from callers never overlap.
    """

    def __init__(
        self,
        config: Optional[FeedConfig] = None,
        store: Optional[ScheduleStore] = None,
        on_departures: Optional[Callable[[List[Departure]], None]] = None,
        on_ready: Optional[Callable[[], None]] = None,
    ):
        """
        Initialize the feed.

        Args:
            config: Feed sources and refresh intervals; defaults to Metro-North.
            store: Schedule store to use; one is created from the config if omitted.
            on_departures: Called with each broadcast's departures.
            on_ready: Called once the schedule has been imported.
        """
        self.config = config or FeedConfig()
        self.store = store or ScheduleStore(lock_timeout=self.config.lock_timeout)
        self.registry = WatchRegistry()
        self.engine = BroadcastEngine(self.store, self.registry)
        self.on_departures = on_departures
        self.on_ready = on_ready
        self.ready = threading.Event()
        self._timers: List[IntervalTimer] = []

    def startup(self, start_timers: bool = True) -> None:
        """
        Import the schedule and start the periodic broadcast and realtime refresh.

        Calling this again after a successful import only re-announces that
        the feed is ready.

        Args:
            start_timers: If False, broadcasts and refreshes only happen when
                called explicitly.

        Raises:
            ScheduleBusyError: If the store stayed locked past the timeout.
        """
        with self.store.lock.hold("import"):
            if not self.store.loaded:
                try:
                    self.store.import_schedule(self.config)
                except Exception as e:
                    logger.error(f"Failed to import schedule: {e}")
                    raise
                logger.info("Done importing!")

                try:
                    self.store.refresh_realtime(self.config)
                except Exception as e:
                    logger.warning(f"Initial realtime refresh failed: {e}")

        if start_timers and not self._timers:
            self._start_timers()

        self.ready.set()
        if self.on_ready:
            self.on_ready()

    def _start_timers(self) -> None:
        self._timers = [
            IntervalTimer(self.config.broadcast_interval, self._broadcast_tick, name="broadcast"),
            IntervalTimer(self.config.realtime_interval, self._realtime_tick, name="realtime-refresh"),
        ]
        for timer in self._timers:
            timer.start()

    def register_watch(self, watch_filter: WatchFilter) -> Watch:
        """
        Start watching departures matching a filter.

        Args:
            watch_filter: Route name, stop name and direction to watch.

        Returns:
            The registered Watch (possibly matching nothing).

        Raises:
            ScheduleBusyError: If the store stayed locked past the timeout.
            ScheduleNotLoadedError: If called before startup().
        """
        with self.store.lock.hold("query"):
            watch = resolve_watch(self.store, watch_filter)
        self.registry.add(watch)
        return watch

    def clear_watches(self) -> None:
        """Forget every registered watch."""
        self.registry.clear()

    def run_broadcast(self, now: Optional[datetime] = None) -> List[Departure]:
        """
        Compute departures for every watch and hand them to ``on_departures``.

        Raises:
            ScheduleBusyError: If the store stayed locked past the timeout.
        """
        with self.store.lock.hold("broadcast"):
            departures = self.engine.run(now=now)
        if self.on_departures:
            self.on_departures(departures)
        return departures

    def refresh_realtime(self) -> None:
        """
        Fetch the realtime feeds and replace the delay overlay.

        Raises:
            ScheduleBusyError: If the store stayed locked past the timeout.
            requests.RequestException: If every realtime feed failed.
        """
        with self.store.lock.hold("realtime refresh"):
            self.store.refresh_realtime(self.config)

    def _broadcast_tick(self) -> None:
        try:
            self.run_broadcast()
        except ScheduleBusyError as e:
            logger.warning(f"Skipping broadcast: {e}")

    def _realtime_tick(self) -> None:
        try:
            self.refresh_realtime()
        except ScheduleBusyError as e:
            logger.warning(f"Skipping realtime refresh: {e}")

    def shutdown(self, timeout: Optional[float] = None) -> None:
        """Stop the periodic timers and wait for them to finish."""
        for timer in self._timers:
            timer.cancel()
        for timer in self._timers:
            if timer.is_alive():
                timer.join(timeout)
        self._timers = []
        logger.info("Stopped departure feed timers")
