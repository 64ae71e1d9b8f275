"""Read access to the loaded schedule and its realtime overlay."""

import logging
import threading
from contextlib import contextmanager
from typing import Dict, Iterator, List, Optional

from .config import FeedConfig
from .gtfs_loader import GTFSLoader
from .models import RealtimeUpdate, Route, ServiceDate, Stop, StopTime, Trip
from .realtime_client import RealtimeClient

logger = logging.getLogger(__name__)


class ScheduleBusyError(RuntimeError):
    """The schedule store stayed locked by another operation past the timeout."""


class ScheduleNotLoadedError(RuntimeError):
    """The schedule store was queried before a schedule was imported."""


class ScheduleLock:
    """
    Serializes access to the schedule store.

    Imports, watch resolution, broadcasts and realtime refreshes all hold this
    lock; only one of them touches the store at a time.
    """

    def __init__(self, timeout: float = 30.0):
        self.timeout = timeout
        self.holder: Optional[str] = None  # Name of the running operation
        self._lock = threading.Lock()

    @property
    def locked(self) -> bool:
        return self._lock.locked()

    @contextmanager
    def hold(self, operation: str, timeout: Optional[float] = None) -> Iterator[None]:
        """
        Run a block while holding the lock.

        Args:
            operation: Name used in logs and in the busy error.
            timeout: Seconds to wait; defaults to the lock's timeout.

        Raises:
            ScheduleBusyError: If the lock couldn't be acquired in time.
        """
        wait = self.timeout if timeout is None else timeout
        if not self._lock.acquire(timeout=wait):
            raise ScheduleBusyError(
                f"Schedule store busy with {self.holder or 'another operation'}; "
                f"{operation} gave up after {wait}s"
            )
        self.holder = operation
        try:
            yield
        finally:
            self.holder = None
            self._lock.release()


class ScheduleStore:
    """
    The static schedule plus the latest realtime updates.

    Read methods never raise for unknown ids; they return empty lists.
    Callers are expected to hold ``lock`` around every call.
    """

    def __init__(
        self,
        loader: Optional[GTFSLoader] = None,
        realtime_client: Optional[RealtimeClient] = None,
        lock_timeout: float = 30.0,
    ):
        self.loader = loader or GTFSLoader()
        self.realtime_client = realtime_client or RealtimeClient()
        self.lock = ScheduleLock(timeout=lock_timeout)
        self._updates_by_route: Dict[str, List[RealtimeUpdate]] = {}

    @property
    def loaded(self) -> bool:
        return self.loader.loaded

    def import_schedule(self, config: FeedConfig) -> None:
        """Load the static schedule named by the config."""
        if config.gtfs_path:
            self.loader.load_from_path(config.gtfs_path)
        elif config.gtfs_url:
            self.loader.load_from_url(
                config.gtfs_url, headers=config.headers, timeout=config.download_timeout
            )
        else:
            raise ValueError("Config names no GTFS source")

    def refresh_realtime(self, config: FeedConfig) -> None:
        """Replace the realtime overlay with freshly fetched updates."""
        if not config.realtime_urls:
            logger.debug("No realtime feeds configured")
            return
        updates = self.realtime_client.fetch_updates(
            config.realtime_urls, headers=config.headers, timeout=config.request_timeout
        )
        self.set_realtime_updates(updates)

    def set_realtime_updates(self, updates: List[RealtimeUpdate]) -> None:
        """
        Index realtime updates by route.

        Updates whose feed left the route blank are filed under the route of
        the static trip with the same id; unmatched ones are dropped.
        """
        updates_by_route: Dict[str, List[RealtimeUpdate]] = {}
        unrouted = 0
        for update in updates:
            route_id = update.route_id
            if not route_id:
                trip = self.loader.get_trip(update.trip_id)
                if trip is None:
                    unrouted += 1
                    continue
                route_id = trip.route_id
            updates_by_route.setdefault(route_id, []).append(update)

        self._updates_by_route = updates_by_route
        if unrouted:
            logger.debug(f"Dropped {unrouted} realtime updates with no known route")
        logger.info(f"Realtime overlay has {len(updates) - unrouted} updates for {len(updates_by_route)} routes")

    def _require_loaded(self) -> None:
        if not self.loaded:
            raise ScheduleNotLoadedError("No schedule imported yet")

    def list_routes(self) -> List[Route]:
        self._require_loaded()
        return self.loader.get_routes()

    def list_stops(self, route_id: Optional[str] = None) -> List[Stop]:
        self._require_loaded()
        return self.loader.get_stops(route_id)

    def list_trips(self, route_id: str) -> List[Trip]:
        self._require_loaded()
        return self.loader.get_trips(route_id)

    def list_service_dates(self, service_id: str) -> List[ServiceDate]:
        self._require_loaded()
        return self.loader.get_service_dates(service_id)

    def list_stop_times(self, trip_id: str, stop_id: str) -> List[StopTime]:
        self._require_loaded()
        return self.loader.get_stop_times(trip_id, stop_id)

    def list_realtime_updates(self, route_id: str) -> List[RealtimeUpdate]:
        return list(self._updates_by_route.get(route_id, []))
