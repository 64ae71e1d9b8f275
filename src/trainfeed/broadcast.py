"""Compute upcoming departures for every registered watch."""

import logging
import time
from datetime import datetime
from typing import Dict, List, Optional, Tuple

from .date_expander import make_stop_datetimes
from .delay_resolver import resolve_delay
from .models import Departure, Route, Stop, Watch
from .schedule_store import ScheduleStore
from .watch_registry import WatchRegistry

logger = logging.getLogger(__name__)


class BroadcastEngine:
    """
    Walks every watch and builds the merged list of departures.

    Each run rescans the whole schedule for the watched routes and stops;
    nothing is cached between runs.
    """

    def __init__(self, store: ScheduleStore, registry: WatchRegistry):
        self.store = store
        self.registry = registry

    def run(self, now: Optional[datetime] = None) -> List[Departure]:
        """
        Build the departure list.

        Args:
            now: Reference time for the look-ahead window; defaults to now.

        Returns:
            Departures sorted by time, one per (trip, datetime).
        """
        start_time = time.monotonic()
        now = now or datetime.now()
        results: Dict[Tuple[str, datetime], Departure] = {}

        for watch in self.registry:
            for stop in watch.stops.values():
                for route in watch.routes.values():
                    for departure in self._departures_for(watch, stop, route, now):
                        results[departure.key] = departure

        departures = sorted(results.values(), key=lambda d: (d.stop_time, d.trip_id))
        realtime_count = sum(1 for d in departures if d.stop_delay is not None)
        elapsed_ms = (time.monotonic() - start_time) * 1000
        logger.info(
            f"Broadcasting {len(departures)} departures; {realtime_count} have realtime data; "
            f"processed in {elapsed_ms:.0f}ms"
        )
        return departures

    def _departures_for(self, watch: Watch, stop: Stop, route: Route, now: datetime) -> List[Departure]:
        """Departures of one route's trips from one stop."""
        departures: List[Departure] = []
        direction = watch.filter.direction
        updates = self.store.list_realtime_updates(route.route_id)

        for trip in self.store.list_trips(route.route_id):
            if direction is not None and trip.direction != direction:
                continue

            service_dates = self.store.list_service_dates(trip.service_id)
            stop_times = self.store.list_stop_times(trip.trip_id, stop.stop_id)
            # No calendar rows (ad-hoc service) or the trip skips this stop
            if not service_dates or not stop_times:
                continue
            stop_time = stop_times[0]

            for service_date in service_dates:
                try:
                    stop_datetimes = make_stop_datetimes(service_date, stop_time.departure_time, now=now)
                except ValueError as e:
                    logger.warning(f"Skipping trip {trip.trip_id} at stop {stop.stop_id}: {e}")
                    continue

                for stop_datetime in stop_datetimes:
                    stop_delay = resolve_delay(
                        updates,
                        trip.trip_id,
                        stop_time.stop_sequence,
                        stop_datetime,
                        stop_id=stop.stop_id,
                    )
                    if stop_delay is not None:
                        logger.debug(f"{route.route_id} trip {trip.trip_id} is {stop_delay}s late")

                    departures.append(
                        Departure(
                            stop_id=stop.stop_id,
                            route_id=route.route_id,
                            trip_id=trip.trip_id,
                            route_name=route.name,
                            trip_terminus=trip.headsign,
                            direction=trip.direction,
                            stop_name=stop.name,
                            stop_time=stop_datetime,
                            stop_delay=stop_delay,
                        )
                    )

        return departures
