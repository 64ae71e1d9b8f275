"""Resolve watch filters against the schedule."""

import logging
from typing import Dict

from .models import Route, Stop, Watch, WatchFilter
from .schedule_store import ScheduleStore

logger = logging.getLogger(__name__)


def route_matches(route: Route, route_name) -> bool:
    """A route matches if no name is given or the name is part of its id or names."""
    if route_name is None:
        return True
    return (
        route_name in route.route_id
        or route_name in route.name
        or (bool(route.short_name) and route_name in route.short_name)
    )


def resolve_watch(store: ScheduleStore, watch_filter: WatchFilter) -> Watch:
    """
    Find the routes and stops a filter refers to.

    Only routes with at least one matching stop are kept. A filter that
    matches nothing gives an empty watch, not an error.

    Args:
        store: Loaded schedule store.
        watch_filter: Route name, stop name and direction to look for.

    Returns:
        A new Watch with the matching routes and stops.
    """
    routes: Dict[str, Route] = {}
    stops: Dict[str, Stop] = {}

    for route in store.list_routes():
        if not route_matches(route, watch_filter.route_name):
            continue
        for stop in store.list_stops(route_id=route.route_id):
            if watch_filter.stop_name is None or watch_filter.stop_name in stop.name:
                stops[stop.stop_id] = stop
                routes[route.route_id] = route

    watch = Watch(filter=watch_filter, routes=routes, stops=stops)

    logger.info(
        f"Resolved {watch_filter} to {len(watch.routes)} routes and {len(watch.stops)} stops"
    )
    return watch
