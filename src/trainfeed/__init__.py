"""TrainFeed - Upcoming commuter rail departures with realtime delays."""

__version__ = "0.1.0"

from .models import (
    Departure,
    Direction,
    RealtimeUpdate,
    Route,
    ServiceDate,
    Stop,
    StopTime,
    Trip,
    Watch,
    WatchFilter,
)
from .config import FeedConfig
from .departure_feed import DepartureFeed
from .gtfs_loader import GTFSLoader
from .realtime_client import RealtimeClient
from .schedule_store import ScheduleBusyError, ScheduleNotLoadedError, ScheduleStore

__all__ = [
    "DepartureFeed",
    "FeedConfig",
    "GTFSLoader",
    "RealtimeClient",
    "ScheduleStore",
    "ScheduleBusyError",
    "ScheduleNotLoadedError",
    "Departure",
    "Direction",
    "RealtimeUpdate",
    "Route",
    "ServiceDate",
    "Stop",
    "StopTime",
    "Trip",
    "Watch",
    "WatchFilter",
]
