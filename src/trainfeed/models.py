"""Data models for the departure feed."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import IntEnum
from typing import Dict, Optional, Tuple


class Direction(IntEnum):
    """GTFS direction_id of a trip."""
    OUTBOUND = 0
    INBOUND = 1


@dataclass(frozen=True)
class Route:
    """Represents a transit route (a rail line)."""
    route_id: str
    name: str  # Display name (route_long_name, falling back to short name)
    short_name: str = ""


@dataclass(frozen=True)
class Stop:
    """Represents a station or platform."""
    stop_id: str
    name: str


@dataclass(frozen=True)
class Trip:
    """Represents one scheduled run of a route."""
    trip_id: str
    route_id: str
    service_id: str
    direction: Optional[Direction]
    headsign: str  # Display terminus


@dataclass(frozen=True)
class ServiceDate:
    """One calendar_dates.txt row: a concrete date a service runs (or doesn't)."""
    service_id: str
    date: str  # YYYYMMDD
    exception_type: int = 1  # 1 = added, 2 = removed


@dataclass(frozen=True)
class StopTime:
    """A trip's scheduled call at a stop."""
    trip_id: str
    stop_id: str
    departure_time: str  # HH:MM:SS, may run past 24:00:00
    stop_sequence: int
    arrival_time: str = ""


@dataclass(frozen=True)
class RealtimeUpdate:
    """A GTFS-Realtime StopTimeUpdate, flattened.

    Any subset of the timestamp/delay fields may be populated.
    """
    trip_id: str
    route_id: str = ""
    stop_id: str = ""
    stop_sequence: Optional[int] = None
    arrival_timestamp: Optional[int] = None  # Unix timestamp
    departure_timestamp: Optional[int] = None  # Unix timestamp
    arrival_delay: Optional[int] = None  # Seconds
    departure_delay: Optional[int] = None  # Seconds


@dataclass(frozen=True)
class WatchFilter:
    """What a caller wants departures for."""
    stop_name: Optional[str] = None
    route_name: Optional[str] = None
    direction: Optional[Direction] = None


@dataclass(frozen=True)
class Watch:
    """A registered filter with its resolved routes and stops.

    Resolved once when registered; a later schedule import doesn't update it.
    """
    filter: WatchFilter
    routes: Dict[str, Route] = field(default_factory=dict)  # route_id -> Route
    stops: Dict[str, Stop] = field(default_factory=dict)  # stop_id -> Stop

    @property
    def is_empty(self) -> bool:
        return not self.routes or not self.stops


@dataclass(frozen=True)
class Departure:
    """A computed upcoming departure of a trip from a watched stop."""
    stop_id: str
    route_id: str
    trip_id: str
    route_name: str
    trip_terminus: str
    direction: Optional[Direction]
    stop_name: str
    stop_time: datetime
    stop_delay: Optional[int] = None  # Seconds late, None without realtime data

    @property
    def key(self) -> Tuple[str, datetime]:
        """Deduplication key: the same trip can't depart twice at one instant."""
        return (self.trip_id, self.stop_time)

    def to_dict(self) -> dict:
        """Plain payload for the display layer."""
        return {
            "stop_id": self.stop_id,
            "route_id": self.route_id,
            "trip_id": self.trip_id,
            "route_name": self.route_name,
            "trip_terminus": self.trip_terminus,
            "direction": None if self.direction is None else int(self.direction),
            "stop_name": self.stop_name,
            "stop_time": self.stop_time.isoformat(),
            "stop_delay": self.stop_delay,
        }
