"""GTFS static schedule loader."""

import io
import logging
import os
import zipfile
from typing import Dict, List, Optional, Tuple

import pandas as pd
import requests

from .models import Direction, Route, ServiceDate, Stop, StopTime, Trip

logger = logging.getLogger(__name__)

# Tables the departure feed reads; anything else in the zip is ignored
GTFS_TABLES = ("routes.txt", "stops.txt", "trips.txt", "calendar_dates.txt", "stop_times.txt")
REQUIRED_TABLES = ("routes.txt", "stops.txt", "trips.txt", "stop_times.txt")

# calendar_dates.txt exception_type for "service removed on this date"
SERVICE_REMOVED = 2


class GTFSLoader:
    """Loads and indexes a GTFS static schedule."""

    def __init__(self):
        """Initialize the GTFS loader."""
        self.routes: Dict[str, Route] = {}
        self.stops: Dict[str, Stop] = {}
        self.trips: Dict[str, Trip] = {}
        self.trips_by_route: Dict[str, List[Trip]] = {}
        self.service_dates: Dict[str, List[ServiceDate]] = {}  # service_id -> rows
        self.stop_times: Dict[Tuple[str, str], List[StopTime]] = {}  # (trip_id, stop_id) -> rows
        self.stops_by_route: Dict[str, List[str]] = {}  # route_id -> [stop_ids]

    @property
    def loaded(self) -> bool:
        """True once a schedule with at least one route has been loaded."""
        return bool(self.routes)

    def load_from_url(self, url: str, headers: Optional[Dict[str, str]] = None, timeout: float = 120.0) -> None:
        """Download a GTFS zip and load it."""
        logger.info(f"Downloading GTFS data from {url}")
        try:
            response = requests.get(url, headers=headers, timeout=timeout)
            response.raise_for_status()
            with zipfile.ZipFile(io.BytesIO(response.content)) as zip_file:
                self._load_zip(zip_file)
        except Exception as e:
            logger.error(f"Failed to load GTFS data: {e}")
            raise

    def load_from_path(self, path: str) -> None:
        """Load GTFS data from a local zip file or an unpacked directory."""
        logger.info(f"Loading GTFS data from {path}")
        if os.path.isdir(path):
            tables = {}
            for name in GTFS_TABLES:
                table_path = os.path.join(path, name)
                if os.path.exists(table_path):
                    with open(table_path, "r", encoding="utf-8-sig") as f:
                        tables[name] = f.read()
            self.load_tables(tables)
        else:
            with zipfile.ZipFile(path) as zip_file:
                self._load_zip(zip_file)

    def _load_zip(self, zip_file: zipfile.ZipFile) -> None:
        names = set(zip_file.namelist())
        tables = {
            name: zip_file.read(name).decode("utf-8-sig")
            for name in GTFS_TABLES
            if name in names
        }
        self.load_tables(tables)

    def load_tables(self, tables: Dict[str, str]) -> None:
        """
        Replace the loaded schedule with the given GTFS tables.

        Args:
            tables: Mapping of GTFS file name (e.g. "routes.txt") to its CSV text.

        The previously loaded schedule stays in place if any table fails.

        Raises:
            ValueError: If a required table is missing.
            KeyError: If a table lacks a required column.
        """
        missing = [name for name in REQUIRED_TABLES if name not in tables]
        if missing:
            raise ValueError(f"GTFS feed is missing {', '.join(missing)}")

        frames = {name: self._read_csv(content) for name, content in tables.items()}

        staged = GTFSLoader()
        staged._load_routes(frames["routes.txt"])
        staged._load_stops(frames["stops.txt"])
        staged._load_trips(frames["trips.txt"])
        if "calendar_dates.txt" in frames:
            staged._load_calendar_dates(frames["calendar_dates.txt"])
        else:
            # Trips without calendar rows are skipped when broadcasting
            logger.warning("GTFS feed has no calendar_dates.txt; no departures will be scheduled")
        staged._load_stop_times(frames["stop_times.txt"], frames["trips.txt"])

        self.routes = staged.routes
        self.stops = staged.stops
        self.trips = staged.trips
        self.trips_by_route = staged.trips_by_route
        self.service_dates = staged.service_dates
        self.stop_times = staged.stop_times
        self.stops_by_route = staged.stops_by_route

        logger.info(
            f"Loaded {len(self.routes)} routes, {len(self.stops)} stops "
            f"and {len(self.trips)} trips"
        )

    @staticmethod
    def _read_csv(csv_content: str) -> pd.DataFrame:
        """Read a GTFS table keeping every value as a string ("" for blanks)."""
        df = pd.read_csv(io.StringIO(csv_content), dtype=str, keep_default_na=False)
        df.columns = df.columns.str.strip()
        return df

    def _load_routes(self, df: pd.DataFrame) -> None:
        """Parse routes.txt."""
        for row in df.to_dict("records"):
            route_id = row["route_id"]
            short_name = row.get("route_short_name", "")
            name = row.get("route_long_name") or short_name or route_id
            self.routes[route_id] = Route(route_id=route_id, name=name, short_name=short_name)

    def _load_stops(self, df: pd.DataFrame) -> None:
        """Parse stops.txt."""
        for row in df.to_dict("records"):
            self.stops[row["stop_id"]] = Stop(stop_id=row["stop_id"], name=row.get("stop_name", ""))

    def _load_trips(self, df: pd.DataFrame) -> None:
        """Parse trips.txt and group trips by route."""
        for row in df.to_dict("records"):
            trip = Trip(
                trip_id=row["trip_id"],
                route_id=row["route_id"],
                service_id=row.get("service_id", ""),
                direction=_parse_direction(row.get("direction_id", "")),
                headsign=row.get("trip_headsign", ""),
            )
            self.trips[trip.trip_id] = trip
            self.trips_by_route.setdefault(trip.route_id, []).append(trip)

    def _load_calendar_dates(self, df: pd.DataFrame) -> None:
        """Parse calendar_dates.txt."""
        for row in df.to_dict("records"):
            try:
                exception_type = int(row.get("exception_type") or 1)
            except ValueError:
                logger.warning(f"Skipping calendar date with bad exception_type: {row}")
                continue
            service_date = ServiceDate(
                service_id=row["service_id"],
                date=row["date"].strip(),
                exception_type=exception_type,
            )
            self.service_dates.setdefault(service_date.service_id, []).append(service_date)

    def _load_stop_times(self, df: pd.DataFrame, trips_df: pd.DataFrame) -> None:
        """Parse stop_times.txt and index which stops each route serves."""
        df = df.copy()
        df["stop_sequence"] = pd.to_numeric(df["stop_sequence"], errors="coerce")
        bad_rows = df["stop_sequence"].isna()
        if bad_rows.any():
            logger.warning(f"Skipping {int(bad_rows.sum())} stop times without a stop_sequence")
            df = df[~bad_rows].copy()

        # Non-timepoint rows may only carry an arrival time
        if "arrival_time" not in df.columns:
            df["arrival_time"] = ""
        if "departure_time" not in df.columns:
            df["departure_time"] = ""
        df["departure_time"] = df["departure_time"].where(df["departure_time"] != "", df["arrival_time"])

        for row in df.to_dict("records"):
            stop_time = StopTime(
                trip_id=row["trip_id"],
                stop_id=row["stop_id"],
                departure_time=row["departure_time"].strip(),
                stop_sequence=int(row["stop_sequence"]),
                arrival_time=row["arrival_time"].strip(),
            )
            self.stop_times.setdefault((stop_time.trip_id, stop_time.stop_id), []).append(stop_time)

        served = (
            df[["trip_id", "stop_id"]]
            .merge(trips_df[["trip_id", "route_id"]], on="trip_id")
            .drop_duplicates(["route_id", "stop_id"])
        )
        for route_id, group in served.groupby("route_id"):
            self.stops_by_route[route_id] = group["stop_id"].tolist()

        logger.debug(f"Indexed stops for {len(self.stops_by_route)} routes")

    def get_routes(self) -> List[Route]:
        """All routes in the schedule."""
        return list(self.routes.values())

    def get_stops(self, route_id: Optional[str] = None) -> List[Stop]:
        """All stops, or only the ones served by a route's trips."""
        if route_id is None:
            return list(self.stops.values())
        return [
            self.stops[stop_id]
            for stop_id in self.stops_by_route.get(route_id, [])
            if stop_id in self.stops
        ]

    def get_trip(self, trip_id: str) -> Optional[Trip]:
        return self.trips.get(trip_id)

    def get_trips(self, route_id: str) -> List[Trip]:
        return list(self.trips_by_route.get(route_id, []))

    def get_service_dates(self, service_id: str) -> List[ServiceDate]:
        """Dates the service runs on; removal rows are left out."""
        return [
            service_date
            for service_date in self.service_dates.get(service_id, [])
            if service_date.exception_type != SERVICE_REMOVED
        ]

    def get_stop_times(self, trip_id: str, stop_id: str) -> List[StopTime]:
        return list(self.stop_times.get((trip_id, stop_id), []))

    def clear(self) -> None:
        """Clear all loaded data to free memory."""
        self.routes.clear()
        self.stops.clear()
        self.trips.clear()
        self.trips_by_route.clear()
        self.service_dates.clear()
        self.stop_times.clear()
        self.stops_by_route.clear()


def _parse_direction(value: str) -> Optional[Direction]:
    """Map a direction_id cell to a Direction; blank or unknown values become None."""
    value = (value or "").strip()
    if value in ("0", "1"):
        return Direction(int(value))
    return None
