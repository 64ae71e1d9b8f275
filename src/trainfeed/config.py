"""Feed configuration for the departure feed."""

from dataclasses import dataclass, field, fields
from typing import Dict, List, Optional

# MTA commuter rail GTFS static data
LONG_ISLAND_GTFS = "https://rrgtfsfeeds.s3.amazonaws.com/gtfslirr.zip"
METRO_NORTH_GTFS = "https://rrgtfsfeeds.s3.amazonaws.com/gtfsmnr.zip"

# MTA commuter rail GTFS-Realtime trip updates
LONG_ISLAND_REALTIME = "https://api-endpoint.mta.info/Dataservice/mtagtfsfeeds/lirr%2Fgtfs-lirr"
METRO_NORTH_REALTIME = "https://api-endpoint.mta.info/Dataservice/mtagtfsfeeds/mnr%2Fgtfs-mnr"


@dataclass
class FeedConfig:
    """
    Where to fetch schedule data from and how often to refresh it.

    Either ``gtfs_url`` or ``gtfs_path`` names the static schedule; ``gtfs_path``
    wins when both are set. ``gtfs_path`` may be a GTFS zip or an unpacked
    directory.
    """
    gtfs_url: Optional[str] = METRO_NORTH_GTFS
    gtfs_path: Optional[str] = None
    realtime_urls: List[str] = field(default_factory=lambda: [METRO_NORTH_REALTIME])
    headers: Dict[str, str] = field(default_factory=dict)  # e.g. {"x-api-key": ...}
    broadcast_interval: float = 60.0  # Seconds
    realtime_interval: float = 300.0  # Seconds
    lock_timeout: float = 30.0  # Seconds to wait for the schedule store
    request_timeout: float = 10.0  # Seconds per realtime request
    download_timeout: float = 120.0  # Seconds for the static zip

    @classmethod
    def from_dict(cls, values: dict) -> "FeedConfig":
        """Build a config from a plain dict, e.g. a parsed JSON/YAML file."""
        known = {f.name for f in fields(cls)}
        unknown = set(values) - known
        if unknown:
            raise ValueError(f"Unknown config keys: {', '.join(sorted(unknown))}")

        config = cls(**values)
        if not config.gtfs_url and not config.gtfs_path:
            raise ValueError("One of gtfs_url or gtfs_path must be set")
        if config.broadcast_interval <= 0 or config.realtime_interval <= 0:
            raise ValueError("Refresh intervals must be positive")
        return config
