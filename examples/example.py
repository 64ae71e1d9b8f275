"""Example usage of DepartureFeed."""

import logging
import os
import sys
import time
from datetime import datetime
from pathlib import Path
from typing import List

# Add src to path so we can import trainfeed
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from trainfeed import Departure, DepartureFeed, FeedConfig, WatchFilter
from trainfeed.config import LONG_ISLAND_GTFS, LONG_ISLAND_REALTIME

# Set up logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)

logger = logging.getLogger(__name__)


def print_departures(departures: List[Departure]) -> None:
    """Print the next departures as a board."""
    now = datetime.now()
    print(f"\n{'='*70}")
    print(f"Departures at {now.strftime('%H:%M:%S')}")
    print(f"{'='*70}")
    if not departures:
        print("  No departures found")
    for departure in departures[:15]:
        if departure.stop_delay is None:
            status = "scheduled"
        elif departure.stop_delay <= 60:
            status = "on time"
        else:
            status = f"{departure.stop_delay // 60} min late"
        print(
            f"  {departure.stop_time.strftime('%a %H:%M')}  {departure.stop_name:<20} "
            f"{departure.route_name:<16} → {departure.trip_terminus:<20} {status}"
        )


def main():
    """
    Watch one station and print its departures every minute.

    Usage: example.py STOP_NAME [ROUTE_NAME] [--lirr]
    """
    args = [arg for arg in sys.argv[1:] if not arg.startswith("--")]
    if not args:
        print("Usage: example.py STOP_NAME [ROUTE_NAME] [--lirr]")
        sys.exit(1)

    config = FeedConfig(headers={"x-api-key": os.environ.get("MTA_API_KEY", "")})
    if "--lirr" in sys.argv:
        config.gtfs_url = LONG_ISLAND_GTFS
        config.realtime_urls = [LONG_ISLAND_REALTIME]

    feed = DepartureFeed(config, on_departures=print_departures)
    try:
        print("Loading GTFS data... (this may take a minute)")
        feed.startup()
        feed.register_watch(WatchFilter(stop_name=args[0], route_name=args[1] if len(args) > 1 else None))
        feed.run_broadcast()
        while True:
            time.sleep(1)
    except KeyboardInterrupt:
        print("\n\nGoodbye!")
    except Exception as e:
        logger.error(f"Failed to fetch data: {e}", exc_info=True)
        print(f"Error: {e}")
        sys.exit(1)
    finally:
        feed.shutdown()


if __name__ == "__main__":
    main()
