"""GTFS-Realtime trip update fetcher and parser."""

import logging
from typing import Dict, List, Optional, Tuple

import requests
from google.protobuf.message import DecodeError
from google.transit import gtfs_realtime_pb2

from .models import RealtimeUpdate

logger = logging.getLogger(__name__)


class RealtimeClient:
    """
    Fetches GTFS-Realtime feeds and flattens their stop time updates.

    Every call downloads the feeds again; nothing is cached between refreshes.
    """

    def __init__(self):
        """Initialize the realtime client."""
        self._session = requests.Session()

    def fetch_updates(
        self,
        feed_urls: List[str],
        headers: Optional[Dict[str, str]] = None,
        timeout: float = 10.0,
    ) -> List[RealtimeUpdate]:
        """
        Get the stop time updates from every feed.

        A feed that fails to download is logged and skipped, as long as at
        least one feed succeeds.

        Args:
            feed_urls: GTFS-Realtime TripUpdates feed URLs.
            headers: Extra request headers (API keys).
            timeout: Per-request timeout in seconds.

        Returns:
            List of RealtimeUpdate records, in feed order.

        Raises:
            requests.RequestException: If every feed failed to download.
        """
        updates: List[RealtimeUpdate] = []
        last_error: Optional[requests.RequestException] = None
        fetched = 0

        for feed_url in feed_urls:
            try:
                feed_data = self._fetch_feed(feed_url, headers=headers, timeout=timeout)
            except requests.RequestException as e:
                logger.warning(f"Failed to fetch feed {feed_url}: {e}")
                last_error = e
                continue
            fetched += 1
            updates.extend(self._parse_trip_updates(feed_data))

        if fetched == 0 and last_error is not None:
            raise last_error

        logger.debug(f"Parsed {len(updates)} stop time updates from {fetched} feeds")
        return updates

    def _fetch_feed(
        self,
        feed_url: str,
        headers: Optional[Dict[str, str]] = None,
        timeout: float = 10.0,
    ) -> bytes:
        """Download one feed and return its raw protobuf bytes."""
        logger.debug(f"Fetching {feed_url}")
        response = self._session.get(feed_url, headers=headers, timeout=timeout)
        response.raise_for_status()
        return response.content

    @staticmethod
    def _parse_trip_updates(feed_data: bytes) -> List[RealtimeUpdate]:
        """
        Parse stop time updates from a GTFS-Realtime feed.

        Args:
            feed_data: Raw protobuf bytes.

        Returns:
            List of RealtimeUpdate objects; empty if the feed can't be decoded.
        """
        feed = gtfs_realtime_pb2.FeedMessage()
        try:
            feed.ParseFromString(feed_data)
        except DecodeError as e:
            logger.error(f"Failed to parse realtime feed: {e}")
            return []

        updates: List[RealtimeUpdate] = []
        for entity in feed.entity:
            if not entity.HasField("trip_update"):
                continue

            trip_update = entity.trip_update
            trip_id = trip_update.trip.trip_id
            if not trip_id:
                continue
            route_id = trip_update.trip.route_id

            for stop_time_update in trip_update.stop_time_update:
                arrival_timestamp, arrival_delay = _read_event(stop_time_update, "arrival")
                departure_timestamp, departure_delay = _read_event(stop_time_update, "departure")

                updates.append(
                    RealtimeUpdate(
                        trip_id=trip_id,
                        route_id=route_id,
                        stop_id=stop_time_update.stop_id,
                        stop_sequence=(
                            stop_time_update.stop_sequence
                            if stop_time_update.HasField("stop_sequence")
                            else None
                        ),
                        arrival_timestamp=arrival_timestamp,
                        departure_timestamp=departure_timestamp,
                        arrival_delay=arrival_delay,
                        departure_delay=departure_delay,
                    )
                )

        return updates


def _read_event(stop_time_update, field_name: str) -> Tuple[Optional[int], Optional[int]]:
    """Return (time, delay) of a StopTimeEvent, None for fields the feed left out."""
    if not stop_time_update.HasField(field_name):
        return None, None
    event = getattr(stop_time_update, field_name)
    event_time = event.time if event.HasField("time") else None
    delay = event.delay if event.HasField("delay") else None
    return event_time, delay
