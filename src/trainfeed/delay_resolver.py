"""Match realtime stop time updates to scheduled departures."""

import logging
from datetime import datetime
from typing import Iterable, Optional

from .models import RealtimeUpdate

logger = logging.getLogger(__name__)

# Timestamp-derived delays beyond this are feed noise. SEPTA, for one,
# sometimes publishes an arrival timestamp of 1970-01-01T00:00:00Z.
MAX_CREDIBLE_DELAY = 12 * 3600  # Seconds


def trip_ids_match(update_trip_id: str, trip_id: str) -> bool:
    """
    Loose trip id comparison between a realtime feed and the static schedule.

    Feeds truncate or prefix trip ids, so either id containing the other
    counts as a match.
    """
    if not update_trip_id or not trip_id:
        return False
    return update_trip_id in trip_id or trip_id in update_trip_id


def delay_from_update(scheduled: datetime, update: RealtimeUpdate) -> Optional[int]:
    """
    Work out how late a vehicle is from a stop time update.

    Updates give an adjusted arrival or departure, either as a delay in
    seconds or as a new time. Departure is preferred to arrival, and an
    explicit delay to a new time.

    Args:
        scheduled: Scheduled departure the update applies to.
        update: The realtime update.

    Returns:
        Delay in seconds (negative when early), or None if it couldn't be
        determined.
    """
    delay: Optional[int] = None
    scheduled_timestamp = scheduled.timestamp()

    if update.arrival_timestamp is not None:
        delay = round(update.arrival_timestamp - scheduled_timestamp)
    if update.departure_timestamp is not None:
        delay = round(update.departure_timestamp - scheduled_timestamp)
    if delay is not None and abs(delay) > MAX_CREDIBLE_DELAY:
        logger.debug(f"Ignoring non-credible delay of {delay}s for trip {update.trip_id}")
        delay = None

    if update.arrival_delay is not None:
        delay = update.arrival_delay
    if update.departure_delay is not None:
        delay = update.departure_delay

    return delay


def resolve_delay(
    updates: Iterable[RealtimeUpdate],
    trip_id: str,
    stop_sequence: int,
    scheduled: datetime,
    stop_id: Optional[str] = None,
) -> Optional[int]:
    """
    Find the delay of a trip at a stop.

    Uses the update for the closest stop at or before ``stop_sequence``:
    a delay reported upstream is assumed to carry on to later stops. When
    several updates share that sequence the last one wins.

    Args:
        updates: Realtime updates for the trip's route.
        trip_id: Static trip id.
        stop_sequence: Position of the stop within the trip.
        scheduled: Scheduled departure at the stop.
        stop_id: Stop id, used to place updates that carry no stop_sequence.

    Returns:
        Delay in seconds, or None without usable realtime data.
    """
    best_sequence = -1
    best_update: Optional[RealtimeUpdate] = None

    for update in updates:
        if not trip_ids_match(update.trip_id, trip_id):
            continue

        sequence = update.stop_sequence
        if sequence is None:
            if stop_id is None or update.stop_id != stop_id:
                continue
            sequence = stop_sequence

        if sequence < best_sequence or sequence > stop_sequence:
            continue
        best_sequence = sequence
        best_update = update

    if best_update is None:
        return None
    return delay_from_update(scheduled, best_update)
