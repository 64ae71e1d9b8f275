"""Turn calendar dates and stop times into concrete departure datetimes."""

import logging
from datetime import datetime, timedelta
from typing import List, Optional

from .models import ServiceDate

logger = logging.getLogger(__name__)

# How far ahead departures are scheduled, in calendar days
LOOK_AHEAD_DAYS = 3


def parse_service_date(value: str) -> datetime:
    """
    Parse a GTFS YYYYMMDD date to midnight of that day.

    Raises:
        ValueError: If the value isn't a valid YYYYMMDD date.
    """
    value = str(value).strip()
    if len(value) != 8 or not value.isdigit():
        raise ValueError(f"Invalid service date {value!r}")
    return datetime.strptime(value, "%Y%m%d")


def parse_time_of_day(value: str) -> timedelta:
    """
    Parse a GTFS HH:MM:SS time as an offset from midnight.

    Hours may run past 23 for trips that continue after midnight,
    e.g. "25:10:00" is 1:10 AM the next day.

    Raises:
        ValueError: If the value isn't H:MM:SS / HH:MM:SS.
    """
    parts = str(value).strip().split(":")
    if len(parts) != 3 or not all(part.isdigit() for part in parts):
        raise ValueError(f"Invalid stop time {value!r}")
    hours, minutes, seconds = (int(part) for part in parts)
    if minutes > 59 or seconds > 59:
        raise ValueError(f"Invalid stop time {value!r}")
    return timedelta(hours=hours, minutes=minutes, seconds=seconds)


def make_stop_datetimes(
    service_date: ServiceDate,
    stop_time: str,
    now: Optional[datetime] = None,
    window_days: int = LOOK_AHEAD_DAYS,
) -> List[datetime]:
    """
    Create the departure datetime for a stop time on a service date.

    Args:
        service_date: calendar_dates.txt row the trip runs on.
        stop_time: Scheduled departure, HH:MM:SS.
        now: Reference time; defaults to the current local time.
        window_days: Furthest service date, in days from today, to schedule.

    Returns:
        A one-element list if the service date is between today and
        ``window_days`` days from now (inclusive) and the departure hasn't
        happened yet; otherwise an empty list.

    Raises:
        ValueError: If the date or time can't be parsed.
    """
    now = now or datetime.now()
    departure_date = parse_service_date(service_date.date).replace(tzinfo=now.tzinfo)
    offset = parse_time_of_day(stop_time)

    days_difference = (departure_date.date() - now.date()).days
    if not 0 <= days_difference <= window_days:
        logger.debug(f"Skipping {service_date.service_id} on {service_date.date}: outside window")
        return []

    departure = departure_date + offset
    if departure < now:
        return []

    return [departure]
