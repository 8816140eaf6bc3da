"""Real-time flight lifecycle state, derived from the schedule on every read."""

from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import and_

from enums import FlightStatus

DEPARTING_SOON_WINDOW = timedelta(minutes=10)


def flight_status(
    departure_time: datetime, arrival_time: datetime, now: Optional[datetime] = None
) -> FlightStatus:
    now = now or datetime.utcnow()
    if now >= arrival_time:
        return FlightStatus.LANDED
    if departure_time <= now:
        return FlightStatus.IN_AIR
    if departure_time - now <= DEPARTING_SOON_WINDOW:
        return FlightStatus.DEPARTING_SOON
    return FlightStatus.SCHEDULED


def is_open_for_booking(status: FlightStatus) -> bool:
    return status in (FlightStatus.SCHEDULED, FlightStatus.DEPARTING_SOON)


def status_filter(status: FlightStatus, now: datetime):
    """SQL predicate on ``Flight`` matching exactly the flights ``flight_status`` maps to ``status``."""
    from models import Flight

    soon = now + DEPARTING_SOON_WINDOW
    if status == FlightStatus.LANDED:
        return Flight.arrival_time <= now
    if status == FlightStatus.IN_AIR:
        return and_(Flight.departure_time <= now, Flight.arrival_time > now)
    if status == FlightStatus.DEPARTING_SOON:
        return and_(Flight.departure_time > now, Flight.departure_time <= soon)
    return Flight.departure_time > soon
