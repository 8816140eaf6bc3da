"""
Booking transaction engine.

Create, amend and cancel each run as a single transaction holding the lock on
exactly one flight row: the seat ledger, the pricing decision and the booking
rows are written together or not at all. Errors leave this module only after
the transaction has been rolled back.
"""

import logging
from datetime import date, datetime
from typing import List, Optional, Sequence, Tuple

from sqlalchemy import func, select
from sqlalchemy.orm import Session, selectinload

from auth import Identity
from config import LOCK_TIMEOUT_SECONDS
from database import flight_transaction
from enums import BookingStatus, TravelClass
from errors import (
    BookingError,
    BookingWindowClosed,
    Conflict,
    Forbidden,
    InsufficientSeats,
    NotFound,
    ValidationError,
)
from flight_status import flight_status, is_open_for_booking
from inventory import release, reserve
from models import Booking, Traveller, User
from pricing import Quote, base_price_for, parse_travel_class, quote

logger = logging.getLogger(__name__)

TRAVELLER_FIELDS = ("title", "first_name", "last_name", "dob", "nationality")


def _field(traveller, name):
    if isinstance(traveller, dict):
        return traveller.get(name)
    return getattr(traveller, name, None)


def _parse_dob(value, position: int) -> date:
    if isinstance(value, datetime):
        value = value.date()
    elif isinstance(value, str):
        try:
            value = date.fromisoformat(value)
        except ValueError:
            raise ValidationError(f"Invalid date of birth for traveller #{position}")
    if not isinstance(value, date):
        raise ValidationError(f"All traveller details are required for traveller #{position}")
    if value > date.today():
        raise ValidationError(f"Date of birth is in the future for traveller #{position}")
    return value


def build_travellers(travellers: Sequence, seat_count: int) -> List[Traveller]:
    """Validates the traveller manifest against the seat count and builds the rows."""
    if travellers is None or len(travellers) != seat_count:
        raise ValidationError("Number of travellers must match number of seats.")

    rows = []
    for position, traveller in enumerate(travellers, start=1):
        values = {}
        for name in TRAVELLER_FIELDS:
            value = _field(traveller, name)
            if isinstance(value, str):
                value = value.strip()
            if value in (None, ""):
                raise ValidationError(
                    f"All traveller details are required for traveller #{position}"
                )
            values[name] = value
        values["dob"] = _parse_dob(values["dob"], position)
        rows.append(Traveller(**values))
    return rows


def _check_seat_count(seat_count) -> int:
    if isinstance(seat_count, bool) or not isinstance(seat_count, int) or seat_count <= 0:
        raise ValidationError("Seat count must be a positive integer")
    return seat_count


def _price_allocation(flight, travel_class: TravelClass, seat_count: int, now: datetime) -> Quote:
    status = flight_status(flight.departure_time, flight.arrival_time, now)
    if not is_open_for_booking(status):
        raise BookingWindowClosed(f"Cannot book flight: flight is {status.value.lower()}")
    return quote(base_price_for(flight, travel_class), seat_count, flight.departure_time - now)


def _authorize(identity: Identity, booking: Booking):
    if not identity.is_admin and booking.user_id != identity.user_id:
        raise Forbidden("Not authorized to access this booking")


def _load_booking(db: Session, booking_id: int) -> Booking:
    booking = db.get(Booking, booking_id)
    if booking is None:
        raise NotFound(f"Booking {booking_id} not found")
    return booking


def _reload_booking(db: Session, booking_id: int) -> Booking:
    stmt = (
        select(Booking)
        .where(Booking.id == booking_id)
        .options(selectinload(Booking.travellers))
        .execution_options(populate_existing=True)
    )
    booking = db.execute(stmt).scalar_one_or_none()
    if booking is None:
        raise NotFound(f"Booking {booking_id} not found")
    return booking


def create_booking(
    db: Session,
    identity: Identity,
    flight_id: int,
    travel_class,
    seat_count: int,
    travellers: Sequence,
    now: Optional[datetime] = None,
    deadline: Optional[float] = None,
    lock_timeout: float = LOCK_TIMEOUT_SECONDS,
) -> Booking:
    """
    Books ``seat_count`` seats of ``travel_class`` on a flight for the caller.

    Validation happens before any lock is taken. Under the flight lock the
    booking window and surcharge are decided, the seats are taken from the
    ledger and the booking with its travellers is stored.
    """
    try:
        travel_class = parse_travel_class(travel_class)
        seat_count = _check_seat_count(seat_count)
        traveller_rows = build_travellers(travellers, seat_count)

        with flight_transaction(db, flight_id, lock_timeout, deadline) as flight:
            if db.get(User, identity.user_id) is None:
                raise NotFound(f"User {identity.user_id} not found")

            now = now or datetime.utcnow()
            charge = _price_allocation(flight, travel_class, seat_count, now)
            reserve(flight, travel_class, seat_count)

            booking = Booking(
                user_id=identity.user_id,
                flight_id=flight.id,
                travel_class=travel_class.value,
                seats=seat_count,
                is_premium=charge.is_premium,
                total_price=charge.total_price,
                status=BookingStatus.CONFIRMED.value,
                booking_date=now,
                travellers=traveller_rows,
            )
            db.add(booking)
            db.flush()
    except BookingError as exc:
        logger.warning(
            "Booking rejected for user %s on flight %s: %s",
            identity.user_id, flight_id, exc.message,
        )
        raise

    logger.info(
        "Booking %s confirmed: flight %s, %d x %s, total %.2f (premium=%s)",
        booking.id, flight_id, seat_count, travel_class.value,
        booking.total_price, booking.is_premium,
    )
    return booking


def cancel_booking(
    db: Session,
    identity: Identity,
    booking_id: int,
    now: Optional[datetime] = None,
    deadline: Optional[float] = None,
    lock_timeout: float = LOCK_TIMEOUT_SECONDS,
) -> Booking:
    """
    Cancels a booking and returns its seats to the flight.

    Cancelling an already cancelled booking is acknowledged without touching
    the ledger.
    """
    try:
        booking = _load_booking(db, booking_id)
        _authorize(identity, booking)
        flight_id = booking.flight_id
        if booking.status == BookingStatus.CANCELLED.value:
            # the flight may be deleted by now; there is nothing left to release
            logger.info("Booking %s already cancelled", booking_id)
            return booking

        with flight_transaction(db, flight_id, lock_timeout, deadline) as flight:
            booking = _reload_booking(db, booking_id)
            if booking.status == BookingStatus.CANCELLED.value:
                logger.info("Booking %s already cancelled", booking_id)
                return booking

            release(flight, booking.travel_class, booking.seats)
            booking.status = BookingStatus.CANCELLED.value
            booking.cancelled_at = now or datetime.utcnow()
    except BookingError as exc:
        logger.warning("Cancellation of booking %s rejected: %s", booking_id, exc.message)
        raise

    logger.info(
        "Booking %s cancelled, %d %s seats restored to flight %s",
        booking_id, booking.seats, booking.travel_class, flight_id,
    )
    return booking


def amend_booking(
    db: Session,
    identity: Identity,
    booking_id: int,
    travel_class,
    seat_count: int,
    travellers: Optional[Sequence] = None,
    now: Optional[datetime] = None,
    deadline: Optional[float] = None,
    lock_timeout: float = LOCK_TIMEOUT_SECONDS,
) -> Booking:
    """
    Moves a confirmed booking to a new class and/or seat count.

    The current allocation is released before the new one is reserved, so a
    booking never competes with its own seats. The price is re-rated at the
    current time to departure. A changed seat count needs a new traveller
    list of matching length; otherwise the stored travellers are kept.
    """
    try:
        travel_class = parse_travel_class(travel_class)
        seat_count = _check_seat_count(seat_count)
        traveller_rows = None
        if travellers is not None:
            traveller_rows = build_travellers(travellers, seat_count)

        booking = _load_booking(db, booking_id)
        _authorize(identity, booking)
        flight_id = booking.flight_id

        with flight_transaction(db, flight_id, lock_timeout, deadline) as flight:
            booking = _reload_booking(db, booking_id)
            if booking.status != BookingStatus.CONFIRMED.value:
                raise Conflict(f"Booking {booking_id} is {booking.status.lower()} and cannot be amended")
            if traveller_rows is None and seat_count != booking.seats:
                raise ValidationError("Number of travellers must match number of seats.")

            now = now or datetime.utcnow()
            release(flight, booking.travel_class, booking.seats)
            try:
                reserve(flight, travel_class, seat_count)
            except InsufficientSeats as exc:
                raise InsufficientSeats(f"Cannot amend booking {booking_id}: {exc.message}")
            charge = _price_allocation(flight, travel_class, seat_count, now)

            booking.travel_class = travel_class.value
            booking.seats = seat_count
            booking.is_premium = charge.is_premium
            booking.total_price = charge.total_price
            if traveller_rows is not None:
                booking.travellers = traveller_rows
            db.flush()
    except BookingError as exc:
        logger.warning("Amendment of booking %s rejected: %s", booking_id, exc.message)
        raise

    logger.info(
        "Booking %s amended: %d x %s, total %.2f (premium=%s)",
        booking_id, seat_count, travel_class.value, booking.total_price, booking.is_premium,
    )
    return booking


def get_booking(db: Session, identity: Identity, booking_id: int) -> Booking:
    booking = _load_booking(db, booking_id)
    _authorize(identity, booking)
    return booking


def list_bookings(
    db: Session, identity: Identity, page: int = 1, limit: int = 10
) -> Tuple[List[Booking], int]:
    """Bookings visible to the caller, newest first: their own, or all of them for admins."""
    page = max(1, page)
    limit = max(1, limit)

    query = select(Booking)
    count_query = select(func.count(Booking.id))
    if not identity.is_admin:
        query = query.where(Booking.user_id == identity.user_id)
        count_query = count_query.where(Booking.user_id == identity.user_id)

    total = db.execute(count_query).scalar_one()
    bookings = (
        db.execute(
            query.options(selectinload(Booking.flight), selectinload(Booking.travellers))
            .order_by(Booking.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        )
        .scalars()
        .all()
    )
    return list(bookings), total
