import logging
import random
from datetime import date, datetime, time, timedelta, timezone
from typing import Dict, List, Optional, Tuple

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from config import LOCK_TIMEOUT_SECONDS
from database import flight_transaction
from enums import BookingStatus, FlightStatus, TravelClass
from errors import Conflict, NotFound, ValidationError
from flight_status import flight_status, status_filter
from inventory import SEAT_ATTRIBUTES, available_seats, total_available, total_capacity, total_seats
from models import Booking, Flight
from pricing import PRICE_ATTRIBUTES, base_price_for, parse_travel_class

logger = logging.getLogger(__name__)

SCHEDULE_FIELDS = ("origin", "destination", "departure_time", "arrival_time")
PRICE_FIELDS = tuple(PRICE_ATTRIBUTES.values())
SEAT_FIELDS = tuple(available for available, _ in SEAT_ATTRIBUTES.values())
UPDATABLE_FIELDS = SCHEDULE_FIELDS + PRICE_FIELDS


def _as_utc(value: datetime) -> datetime:
    """Stores every timestamp as naive UTC."""
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def _clean_location(value: str, field: str) -> str:
    value = (value or "").strip()
    if len(value) < 3:
        raise ValidationError(f"{field} must be at least 3 characters")
    return value


def _validate_schedule(departure_time: datetime, arrival_time: datetime):
    if arrival_time <= departure_time:
        raise ValidationError("Arrival time must be after departure time")


def _validate_prices(values: Dict[str, float]):
    for field, price in values.items():
        if price is None or price < 0:
            raise ValidationError("Prices cannot be negative")


def create_flight(db: Session, **fields) -> Flight:
    """
    Publishes a flight. The seat counts given become both the available seats
    and the immutable capacity of each class.
    """
    unknown = set(fields) - set(SCHEDULE_FIELDS + PRICE_FIELDS + SEAT_FIELDS)
    if unknown:
        raise ValidationError(f"Unknown flight fields: {', '.join(sorted(unknown))}")

    origin = _clean_location(fields.get("origin"), "Origin")
    destination = _clean_location(fields.get("destination"), "Destination")
    if fields.get("departure_time") is None or fields.get("arrival_time") is None:
        raise ValidationError("Departure and arrival times are required")
    departure_time = _as_utc(fields["departure_time"])
    arrival_time = _as_utc(fields["arrival_time"])
    _validate_schedule(departure_time, arrival_time)

    prices = {name: fields.get(name, 0.0) for name in PRICE_FIELDS}
    _validate_prices(prices)

    seats = {name: fields.get(name, 0) for name in SEAT_FIELDS}
    if any(count is None or count < 0 for count in seats.values()):
        raise ValidationError("Seat counts cannot be negative")
    if not any(count > 0 for count in seats.values()):
        raise ValidationError("At least one seat class must have available seats")

    flight = Flight(
        origin=origin,
        destination=destination,
        departure_time=departure_time,
        arrival_time=arrival_time,
        **prices,
        **seats,
    )
    for available_attr, total_attr in SEAT_ATTRIBUTES.values():
        setattr(flight, total_attr, seats[available_attr])

    db.add(flight)
    db.commit()
    db.refresh(flight)
    logger.info(
        "Flight %s created: %s -> %s departing %s",
        flight.id, flight.origin, flight.destination, flight.departure_time,
    )
    return flight


def update_flight(
    db: Session,
    flight_id: int,
    lock_timeout: float = LOCK_TIMEOUT_SECONDS,
    deadline: Optional[float] = None,
    **changes,
) -> Flight:
    """
    Changes route, schedule or prices. Seat capacity is fixed at creation and
    availability belongs to the booking engine, so neither can be set here.
    """
    changes = {key: value for key, value in changes.items() if value is not None}
    seat_changes = set(changes) & {
        attr for pair in SEAT_ATTRIBUTES.values() for attr in pair
    }
    if seat_changes:
        raise ValidationError("Seat counts cannot be changed after a flight is created")
    unknown = set(changes) - set(UPDATABLE_FIELDS)
    if unknown:
        raise ValidationError(f"Unknown flight fields: {', '.join(sorted(unknown))}")

    if "origin" in changes:
        changes["origin"] = _clean_location(changes["origin"], "Origin")
    if "destination" in changes:
        changes["destination"] = _clean_location(changes["destination"], "Destination")
    for field in ("departure_time", "arrival_time"):
        if field in changes:
            changes[field] = _as_utc(changes[field])
    _validate_prices({name: changes[name] for name in PRICE_FIELDS if name in changes})

    with flight_transaction(db, flight_id, lock_timeout, deadline) as flight:
        _validate_schedule(
            changes.get("departure_time", flight.departure_time),
            changes.get("arrival_time", flight.arrival_time),
        )
        for key, value in changes.items():
            setattr(flight, key, value)

    logger.info("Flight %s updated: %s", flight_id, ", ".join(sorted(changes)) or "no changes")
    return flight


def _confirmed_bookings_count(db: Session, flight_id: int) -> int:
    return db.execute(
        select(func.count(Booking.id)).where(
            Booking.flight_id == flight_id,
            Booking.status == BookingStatus.CONFIRMED.value,
        )
    ).scalar_one()


def delete_flight(
    db: Session,
    flight_id: int,
    lock_timeout: float = LOCK_TIMEOUT_SECONDS,
    deadline: Optional[float] = None,
) -> Flight:
    """Soft-deletes a flight; refused while confirmed bookings still hold seats on it."""
    with flight_transaction(db, flight_id, lock_timeout, deadline) as flight:
        confirmed = _confirmed_bookings_count(db, flight_id)
        if confirmed:
            raise Conflict(
                f"Flight {flight_id} has {confirmed} confirmed booking(s); cancel them first"
            )
        flight.deleted_at = datetime.utcnow()

    logger.info("Flight %s deleted", flight_id)
    return flight


def get_flight(db: Session, flight_id: int) -> Flight:
    flight = db.get(Flight, flight_id)
    if flight is None or flight.deleted_at is not None:
        raise NotFound(f"Flight {flight_id} not found")
    return flight


def get_flight_details(db: Session, flight_id: int, now: Optional[datetime] = None) -> dict:
    """Flight with booked, available and total seats for every class."""
    flight = get_flight(db, flight_id)
    rows = db.execute(
        select(Booking.travel_class, func.sum(Booking.seats))
        .where(
            Booking.flight_id == flight_id,
            Booking.status == BookingStatus.CONFIRMED.value,
        )
        .group_by(Booking.travel_class)
    ).all()
    booked = {travel_class: int(seats or 0) for travel_class, seats in rows}

    classes = {}
    for travel_class in TravelClass:
        classes[travel_class.value] = {
            "price": base_price_for(flight, travel_class),
            "booked_seats": booked.get(travel_class.value, 0),
            "available_seats": available_seats(flight, travel_class),
            "total_seats": total_seats(flight, travel_class),
        }

    return {
        "flight": flight,
        "status": flight_status(flight.departure_time, flight.arrival_time, now),
        "classes": classes,
        "total_flight_seats": total_capacity(flight),
    }


def search_flights(
    db: Session,
    origin: Optional[str] = None,
    destination: Optional[str] = None,
    status: Optional[FlightStatus] = None,
    departure_date: Optional[date] = None,
    page: int = 1,
    limit: int = 10,
    all_flights: bool = False,
    now: Optional[datetime] = None,
) -> Tuple[List[Flight], int]:
    """
    Filters live flights, newest first. Unless ``all_flights`` is set only
    future departures are returned, one page at a time.
    """
    now = now or datetime.utcnow()
    page = max(1, page)
    limit = max(1, limit)

    conditions = [Flight.deleted_at.is_(None)]
    if origin:
        conditions.append(Flight.origin.ilike(f"%{origin.strip()}%"))
    if destination:
        conditions.append(Flight.destination.ilike(f"%{destination.strip()}%"))
    if status is not None:
        conditions.append(status_filter(FlightStatus(status), now))
    if departure_date is not None:
        day_start = datetime.combine(departure_date, time.min)
        conditions.append(Flight.departure_time >= day_start)
        conditions.append(Flight.departure_time < day_start + timedelta(days=1))
    if not all_flights:
        conditions.append(Flight.departure_time > now)

    total = db.execute(select(func.count(Flight.id)).where(*conditions)).scalar_one()
    query = select(Flight).where(*conditions).order_by(Flight.id.desc())
    if not all_flights:
        query = query.offset((page - 1) * limit).limit(limit)
    flights = db.execute(query).scalars().all()
    return list(flights), total


def display_price(flight: Flight, travel_class=None) -> float:
    travel_class = parse_travel_class(travel_class) if travel_class else TravelClass.ECONOMY
    return base_price_for(flight, travel_class)


def seats_left(flight: Flight) -> int:
    return total_available(flight)


def list_locations(db: Session) -> Dict[str, List[str]]:
    live = Flight.deleted_at.is_(None)
    origins = db.execute(
        select(Flight.origin).where(live).distinct().order_by(Flight.origin)
    ).scalars().all()
    destinations = db.execute(
        select(Flight.destination).where(live).distinct().order_by(Flight.destination)
    ).scalars().all()
    return {"origins": list(origins), "destinations": list(destinations)}


def seed_sample_flights(db: Session, now: Optional[datetime] = None) -> int:
    """Publishes a week of sample flights when the flight table is empty."""
    if db.execute(select(func.count(Flight.id))).scalar_one() > 0:
        logger.info("Database already seeded with flights.")
        return 0

    logger.info("Database is empty, seeding with sample flights...")
    now = (now or datetime.utcnow()).replace(minute=0, second=0, microsecond=0)
    routes = [
        ("DEL", "BOM"),
        ("BOM", "DEL"),
        ("MAA", "DEL"),
        ("DEL", "MAA"),
        ("CCU", "BOM"),
        ("BOM", "CCU"),
        ("BLR", "CCU"),
        ("CCU", "BLR"),
    ]
    rng = random.Random(42)
    created = 0
    for day in range(7):
        for origin, destination in routes:
            departure = now + timedelta(days=day, hours=rng.randint(2, 22))
            economy = float(rng.randint(30, 90) * 100)
            create_flight(
                db,
                origin=origin,
                destination=destination,
                departure_time=departure,
                arrival_time=departure + timedelta(minutes=rng.randint(60, 240)),
                economy_price=economy,
                premium_economy_price=economy * 1.25,
                business_price=economy * 1.6,
                first_class_price=economy * 2.5,
                economy_seats=132,
                premium_economy_seats=24,
                business_seats=16,
                first_class_seats=8,
            )
            created += 1
    logger.info("Database flight seeding complete: %d flights.", created)
    return created
