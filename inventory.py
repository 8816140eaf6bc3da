"""
Per-class seat ledger of a flight.

``reserve`` and ``release`` mutate ``Flight`` in place and must only be called
while the caller holds the flight row lock (see ``database.flight_transaction``).
"""

from enums import TravelClass
from errors import InsufficientSeats, InventoryError, ValidationError
from pricing import parse_travel_class

SEAT_ATTRIBUTES = {
    TravelClass.ECONOMY: ("economy_seats", "total_economy_seats"),
    TravelClass.PREMIUM_ECONOMY: ("premium_economy_seats", "total_premium_economy_seats"),
    TravelClass.BUSINESS: ("business_seats", "total_business_seats"),
    TravelClass.FIRST_CLASS: ("first_class_seats", "total_first_class_seats"),
}

CLASS_LABELS = {
    TravelClass.ECONOMY: "economy",
    TravelClass.PREMIUM_ECONOMY: "premium economy",
    TravelClass.BUSINESS: "business",
    TravelClass.FIRST_CLASS: "first class",
}


def available_seats(flight, travel_class) -> int:
    available_attr, _ = SEAT_ATTRIBUTES[parse_travel_class(travel_class)]
    return getattr(flight, available_attr) or 0


def total_seats(flight, travel_class) -> int:
    _, total_attr = SEAT_ATTRIBUTES[parse_travel_class(travel_class)]
    return getattr(flight, total_attr) or 0


def booked_seats(flight, travel_class) -> int:
    return total_seats(flight, travel_class) - available_seats(flight, travel_class)


def total_available(flight) -> int:
    return sum(available_seats(flight, cls) for cls in TravelClass)


def total_capacity(flight) -> int:
    return sum(total_seats(flight, cls) for cls in TravelClass)


def _check_count(count: int):
    if count <= 0:
        raise ValidationError("Seat count must be positive")


def reserve(flight, travel_class, count: int) -> int:
    """Takes ``count`` seats out of the class pool; returns the seats left."""
    travel_class = parse_travel_class(travel_class)
    _check_count(count)
    available_attr, _ = SEAT_ATTRIBUTES[travel_class]
    available = getattr(flight, available_attr)
    if count > available:
        raise InsufficientSeats(
            f"Not enough {CLASS_LABELS[travel_class]} seats available "
            f"(requested {count}, available {available})"
        )
    setattr(flight, available_attr, available - count)
    return available - count


def release(flight, travel_class, count: int) -> int:
    """Returns ``count`` previously reserved seats to the class pool."""
    travel_class = parse_travel_class(travel_class)
    _check_count(count)
    available_attr, total_attr = SEAT_ATTRIBUTES[travel_class]
    restored = getattr(flight, available_attr) + count
    if restored > getattr(flight, total_attr):
        raise InventoryError(
            f"Releasing {count} {CLASS_LABELS[travel_class]} seats would exceed capacity"
        )
    setattr(flight, available_attr, restored)
    return restored
