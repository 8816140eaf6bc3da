from dataclasses import dataclass
from datetime import timedelta

from enums import TravelClass
from errors import BookingWindowClosed, InvalidTravelClass, ValidationError

BOOKING_CUTOFF = timedelta(minutes=15)
SURCHARGE_WINDOW = timedelta(minutes=60)
SURCHARGE_MULTIPLIER = 1.30

PRICE_ATTRIBUTES = {
    TravelClass.ECONOMY: "economy_price",
    TravelClass.PREMIUM_ECONOMY: "premium_economy_price",
    TravelClass.BUSINESS: "business_price",
    TravelClass.FIRST_CLASS: "first_class_price",
}


@dataclass(frozen=True)
class Quote:
    is_premium: bool
    total_price: float


def parse_travel_class(value) -> TravelClass:
    try:
        return TravelClass.parse(value)
    except ValueError:
        raise InvalidTravelClass(f"Unknown travel class: {value!r}")


def base_price_for(flight, travel_class) -> float:
    """Per-seat price of ``travel_class`` on ``flight``."""
    return float(getattr(flight, PRICE_ATTRIBUTES[parse_travel_class(travel_class)]))


def quote(base_price_per_seat: float, seat_count: int, time_until_departure: timedelta) -> Quote:
    """
    Prices a seat allocation.

    Bookings less than 15 minutes before departure are refused. Between 15
    and 60 minutes the whole allocation carries a 30% surcharge. Totals are
    rounded to cents.
    """
    if seat_count <= 0:
        raise ValidationError("Seat count must be positive")
    if base_price_per_seat < 0:
        raise ValidationError("Seat price cannot be negative")
    if time_until_departure < BOOKING_CUTOFF:
        raise BookingWindowClosed(
            "Cannot book flight: departure is less than 15 minutes away"
        )

    is_premium = time_until_departure < SURCHARGE_WINDOW
    multiplier = SURCHARGE_MULTIPLIER if is_premium else 1.0
    total = base_price_per_seat * seat_count * multiplier
    return Quote(is_premium=is_premium, total_price=round(total, 2))
