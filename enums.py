from enum import Enum


class TravelClass(str, Enum):
    ECONOMY = "Economy"
    PREMIUM_ECONOMY = "PremiumEconomy"
    BUSINESS = "Business"
    FIRST_CLASS = "FirstClass"

    @classmethod
    def parse(cls, value) -> "TravelClass":
        """Accepts a member or its wire value; raises ValueError otherwise."""
        if isinstance(value, cls):
            return value
        return cls(value)


class BookingStatus(str, Enum):
    CONFIRMED = "Confirmed"
    CANCELLED = "Cancelled"


class FlightStatus(str, Enum):
    SCHEDULED = "Scheduled"
    DEPARTING_SOON = "Departing Soon"
    IN_AIR = "In Air"
    LANDED = "Landed"
