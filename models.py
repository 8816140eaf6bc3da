from datetime import datetime
from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
)
from sqlalchemy.orm import relationship

from database import Base
from enums import BookingStatus

SEAT_CLASS_PREFIXES = ("economy", "premium_economy", "business", "first_class")


def _seat_constraints():
    constraints = []
    for prefix in SEAT_CLASS_PREFIXES:
        constraints.append(
            CheckConstraint(f"{prefix}_price >= 0", name=f"ck_{prefix}_price")
        )
        constraints.append(
            CheckConstraint(
                f"{prefix}_seats >= 0 AND {prefix}_seats <= total_{prefix}_seats",
                name=f"ck_{prefix}_seats",
            )
        )
    constraints.append(
        CheckConstraint("arrival_time > departure_time", name="ck_flight_schedule")
    )
    return tuple(constraints)


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String, unique=True, index=True, nullable=False)
    password_hash = Column(String, nullable=False)
    name = Column(String, nullable=False)
    is_admin = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)
    deleted_at = Column(DateTime, nullable=True)

    bookings = relationship("Booking", back_populates="user")


class Flight(Base):
    """A scheduled flight with an independent seat pool and price per travel class."""

    __tablename__ = "flights"
    __table_args__ = _seat_constraints()

    id = Column(Integer, primary_key=True, index=True)
    origin = Column(String, index=True, nullable=False)
    destination = Column(String, index=True, nullable=False)
    departure_time = Column(DateTime, index=True, nullable=False)
    arrival_time = Column(DateTime, nullable=False)

    economy_price = Column(Float, default=0.0, nullable=False)
    premium_economy_price = Column(Float, default=0.0, nullable=False)
    business_price = Column(Float, default=0.0, nullable=False)
    first_class_price = Column(Float, default=0.0, nullable=False)

    # available seats, mutated only by the booking engine
    economy_seats = Column(Integer, default=0, nullable=False)
    premium_economy_seats = Column(Integer, default=0, nullable=False)
    business_seats = Column(Integer, default=0, nullable=False)
    first_class_seats = Column(Integer, default=0, nullable=False)

    # capacity ceilings, fixed at creation
    total_economy_seats = Column(Integer, default=0, nullable=False)
    total_premium_economy_seats = Column(Integer, default=0, nullable=False)
    total_business_seats = Column(Integer, default=0, nullable=False)
    total_first_class_seats = Column(Integer, default=0, nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
    deleted_at = Column(DateTime, nullable=True)

    bookings = relationship("Booking", back_populates="flight")


class Booking(Base):
    __tablename__ = "bookings"
    __table_args__ = (
        CheckConstraint("seats > 0", name="ck_booking_seats"),
        CheckConstraint("total_price >= 0", name="ck_booking_total_price"),
    )

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), index=True, nullable=False)
    flight_id = Column(Integer, ForeignKey("flights.id"), index=True, nullable=False)
    travel_class = Column(String, nullable=False)
    seats = Column(Integer, nullable=False)
    is_premium = Column(Boolean, default=False, nullable=False)
    total_price = Column(Float, default=0.0, nullable=False)
    status = Column(String, default=BookingStatus.CONFIRMED.value, nullable=False)
    booking_date = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
    cancelled_at = Column(DateTime, nullable=True)

    user = relationship("User", back_populates="bookings")
    flight = relationship("Flight", back_populates="bookings")
    travellers = relationship(
        "Traveller",
        back_populates="booking",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="Traveller.id",
    )


class Traveller(Base):
    __tablename__ = "travellers"

    id = Column(Integer, primary_key=True, index=True)
    booking_id = Column(
        Integer, ForeignKey("bookings.id", ondelete="CASCADE"), index=True, nullable=False
    )
    title = Column(String, nullable=False)
    first_name = Column(String, nullable=False)
    last_name = Column(String, nullable=False)
    dob = Column(Date, nullable=False)
    nationality = Column(String, nullable=False)

    booking = relationship("Booking", back_populates="travellers")
