import time
from datetime import date, timedelta

import pytest
from sqlalchemy import func, select

import bookings
import flights
from auth import Identity
from enums import BookingStatus
from errors import (
    BookingWindowClosed,
    Conflict,
    Forbidden,
    InsufficientSeats,
    InvalidTravelClass,
    LockTimeout,
    NotFound,
    ValidationError,
)
from models import Booking, Traveller
from tests.conftest import NOW


def _count(db, model) -> int:
    return db.execute(select(func.count(model.id))).scalar_one()


class TestCreateBooking:
    def test_scenario_five_hours_out(self, db, customer, create_flight, make_travellers, reload_flight):
        flight = create_flight()

        booking = bookings.create_booking(
            db, customer, flight.id, "Economy", 3, make_travellers(3), now=NOW
        )

        assert booking.is_premium is False
        assert booking.total_price == 300.0
        assert booking.status == BookingStatus.CONFIRMED.value
        assert booking.user_id == customer.user_id
        assert len(booking.travellers) == 3
        assert reload_flight(flight.id).economy_seats == 7

    def test_scenario_thirty_minutes_out(self, db, customer, create_flight, make_travellers, reload_flight):
        flight = create_flight(departs_in=timedelta(minutes=30))

        booking = bookings.create_booking(
            db, customer, flight.id, "Economy", 3, make_travellers(3), now=NOW
        )

        assert booking.is_premium is True
        assert booking.total_price == 390.0
        assert reload_flight(flight.id).economy_seats == 7

    def test_scenario_ten_minutes_out_is_refused(self, db, customer, create_flight, make_travellers, reload_flight):
        flight = create_flight()
        bookings.create_booking(db, customer, flight.id, "Economy", 3, make_travellers(3), now=NOW)

        with pytest.raises(BookingWindowClosed):
            bookings.create_booking(
                db, customer, flight.id, "Economy", 3, make_travellers(3),
                now=flight.departure_time - timedelta(minutes=10),
            )

        assert reload_flight(flight.id).economy_seats == 7
        assert _count(db, Booking) == 1

    @pytest.mark.parametrize(
        "before_departure, is_premium, total",
        [
            (timedelta(minutes=15), True, 130.0),
            (timedelta(minutes=59, seconds=59), True, 130.0),
            (timedelta(minutes=60), False, 100.0),
        ],
    )
    def test_pricing_boundaries(self, db, customer, create_flight, make_travellers, before_departure, is_premium, total):
        flight = create_flight()

        booking = bookings.create_booking(
            db, customer, flight.id, "Economy", 1, make_travellers(1),
            now=flight.departure_time - before_departure,
        )

        assert booking.is_premium is is_premium
        assert booking.total_price == total

    def test_window_closes_just_under_fifteen_minutes(self, db, customer, create_flight, make_travellers):
        flight = create_flight()

        with pytest.raises(BookingWindowClosed):
            bookings.create_booking(
                db, customer, flight.id, "Economy", 1, make_travellers(1),
                now=flight.departure_time - timedelta(minutes=14, seconds=59),
            )

    def test_flight_in_the_air_is_closed(self, db, customer, create_flight, make_travellers):
        flight = create_flight()

        with pytest.raises(BookingWindowClosed):
            bookings.create_booking(
                db, customer, flight.id, "Economy", 1, make_travellers(1),
                now=flight.departure_time + timedelta(minutes=5),
            )

    def test_insufficient_seats_rolls_back_everything(self, db, customer, create_flight, make_travellers, reload_flight):
        flight = create_flight(business_seats=2)

        with pytest.raises(InsufficientSeats):
            bookings.create_booking(db, customer, flight.id, "Business", 3, make_travellers(3), now=NOW)

        assert reload_flight(flight.id).business_seats == 2
        assert _count(db, Booking) == 0
        assert _count(db, Traveller) == 0

    def test_class_without_capacity_is_refused(self, db, customer, create_flight, make_travellers):
        flight = create_flight()

        with pytest.raises(InsufficientSeats):
            bookings.create_booking(db, customer, flight.id, "FirstClass", 1, make_travellers(1), now=NOW)

    def test_unknown_flight(self, db, customer, make_travellers):
        with pytest.raises(NotFound):
            bookings.create_booking(db, customer, 999, "Economy", 1, make_travellers(1), now=NOW)

    def test_unknown_user(self, db, create_flight, make_travellers, reload_flight):
        flight = create_flight()

        with pytest.raises(NotFound):
            bookings.create_booking(
                db, Identity(user_id=424242), flight.id, "Economy", 1, make_travellers(1), now=NOW
            )
        assert reload_flight(flight.id).economy_seats == 10


class TestCreateBookingValidation:
    def test_traveller_count_must_match_seats(self, db, customer, create_flight, make_travellers, reload_flight):
        flight = create_flight()

        with pytest.raises(ValidationError):
            bookings.create_booking(db, customer, flight.id, "Economy", 3, make_travellers(2), now=NOW)
        assert reload_flight(flight.id).economy_seats == 10

    @pytest.mark.parametrize("field", ["title", "first_name", "last_name", "dob", "nationality"])
    def test_every_traveller_field_is_required(self, db, customer, create_flight, make_travellers, field):
        flight = create_flight()
        travellers = make_travellers(2)
        travellers[1][field] = "" if field != "dob" else None

        with pytest.raises(ValidationError, match="traveller #2"):
            bookings.create_booking(db, customer, flight.id, "Economy", 2, travellers, now=NOW)

    def test_date_of_birth_cannot_be_in_the_future(self, db, customer, create_flight, make_travellers):
        flight = create_flight()
        travellers = make_travellers(1)
        travellers[0]["dob"] = date.today() + timedelta(days=1)

        with pytest.raises(ValidationError):
            bookings.create_booking(db, customer, flight.id, "Economy", 1, travellers, now=NOW)

    def test_date_of_birth_accepts_iso_strings(self, db, customer, create_flight, make_travellers):
        flight = create_flight()
        travellers = make_travellers(1)
        travellers[0]["dob"] = "1985-02-03"

        booking = bookings.create_booking(db, customer, flight.id, "Economy", 1, travellers, now=NOW)

        assert booking.travellers[0].dob == date(1985, 2, 3)

    @pytest.mark.parametrize("seat_count", [0, -2, True])
    def test_seat_count_must_be_positive_integer(self, db, customer, create_flight, seat_count):
        flight = create_flight()

        with pytest.raises(ValidationError):
            bookings.create_booking(db, customer, flight.id, "Economy", seat_count, [], now=NOW)

    def test_unknown_travel_class(self, db, customer, create_flight, make_travellers):
        flight = create_flight()

        with pytest.raises(InvalidTravelClass):
            bookings.create_booking(db, customer, flight.id, "Cargo", 1, make_travellers(1), now=NOW)


class TestCancelBooking:
    def test_round_trip_restores_seats(self, db, customer, create_flight, make_travellers, reload_flight):
        flight = create_flight()
        booking = bookings.create_booking(db, customer, flight.id, "Economy", 4, make_travellers(4), now=NOW)

        cancelled = bookings.cancel_booking(db, customer, booking.id)

        assert cancelled.status == BookingStatus.CANCELLED.value
        assert cancelled.cancelled_at is not None
        assert reload_flight(flight.id).economy_seats == 10

    def test_cancelling_twice_releases_once(self, db, customer, create_flight, make_travellers, reload_flight):
        flight = create_flight()
        first = bookings.create_booking(db, customer, flight.id, "Economy", 2, make_travellers(2), now=NOW)
        bookings.create_booking(db, customer, flight.id, "Economy", 3, make_travellers(3), now=NOW)

        bookings.cancel_booking(db, customer, first.id)
        again = bookings.cancel_booking(db, customer, first.id)

        assert again.status == BookingStatus.CANCELLED.value
        assert reload_flight(flight.id).economy_seats == 7

    def test_cancelling_again_after_the_flight_is_deleted(self, db, customer, create_flight, make_travellers):
        flight = create_flight()
        booking = bookings.create_booking(db, customer, flight.id, "Economy", 2, make_travellers(2), now=NOW)
        bookings.cancel_booking(db, customer, booking.id)
        flights.delete_flight(db, flight.id)

        again = bookings.cancel_booking(db, customer, booking.id)

        assert again.id == booking.id
        assert again.status == BookingStatus.CANCELLED.value

    def test_other_customers_cannot_cancel(self, db, customer, create_user, create_flight, make_travellers, reload_flight):
        flight = create_flight()
        booking = bookings.create_booking(db, customer, flight.id, "Economy", 1, make_travellers(1), now=NOW)
        stranger = create_user()

        with pytest.raises(Forbidden):
            bookings.cancel_booking(db, stranger, booking.id)
        assert reload_flight(flight.id).economy_seats == 9

    def test_admin_can_cancel_any_booking(self, db, customer, admin, create_flight, make_travellers, reload_flight):
        flight = create_flight()
        booking = bookings.create_booking(db, customer, flight.id, "Economy", 1, make_travellers(1), now=NOW)

        bookings.cancel_booking(db, admin, booking.id)

        assert reload_flight(flight.id).economy_seats == 10

    def test_unknown_booking(self, db, customer):
        with pytest.raises(NotFound):
            bookings.cancel_booking(db, customer, 12345)


class TestAmendBooking:
    def test_growing_within_capacity(self, db, customer, create_flight, make_travellers, reload_flight):
        flight = create_flight()
        booking = bookings.create_booking(db, customer, flight.id, "Economy", 2, make_travellers(2), now=NOW)

        amended = bookings.amend_booking(
            db, customer, booking.id, "Economy", 5, make_travellers(5), now=NOW
        )

        assert amended.seats == 5
        assert amended.total_price == 500.0
        assert len(amended.travellers) == 5
        assert reload_flight(flight.id).economy_seats == 5
        assert _count(db, Traveller) == 5

    def test_failed_amendment_keeps_original_allocation(self, db, customer, create_user, create_flight, make_travellers, reload_flight):
        flight = create_flight(economy_seats=10)
        booking = bookings.create_booking(db, customer, flight.id, "Economy", 2, make_travellers(2), now=NOW)
        bookings.create_booking(db, create_user(), flight.id, "Economy", 6, make_travellers(6), now=NOW)

        # after releasing its own 2 seats only 4 are free
        with pytest.raises(InsufficientSeats):
            bookings.amend_booking(db, customer, booking.id, "Economy", 5, make_travellers(5), now=NOW)

        kept = bookings.get_booking(db, customer, booking.id)
        assert kept.seats == 2
        assert kept.travel_class == "Economy"
        assert kept.total_price == 200.0
        assert len(kept.travellers) == 2
        assert reload_flight(flight.id).economy_seats == 2

    def test_shrinking_never_competes_with_itself(self, db, customer, create_flight, make_travellers, reload_flight):
        flight = create_flight(economy_seats=3)
        booking = bookings.create_booking(db, customer, flight.id, "Economy", 3, make_travellers(3), now=NOW)

        amended = bookings.amend_booking(db, customer, booking.id, "Economy", 1, make_travellers(1), now=NOW)

        assert amended.seats == 1
        assert reload_flight(flight.id).economy_seats == 2

    def test_changing_class_moves_seats_between_pools(self, db, customer, create_flight, make_travellers, reload_flight):
        flight = create_flight()
        booking = bookings.create_booking(db, customer, flight.id, "Economy", 2, make_travellers(2), now=NOW)

        amended = bookings.amend_booking(db, customer, booking.id, "Business", 2, now=NOW)

        after = reload_flight(flight.id)
        assert amended.travel_class == "Business"
        assert amended.total_price == 600.0
        assert len(amended.travellers) == 2
        assert after.economy_seats == 10
        assert after.business_seats == 0

    def test_amendment_is_re_rated_at_current_time(self, db, customer, create_flight, make_travellers):
        flight = create_flight()
        booking = bookings.create_booking(db, customer, flight.id, "Economy", 2, make_travellers(2), now=NOW)

        amended = bookings.amend_booking(
            db, customer, booking.id, "Economy", 2,
            now=flight.departure_time - timedelta(minutes=30),
        )

        assert amended.is_premium is True
        assert amended.total_price == 260.0

    def test_amendment_after_window_is_refused(self, db, customer, create_flight, make_travellers, reload_flight):
        flight = create_flight()
        booking = bookings.create_booking(db, customer, flight.id, "Economy", 2, make_travellers(2), now=NOW)

        with pytest.raises(BookingWindowClosed):
            bookings.amend_booking(
                db, customer, booking.id, "Business", 2,
                now=flight.departure_time - timedelta(minutes=5),
            )

        after = reload_flight(flight.id)
        assert after.economy_seats == 8
        assert after.business_seats == 2

    def test_new_seat_count_needs_travellers(self, db, customer, create_flight, make_travellers):
        flight = create_flight()
        booking = bookings.create_booking(db, customer, flight.id, "Economy", 2, make_travellers(2), now=NOW)

        with pytest.raises(ValidationError):
            bookings.amend_booking(db, customer, booking.id, "Economy", 3, now=NOW)

    def test_cancelled_booking_cannot_be_amended(self, db, customer, create_flight, make_travellers, reload_flight):
        flight = create_flight()
        booking = bookings.create_booking(db, customer, flight.id, "Economy", 2, make_travellers(2), now=NOW)
        bookings.cancel_booking(db, customer, booking.id)

        with pytest.raises(Conflict):
            bookings.amend_booking(db, customer, booking.id, "Economy", 2, now=NOW)
        assert reload_flight(flight.id).economy_seats == 10

    def test_other_customers_cannot_amend(self, db, customer, create_user, create_flight, make_travellers):
        flight = create_flight()
        booking = bookings.create_booking(db, customer, flight.id, "Economy", 1, make_travellers(1), now=NOW)

        with pytest.raises(Forbidden):
            bookings.amend_booking(db, create_user(), booking.id, "Economy", 1, now=NOW)


class TestReadingBookings:
    def test_customers_see_only_their_bookings(self, db, customer, create_user, admin, create_flight, make_travellers):
        flight = create_flight()
        other = create_user()
        mine = bookings.create_booking(db, customer, flight.id, "Economy", 1, make_travellers(1), now=NOW)
        bookings.create_booking(db, other, flight.id, "Economy", 1, make_travellers(1), now=NOW)

        own, total = bookings.list_bookings(db, customer)
        everything, everything_total = bookings.list_bookings(db, admin)

        assert total == 1
        assert [b.id for b in own] == [mine.id]
        assert everything_total == 2
        assert len(everything) == 2

    def test_pagination(self, db, customer, create_flight, make_travellers):
        flight = create_flight()
        for _ in range(3):
            bookings.create_booking(db, customer, flight.id, "Economy", 1, make_travellers(1), now=NOW)

        page, total = bookings.list_bookings(db, customer, page=2, limit=2)

        assert total == 3
        assert len(page) == 1

    def test_foreign_booking_is_forbidden(self, db, customer, create_user, create_flight, make_travellers):
        flight = create_flight()
        booking = bookings.create_booking(db, customer, flight.id, "Economy", 1, make_travellers(1), now=NOW)

        with pytest.raises(Forbidden):
            bookings.get_booking(db, create_user(), booking.id)


class TestDeadlines:
    def test_expired_deadline_fails_before_locking(self, db, customer, create_flight, make_travellers, reload_flight):
        flight = create_flight()

        with pytest.raises(LockTimeout):
            bookings.create_booking(
                db, customer, flight.id, "Economy", 1, make_travellers(1),
                now=NOW, deadline=time.monotonic() - 1,
            )
        assert reload_flight(flight.id).economy_seats == 10

    def test_lock_wait_is_bounded(self, engine, db, customer, create_flight, make_travellers, reload_flight):
        flight = create_flight()
        blocker = engine.raw_connection()
        try:
            cursor = blocker.cursor()
            cursor.execute("BEGIN IMMEDIATE")

            with pytest.raises(LockTimeout):
                bookings.create_booking(
                    db, customer, flight.id, "Economy", 1, make_travellers(1),
                    now=NOW, lock_timeout=0.2,
                )
        finally:
            blocker.rollback()
            blocker.close()

        assert reload_flight(flight.id).economy_seats == 10
