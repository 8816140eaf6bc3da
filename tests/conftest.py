from datetime import date, datetime, timedelta

import pytest

import auth
import flights
from database import create_db_engine, create_session_factory, init_db
from models import Flight

NOW = datetime(2030, 1, 1, 12, 0, 0)


@pytest.fixture
def engine(tmp_path):
    engine = create_db_engine(f"sqlite:///{tmp_path / 'flights.db'}")
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return create_session_factory(engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def create_user(db):
    """Registers users (Factories as fixtures)."""
    counter = {"n": 0}

    def _factory(is_admin: bool = False, email: str = None, password: str = "password123"):
        counter["n"] += 1
        email = email or f"user{counter['n']}@example.com"
        user = auth.register_user(db, email, password, f"User {counter['n']}", is_admin=is_admin)
        return auth.Identity(user_id=user.id, is_admin=user.is_admin)

    return _factory


@pytest.fixture
def customer(create_user):
    return create_user()


@pytest.fixture
def admin(create_user):
    return create_user(is_admin=True)


@pytest.fixture
def create_flight(db):
    """Publishes flights; by default 10 Economy seats at 100, departing 5 hours after NOW."""

    def _factory(departs_in: timedelta = timedelta(hours=5), now: datetime = NOW, **overrides):
        fields = {
            "origin": "DEL",
            "destination": "BOM",
            "departure_time": now + departs_in,
            "arrival_time": now + departs_in + timedelta(hours=2),
            "economy_price": 100.0,
            "premium_economy_price": 150.0,
            "business_price": 300.0,
            "first_class_price": 500.0,
            "economy_seats": 10,
            "premium_economy_seats": 4,
            "business_seats": 2,
            "first_class_seats": 0,
        }
        fields.update(overrides)
        return flights.create_flight(db, **fields)

    return _factory


@pytest.fixture
def make_travellers():
    def _factory(count: int):
        return [
            {
                "title": "Ms",
                "first_name": f"Traveller{i}",
                "last_name": "Smith",
                "dob": date(1990, 5, 17),
                "nationality": "IN",
            }
            for i in range(count)
        ]

    return _factory


@pytest.fixture
def reload_flight(session_factory):
    """Reads a flight through a fresh session, bypassing any identity map."""

    def _reload(flight_id: int) -> Flight:
        session = session_factory()
        try:
            return session.get(Flight, flight_id)
        finally:
            session.close()

    return _reload
