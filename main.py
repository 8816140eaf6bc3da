import logging
import time
from contextlib import asynccontextmanager
from datetime import date, datetime
from typing import Optional

from fastapi import APIRouter, Depends, FastAPI, Query, Request, Response, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session

import auth
import bookings
import flights
from config import (
    ADMIN_EMAIL,
    ADMIN_PASSWORD,
    CORS_ORIGINS,
    LOG_LEVEL,
    REQUEST_DEADLINE_SECONDS,
    SEED_SAMPLE_FLIGHTS,
)
from database import create_db_engine, create_session_factory, init_db
from enums import FlightStatus
from errors import BookingError, NotFound
from flight_status import flight_status
from models import Booking, Flight, User
from schemas import (
    BookingAmendRequest,
    BookingConfirmation,
    BookingCreateRequest,
    BookingListResponse,
    BookingOut,
    CancellationResponse,
    ClassInventory,
    ErrorResponse,
    FlightCreateRequest,
    FlightDetailsResponse,
    FlightOut,
    FlightSearchResponse,
    FlightUpdateRequest,
    LocationsResponse,
    LoginRequest,
    LoginResponse,
    MessageResponse,
    PageMeta,
    RegisterRequest,
    UserOut,
)

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)

ERROR_RESPONSES = {
    400: {"model": ErrorResponse},
    401: {"model": ErrorResponse},
    403: {"model": ErrorResponse},
    404: {"model": ErrorResponse},
    409: {"model": ErrorResponse},
    503: {"model": ErrorResponse},
}

router = APIRouter(prefix="/api", responses=ERROR_RESPONSES)


def get_db(request: Request):
    db = request.app.state.session_factory()
    try:
        yield db
    finally:
        db.close()


def request_deadline() -> float:
    return time.monotonic() + REQUEST_DEADLINE_SECONDS


def serialize_flight(flight: Flight, travel_class: Optional[str] = None, now: Optional[datetime] = None) -> FlightOut:
    current = flight_status(flight.departure_time, flight.arrival_time, now)
    out = FlightOut.model_validate(flight)
    out.price = flights.display_price(flight, travel_class)
    out.available_seats = flights.seats_left(flight)
    out.status = current.value
    out.is_in_air = current == FlightStatus.IN_AIR
    out.is_landed = current == FlightStatus.LANDED
    out.is_departing_soon = current == FlightStatus.DEPARTING_SOON
    return out


def page_meta(total: int, page: int, limit: int) -> PageMeta:
    page = max(1, page)
    limit = max(1, limit)
    return PageMeta(total=total, page=page, limit=limit, offset=(page - 1) * limit)


#
# Authentication Endpoints
#

@router.post("/register", response_model=UserOut, status_code=status.HTTP_201_CREATED)
def register(payload: RegisterRequest, db: Session = Depends(get_db)):
    return auth.register_user(db, payload.email, payload.password, payload.name)


@router.post("/login", response_model=LoginResponse)
def login(credentials: LoginRequest, response: Response, db: Session = Depends(get_db)):
    user = auth.authenticate(db, credentials.email, credentials.password)
    token = auth.login_user(response, user)
    return LoginResponse(token=token, user=UserOut.model_validate(user))


@router.post("/logout", response_model=MessageResponse)
def logout(response: Response):
    auth.logout_user(response)
    return MessageResponse(message="Logout successful")


@router.get("/profile", response_model=UserOut)
def read_profile(
    identity: auth.Identity = Depends(auth.get_current_identity),
    db: Session = Depends(get_db),
):
    user = db.get(User, identity.user_id)
    if not user or user.deleted_at is not None:
        raise NotFound("User not found")
    return user


#
# Flight Endpoints
#

@router.get("/flights", response_model=FlightSearchResponse)
def search_flights(
    origin: Optional[str] = Query(None, description="Origin, case-insensitive substring"),
    destination: Optional[str] = Query(None, description="Destination, case-insensitive substring"),
    flight_state: Optional[FlightStatus] = Query(None, alias="status"),
    departure_date: Optional[date] = Query(None, description="YYYY-MM-DD"),
    travel_class: Optional[str] = Query(None, description="Class whose price is displayed"),
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    all_flights: bool = Query(False, description="Admins only: include past flights, no paging"),
    identity: auth.Identity = Depends(auth.get_current_identity),
    db: Session = Depends(get_db),
):
    now = datetime.utcnow()
    results, total = flights.search_flights(
        db,
        origin=origin,
        destination=destination,
        status=flight_state,
        departure_date=departure_date,
        page=page,
        limit=limit,
        all_flights=all_flights and identity.is_admin,
        now=now,
    )
    return FlightSearchResponse(
        data=[serialize_flight(flight, travel_class, now) for flight in results],
        meta=page_meta(total, page, limit),
    )


@router.get("/locations", response_model=LocationsResponse)
def locations(
    identity: auth.Identity = Depends(auth.get_current_identity),
    db: Session = Depends(get_db),
):
    return LocationsResponse(**flights.list_locations(db))


#
# Booking Endpoints
#

@router.post("/bookings", response_model=BookingConfirmation, status_code=status.HTTP_201_CREATED)
def create_booking(
    payload: BookingCreateRequest,
    identity: auth.Identity = Depends(auth.get_current_identity),
    db: Session = Depends(get_db),
    deadline: float = Depends(request_deadline),
):
    booking = bookings.create_booking(
        db,
        identity,
        flight_id=payload.flight_id,
        travel_class=payload.travel_class,
        seat_count=payload.seats,
        travellers=[t.model_dump() for t in payload.travellers],
        deadline=deadline,
    )
    return BookingConfirmation(
        message="Booking created successfully",
        booking_id=booking.id,
        is_premium=booking.is_premium,
        total_price=booking.total_price,
    )


@router.get("/bookings", response_model=BookingListResponse)
def list_bookings(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    identity: auth.Identity = Depends(auth.get_current_identity),
    db: Session = Depends(get_db),
):
    results, total = bookings.list_bookings(db, identity, page=page, limit=limit)
    return BookingListResponse(
        data=[BookingOut.model_validate(booking) for booking in results],
        meta=page_meta(total, page, limit),
    )


@router.get("/bookings/{booking_id}", response_model=BookingOut)
def booking_detail(
    booking_id: int,
    identity: auth.Identity = Depends(auth.get_current_identity),
    db: Session = Depends(get_db),
):
    booking: Booking = bookings.get_booking(db, identity, booking_id)
    return BookingOut.model_validate(booking)


@router.put("/bookings/{booking_id}", response_model=BookingConfirmation)
def amend_booking(
    booking_id: int,
    payload: BookingAmendRequest,
    identity: auth.Identity = Depends(auth.get_current_identity),
    db: Session = Depends(get_db),
    deadline: float = Depends(request_deadline),
):
    travellers = None
    if payload.travellers is not None:
        travellers = [t.model_dump() for t in payload.travellers]
    booking = bookings.amend_booking(
        db,
        identity,
        booking_id,
        travel_class=payload.travel_class,
        seat_count=payload.seats,
        travellers=travellers,
        deadline=deadline,
    )
    return BookingConfirmation(
        message="Booking updated successfully",
        booking_id=booking.id,
        is_premium=booking.is_premium,
        total_price=booking.total_price,
    )


@router.delete("/bookings/{booking_id}", response_model=CancellationResponse)
def cancel_booking(
    booking_id: int,
    identity: auth.Identity = Depends(auth.get_current_identity),
    db: Session = Depends(get_db),
    deadline: float = Depends(request_deadline),
):
    booking = bookings.cancel_booking(db, identity, booking_id, deadline=deadline)
    return CancellationResponse(
        status=booking.status,
        message="Booking cancelled and seats restored",
    )


#
# Admin Endpoints
#

@router.post("/admin/flights", response_model=FlightOut, status_code=status.HTTP_201_CREATED)
def create_flight(
    payload: FlightCreateRequest,
    identity: auth.Identity = Depends(auth.require_admin),
    db: Session = Depends(get_db),
):
    flight = flights.create_flight(db, **payload.model_dump())
    return serialize_flight(flight)


@router.get("/admin/flights/{flight_id}", response_model=FlightDetailsResponse)
def flight_details(
    flight_id: int,
    identity: auth.Identity = Depends(auth.require_admin),
    db: Session = Depends(get_db),
):
    now = datetime.utcnow()
    details = flights.get_flight_details(db, flight_id, now)
    return FlightDetailsResponse(
        flight=serialize_flight(details["flight"], now=now),
        classes={name: ClassInventory(**values) for name, values in details["classes"].items()},
        total_flight_seats=details["total_flight_seats"],
    )


@router.put("/admin/flights/{flight_id}", response_model=FlightOut)
def update_flight(
    flight_id: int,
    payload: FlightUpdateRequest,
    identity: auth.Identity = Depends(auth.require_admin),
    db: Session = Depends(get_db),
    deadline: float = Depends(request_deadline),
):
    flight = flights.update_flight(
        db, flight_id, deadline=deadline, **payload.model_dump(exclude_unset=True)
    )
    return serialize_flight(flight)


@router.delete("/admin/flights/{flight_id}", response_model=MessageResponse)
def delete_flight(
    flight_id: int,
    identity: auth.Identity = Depends(auth.require_admin),
    db: Session = Depends(get_db),
    deadline: float = Depends(request_deadline),
):
    flights.delete_flight(db, flight_id, deadline=deadline)
    return MessageResponse(message="Flight deleted successfully")


#
# Application
#

async def booking_error_handler(request: Request, exc: BookingError):
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.code, "message": exc.message},
    )


async def request_validation_handler(request: Request, exc: RequestValidationError):
    problems = "; ".join(
        f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}"
        for error in exc.errors()
    )
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"error": "VALIDATION_ERROR", "message": f"Invalid input: {problems}"},
    )


def bootstrap(app: FastAPI):
    init_db(app.state.engine)
    db = app.state.session_factory()
    try:
        auth.create_initial_admin(db, ADMIN_EMAIL, ADMIN_PASSWORD)
        if SEED_SAMPLE_FLIGHTS:
            flights.seed_sample_flights(db)
    finally:
        db.close()


@asynccontextmanager
async def lifespan(app: FastAPI):
    bootstrap(app)
    yield


def create_app(engine: Optional[Engine] = None) -> FastAPI:
    app = FastAPI(title="Flight Booking", lifespan=lifespan)
    app.state.engine = engine or create_db_engine()
    app.state.session_factory = create_session_factory(app.state.engine)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["Authorization", "Content-Type"],
    )
    app.add_exception_handler(BookingError, booking_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.include_router(router)

    @app.get("/health", tags=["health"])
    def health():
        return {"status": "healthy"}

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=8080)
