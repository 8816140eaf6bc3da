from datetime import date, datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field


class ErrorResponse(BaseModel):
    error: str
    message: str


class PageMeta(BaseModel):
    total: int
    page: int
    limit: int
    offset: int


#
# Users
#


class RegisterRequest(BaseModel):
    email: EmailStr
    password: str = Field(min_length=8)
    name: str = Field(min_length=2)


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class UserOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    email: str
    name: str
    is_admin: bool


class LoginResponse(BaseModel):
    token: str
    user: UserOut


class MessageResponse(BaseModel):
    message: str


#
# Flights
#


class FlightCreateRequest(BaseModel):
    origin: str = Field(min_length=3)
    destination: str = Field(min_length=3)
    departure_time: datetime
    arrival_time: datetime
    economy_price: float = Field(default=0.0, ge=0)
    premium_economy_price: float = Field(default=0.0, ge=0)
    business_price: float = Field(default=0.0, ge=0)
    first_class_price: float = Field(default=0.0, ge=0)
    economy_seats: int = Field(default=0, ge=0)
    premium_economy_seats: int = Field(default=0, ge=0)
    business_seats: int = Field(default=0, ge=0)
    first_class_seats: int = Field(default=0, ge=0)


class FlightUpdateRequest(BaseModel):
    origin: Optional[str] = Field(default=None, min_length=3)
    destination: Optional[str] = Field(default=None, min_length=3)
    departure_time: Optional[datetime] = None
    arrival_time: Optional[datetime] = None
    economy_price: Optional[float] = Field(default=None, ge=0)
    premium_economy_price: Optional[float] = Field(default=None, ge=0)
    business_price: Optional[float] = Field(default=None, ge=0)
    first_class_price: Optional[float] = Field(default=None, ge=0)


class FlightOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    origin: str
    destination: str
    departure_time: datetime
    arrival_time: datetime
    economy_price: float
    premium_economy_price: float
    business_price: float
    first_class_price: float
    economy_seats: int
    premium_economy_seats: int
    business_seats: int
    first_class_seats: int
    total_economy_seats: int
    total_premium_economy_seats: int
    total_business_seats: int
    total_first_class_seats: int
    price: Optional[float] = None
    available_seats: Optional[int] = None
    status: Optional[str] = None
    is_in_air: bool = False
    is_landed: bool = False
    is_departing_soon: bool = False


class FlightSearchResponse(BaseModel):
    data: List[FlightOut] = Field(default_factory=list)
    meta: PageMeta


class ClassInventory(BaseModel):
    price: float
    booked_seats: int
    available_seats: int
    total_seats: int


class FlightDetailsResponse(BaseModel):
    flight: FlightOut
    classes: Dict[str, ClassInventory]
    total_flight_seats: int


class LocationsResponse(BaseModel):
    origins: List[str] = Field(default_factory=list)
    destinations: List[str] = Field(default_factory=list)


#
# Bookings
#


class TravellerIn(BaseModel):
    title: str = Field(min_length=1)
    first_name: str = Field(min_length=1)
    last_name: str = Field(min_length=1)
    dob: date
    nationality: str = Field(min_length=1)


class TravellerOut(TravellerIn):
    model_config = ConfigDict(from_attributes=True)

    id: int


class BookingCreateRequest(BaseModel):
    flight_id: int
    seats: int
    travel_class: str
    travellers: List[TravellerIn] = Field(default_factory=list)


class BookingAmendRequest(BaseModel):
    seats: int
    travel_class: str
    travellers: Optional[List[TravellerIn]] = None


class BookingConfirmation(BaseModel):
    message: str
    booking_id: int
    is_premium: bool
    total_price: float


class BookingFlight(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    origin: str
    destination: str
    departure_time: datetime
    arrival_time: datetime


class BookingOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: int
    flight_id: int
    travel_class: str
    seats: int
    is_premium: bool
    total_price: float
    status: str
    booking_date: Optional[datetime]
    cancelled_at: Optional[datetime] = None
    flight: Optional[BookingFlight] = None
    travellers: List[TravellerOut] = Field(default_factory=list)


class BookingListResponse(BaseModel):
    data: List[BookingOut] = Field(default_factory=list)
    meta: PageMeta


class CancellationResponse(BaseModel):
    status: str
    message: str
