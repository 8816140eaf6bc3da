"""Error taxonomy shared by the booking engine, the flight admin service and the API.

Every error carries a stable ``code`` and the HTTP status the API layer
answers with. The engine raises these only after its transaction has been
rolled back.
"""


class BookingError(Exception):
    code = "BOOKING_ERROR"
    status_code = 400

    def __init__(self, message: str = ""):
        super().__init__(message or self.__class__.__name__)
        self.message = message or self.__class__.__name__


class ValidationError(BookingError):
    """Malformed or missing request fields."""

    code = "VALIDATION_ERROR"
    status_code = 400


class NotFound(BookingError):
    code = "NOT_FOUND"
    status_code = 404


class InvalidTravelClass(ValidationError):
    code = "INVALID_TRAVEL_CLASS"
    status_code = 400


class BookingWindowClosed(BookingError):
    """Departure is less than 15 minutes away, or the flight already left."""

    code = "BOOKING_WINDOW_CLOSED"
    status_code = 409


class InsufficientSeats(BookingError):
    code = "INSUFFICIENT_SEATS"
    status_code = 409


class LockTimeout(BookingError):
    """The flight row lock or the caller's deadline expired. Safe to retry."""

    code = "TIMEOUT"
    status_code = 503


class Conflict(BookingError):
    code = "CONFLICT"
    status_code = 409


class Unauthorized(BookingError):
    code = "UNAUTHORIZED"
    status_code = 401


class Forbidden(BookingError):
    code = "FORBIDDEN"
    status_code = 403


class InventoryError(BookingError):
    """A ledger write would break 0 <= available <= total."""

    code = "INVENTORY_ERROR"
    status_code = 500
