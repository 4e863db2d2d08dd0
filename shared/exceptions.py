"""
shared/exceptions.py
Domain error taxonomy. Each error carries the HTTP status it maps to and a
message that is safe to show to the caller; main.py turns them into
{"success": false, "error": ...} envelopes.
"""

from typing import Any, Optional


class BusPassError(Exception):
    status_code: int = 500
    message: str = "An internal server error occurred"
    headers: Optional[dict] = None

    def __init__(self, message: Optional[str] = None, details: Any = None):
        self.message = message or self.message
        self.details = details
        super().__init__(self.message)


class ValidationError(BusPassError):
    status_code = 400
    message = "Validation failed"


class Unauthorized(BusPassError):
    status_code = 401
    message = "Authentication required"


class Forbidden(BusPassError):
    status_code = 403
    message = "Forbidden"


class BookingDisabled(Forbidden):
    message = "Booking is not available at the moment"


class SoldOut(Forbidden):
    message = "This bus is fully booked"


class RouteInactive(Forbidden):
    message = "This bus route is not currently active"


class NotFound(BusPassError):
    status_code = 404
    message = "Not found"


class RouteNotFound(NotFound):
    message = "Bus route not found"


class Conflict(BusPassError):
    status_code = 409
    message = "Conflict"


class TooManyRequests(BusPassError):
    status_code = 429
    message = "Too many requests. Please try again later."

    def __init__(self, retry_after: int = 60):
        super().__init__()
        self.headers = {"Retry-After": str(retry_after)}


class PaymentGatewayError(BusPassError):
    status_code = 502
    message = "Payment gateway error"


class ServiceUnavailable(BusPassError):
    status_code = 503
    message = "Service temporarily unavailable. Please try again later."


class Internal(BusPassError):
    status_code = 500


class SeatReservationTimeout(Internal):
    message = "Seat reservation timed out, please try again"


class InvalidPermit(Internal):
    message = "Seat permit is missing, already used, or for another route"
