"""
shared/schemas/schemas.py
All Pydantic v2 request/response schemas for the platform.
"""

from datetime import date, datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from shared.types import AdmissionNumberField, RouteCode, RouteCodeField


# ── Base ──────────────────────────────────────────────────────

class BaseSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True, use_enum_values=True)


class Pagination(BaseSchema):
    page: int
    limit: int
    total: int
    total_pages: int = Field(serialization_alias="totalPages")


# ── Auth ──────────────────────────────────────────────────────

class AdminLoginRequest(BaseSchema):
    username: str = Field(..., min_length=1, max_length=100)
    password: str = Field(..., min_length=1, max_length=255)


class AdminUserResponse(BaseSchema):
    id: int
    username: str
    email: str
    full_name: str
    role: str
    last_login: Optional[datetime] = None


# ── Bus ───────────────────────────────────────────────────────

class BusCreateRequest(BaseSchema):
    name: str = Field(..., min_length=1, max_length=100)
    route_code: RouteCodeField
    total_seats: int = Field(default=10, ge=0, le=500)
    is_active: bool = True


class BusUpdateRequest(BaseSchema):
    """route_code cannot change after creation."""
    model_config = ConfigDict(extra="forbid")

    name: Optional[str] = Field(None, min_length=1, max_length=100)
    total_seats: Optional[int] = Field(None, ge=0, le=500)
    available_seats: Optional[int] = None
    is_active: Optional[bool] = None


class BusResponse(BaseSchema):
    id: int
    name: str
    route_code: str
    total_seats: int
    available_seats: int
    is_active: bool
    created_at: datetime
    updated_at: datetime


# ── Route stops ───────────────────────────────────────────────

class RouteStopCreateRequest(BaseSchema):
    route_code: RouteCodeField
    stop_name: str = Field(..., min_length=1, max_length=255)
    fare: int = Field(..., ge=0)
    stop_order: int = Field(..., ge=0)
    is_active: bool = True

    @field_validator("stop_name")
    @classmethod
    def strip_stop_name(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("stop_name must not be blank")
        return v


class RouteStopUpdateRequest(BaseSchema):
    model_config = ConfigDict(extra="forbid")

    stop_name: Optional[str] = Field(None, min_length=1, max_length=255)
    fare: Optional[int] = Field(None, ge=0)
    stop_order: Optional[int] = Field(None, ge=0)
    is_active: Optional[bool] = None


class RouteStopResponse(BaseSchema):
    id: int
    route_code: str
    stop_name: str
    fare: int
    stop_order: int
    is_active: bool


# ── Booking ───────────────────────────────────────────────────

class BookingCreateRequest(BaseSchema):
    """Public booking body; field names follow the web client."""
    model_config = ConfigDict(populate_by_name=True)

    student_name: str = Field(..., alias="studentName", min_length=1, max_length=255)
    admission_number: AdmissionNumberField = Field(..., alias="admissionNumber")
    bus_route: RouteCodeField = Field(..., alias="busRoute")
    destination: str = Field(..., min_length=1, max_length=255)
    payment_status: bool = Field(default=False, alias="paymentStatus")
    razorpay_payment_id: Optional[str] = Field(None, max_length=100)
    razorpay_order_id: Optional[str] = Field(None, max_length=100)
    razorpay_signature: Optional[str] = None

    @field_validator("student_name", "destination")
    @classmethod
    def not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("must not be blank")
        return v

    @property
    def has_gateway_data(self) -> bool:
        return bool(self.razorpay_payment_id or self.razorpay_order_id or self.razorpay_signature)


class BookingResponse(BaseSchema):
    id: int
    admission_number: str
    student_name: str
    bus_route: str
    destination: str
    payment_status: bool
    fare: int
    bus_name: str
    go_date: Optional[date]
    return_date: Optional[date]
    created_at: datetime
    razorpay_payment_id: Optional[str] = None
    razorpay_order_id: Optional[str] = None


class BookingPaymentUpdateRequest(BaseSchema):
    payment_status: bool


# ── Settings ──────────────────────────────────────────────────

class SettingsResponse(BaseSchema):
    booking_enabled: bool = Field(serialization_alias="bookingEnabled")
    go_date: Optional[date] = Field(serialization_alias="goDate")
    return_date: Optional[date] = Field(serialization_alias="returnDate")
    bus_availability: Dict[str, int] = Field(serialization_alias="busAvailability")


class SettingsUpdateRequest(BaseSchema):
    model_config = ConfigDict(populate_by_name=True)

    booking_enabled: bool = Field(..., alias="bookingEnabled")
    go_date: Optional[date] = Field(None, alias="goDate")
    return_date: Optional[date] = Field(None, alias="returnDate")
    bus_availability: Optional[Dict[str, int]] = Field(None, alias="busAvailability")

    @field_validator("go_date", "return_date", mode="before")
    @classmethod
    def empty_date_is_none(cls, v: Any) -> Any:
        return v or None

    @field_validator("bus_availability")
    @classmethod
    def validate_routes(cls, v: Optional[Dict[str, int]]) -> Optional[Dict[RouteCode, int]]:
        if v is None:
            return None
        validated = {}
        for route, seats in v.items():
            if seats < 0:
                raise ValueError(f"Seat count for '{route}' must be non-negative")
            validated[RouteCode(route)] = seats
        return validated

    @model_validator(mode="after")
    def dates_in_order(self) -> "SettingsUpdateRequest":
        if self.go_date and self.return_date and self.return_date < self.go_date:
            raise ValueError("returnDate must not be before goDate")
        return self


# ── Payment ───────────────────────────────────────────────────

class PaymentOrderRequest(BaseSchema):
    model_config = ConfigDict(populate_by_name=True)

    bus_route: RouteCodeField = Field(..., alias="busRoute")
    destination: str = Field(..., min_length=1, max_length=255)
    receipt: Optional[str] = Field(None, max_length=40)


class PaymentVerifyRequest(BaseSchema):
    razorpay_order_id: str = Field(..., min_length=1)
    razorpay_payment_id: str = Field(..., min_length=1)
    razorpay_signature: str = Field(..., min_length=1)


# ── Reports ───────────────────────────────────────────────────

class BookingRoundResponse(BaseSchema):
    id: int
    go_date: Optional[date] = Field(serialization_alias="goDate")
    return_date: Optional[date] = Field(serialization_alias="returnDate")
    total_bookings: int = Field(serialization_alias="totalBookings")
    total_revenue: int = Field(serialization_alias="totalRevenue")
    reset_date: datetime = Field(serialization_alias="resetDate")


class RouteRevenue(BaseSchema):
    bus_route: str = Field(serialization_alias="busRoute")
    bus_name: str = Field(serialization_alias="busName")
    total_revenue: int = Field(serialization_alias="totalRevenue")
    booking_count: int = Field(serialization_alias="bookingCount")
    revenue_per_booking: float = Field(serialization_alias="revenuePerBooking")


class RouteDemand(BaseSchema):
    route_code: str = Field(serialization_alias="routeCode")
    bus_name: str = Field(serialization_alias="busName")
    total_bookings: int = Field(serialization_alias="totalBookings")
    booking_percentage: int = Field(serialization_alias="bookingPercentage")
    demand_level: str = Field(serialization_alias="demandLevel")
    is_active: bool = Field(serialization_alias="isActive")


class StopBookings(BaseSchema):
    stop_name: str = Field(serialization_alias="stopName")
    booking_count: int = Field(serialization_alias="bookingCount")
    percentage_of_route: int = Field(serialization_alias="percentageOfRoute")


class DetailedStats(BaseSchema):
    total_buses: int = Field(serialization_alias="totalBuses")
    total_bookings: int = Field(serialization_alias="totalBookings")
    current_bookings: int = Field(serialization_alias="currentBookings")
    paid_bookings: int = Field(serialization_alias="paidBookings")
    unpaid_bookings: int = Field(serialization_alias="unpaidBookings")
    available_seats: int = Field(serialization_alias="availableSeats")
    total_capacity: int = Field(serialization_alias="totalCapacity")
    occupancy_rate: str = Field(serialization_alias="occupancyRate")


class BookingStats(BaseSchema):
    total_bookings: int = Field(serialization_alias="totalBookings")
    paid_bookings: int = Field(serialization_alias="paidBookings")
    pending_bookings: int = Field(serialization_alias="pendingBookings")
    recent_bookings: int = Field(serialization_alias="recentBookings")
    total_revenue: int = Field(serialization_alias="totalRevenue")
    route_stats: List[Dict[str, Any]] = Field(serialization_alias="routeStats")
    daily_stats: List[Dict[str, Any]] = Field(serialization_alias="dailyStats")
