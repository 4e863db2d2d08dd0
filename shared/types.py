"""
shared/types.py
Validated value objects used at the API boundary and inside the seat
accounting core.
"""

import re
from datetime import date
from typing import Annotated, Dict, Optional

from pydantic import AfterValidator, BaseModel, ConfigDict

from shared.exceptions import ValidationError

ROUTE_CODE_PATTERN = re.compile(r"^[a-z0-9][a-z0-9-]{0,49}$")
ADMISSION_NUMBER_PATTERN = re.compile(r"^\d{2}[A-Za-z]{2}\d{3}$")


class RouteCode(str):
    """A bus route identifier such as ``bus-7``. Normalized to lower case."""

    __slots__ = ()

    def __new__(cls, value: str) -> "RouteCode":
        if isinstance(value, RouteCode):
            return value
        if not isinstance(value, str):
            raise ValueError("Route code must be a string")
        normalized = value.strip().lower()
        if not ROUTE_CODE_PATTERN.match(normalized):
            raise ValueError(
                f"Invalid route code '{value}': use letters, digits and hyphens (max 50)"
            )
        return super().__new__(cls, normalized)


def _route_code(value: str) -> RouteCode:
    return RouteCode(value)


def normalize_admission_number(value: str) -> str:
    """Validate the XXAA000 format and return the upper-cased form."""
    if not isinstance(value, str) or not ADMISSION_NUMBER_PATTERN.match(value.strip()):
        raise ValueError(
            "Invalid admission number format. "
            "Expected format: XXAA000 (2 digits, 2 letters, 3 digits)"
        )
    return value.strip().upper()


RouteCodeField = Annotated[str, AfterValidator(_route_code)]
AdmissionNumberField = Annotated[str, AfterValidator(normalize_admission_number)]

# route_code -> seat count
RouteMap = Dict[RouteCode, int]


class BookingConfig(BaseModel):
    """
    Snapshot of the admin settings row taken once per request.
    Booking creation receives it explicitly instead of reading global state.
    """

    model_config = ConfigDict(frozen=True)

    booking_enabled: bool = False
    go_date: Optional[date] = None
    return_date: Optional[date] = None

    @classmethod
    def closed(cls) -> "BookingConfig":
        """Used when settings cannot be read: booking stays disabled."""
        return cls(booking_enabled=False)


def parse_route_code(value: str) -> RouteCode:
    """RouteCode for values arriving outside a schema (path and query params)."""
    try:
        return RouteCode(value)
    except ValueError as e:
        raise ValidationError(str(e))
