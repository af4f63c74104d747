"""Pydantic models for API request/response validation.

Requests accept both snake_case and the camelCase names used by the
voice-assistant webhook (customerName, preferredDate, ...). Responses are
snake_case.
"""
import datetime as dt
from contextlib import contextmanager
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from fastapi.exceptions import RequestValidationError
from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError
from pydantic.alias_generators import to_camel

from repair_booking.errors import InvalidInput
from repair_booking.models import Appointment, AppointmentDetails, AppointmentUpdate, NextAvailable, Slot


@contextmanager
def _invalid_input():
    """Request fields rejected by a domain model are the caller's mistake."""
    try:
        yield
    except ValidationError as e:
        first = e.errors(include_url=False)[0]
        field = ".".join(str(part) for part in first["loc"]) or None
        raise InvalidInput(f"{field}: {first['msg']}" if field else first["msg"], field=field) from e


class RequestModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class CustomerFields(RequestModel):
    customer_name: Optional[str] = Field(None, max_length=200)
    customer_phone: Optional[str] = Field(None, max_length=50)
    customer_email: Optional[str] = Field(None, max_length=200)
    service_type: Optional[str] = Field(None, max_length=200)
    vehicle_info: Optional[str] = Field(None, max_length=200)
    notes: Optional[str] = Field(None, max_length=2000)


class CheckAvailabilityRequest(RequestModel):
    action: Literal["check_availability"]
    preferred_date: dt.date = Field(..., description="Day to check (YYYY-MM-DD)")


class FindNextAvailableRequest(RequestModel):
    action: Literal["find_next_available"]
    search_days: Optional[int] = Field(None, ge=1, le=366)


class FindAlternativeRequest(RequestModel):
    action: Literal["find_alternative"]
    time_preference: str = Field("any", description="morning, afternoon, any, earlier or later")
    preferred_date: Optional[dt.date] = None
    preferred_time: Optional[dt.time] = None
    limit: int = Field(3, ge=1, le=20)


class BookRequest(CustomerFields):
    action: Literal["book"]
    preferred_date: Optional[dt.date] = None
    preferred_time: Optional[dt.time] = None
    start_time: Optional[dt.datetime] = None

    def to_details(self) -> AppointmentDetails:
        if not self.customer_name or not self.customer_phone:
            raise InvalidInput("customer_name and customer_phone are required", field="customer_name")
        with _invalid_input():
            return AppointmentDetails(**self.model_dump(include=set(AppointmentDetails.model_fields)))


class UpdateFields(CustomerFields):
    """Body of PUT /booking/appointment/{event_id}."""

    start_time: Optional[dt.datetime] = None
    preferred_date: Optional[dt.date] = None
    preferred_time: Optional[dt.time] = None

    def to_update(self) -> AppointmentUpdate:
        values = self.model_dump(exclude={"start_time", "action", "event_id"}, exclude_none=True)
        with _invalid_input():
            return AppointmentUpdate(start=self.start_time, **values)


class UpdateRequest(UpdateFields):
    action: Literal["update"]
    event_id: str = Field(..., min_length=1)


class CancelRequest(RequestModel):
    action: Literal["cancel"]
    event_id: str = Field(..., min_length=1)


BookingAction = Annotated[
    Union[
        CheckAvailabilityRequest,
        FindNextAvailableRequest,
        FindAlternativeRequest,
        BookRequest,
        UpdateRequest,
        CancelRequest,
    ],
    Field(discriminator="action"),
]

_booking_action_adapter = TypeAdapter(BookingAction)

ACTIONS = (
    "check_availability",
    "find_next_available",
    "find_alternative",
    "book",
    "update",
    "cancel",
)


def parse_booking_action(payload: Dict[str, Any]) -> BookingAction:
    """
    Validate a POST /booking/appointment body.

    Raises:
        InvalidInput: action missing or unknown
        RequestValidationError: action known but its fields are malformed
    """
    try:
        return _booking_action_adapter.validate_python(payload)
    except ValidationError as e:
        tag_errors = {"union_tag_not_found", "union_tag_invalid"}
        if any(err["type"] in tag_errors for err in e.errors()):
            raise InvalidInput(
                f"Unknown or missing action. Expected one of: {', '.join(ACTIONS)}",
                field="action",
            ) from e
        raise RequestValidationError(e.errors(include_url=False), body=payload) from e


class CheckSlotRequest(RequestModel):
    """Body of POST /booking/check-slot."""

    date: dt.date
    time: dt.time


class Fallback(BaseModel):
    """Manual booking channel offered when the calendar is down."""
    phone: str
    message: str


class ActionResponse(BaseModel):
    """Successful answer of any booking endpoint."""
    success: bool = True
    action: Optional[str] = None
    message: Optional[str] = None
    date: Optional[dt.date] = None
    available_slots: Optional[List[Slot]] = None
    total_slots: Optional[int] = None
    next_available: Optional[NextAvailable] = None
    slot: Optional[Slot] = None
    slots: Optional[List[Slot]] = None
    available: Optional[bool] = None
    reason: Optional[str] = None
    appointment: Optional[Appointment] = None
    appointments: Optional[List[Appointment]] = None
    total: Optional[int] = None


class ErrorResponse(BaseModel):
    """Error response schema."""
    success: bool = False
    error: str = Field(..., description="Localized error message")
    code: str = Field(..., description="Stable error code")
    detail: Optional[Any] = Field(None, description="Detailed error information")
    fallback: Optional[Fallback] = None

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "success": False,
                "error": "Tento termín je už obsadený. Prosím, vyberte iný termín.",
                "code": "SLOT_CONFLICT",
            }
        }
    )
