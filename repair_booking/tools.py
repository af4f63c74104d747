"""Voice-assistant tools with @tool decorator (LangChain pattern).

Each tool wraps one orchestrator operation and returns a short,
bracket-tagged string the assistant can read back to the caller:
- [AVAILABILITY] free slots
- [SUCCESS] booking / update / cancellation done
- [INFO] expected "no" answers (no slot, slot taken, rule broken)
- [ERROR] bad input, unknown appointment or calendar unreachable

Dates are "YYYY-MM-DD", times "HH:MM" (24h, business timezone).
"""
from datetime import date, datetime, time
from typing import Optional

from langchain_core.tools import tool

from repair_booking.availability import TimeFilter
from repair_booking.config import FALLBACK_PHONE
from repair_booking.errors import (
    BookingError,
    GatewayUnavailable,
    InvalidInput,
    NotFound,
)
from repair_booking.messages import DEFAULT_LANGUAGE, format_day, format_time, message_for_error, render
from repair_booking.models import AppointmentDetails, AppointmentUpdate
from repair_booking.orchestrator import BookingOrchestrator

_orchestrator: Optional[BookingOrchestrator] = None
_language = DEFAULT_LANGUAGE
_fallback_phone = FALLBACK_PHONE
_time_filter = TimeFilter()


def set_orchestrator(
    orchestrator: Optional[BookingOrchestrator],
    language: str = DEFAULT_LANGUAGE,
    fallback_phone: str = FALLBACK_PHONE,
) -> None:
    """Bind the orchestrator (and reply language) the tools operate on."""
    global _orchestrator, _language, _fallback_phone
    _orchestrator = orchestrator
    _language = language
    _fallback_phone = fallback_phone


def get_orchestrator() -> BookingOrchestrator:
    """Bound orchestrator, or the API's shared one when nothing was bound."""
    if _orchestrator is None:
        from repair_booking.api.dependencies import get_orchestrator as shared_orchestrator

        return shared_orchestrator()
    return _orchestrator


def _parse_date(value: str) -> date:
    try:
        return date.fromisoformat(value.strip())
    except ValueError as e:
        raise InvalidInput(f"Invalid date '{value}', expected YYYY-MM-DD", field="date") from e


def _parse_time(value: str) -> time:
    try:
        return datetime.strptime(value.strip(), "%H:%M").time()
    except ValueError as e:
        raise InvalidInput(f"Invalid time '{value}', expected HH:MM", field="time") from e


def _error_reply(exc: BookingError) -> str:
    """Map a booking outcome to a tagged reply."""
    message = message_for_error(exc, _language, get_orchestrator().config)
    if isinstance(exc, GatewayUnavailable):
        return f"[ERROR] {message} {render('call_us', _language)}: {_fallback_phone}"
    if isinstance(exc, (InvalidInput, NotFound)):
        return f"[ERROR] {message}"
    return f"[INFO] {message}"


@tool
def check_availability_tool(day: str) -> str:
    """
    List free appointment slots on one day.

    Args:
        day: Date in YYYY-MM-DD format

    Returns:
        [AVAILABILITY] with the free times, or [INFO] when the day is full
    """
    try:
        requested = _parse_date(day)
        slots = get_orchestrator().check_availability(requested)
    except BookingError as e:
        return _error_reply(e)

    if not slots:
        return f"[INFO] {render('no_slots_on_day', _language, date=format_day(requested))}"

    times = ", ".join(slot.start_formatted for slot in slots)
    return (
        f"[AVAILABILITY] {render('slots_available', _language, count=len(slots), date=format_day(requested))}\n"
        f"Times: {times}"
    )


@tool
def find_next_available_tool() -> str:
    """
    Find the earliest free appointment slot.

    Use when the caller has no preferred date. No parameters needed.

    Returns:
        [AVAILABILITY] with date and time of the next free slot
    """
    try:
        result = get_orchestrator().find_next()
    except BookingError as e:
        return _error_reply(e)

    return (
        f"[AVAILABILITY] "
        f"{render('next_available', _language, date=format_day(result.date), time=format_time(result.slot.start))}"
    )


@tool
def find_alternative_tool(time_preference: str = "any", day: str = "", at: str = "") -> str:
    """
    Suggest other free slots when the requested one is taken.

    Args:
        time_preference: morning, afternoon, any, earlier or later
        day: Requested date YYYY-MM-DD (required for earlier/later)
        at: Requested time HH:MM (required for earlier/later)

    Returns:
        [AVAILABILITY] with up to 3 suggestions grouped by date
    """
    try:
        requested_day = _parse_date(day) if day else None
        requested_time = _parse_time(at) if at else None
        slots = get_orchestrator().find_alternative(time_preference, day=requested_day, at=requested_time)
    except BookingError as e:
        return _error_reply(e)

    times = ", ".join(f"{format_day(s.start.date())} {s.start_formatted}" for s in slots)
    return (
        f"[AVAILABILITY] {render('alternatives', _language, times=times)}\n"
        f"{_time_filter.format_slots_grouped(slots)}"
    )


@tool
def book_appointment_tool(
    customer_name: str,
    customer_phone: str,
    day: str = "",
    at: str = "",
    service_type: str = "",
    vehicle_info: str = "",
    customer_email: str = "",
    notes: str = "",
) -> str:
    """
    Book an appointment. Call AFTER the caller confirms the time.

    Without day and time the next free slot is booked.

    Args:
        customer_name: Full name of the customer
        customer_phone: Phone number, e.g. +421 900 123 456
        day: Date YYYY-MM-DD
        at: Time HH:MM
        service_type: Kind of service (oil change, tyres, ...)
        vehicle_info: Car make, model or plate
        customer_email: Optional email
        notes: Anything else the mechanic should know

    Returns:
        [SUCCESS] with the appointment id and time, [INFO] if the slot is
        taken or not allowed, [ERROR] otherwise
    """
    try:
        details = AppointmentDetails(
            customer_name=customer_name,
            customer_phone=customer_phone,
            customer_email=customer_email or None,
            service_type=service_type or None,
            vehicle_info=vehicle_info or None,
            notes=notes or None,
        )
    except ValueError as e:
        return f"[ERROR] {render('invalid_input', _language, detail=e)}"

    try:
        appointment = get_orchestrator().book(
            details,
            preferred_date=_parse_date(day) if day else None,
            preferred_time=_parse_time(at) if at else None,
        )
    except BookingError as e:
        return _error_reply(e)

    return (
        f"[SUCCESS] {render('booked', _language)}\n"
        f"ID: {appointment.event_id}\n"
        f"Time: {appointment.start_formatted}\n"
        f"Service: {appointment.summary}"
    )


@tool
def update_appointment_tool(
    event_id: str,
    day: str = "",
    at: str = "",
    service_type: str = "",
    vehicle_info: str = "",
    notes: str = "",
) -> str:
    """
    Move an appointment or change its details.

    Args:
        event_id: Appointment id returned at booking
        day: New date YYYY-MM-DD (keeps the current date if empty)
        at: New time HH:MM (keeps the current time if empty)
        service_type: New service type
        vehicle_info: New vehicle info
        notes: New notes

    Returns:
        [SUCCESS] with the new time, [INFO] if the new slot is not possible
    """
    try:
        changes = AppointmentUpdate(
            preferred_date=_parse_date(day) if day else None,
            preferred_time=_parse_time(at) if at else None,
            service_type=service_type or None,
            vehicle_info=vehicle_info or None,
            notes=notes or None,
        )
        appointment = get_orchestrator().update(event_id, changes)
    except BookingError as e:
        return _error_reply(e)
    except ValueError as e:
        return f"[ERROR] {render('invalid_input', _language, detail=e)}"

    return (
        f"[SUCCESS] {render('updated', _language)}\n"
        f"ID: {appointment.event_id}\n"
        f"Time: {appointment.start_formatted}"
    )


@tool
def cancel_appointment_tool(event_id: str) -> str:
    """
    Cancel an appointment. Call AFTER the caller confirms cancellation.

    Args:
        event_id: Appointment id returned at booking

    Returns:
        [SUCCESS] or [ERROR]
    """
    try:
        get_orchestrator().cancel(event_id)
    except BookingError as e:
        return _error_reply(e)

    return f"[SUCCESS] {render('cancelled', _language)} (ID: {event_id})"


BOOKING_TOOLS = [
    check_availability_tool,
    find_next_available_tool,
    find_alternative_tool,
    book_appointment_tool,
    update_appointment_tool,
    cancel_appointment_tool,
]
