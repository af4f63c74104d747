"""FastAPI server for the repair shop booking service.

Features:
- One action endpoint for the voice assistant (explicit `action` field)
- REST aliases for availability, slot check, listing, update and cancel
- Booking outcomes mapped to HTTP codes with localized messages
- Manual-channel fallback (phone number) when the calendar is down
- Request ids bound into structured logs
"""
import datetime as dt
from contextlib import asynccontextmanager
from typing import Any, Callable, Dict, Optional

from fastapi import Body, Depends, FastAPI, Query, Request, Response, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from repair_booking import tools
from repair_booking.api.dependencies import get_language, get_orchestrator, get_settings
from repair_booking.api.models import (
    ActionResponse,
    BookRequest,
    CancelRequest,
    CheckAvailabilityRequest,
    CheckSlotRequest,
    ErrorResponse,
    Fallback,
    FindAlternativeRequest,
    FindNextAvailableRequest,
    UpdateFields,
    UpdateRequest,
    parse_booking_action,
)
from repair_booking.config import Settings
from repair_booking.errors import (
    BookingError,
    GatewayUnavailable,
    InvalidInput,
    NoSlotAvailable,
    NotFound,
    PolicyViolation,
    SlotConflict,
    ViolationReason,
)
from repair_booking.logging_config import (
    bind_request_id,
    clear_request_context,
    generate_request_id,
    get_logger,
    setup_structured_logging,
)
from repair_booking.messages import (
    format_day,
    format_time,
    message_for_error,
    pick_language,
    render,
    violation_message,
)
from repair_booking.orchestrator import BookingOrchestrator

logger = get_logger(__name__)

ERROR_STATUS = {
    InvalidInput: status.HTTP_400_BAD_REQUEST,
    PolicyViolation: status.HTTP_400_BAD_REQUEST,
    NotFound: status.HTTP_404_NOT_FOUND,
    NoSlotAvailable: status.HTTP_404_NOT_FOUND,
    SlotConflict: status.HTTP_409_CONFLICT,
    GatewayUnavailable: status.HTTP_503_SERVICE_UNAVAILABLE,
}


def _resolve(app: FastAPI, dependency: Callable[[], Any]) -> Any:
    """Call a dependency outside of a route, honouring test overrides."""
    return app.dependency_overrides.get(dependency, dependency)()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Configure logging and connect to the calendar on startup."""
    settings: Settings = _resolve(app, get_settings)
    setup_structured_logging(settings.log_level)

    orchestrator: BookingOrchestrator = _resolve(app, get_orchestrator)
    connection = orchestrator.gateway.ensure_ready()
    if connection.ready:
        logger.info("calendar_ready", service_account=connection.service_account_email)
    else:
        # The service still starts; requests answer 503 with the fallback phone.
        logger.error("calendar_unavailable", error=connection.error)

    tools.set_orchestrator(orchestrator, settings.default_language, settings.fallback_phone)
    yield
    tools.set_orchestrator(None)
    logger.info("server_shutdown")


app = FastAPI(
    title="Repair Shop Booking API",
    description="Appointment booking for a car repair shop backed by Google Calendar",
    version="1.0.0",
    lifespan=lifespan,
)


@app.middleware("http")
async def request_context(request: Request, call_next):
    """Tag every log line of a request with its request id."""
    request_id = request.headers.get("X-Request-ID") or generate_request_id()
    bind_request_id(request_id)
    try:
        response = await call_next(request)
    finally:
        clear_request_context()
    response.headers["X-Request-ID"] = request_id
    return response


# Global exception handlers
@app.exception_handler(BookingError)
async def booking_error_handler(request: Request, exc: BookingError):
    """Translate booking outcomes to HTTP responses."""
    settings: Settings = _resolve(request.app, get_settings)
    lang = pick_language(
        request.query_params.get("lang"),
        request.headers.get("accept-language"),
        settings.default_language,
    )

    status_code = next(
        (ERROR_STATUS[cls] for cls in type(exc).__mro__ if cls in ERROR_STATUS),
        status.HTTP_500_INTERNAL_SERVER_ERROR,
    )

    detail: Optional[Dict[str, Any]] = None
    fallback = None
    if isinstance(exc, PolicyViolation):
        detail = {"reason": exc.reason.value}
    elif isinstance(exc, InvalidInput):
        detail = {"field": exc.field, "message": str(exc)}
    elif isinstance(exc, NotFound):
        detail = {"event_id": exc.event_id}
    elif isinstance(exc, GatewayUnavailable):
        fallback = Fallback(phone=settings.fallback_phone, message=render("call_us", lang))

    if isinstance(exc, InvalidInput) and exc.field == "action":
        message = render("invalid_action", lang)
    else:
        message = message_for_error(exc, lang, settings.business_hours)

    if isinstance(exc, GatewayUnavailable):
        logger.warning("booking_request_failed", code=exc.code, error=str(exc))
    else:
        logger.info("booking_request_rejected", code=exc.code, error=str(exc))

    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(
            error=message,
            code=exc.code,
            detail=detail,
            fallback=fallback,
        ).model_dump(mode="json", exclude_none=True),
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Handle request schema errors consistently."""
    logger.warning("validation_error", errors=str(exc.errors()))
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content=ErrorResponse(
            error="Validation Error",
            code="VALIDATION_ERROR",
            detail=str(exc.errors()),
        ).model_dump(exclude_none=True),
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Catch-all handler for unexpected exceptions."""
    logger.error("unexpected_error", error=str(exc), exc_info=True)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=ErrorResponse(
            error="Internal Server Error",
            code="INTERNAL_ERROR",
            detail="An unexpected error occurred. Please try again later.",
        ).model_dump(exclude_none=True),
    )


# ── Action handlers ──────────────────────────────────────────────────────

def _check_availability(orchestrator: BookingOrchestrator, req: CheckAvailabilityRequest, lang: str) -> ActionResponse:
    slots = orchestrator.check_availability(req.preferred_date)
    key = "slots_available" if slots else "no_slots_on_day"
    return ActionResponse(
        action=req.action,
        date=req.preferred_date,
        available_slots=slots,
        total_slots=len(slots),
        message=render(key, lang, count=len(slots), date=format_day(req.preferred_date)),
    )


def _find_next_available(orchestrator: BookingOrchestrator, req: FindNextAvailableRequest, lang: str) -> ActionResponse:
    result = orchestrator.find_next(req.search_days)
    return ActionResponse(
        action=req.action,
        date=result.date,
        slot=result.slot,
        next_available=result,
        message=render("next_available", lang, date=format_day(result.date), time=format_time(result.slot.start)),
    )


def _find_alternative(orchestrator: BookingOrchestrator, req: FindAlternativeRequest, lang: str) -> ActionResponse:
    slots = orchestrator.find_alternative(
        req.time_preference,
        day=req.preferred_date,
        at=req.preferred_time,
        limit=req.limit,
    )
    times = ", ".join(f"{format_day(s.start.date())} {s.start_formatted}" for s in slots)
    return ActionResponse(
        action=req.action,
        slots=slots,
        total_slots=len(slots),
        message=render("alternatives", lang, times=times),
    )


def _book(orchestrator: BookingOrchestrator, req: BookRequest, lang: str) -> ActionResponse:
    appointment = orchestrator.book(
        req.to_details(),
        preferred_date=req.preferred_date,
        preferred_time=req.preferred_time,
        start=req.start_time,
    )
    return ActionResponse(action=req.action, appointment=appointment, message=render("booked", lang))


def _update(orchestrator: BookingOrchestrator, req: UpdateRequest, lang: str) -> ActionResponse:
    appointment = orchestrator.update(req.event_id, req.to_update())
    return ActionResponse(action=req.action, appointment=appointment, message=render("updated", lang))


def _cancel(orchestrator: BookingOrchestrator, req: CancelRequest, lang: str) -> ActionResponse:
    orchestrator.cancel(req.event_id)
    return ActionResponse(action=req.action, message=render("cancelled", lang))


ACTION_HANDLERS = {
    CheckAvailabilityRequest: _check_availability,
    FindNextAvailableRequest: _find_next_available,
    FindAlternativeRequest: _find_alternative,
    BookRequest: _book,
    UpdateRequest: _update,
    CancelRequest: _cancel,
}


# ── Routes ───────────────────────────────────────────────────────────────

@app.get("/health", tags=["Health"])
def health_check(orchestrator: BookingOrchestrator = Depends(get_orchestrator)):
    """Health check: reports whether the calendar client is ready."""
    connection = orchestrator.gateway.ensure_ready()
    return JSONResponse(
        status_code=status.HTTP_200_OK if connection.ready else status.HTTP_503_SERVICE_UNAVAILABLE,
        content={
            "status": "healthy" if connection.ready else "degraded",
            "service": "repair-booking",
            "calendar": {
                "ready": connection.ready,
                "service_account_email": connection.service_account_email,
                "error": connection.error,
            },
        },
    )


@app.post(
    "/booking/appointment",
    tags=["Booking"],
    response_model=ActionResponse,
    response_model_exclude_none=True,
)
def booking_action(
    response: Response,
    payload: Dict[str, Any] = Body(...),
    orchestrator: BookingOrchestrator = Depends(get_orchestrator),
    lang: str = Depends(get_language),
):
    """
    Single entry point for the voice assistant.

    The `action` field selects the operation: check_availability,
    find_next_available, find_alternative, book, update or cancel.

    Raises:
        400: Missing/unknown action, rule broken, required field missing
        404: Appointment unknown, no free slot in the window
        409: Slot already taken
        503: Calendar unavailable (response carries a fallback phone)
    """
    booking_request = parse_booking_action(payload)
    logger.info("booking_action", action=booking_request.action)

    result = ACTION_HANDLERS[type(booking_request)](orchestrator, booking_request, lang)
    if isinstance(booking_request, BookRequest):
        response.status_code = status.HTTP_201_CREATED
    return result


@app.get(
    "/booking/availability",
    tags=["Booking"],
    response_model=ActionResponse,
    response_model_exclude_none=True,
)
def availability(
    date: Optional[dt.date] = Query(None, description="Day to check; omit for the next free slot"),
    days: Optional[int] = Query(None, ge=1, le=366, description="Search window for the next free slot"),
    orchestrator: BookingOrchestrator = Depends(get_orchestrator),
    lang: str = Depends(get_language),
):
    """Free slots of one day, or the next free slot when no date is given."""
    if date is not None:
        return _check_availability(
            orchestrator,
            CheckAvailabilityRequest(action="check_availability", preferred_date=date),
            lang,
        )
    return _find_next_available(
        orchestrator,
        FindNextAvailableRequest(action="find_next_available", search_days=days),
        lang,
    )


@app.post(
    "/booking/check-slot",
    tags=["Booking"],
    response_model=ActionResponse,
    response_model_exclude_none=True,
)
def check_slot(
    body: CheckSlotRequest,
    orchestrator: BookingOrchestrator = Depends(get_orchestrator),
    settings: Settings = Depends(get_settings),
    lang: str = Depends(get_language),
):
    """Is this exact date and time bookable? Rule violations come back as a reason."""
    result = orchestrator.check_slot(body.date, body.time)

    if result.reason is not None:
        message = violation_message(ViolationReason(result.reason), lang, settings.business_hours)
    elif result.available:
        message = render("slot_free", lang, date=format_day(body.date), time=format_time(result.slot.start))
    else:
        message = render("slot_taken", lang)

    return ActionResponse(
        action="check_slot",
        available=result.available,
        slot=result.slot,
        reason=result.reason,
        message=message,
    )


@app.get(
    "/booking/appointments",
    tags=["Booking"],
    response_model=ActionResponse,
    response_model_exclude_none=True,
)
def list_appointments(
    start_date: Optional[dt.date] = Query(None, alias="startDate"),
    end_date: Optional[dt.date] = Query(None, alias="endDate"),
    customer_phone: Optional[str] = Query(None, alias="customerPhone"),
    orchestrator: BookingOrchestrator = Depends(get_orchestrator),
    lang: str = Depends(get_language),
):
    """Appointments in a date range (default: today and the next 30 days)."""
    appointments = orchestrator.list_appointments(start_date, end_date, customer_phone)
    return ActionResponse(
        action="list_appointments",
        appointments=appointments,
        total=len(appointments),
        message=render("appointments_found", lang, count=len(appointments)),
    )


@app.put(
    "/booking/appointment/{event_id}",
    tags=["Booking"],
    response_model=ActionResponse,
    response_model_exclude_none=True,
)
def update_appointment(
    event_id: str,
    body: UpdateFields,
    orchestrator: BookingOrchestrator = Depends(get_orchestrator),
    lang: str = Depends(get_language),
):
    """Move an appointment and/or change its customer fields."""
    appointment = orchestrator.update(event_id, body.to_update())
    return ActionResponse(action="update", appointment=appointment, message=render("updated", lang))


@app.delete(
    "/booking/appointment/{event_id}",
    tags=["Booking"],
    response_model=ActionResponse,
    response_model_exclude_none=True,
)
def cancel_appointment(
    event_id: str,
    orchestrator: BookingOrchestrator = Depends(get_orchestrator),
    lang: str = Depends(get_language),
):
    """Cancel (delete) an appointment."""
    orchestrator.cancel(event_id)
    return ActionResponse(action="cancel", message=render("cancelled", lang))
