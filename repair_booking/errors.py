"""Booking outcomes that are not a plain success.

PolicyViolation, SlotConflict, NotFound and NoSlotAvailable are expected
business outcomes and are rendered to the caller as user-facing messages.
GatewayUnavailable is an infrastructure failure. InvalidInput covers
malformed requests.
"""
from datetime import datetime
from enum import Enum
from typing import Optional


class ViolationReason(str, Enum):
    """Why a requested start time was rejected."""
    NON_WORKING_DAY = "non_working_day"
    OUTSIDE_BUSINESS_HOURS = "outside_business_hours"
    IN_THE_PAST = "in_the_past"


class BookingError(Exception):
    """Base class for every booking outcome raised by the core."""

    code = "BOOKING_ERROR"


class PolicyViolation(BookingError):
    """Requested time breaks a business rule."""

    code = "POLICY_VIOLATION"

    def __init__(self, reason: ViolationReason, candidate: Optional[datetime] = None):
        super().__init__(f"Policy violation: {reason.value}")
        self.reason = reason
        self.candidate = candidate


class SlotConflict(BookingError):
    """The slot is already taken on the calendar."""

    code = "SLOT_CONFLICT"

    def __init__(
        self,
        message: str = "Slot is already taken",
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ):
        super().__init__(message)
        self.start = start
        self.end = end


class NotFound(BookingError):
    """The appointment does not exist (or was already removed)."""

    code = "NOT_FOUND"

    def __init__(self, event_id: str):
        super().__init__(f"Appointment not found: {event_id}")
        self.event_id = event_id


class NoSlotAvailable(BookingError):
    """No free slot in the searched window."""

    code = "NO_SLOT_AVAILABLE"

    def __init__(self, search_days: int):
        super().__init__(f"No available slot in the next {search_days} days")
        self.search_days = search_days


class GatewayUnavailable(BookingError):
    """Calendar could not be reached (auth, network, timeout)."""

    code = "GATEWAY_UNAVAILABLE"


class InvalidInput(BookingError):
    """Request is malformed or misses required fields."""

    code = "INVALID_INPUT"

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.field = field
