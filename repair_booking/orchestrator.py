"""Booking orchestrator: slot engine + policy + calendar gateway.

Every operation re-reads the calendar; nothing is cached between calls.
Booking is check-then-commit, not a transaction: availability is checked
right before the insert and a conflict reported by the calendar at insert
time is surfaced as SlotConflict. No operation retries on its own.
"""
from datetime import date, datetime, time, timedelta
from typing import Callable, List, Optional

from pydantic.alias_generators import to_camel

from repair_booking.availability import TimeFilter, TimeOfDay
from repair_booking.config import SEARCH_DAYS, BusinessHoursConfig, Settings
from repair_booking.errors import InvalidInput, NoSlotAvailable, NotFound, SlotConflict
from repair_booking.gateway import CalendarGateway, GoogleCalendarGateway
from repair_booking.logging_config import get_logger
from repair_booking.models import (
    Appointment,
    AppointmentDetails,
    AppointmentUpdate,
    BusyInterval,
    NextAvailable,
    Slot,
    SlotCheck,
)
from repair_booking.policy import check_policy, combine_local, localize, validate
from repair_booking.slots import (
    business_window,
    enumerate_slots,
    find_next_available,
    is_working_day,
    iter_available_days,
)

logger = get_logger(__name__)

APPOINTMENTS_LOOKAHEAD_DAYS = 30


class BookingOrchestrator:
    """Availability, booking, update and cancellation against one calendar."""

    def __init__(
        self,
        gateway: CalendarGateway,
        config: BusinessHoursConfig,
        search_days: int = SEARCH_DAYS,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """
        Args:
            gateway: Calendar gateway (injected, never a global)
            config: Business hours config
            search_days: Default window for find_next / find_alternative
            clock: Returns "now"; defaults to the wall clock in business tz
        """
        self.gateway = gateway
        self.config = config
        self.search_days = search_days
        self._clock = clock
        self._time_filter = TimeFilter()

    @classmethod
    def from_settings(cls, settings: Settings) -> "BookingOrchestrator":
        return cls(
            gateway=GoogleCalendarGateway(settings),
            config=settings.business_hours,
            search_days=settings.search_days,
        )

    def now(self) -> datetime:
        current = self._clock() if self._clock else datetime.now(self.config.tz)
        return localize(current, self.config)

    def _busy(self, start: datetime, end: datetime) -> List[BusyInterval]:
        return self.gateway.query_free_busy(start, end)

    # ── Queries ──────────────────────────────────────────────────────────

    def check_availability(self, day: date) -> List[Slot]:
        """Free slots of one day. An empty list is a normal answer."""
        if not is_working_day(day, self.config):
            logger.info("closed_day_requested", date=day.isoformat())
            return []

        opening, closing = business_window(day, self.config)
        slots = enumerate_slots(day, self._busy(opening, closing), self.config)
        logger.info("availability_checked", date=day.isoformat(), slots=len(slots))
        return slots

    def find_next(self, search_days: Optional[int] = None) -> NextAvailable:
        """
        Earliest future slot within search_days.

        Raises:
            NoSlotAvailable: Nothing free in the window
        """
        days = search_days or self.search_days
        result = find_next_available(self.now(), days, self._busy, self.config)
        if result is None:
            logger.info("no_slot_in_window", search_days=days)
            raise NoSlotAvailable(days)
        return result

    def find_alternative(
        self,
        time_preference: str,
        day: Optional[date] = None,
        at: Optional[time] = None,
        limit: int = 3,
    ) -> List[Slot]:
        """
        Suggest up to `limit` future slots matching a time preference.

        morning/afternoon/any scan forward from `day` (default today).
        earlier looks before `at` on `day` only; later looks after it,
        on `day` and the following days.

        Raises:
            InvalidInput: Unknown preference, or earlier/later without day+time
            NoSlotAvailable: Nothing matches
        """
        try:
            preference = TimeOfDay(time_preference)
        except ValueError as e:
            raise InvalidInput(f"Unknown time preference: {time_preference!r}", field="time_preference") from e

        reference = combine_local(day, at, self.config) if day and at else None
        if preference.is_relative and reference is None:
            raise InvalidInput(
                f"Time preference '{preference.value}' requires a date and a time",
                field="preferred_time",
            )

        now = self.now()
        search_days = 1 if preference == TimeOfDay.EARLIER else self.search_days
        found: List[Slot] = []
        for _, slots in iter_available_days(now, search_days, self._busy, self.config, first_day=day or now.date()):
            found.extend(self._time_filter.filter_by_time_of_day(slots, preference, reference))
            if len(found) >= limit:
                break

        if not found:
            logger.info("no_alternative_found", preference=preference.value, search_days=search_days)
            raise NoSlotAvailable(search_days)
        return found[:limit]

    def is_slot_available(self, start: datetime, end: datetime, ignore: Optional[Slot] = None) -> bool:
        """
        One free/busy query over exactly [start, end].

        Args:
            ignore: Window of the appointment being moved. Only a busy
                interval equal to that window (clipped to [start, end]) is
                treated as the appointment itself; anything else conflicts.
        """
        busy = self._busy(start, end)
        if ignore is not None:
            own = (max(ignore.start, start), min(ignore.end, end))
            busy = [b for b in busy if (b.start, b.end) != own]
        return not busy

    def check_slot(self, day: date, at: time) -> SlotCheck:
        """Policy check plus availability for a caller-supplied time."""
        start = combine_local(day, at, self.config)
        slot = Slot(start=start, end=start + self.config.duration)

        reason = check_policy(start, self.config, now=self.now())
        if reason is not None:
            return SlotCheck(available=False, slot=slot, reason=reason.value)

        return SlotCheck(available=self.is_slot_available(slot.start, slot.end), slot=slot)

    def list_appointments(
        self,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        customer_phone: Optional[str] = None,
    ) -> List[Appointment]:
        """Appointments between two dates (inclusive), optionally for one phone."""
        today = self.now().date()
        first = start_date or today
        last = end_date or today + timedelta(days=APPOINTMENTS_LOOKAHEAD_DAYS)
        if last < first:
            raise InvalidInput("end_date must not precede start_date", field="end_date")

        time_min = datetime.combine(first, time(0), tzinfo=self.config.tz)
        time_max = datetime.combine(last + timedelta(days=1), time(0), tzinfo=self.config.tz)
        appointments = [
            Appointment.from_event(event, self.config.tz)
            for event in self.gateway.list_events(time_min, time_max)
            if event.get("status") != "cancelled"
        ]

        if customer_phone:
            wanted = _normalize_phone(customer_phone)
            appointments = [a for a in appointments if _normalize_phone(a.customer_phone) == wanted]
        return appointments

    # ── Commands ─────────────────────────────────────────────────────────

    def book(
        self,
        details: AppointmentDetails,
        preferred_date: Optional[date] = None,
        preferred_time: Optional[time] = None,
        start: Optional[datetime] = None,
    ) -> Appointment:
        """
        Book an appointment.

        With start (or both preferred_date and preferred_time) the time is
        validated against policy; otherwise the next free slot is used.

        Raises:
            PolicyViolation: Requested time breaks a rule
            NoSlotAvailable: Auto-assignment found nothing
            SlotConflict: Taken at check time or reported by the calendar on insert
            GatewayUnavailable: Calendar unreachable
        """
        if start is None and preferred_date and preferred_time:
            start = combine_local(preferred_date, preferred_time, self.config)

        if start is not None:
            start = localize(start, self.config)
            validate(start, self.config, now=self.now())
            end = start + self.config.duration
        else:
            next_available = self.find_next()
            start, end = next_available.slot.start, next_available.slot.end

        if not self.is_slot_available(start, end):
            logger.info("slot_taken", start=start.isoformat())
            raise SlotConflict("Slot is already taken", start=start, end=end)

        event = details.to_event(start, end, self.config.timezone)
        try:
            created = self.gateway.insert_event(event)
        except SlotConflict as e:
            logger.info("slot_taken_during_insert", start=start.isoformat())
            raise SlotConflict("Slot was taken while booking", start=start, end=end) from e

        appointment = Appointment.from_event({**event, **created}, self.config.tz)
        logger.info("appointment_booked", event_id=appointment.event_id, start=start.isoformat())
        return appointment

    def update(self, event_id: str, changes: AppointmentUpdate) -> Appointment:
        """
        Merge changes into an existing appointment.

        A new time window goes through the same policy and availability
        checks as a booking.

        Raises:
            NotFound, PolicyViolation, SlotConflict, GatewayUnavailable
        """
        if not event_id:
            raise InvalidInput("event_id is required", field="event_id")

        existing = self.gateway.get_event(event_id)
        current = Appointment.from_event(existing, self.config.tz)
        start, end = current.start, current.end

        new_start = self._requested_start(changes, current)
        if new_start is not None and new_start != current.start:
            validate(new_start, self.config, now=self.now())
            new_end = new_start + self.config.duration
            if not self.is_slot_available(new_start, new_end, ignore=Slot(start=current.start, end=current.end)):
                logger.info("slot_taken", event_id=event_id, start=new_start.isoformat())
                raise SlotConflict("New slot is already taken", start=new_start, end=new_end)
            start, end = new_start, new_end

        body = dict(existing)
        body["start"] = {"dateTime": start.isoformat(), "timeZone": self.config.timezone}
        body["end"] = {"dateTime": end.isoformat(), "timeZone": self.config.timezone}

        detail_updates = changes.detail_updates()
        extended = existing.get("extendedProperties") or {}
        if detail_updates and extended.get("private"):
            details = current.details.model_copy(update=detail_updates)
            payload = details.to_event(start, end, self.config.timezone)
            for key in ("summary", "description", "extendedProperties"):
                body[key] = payload[key]
        elif detail_updates:
            # Not booked through this service: summary and description stay as written.
            body["extendedProperties"] = {
                **extended,
                "private": {to_camel(name): value for name, value in detail_updates.items()},
            }

        try:
            updated = self.gateway.update_event(event_id, body)
        except SlotConflict as e:
            raise SlotConflict("New slot was taken while updating", start=start, end=end) from e

        appointment = Appointment.from_event({**body, **updated}, self.config.tz)
        logger.info("appointment_updated", event_id=event_id, start=start.isoformat())
        return appointment

    def cancel(self, event_id: str) -> None:
        """
        Delete an appointment.

        Raises:
            NotFound: Unknown or already deleted
            GatewayUnavailable: Calendar unreachable
        """
        if not event_id:
            raise InvalidInput("event_id is required", field="event_id")

        try:
            self.gateway.delete_event(event_id)
        except NotFound:
            logger.info("cancel_unknown_appointment", event_id=event_id)
            raise
        logger.info("appointment_cancelled", event_id=event_id)

    def _requested_start(self, changes: AppointmentUpdate, current: Appointment) -> Optional[datetime]:
        if not changes.changes_time:
            return None
        if changes.start is not None:
            return localize(changes.start, self.config)
        day = changes.preferred_date or current.start.date()
        at = changes.preferred_time or current.start.time()
        return combine_local(day, at, self.config)


def _normalize_phone(phone: str) -> str:
    return "".join(ch for ch in phone if ch.isdigit() or ch == "+")
