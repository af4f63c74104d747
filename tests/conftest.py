"""Shared test fixtures."""
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional
from zoneinfo import ZoneInfo

import pytest

from repair_booking.config import TIMEZONE, BusinessHoursConfig, Settings
from repair_booking.errors import NotFound, SlotConflict
from repair_booking.gateway import ConnectionStatus
from repair_booking.models import AppointmentDetails, BusyInterval, parse_instant
from repair_booking.orchestrator import BookingOrchestrator

TZ = ZoneInfo(TIMEZONE)

# Monday 13 January 2025, 07:00 in Bratislava (one hour before opening).
FROZEN_NOW = datetime(2025, 1, 13, 7, 0, tzinfo=TZ)


def local(year: int, month: int, day: int, hour: int = 0, minute: int = 0) -> datetime:
    return datetime(year, month, day, hour, minute, tzinfo=TZ)


class FakeCalendarGateway:
    """In-memory calendar implementing the CalendarGateway protocol."""

    def __init__(self, calendar_id: str = "shop@group.calendar.google.com"):
        self.calendar_id = calendar_id
        self.events: Dict[str, Dict[str, Any]] = {}
        self.extra_busy: List[BusyInterval] = []
        self.free_busy_calls: List[tuple] = []
        self.ready = True
        self.fail_with: Optional[Exception] = None
        self.conflict_on_insert = False
        self._next_id = 1

    # Test helpers

    def add_busy(self, start: datetime, end: datetime) -> None:
        """Busy time that is not one of our appointments (e.g. a holiday block)."""
        self.extra_busy.append(BusyInterval(start=start, end=end))

    def add_appointment(self, start: datetime, minutes: int = 60, **private: str) -> str:
        event_id = f"evt-{self._next_id}"
        self._next_id += 1
        self.events[event_id] = {
            "id": event_id,
            "status": "confirmed",
            "summary": f"Servis - {private.get('customerName', 'Test')} (Všeobecný)",
            "start": {"dateTime": start.isoformat(), "timeZone": TIMEZONE},
            "end": {"dateTime": (start + timedelta(minutes=minutes)).isoformat(), "timeZone": TIMEZONE},
            "reminders": {"useDefault": False, "overrides": [{"method": "popup", "minutes": 60}]},
            "extendedProperties": {"private": dict(private)},
        }
        return event_id

    def _check(self) -> None:
        if self.fail_with is not None:
            raise self.fail_with

    def _window(self, event: Dict[str, Any]):
        return parse_instant(event["start"]["dateTime"], TZ), parse_instant(event["end"]["dateTime"], TZ)

    # CalendarGateway protocol

    def ensure_ready(self) -> ConnectionStatus:
        if self.ready:
            return ConnectionStatus(ready=True, service_account_email="booking@shop.iam.gserviceaccount.com")
        return ConnectionStatus(ready=False, error="Google Calendar credentials not found")

    def query_free_busy(self, time_min: datetime, time_max: datetime) -> List[BusyInterval]:
        self._check()
        self.free_busy_calls.append((time_min, time_max))
        intervals = [
            BusyInterval(start=start, end=end)
            for start, end in (self._window(e) for e in self.events.values() if e.get("status") != "cancelled")
        ] + self.extra_busy

        # Google clips busy periods to the queried range.
        return [
            BusyInterval(start=max(b.start, time_min), end=min(b.end, time_max))
            for b in sorted(intervals, key=lambda b: b.start)
            if b.start < time_max and b.end > time_min
        ]

    def insert_event(self, event: Dict[str, Any]) -> Dict[str, Any]:
        self._check()
        if self.conflict_on_insert:
            raise SlotConflict("Calendar reported a scheduling conflict")
        event_id = f"evt-{self._next_id}"
        self._next_id += 1
        stored = {
            **event,
            "id": event_id,
            "status": "confirmed",
            "htmlLink": f"https://calendar.google.com/event?eid={event_id}",
        }
        self.events[event_id] = stored
        return dict(stored)

    def get_event(self, event_id: str) -> Dict[str, Any]:
        self._check()
        if event_id not in self.events:
            raise NotFound(event_id)
        return dict(self.events[event_id])

    def update_event(self, event_id: str, event: Dict[str, Any]) -> Dict[str, Any]:
        self._check()
        if event_id not in self.events:
            raise NotFound(event_id)
        self.events[event_id] = {**event, "id": event_id}
        return dict(self.events[event_id])

    def delete_event(self, event_id: str) -> None:
        self._check()
        if event_id not in self.events:
            raise NotFound(event_id)
        del self.events[event_id]

    def list_events(self, time_min: datetime, time_max: datetime) -> List[Dict[str, Any]]:
        self._check()
        found = []
        for event in self.events.values():
            start, end = self._window(event)
            if start < time_max and end > time_min:
                found.append(dict(event))
        return sorted(found, key=lambda e: self._window(e)[0])


@pytest.fixture
def config() -> BusinessHoursConfig:
    return BusinessHoursConfig()


@pytest.fixture
def settings(config) -> Settings:
    return Settings(calendar_id="shop@group.calendar.google.com", business_hours=config)


@pytest.fixture
def gateway() -> FakeCalendarGateway:
    return FakeCalendarGateway()


@pytest.fixture
def orchestrator(gateway, config) -> BookingOrchestrator:
    """Orchestrator over the fake calendar with the clock frozen at FROZEN_NOW."""
    return BookingOrchestrator(gateway, config, search_days=14, clock=lambda: FROZEN_NOW)


@pytest.fixture
def details() -> AppointmentDetails:
    return AppointmentDetails(
        customer_name="Ján Novák",
        customer_phone="+421 900 123 456",
        customer_email="jan.novak@example.sk",
        service_type="Výmena oleja",
        vehicle_info="Škoda Octavia BA123XY",
    )
