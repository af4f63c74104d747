"""Tests for the booking orchestrator over an in-memory calendar."""
from datetime import date, datetime, time, timedelta

import pytest

from conftest import FROZEN_NOW, local
from repair_booking.errors import (
    GatewayUnavailable,
    InvalidInput,
    NoSlotAvailable,
    NotFound,
    PolicyViolation,
    SlotConflict,
    ViolationReason,
)
from repair_booking.models import AppointmentDetails, AppointmentUpdate, Slot
from repair_booking.orchestrator import BookingOrchestrator

MONDAY = date(2025, 1, 13)
TUESDAY = date(2025, 1, 14)


class TestQueries:

    def test_check_availability_lists_free_slots(self, orchestrator, gateway):
        gateway.add_appointment(local(2025, 1, 14, 9, 15))

        slots = orchestrator.check_availability(TUESDAY)

        assert [s.start_formatted for s in slots] == ["08:00", "10:30", "11:45", "13:00", "14:15", "15:30"]

    def test_check_availability_queries_business_window(self, orchestrator, gateway):
        orchestrator.check_availability(TUESDAY)

        assert gateway.free_busy_calls == [(local(2025, 1, 14, 8), local(2025, 1, 14, 17))]

    def test_check_availability_on_weekend_skips_calendar(self, orchestrator, gateway):
        assert orchestrator.check_availability(date(2025, 1, 18)) == []
        assert gateway.free_busy_calls == []

    def test_find_next(self, orchestrator):
        result = orchestrator.find_next()

        assert result.date == MONDAY
        assert result.slot.start == local(2025, 1, 13, 8)

    def test_find_next_raises_when_window_is_full(self, orchestrator, gateway):
        gateway.add_busy(local(2025, 1, 13), local(2025, 2, 1))

        with pytest.raises(NoSlotAvailable) as exc_info:
            orchestrator.find_next()
        assert exc_info.value.search_days == 14

    def test_find_next_honours_explicit_window(self, orchestrator, gateway):
        gateway.add_busy(local(2025, 1, 13), local(2025, 1, 14))

        with pytest.raises(NoSlotAvailable):
            orchestrator.find_next(search_days=1)
        assert orchestrator.find_next(search_days=2).date == TUESDAY

    def test_gateway_failure_propagates(self, orchestrator, gateway):
        gateway.fail_with = GatewayUnavailable("timeout")

        with pytest.raises(GatewayUnavailable):
            orchestrator.find_next()

    def test_clock_defaults_to_business_timezone(self, gateway, config):
        orchestrator = BookingOrchestrator(gateway, config)

        assert orchestrator.now().tzinfo == config.tz


class TestFindAlternative:

    def test_afternoon(self, orchestrator):
        slots = orchestrator.find_alternative("afternoon")

        assert [s.start_formatted for s in slots] == ["13:00", "14:15", "15:30"]
        assert all(s.start.date() == MONDAY for s in slots)

    def test_morning_spans_days(self, orchestrator):
        slots = orchestrator.find_alternative("morning", limit=6)

        assert [s.start.date() for s in slots] == [MONDAY] * 4 + [TUESDAY] * 2

    def test_earlier_same_day_nearest_first(self, orchestrator):
        slots = orchestrator.find_alternative("earlier", day=TUESDAY, at=time(13, 0))

        assert [s.start_formatted for s in slots] == ["11:45", "10:30", "09:15"]
        assert all(s.start.date() == TUESDAY for s in slots)

    def test_later_from_requested_time(self, orchestrator):
        slots = orchestrator.find_alternative("later", day=TUESDAY, at=time(14, 15))

        assert [s.start for s in slots] == [
            local(2025, 1, 14, 15, 30),
            local(2025, 1, 15, 8),
            local(2025, 1, 15, 9, 15),
        ]

    def test_relative_preference_requires_reference(self, orchestrator):
        with pytest.raises(InvalidInput):
            orchestrator.find_alternative("later")

    def test_unknown_preference(self, orchestrator):
        with pytest.raises(InvalidInput) as exc_info:
            orchestrator.find_alternative("evening")
        assert exc_info.value.field == "time_preference"

    def test_nothing_earlier_raises(self, orchestrator):
        with pytest.raises(NoSlotAvailable):
            orchestrator.find_alternative("earlier", day=TUESDAY, at=time(8, 0))


class TestIsSlotAvailable:

    def test_single_query_over_exact_window(self, orchestrator, gateway):
        start, end = local(2025, 1, 14, 10), local(2025, 1, 14, 11)

        assert orchestrator.is_slot_available(start, end) is True
        assert gateway.free_busy_calls == [(start, end)]

    def test_busy(self, orchestrator, gateway):
        gateway.add_appointment(local(2025, 1, 14, 10, 30))

        assert orchestrator.is_slot_available(local(2025, 1, 14, 10), local(2025, 1, 14, 11)) is False

    def test_adjacent_busy_is_free(self, orchestrator, gateway):
        gateway.add_appointment(local(2025, 1, 14, 11))

        assert orchestrator.is_slot_available(local(2025, 1, 14, 10), local(2025, 1, 14, 11)) is True

    def test_ignore_only_excuses_the_own_window(self, orchestrator, gateway):
        own = Slot(start=local(2025, 1, 14, 10, 30), end=local(2025, 1, 14, 11, 30))
        gateway.add_appointment(own.start)
        start, end = local(2025, 1, 14, 10), local(2025, 1, 14, 11)

        assert orchestrator.is_slot_available(start, end, ignore=own) is True

        gateway.add_busy(local(2025, 1, 14, 10, 40), local(2025, 1, 14, 10, 50))
        assert orchestrator.is_slot_available(start, end, ignore=own) is False


class TestCheckSlot:

    def test_free_slot(self, orchestrator):
        result = orchestrator.check_slot(TUESDAY, time(10, 0))

        assert result.available is True
        assert result.reason is None
        assert result.slot.end == local(2025, 1, 14, 11)

    def test_taken_slot(self, orchestrator, gateway):
        gateway.add_appointment(local(2025, 1, 14, 10))

        assert orchestrator.check_slot(TUESDAY, time(10, 30)).available is False

    def test_policy_violation_is_a_result(self, orchestrator, gateway):
        result = orchestrator.check_slot(date(2025, 1, 18), time(10, 0))

        assert result.available is False
        assert result.reason == ViolationReason.NON_WORKING_DAY.value
        assert gateway.free_busy_calls == []


class TestBook:

    def test_book_preferred_time(self, orchestrator, gateway, details):
        appointment = orchestrator.book(details, preferred_date=TUESDAY, preferred_time=time(10, 30))

        assert appointment.start == local(2025, 1, 14, 10, 30)
        assert appointment.end == local(2025, 1, 14, 11, 30)
        assert appointment.customer_name == "Ján Novák"
        event = gateway.events[appointment.event_id]
        assert event["summary"] == "Servis - Ján Novák (Výmena oleja)"
        assert event["extendedProperties"]["private"]["customerPhone"] == "+421 900 123 456"
        assert "attendees" not in event

    def test_book_auto_assigns_next_slot(self, orchestrator, details):
        appointment = orchestrator.book(details)

        assert appointment.start == local(2025, 1, 13, 8)

    def test_book_with_only_date_auto_assigns(self, orchestrator, details):
        appointment = orchestrator.book(details, preferred_date=TUESDAY)

        assert appointment.start == local(2025, 1, 13, 8)

    def test_book_explicit_start(self, orchestrator, details):
        start = datetime.fromisoformat("2025-01-15T12:00:00+00:00")

        appointment = orchestrator.book(details, start=start)

        assert appointment.start == local(2025, 1, 15, 13)

    def test_duration_comes_from_config(self, orchestrator, details):
        appointment = orchestrator.book(details, start=local(2025, 1, 15, 13))

        assert appointment.end - appointment.start == timedelta(minutes=60)

    def test_book_taken_slot_conflicts(self, orchestrator, gateway, details):
        gateway.add_appointment(local(2025, 1, 14, 10, 30))

        with pytest.raises(SlotConflict):
            orchestrator.book(details, preferred_date=TUESDAY, preferred_time=time(10, 30))
        assert len(gateway.events) == 1

    def test_second_booking_of_same_slot_conflicts(self, orchestrator, gateway, details):
        orchestrator.book(details, preferred_date=TUESDAY, preferred_time=time(10, 30))

        with pytest.raises(SlotConflict):
            orchestrator.book(details, preferred_date=TUESDAY, preferred_time=time(10, 30))
        assert len(gateway.events) == 1

    def test_conflict_reported_on_insert(self, orchestrator, gateway, details):
        gateway.conflict_on_insert = True

        with pytest.raises(SlotConflict) as exc_info:
            orchestrator.book(details, preferred_date=TUESDAY, preferred_time=time(10, 30))
        assert exc_info.value.start == local(2025, 1, 14, 10, 30)

    @pytest.mark.parametrize(
        "day,at,reason",
        [
            (date(2025, 1, 18), time(10, 0), ViolationReason.NON_WORKING_DAY),
            (TUESDAY, time(17, 30), ViolationReason.OUTSIDE_BUSINESS_HOURS),
            (date(2025, 1, 10), time(10, 0), ViolationReason.IN_THE_PAST),
        ],
    )
    def test_policy_violations(self, orchestrator, gateway, details, day, at, reason):
        with pytest.raises(PolicyViolation) as exc_info:
            orchestrator.book(details, preferred_date=day, preferred_time=at)

        assert exc_info.value.reason == reason
        assert gateway.events == {}

    def test_auto_assign_with_full_window(self, orchestrator, gateway, details):
        gateway.add_busy(local(2025, 1, 13), local(2025, 2, 1))

        with pytest.raises(NoSlotAvailable):
            orchestrator.book(details)

    def test_gateway_down_creates_nothing(self, orchestrator, gateway, details):
        gateway.fail_with = GatewayUnavailable("unreachable")

        with pytest.raises(GatewayUnavailable):
            orchestrator.book(details, preferred_date=TUESDAY, preferred_time=time(10, 30))


class TestUpdate:

    @pytest.fixture
    def event_id(self, gateway):
        return gateway.add_appointment(
            local(2025, 1, 14, 10, 30),
            customerName="Ján Novák",
            customerPhone="+421900123456",
            serviceType="Pneuservis",
        )

    def test_move_to_free_time(self, orchestrator, gateway, event_id):
        appointment = orchestrator.update(event_id, AppointmentUpdate(preferred_time=time(13, 0)))

        assert appointment.start == local(2025, 1, 14, 13)
        assert appointment.end == local(2025, 1, 14, 14)
        assert gateway.events[event_id]["start"]["dateTime"] == "2025-01-14T13:00:00+01:00"

    def test_move_overlapping_own_window_is_allowed(self, orchestrator, event_id):
        appointment = orchestrator.update(event_id, AppointmentUpdate(start=local(2025, 1, 14, 11)))

        assert appointment.start == local(2025, 1, 14, 11)

    def test_move_onto_block_inside_own_window_conflicts(self, orchestrator, gateway, event_id):
        gateway.add_busy(local(2025, 1, 14, 10, 45), local(2025, 1, 14, 11))

        with pytest.raises(SlotConflict):
            orchestrator.update(event_id, AppointmentUpdate(start=local(2025, 1, 14, 10)))
        assert gateway.events[event_id]["start"]["dateTime"] == "2025-01-14T10:30:00+01:00"

    def test_move_onto_other_appointment_conflicts(self, orchestrator, gateway, event_id):
        gateway.add_appointment(local(2025, 1, 15, 9, 15))

        with pytest.raises(SlotConflict):
            orchestrator.update(event_id, AppointmentUpdate(preferred_date=date(2025, 1, 15), preferred_time=time(9, 15)))
        assert gateway.events[event_id]["start"]["dateTime"] == "2025-01-14T10:30:00+01:00"

    def test_move_to_weekend_violates_policy(self, orchestrator, event_id):
        with pytest.raises(PolicyViolation):
            orchestrator.update(event_id, AppointmentUpdate(preferred_date=date(2025, 1, 18)))

    def test_details_only_keep_time_and_reminders(self, orchestrator, gateway, event_id):
        appointment = orchestrator.update(event_id, AppointmentUpdate(vehicle_info="VW Golf"))

        assert appointment.start == local(2025, 1, 14, 10, 30)
        event = gateway.events[event_id]
        assert event["extendedProperties"]["private"]["vehicleInfo"] == "VW Golf"
        assert event["extendedProperties"]["private"]["serviceType"] == "Pneuservis"
        assert event["summary"] == "Servis - Ján Novák (Pneuservis)"
        assert event["reminders"] == {"useDefault": False, "overrides": [{"method": "popup", "minutes": 60}]}
        assert gateway.free_busy_calls == []

    def test_details_on_foreign_event_keep_its_description(self, orchestrator, gateway):
        foreign_id = gateway.add_appointment(local(2025, 1, 14, 8))
        gateway.events[foreign_id]["summary"] = "Oprava výfuku"
        gateway.events[foreign_id]["description"] = "Dohodnuté telefonicky"

        appointment = orchestrator.update(foreign_id, AppointmentUpdate(customer_phone="+421900555666"))

        event = gateway.events[foreign_id]
        assert event["summary"] == "Oprava výfuku"
        assert event["description"] == "Dohodnuté telefonicky"
        assert event["extendedProperties"]["private"] == {"customerPhone": "+421900555666"}
        assert appointment.customer_phone == "+421900555666"

    def test_unknown_appointment(self, orchestrator):
        with pytest.raises(NotFound):
            orchestrator.update("evt-missing", AppointmentUpdate(notes="x"))

    def test_empty_event_id(self, orchestrator):
        with pytest.raises(InvalidInput):
            orchestrator.update("", AppointmentUpdate(notes="x"))


class TestCancel:

    def test_cancel_removes_event(self, orchestrator, gateway):
        event_id = gateway.add_appointment(local(2025, 1, 14, 10, 30))

        orchestrator.cancel(event_id)

        assert gateway.events == {}
        assert orchestrator.is_slot_available(local(2025, 1, 14, 10, 30), local(2025, 1, 14, 11, 30))

    def test_cancel_twice_is_not_found(self, orchestrator, gateway):
        event_id = gateway.add_appointment(local(2025, 1, 14, 10, 30))
        orchestrator.cancel(event_id)

        with pytest.raises(NotFound):
            orchestrator.cancel(event_id)

    def test_cancel_unknown(self, orchestrator):
        with pytest.raises(NotFound):
            orchestrator.cancel("evt-404")


class TestListAppointments:

    def test_default_range_and_phone_filter(self, orchestrator, gateway):
        gateway.add_appointment(local(2025, 1, 14, 8), customerName="A", customerPhone="+421 900 111 222")
        gateway.add_appointment(local(2025, 1, 15, 8), customerName="B", customerPhone="+421900333444")
        gateway.add_appointment(local(2025, 3, 1, 8), customerName="Far", customerPhone="+421900111222")

        everyone = orchestrator.list_appointments()
        mine = orchestrator.list_appointments(customer_phone="+421900111222")

        assert [a.customer_name for a in everyone] == ["A", "B"]
        assert [a.customer_name for a in mine] == ["A"]

    def test_explicit_range_is_inclusive(self, orchestrator, gateway):
        gateway.add_appointment(local(2025, 1, 15, 15, 30), customerName="Late")

        found = orchestrator.list_appointments(start_date=date(2025, 1, 15), end_date=date(2025, 1, 15))

        assert [a.customer_name for a in found] == ["Late"]
        assert found[0].start_formatted == "15.01.2025 15:30"

    def test_cancelled_events_are_skipped(self, orchestrator, gateway):
        event_id = gateway.add_appointment(local(2025, 1, 14, 8))
        gateway.events[event_id]["status"] = "cancelled"

        assert orchestrator.list_appointments() == []

    def test_reversed_range(self, orchestrator):
        with pytest.raises(InvalidInput):
            orchestrator.list_appointments(start_date=date(2025, 1, 15), end_date=date(2025, 1, 14))


def test_round_trip_details_survive_booking(orchestrator, gateway):
    details = AppointmentDetails(customer_name="Eva", customer_phone="0900 000 000", notes="Klepe motor")

    booked = orchestrator.book(details, start=local(2025, 1, 16, 9, 15))
    listed = orchestrator.list_appointments(date(2025, 1, 16), date(2025, 1, 16))

    assert listed[0].event_id == booked.event_id
    assert listed[0].notes == "Klepe motor"
    assert listed[0].service_type is None
    assert listed[0].summary == "Servis - Eva (Všeobecný)"
    assert FROZEN_NOW < booked.start
