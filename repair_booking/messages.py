"""User-facing messages (Slovak and English).

Pattern: key -> template catalog per language, rendered with str.format.
Slovak is the primary audience; English is the fallback for callers that
ask for it via ?lang= or Accept-Language.
"""
from datetime import date, datetime
from typing import Dict, Iterable, Optional, Tuple

from repair_booking.config import BusinessHoursConfig
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

SUPPORTED_LANGUAGES = ("sk", "en")
DEFAULT_LANGUAGE = "sk"

CATALOG: Dict[str, Dict[str, str]] = {
    "sk": {
        "slots_available": "Mám {count} voľných termínov na {date}",
        "no_slots_on_day": "Žiaľ, na {date} nemám voľný termín",
        "next_available": "Najbližší voľný termín mám {date} o {time}",
        "alternatives": "Môžem ponúknuť tieto termíny: {times}",
        "no_slot_in_window": "Nenašiel sa žiadny voľný termín v najbližších {days} dňoch",
        "slot_free": "Termín {date} o {time} je dostupný",
        "slot_taken": "Tento termín je už obsadený. Prosím, vyberte iný termín.",
        "booked": "Rezervácia bola úspešne vytvorená",
        "updated": "Rezervácia bola úspešne aktualizovaná",
        "cancelled": "Rezervácia bola úspešne zrušená",
        "appointments_found": "Našiel som {count} rezervácií",
        "not_found": "Rezervácia nebola nájdená",
        "non_working_day": "Rezervácie sú možné iba v pracovné dni ({days})",
        "outside_business_hours": "Rezervácie sú možné iba medzi {start}:00 a {end}:00",
        "in_the_past": "Nie je možné rezervovať termín v minulosti",
        "gateway_unavailable": "Google Calendar service nedostupný. Prosím kontaktujte nás priamo.",
        "call_us": "Zavolajte nám priamo pre rezerváciu termínu",
        "invalid_action": "Neplatná akcia",
        "invalid_input": "Neplatná požiadavka: {detail}",
        "internal_error": "Nepodarilo sa spracovať rezerváciu",
    },
    "en": {
        "slots_available": "I have {count} free slots on {date}",
        "no_slots_on_day": "Sorry, there is no free slot on {date}",
        "next_available": "The next free slot is on {date} at {time}",
        "alternatives": "I can offer these times: {times}",
        "no_slot_in_window": "No free slot found in the next {days} days",
        "slot_free": "The slot on {date} at {time} is available",
        "slot_taken": "This slot is already taken. Please choose another time.",
        "booked": "The appointment was booked successfully",
        "updated": "The appointment was updated successfully",
        "cancelled": "The appointment was cancelled successfully",
        "appointments_found": "Found {count} appointments",
        "not_found": "Appointment not found",
        "non_working_day": "Appointments are only possible on working days ({days})",
        "outside_business_hours": "Appointments are only possible between {start}:00 and {end}:00",
        "in_the_past": "An appointment cannot be booked in the past",
        "gateway_unavailable": "Google Calendar service is unavailable. Please contact us directly.",
        "call_us": "Call us directly to book an appointment",
        "invalid_action": "Invalid action",
        "invalid_input": "Invalid request: {detail}",
        "internal_error": "The booking could not be processed",
    },
}


def pick_language(
    lang: Optional[str] = None,
    accept_language: Optional[str] = None,
    default: str = DEFAULT_LANGUAGE,
) -> str:
    """
    Choose the response language.

    Args:
        lang: Explicit ?lang= value (wins when supported)
        accept_language: Accept-Language header, e.g. "en-US,en;q=0.9"
        default: Used when nothing supported was asked for

    Returns:
        "sk" or "en"
    """
    if lang and lang.lower()[:2] in SUPPORTED_LANGUAGES:
        return lang.lower()[:2]

    if accept_language:
        for part in accept_language.split(","):
            code = part.split(";")[0].strip().lower()[:2]
            if code in SUPPORTED_LANGUAGES:
                return code

    return default if default in SUPPORTED_LANGUAGES else DEFAULT_LANGUAGE


def render(key: str, lang: str = DEFAULT_LANGUAGE, **params) -> str:
    """Render a catalog message; unknown languages fall back to Slovak."""
    templates = CATALOG.get(lang, CATALOG[DEFAULT_LANGUAGE])
    return templates[key].format(**params)


def format_day(day: date) -> str:
    return day.strftime("%d.%m.%Y")


def format_time(at: datetime) -> str:
    return at.strftime("%H:%M")


_VIOLATION_KEYS = {
    ViolationReason.NON_WORKING_DAY: "non_working_day",
    ViolationReason.OUTSIDE_BUSINESS_HOURS: "outside_business_hours",
    ViolationReason.IN_THE_PAST: "in_the_past",
}


DAY_NAMES: Dict[str, Tuple[str, ...]] = {
    "sk": ("pondelok", "utorok", "streda", "štvrtok", "piatok", "sobota", "nedeľa"),
    "en": ("Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday"),
}


def format_working_days(working_days: Iterable[int], lang: str = DEFAULT_LANGUAGE) -> str:
    """
    Name the working days, e.g. "pondelok - piatok" or "Monday, Wednesday".

    A consecutive run of weekdays is written as a range.
    """
    names = DAY_NAMES.get(lang, DAY_NAMES[DEFAULT_LANGUAGE])
    days = sorted(working_days)
    if len(days) > 2 and days == list(range(days[0], days[-1] + 1)):
        return f"{names[days[0]]} - {names[days[-1]]}"
    return ", ".join(names[day] for day in days)


def violation_message(
    reason: ViolationReason,
    lang: str = DEFAULT_LANGUAGE,
    config: Optional[BusinessHoursConfig] = None,
) -> str:
    config = config or BusinessHoursConfig()
    return render(
        _VIOLATION_KEYS[reason],
        lang,
        start=config.start_hour,
        end=config.end_hour,
        days=format_working_days(config.working_days, lang),
    )


def message_for_error(
    exc: BookingError,
    lang: str = DEFAULT_LANGUAGE,
    config: Optional[BusinessHoursConfig] = None,
) -> str:
    """Localized sentence for a booking outcome that is not a success."""
    if isinstance(exc, PolicyViolation):
        return violation_message(exc.reason, lang, config)
    if isinstance(exc, SlotConflict):
        return render("slot_taken", lang)
    if isinstance(exc, NotFound):
        return render("not_found", lang)
    if isinstance(exc, NoSlotAvailable):
        return render("no_slot_in_window", lang, days=exc.search_days)
    if isinstance(exc, GatewayUnavailable):
        return render("gateway_unavailable", lang)
    if isinstance(exc, InvalidInput):
        return render("invalid_input", lang, detail=str(exc))
    return render("internal_error", lang)
