"""Slot engine: turn a day's busy intervals into bookable slots.

Slots are laid on a fixed grid: starts are always
business_start + k * (duration + buffer). A candidate that collides with a
busy interval is dropped and the cursor still advances by the full stride,
so later slots never shift to fill the gap.
"""
from datetime import date, datetime, time, timedelta
from typing import Callable, Iterable, Iterator, List, Optional, Sequence, Tuple

from repair_booking.config import BusinessHoursConfig
from repair_booking.models import BusyInterval, NextAvailable, Slot

BusyProvider = Callable[[datetime, datetime], Sequence[BusyInterval]]


def business_window(day: date, config: BusinessHoursConfig) -> Tuple[datetime, datetime]:
    """Opening and closing instant of the given day in the business timezone."""
    midnight = datetime.combine(day, time(0), tzinfo=config.tz)
    return (
        midnight + timedelta(hours=config.start_hour),
        midnight + timedelta(hours=config.end_hour),
    )


def is_working_day(day: date, config: BusinessHoursConfig) -> bool:
    return day.weekday() in config.working_days


def enumerate_slots(
    day: date,
    busy_intervals: Iterable[BusyInterval],
    config: BusinessHoursConfig,
) -> List[Slot]:
    """
    List free slots of one day in chronological order.

    Args:
        day: Calendar date in the business timezone
        busy_intervals: Busy periods covering (at least) the opening hours
        config: Business hours, duration and buffer

    Returns:
        Free slots; empty on non-working days
    """
    if not is_working_day(day, config):
        return []

    busy = list(busy_intervals)
    start_of_day, end_of_day = business_window(day, config)
    duration = config.duration

    slots = []
    cursor = start_of_day
    while cursor + duration <= end_of_day:
        slot_end = cursor + duration
        if not any(interval.overlaps(cursor, slot_end) for interval in busy):
            slots.append(Slot(start=cursor, end=slot_end))
        cursor += config.stride

    return slots


def iter_available_days(
    now: datetime,
    search_days: int,
    busy_provider: BusyProvider,
    config: BusinessHoursConfig,
    first_day: Optional[date] = None,
) -> Iterator[Tuple[date, List[Slot]]]:
    """
    Yield (day, future slots) for each day in the window that has any.

    Non-working days are skipped before the provider is called.
    """
    start = first_day or now.astimezone(config.tz).date()
    for offset in range(search_days):
        day = start + timedelta(days=offset)
        if not is_working_day(day, config):
            continue

        opening, closing = business_window(day, config)
        if closing <= now:
            continue

        busy = busy_provider(opening, closing)
        future = [slot for slot in enumerate_slots(day, busy, config) if slot.start > now]
        if future:
            yield day, future


def find_next_available(
    now: datetime,
    search_days: int,
    busy_provider: BusyProvider,
    config: BusinessHoursConfig,
) -> Optional[NextAvailable]:
    """
    Find the earliest slot strictly after now.

    Args:
        now: Reference instant
        search_days: Number of calendar days to scan, today included
        busy_provider: Callable(range_start, range_end) -> busy intervals
        config: Business hours config

    Returns:
        NextAvailable for the first day with a free slot, or None
    """
    for day, slots in iter_available_days(now, search_days, busy_provider, config):
        return NextAvailable(date=day, slot=slots[0], all_slots=slots)
    return None
