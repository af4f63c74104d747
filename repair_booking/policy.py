"""Booking policy: may an appointment start at the given instant?

Independent from slot enumeration so caller-supplied times can be checked
before anything is reserved. Rules are applied in a fixed order and the
first broken one is reported.
"""
from datetime import date, datetime, time
from typing import Optional

from repair_booking.config import BusinessHoursConfig
from repair_booking.errors import PolicyViolation, ViolationReason


def localize(candidate: datetime, config: BusinessHoursConfig) -> datetime:
    """Express candidate in the business timezone (naive = business local)."""
    if candidate.tzinfo is None:
        return candidate.replace(tzinfo=config.tz)
    return candidate.astimezone(config.tz)


def combine_local(day: date, at: time, config: BusinessHoursConfig) -> datetime:
    """Wall-clock (date, time) pair in the business timezone."""
    return datetime.combine(day, at.replace(tzinfo=None), tzinfo=config.tz)


def check_policy(
    candidate_start: datetime,
    config: BusinessHoursConfig,
    now: Optional[datetime] = None,
) -> Optional[ViolationReason]:
    """
    Return the first rule the candidate breaks, or None.

    Order: working day, business hours, not in the past.
    A start at exactly end_hour:00 is accepted; anything later is not.
    """
    local = localize(candidate_start, config)

    if local.weekday() not in config.working_days:
        return ViolationReason.NON_WORKING_DAY

    if (
        local.hour < config.start_hour
        or local.hour > config.end_hour
        or (local.hour == config.end_hour and local.minute > 0)
    ):
        return ViolationReason.OUTSIDE_BUSINESS_HOURS

    now = now or datetime.now(config.tz)
    if local < now:
        return ViolationReason.IN_THE_PAST

    return None


def validate(
    candidate_start: datetime,
    config: BusinessHoursConfig,
    now: Optional[datetime] = None,
) -> None:
    """
    Raise PolicyViolation if candidate_start may not be booked.

    Raises:
        PolicyViolation: With the reason of the first broken rule
    """
    reason = check_policy(candidate_start, config, now=now)
    if reason is not None:
        raise PolicyViolation(reason, candidate=localize(candidate_start, config))
