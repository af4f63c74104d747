"""Time-of-day filtering for alternative slot suggestions.

- morning / afternoon / any: split at 12:00 business time
- earlier / later: relative to a reference time the caller asked for
- Group slots per day so a voice answer stays short
"""
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional

from repair_booking.models import Slot


class TimeOfDay(str, Enum):
    """Time preferences accepted by find_alternative."""
    MORNING = "morning"  # Before 12:00
    AFTERNOON = "afternoon"  # 12:00 and after
    ANY = "any"
    EARLIER = "earlier"  # Before the reference time, same day
    LATER = "later"  # After the reference time

    @property
    def is_relative(self) -> bool:
        return self in (TimeOfDay.EARLIER, TimeOfDay.LATER)


class TimeFilter:
    """Filter availability slots by time of day."""

    MORNING_CUTOFF = 12  # 12:00 (noon)

    def filter_by_time_of_day(
        self,
        slots: List[Slot],
        preference: TimeOfDay,
        reference: Optional[datetime] = None,
    ) -> List[Slot]:
        """
        Filter slots by time of day preference.

        Args:
            slots: Slots of one or more days, chronological
            preference: Time preference
            reference: Requested instant, required for earlier/later

        Returns:
            Matching slots; for EARLIER the closest to reference comes first
        """
        if preference == TimeOfDay.ANY:
            return list(slots)

        if preference == TimeOfDay.MORNING:
            return [s for s in slots if s.start.hour < self.MORNING_CUTOFF]

        if preference == TimeOfDay.AFTERNOON:
            return [s for s in slots if s.start.hour >= self.MORNING_CUTOFF]

        if reference is None:
            raise ValueError(f"'{preference.value}' needs a reference time")

        if preference == TimeOfDay.EARLIER:
            same_day = [
                s for s in slots
                if s.start < reference and s.start.date() == reference.date()
            ]
            return list(reversed(same_day))

        return [s for s in slots if s.start > reference]

    def group_by_date(self, slots: List[Slot]) -> Dict[str, List[Slot]]:
        grouped: Dict[str, List[Slot]] = {}
        for slot in slots:
            grouped.setdefault(slot.start.date().isoformat(), []).append(slot)
        return grouped

    def format_slots_grouped(
        self,
        slots: List[Slot],
        max_per_day: int = 4,
    ) -> str:
        """
        Format slots grouped by date.

        Example:
            2025-01-15:
               • 08:00 - 09:00
               • 09:15 - 10:15
        """
        if not slots:
            return ""

        lines = []
        for day, day_slots in self.group_by_date(slots).items():
            lines.append(f"{day}:")
            for slot in day_slots[:max_per_day]:
                lines.append(f"   • {slot.start_formatted} - {slot.end_formatted}")
        return "\n".join(lines)
