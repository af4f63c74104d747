"""Domain models: busy intervals, slots and appointments.

Slots and busy intervals are transient values recomputed on every query.
Appointments are read back from the calendar; the service keeps no copy.
"""
from datetime import date, datetime, time
from typing import Any, ClassVar, Dict, FrozenSet, List, Optional
from zoneinfo import ZoneInfo

from pydantic import BaseModel, ConfigDict, Field, computed_field, model_validator

DEFAULT_SERVICE_TYPE = "Všeobecný"


def parse_instant(value: Any, tz: ZoneInfo) -> datetime:
    """Parse an ISO-8601 string (or datetime) into an aware datetime in tz."""
    if isinstance(value, datetime):
        parsed = value
    else:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=tz)
    return parsed.astimezone(tz)


class BusyInterval(BaseModel):
    """An occupied period reported by the calendar."""

    model_config = ConfigDict(frozen=True)

    start: datetime
    end: datetime

    @model_validator(mode="after")
    def check_order(self):
        if self.end < self.start:
            raise ValueError("busy interval end must not precede start")
        return self

    def overlaps(self, start: datetime, end: datetime) -> bool:
        # Open-interval test: touching edges are not a conflict.
        return start < self.end and end > self.start


class Slot(BaseModel):
    """A bookable appointment window."""

    model_config = ConfigDict(frozen=True)

    start: datetime
    end: datetime

    @computed_field
    @property
    def start_formatted(self) -> str:
        return self.start.strftime("%H:%M")

    @computed_field
    @property
    def end_formatted(self) -> str:
        return self.end.strftime("%H:%M")


class NextAvailable(BaseModel):
    """First day with a free slot, its earliest slot and the rest of that day."""

    date: date
    slot: Slot
    all_slots: List[Slot]


class SlotCheck(BaseModel):
    """Result of checking one caller-supplied time."""

    available: bool
    slot: Slot
    reason: Optional[str] = None


class AppointmentDetails(BaseModel):
    """Customer-supplied part of an appointment."""

    customer_name: str = Field(..., min_length=1, max_length=200)
    customer_phone: str = Field(..., min_length=1, max_length=50)
    customer_email: Optional[str] = Field(None, max_length=200)
    service_type: Optional[str] = Field(None, max_length=200)
    vehicle_info: Optional[str] = Field(None, max_length=200)
    notes: Optional[str] = Field(None, max_length=2000)

    @property
    def summary(self) -> str:
        return f"Servis - {self.customer_name} ({self.service_type or DEFAULT_SERVICE_TYPE})"

    def format_description(self) -> str:
        lines = [
            f"Zákazník: {self.customer_name}",
            f"Telefón: {self.customer_phone}",
        ]
        if self.customer_email:
            lines.append(f"Email: {self.customer_email}")
        if self.service_type:
            lines.append(f"Typ servisu: {self.service_type}")
        if self.vehicle_info:
            lines.append(f"Vozidlo: {self.vehicle_info}")
        if self.notes:
            lines.append(f"Poznámky: {self.notes}")
        return "\n".join(lines)

    def to_event(self, start: datetime, end: datetime, timezone: str) -> Dict[str, Any]:
        """
        Build the calendar event body.

        Customer data goes into the description and private extended
        properties. No attendees: the service account used for writes
        cannot invite people without domain-wide delegation.
        """
        return {
            "summary": self.summary,
            "description": self.format_description(),
            "start": {"dateTime": start.isoformat(), "timeZone": timezone},
            "end": {"dateTime": end.isoformat(), "timeZone": timezone},
            "reminders": {
                "useDefault": False,
                "overrides": [
                    {"method": "email", "minutes": 24 * 60},
                    {"method": "popup", "minutes": 60},
                ],
            },
            "extendedProperties": {
                "private": {
                    "customerName": self.customer_name,
                    "customerPhone": self.customer_phone,
                    "customerEmail": self.customer_email or "",
                    "serviceType": self.service_type or "",
                    "vehicleInfo": self.vehicle_info or "",
                    "notes": self.notes or "",
                }
            },
        }


_DESCRIPTION_LABELS = {
    "Zákazník": "customer_name",
    "Telefón": "customer_phone",
    "Email": "customer_email",
    "Typ servisu": "service_type",
    "Vozidlo": "vehicle_info",
    "Poznámky": "notes",
}

_PRIVATE_KEYS = {
    "customerName": "customer_name",
    "customerPhone": "customer_phone",
    "customerEmail": "customer_email",
    "serviceType": "service_type",
    "vehicleInfo": "vehicle_info",
    "notes": "notes",
}


def _event_time(value: Dict[str, Any], tz: ZoneInfo) -> datetime:
    if value.get("dateTime"):
        return parse_instant(value["dateTime"], tz)
    # All-day events carry only a date.
    return datetime.combine(date.fromisoformat(value["date"]), time(0), tzinfo=tz)


class Appointment(BaseModel):
    """A booked appointment as stored on the calendar."""

    event_id: str
    customer_name: str = ""
    customer_phone: str = ""
    customer_email: Optional[str] = None
    service_type: Optional[str] = None
    vehicle_info: Optional[str] = None
    notes: Optional[str] = None
    start: datetime
    end: datetime
    status: Optional[str] = None
    summary: Optional[str] = None
    html_link: Optional[str] = None

    @computed_field
    @property
    def start_formatted(self) -> str:
        return self.start.strftime("%d.%m.%Y %H:%M")

    @property
    def details(self) -> AppointmentDetails:
        return AppointmentDetails(
            customer_name=self.customer_name or "-",
            customer_phone=self.customer_phone or "-",
            customer_email=self.customer_email,
            service_type=self.service_type,
            vehicle_info=self.vehicle_info,
            notes=self.notes,
        )

    @classmethod
    def from_event(cls, event: Dict[str, Any], tz: ZoneInfo) -> "Appointment":
        """Read an appointment back from a calendar event body."""
        fields: Dict[str, Optional[str]] = {}

        # Description first, private properties override it.
        for line in (event.get("description") or "").splitlines():
            label, sep, value = line.partition(":")
            if sep and label.strip() in _DESCRIPTION_LABELS:
                fields[_DESCRIPTION_LABELS[label.strip()]] = value.strip()

        private = (event.get("extendedProperties") or {}).get("private") or {}
        for key, field_name in _PRIVATE_KEYS.items():
            if private.get(key):
                fields[field_name] = private[key]

        return cls(
            event_id=event["id"],
            start=_event_time(event["start"], tz),
            end=_event_time(event["end"], tz),
            status=event.get("status"),
            summary=event.get("summary"),
            html_link=event.get("htmlLink"),
            **fields,
        )


class AppointmentUpdate(BaseModel):
    """Partial changes to an appointment; unset fields keep their value."""

    start: Optional[datetime] = None
    preferred_date: Optional[date] = None
    preferred_time: Optional[time] = None
    customer_name: Optional[str] = Field(None, min_length=1, max_length=200)
    customer_phone: Optional[str] = Field(None, min_length=1, max_length=50)
    customer_email: Optional[str] = Field(None, max_length=200)
    service_type: Optional[str] = Field(None, max_length=200)
    vehicle_info: Optional[str] = Field(None, max_length=200)
    notes: Optional[str] = Field(None, max_length=2000)

    DETAIL_FIELDS: ClassVar[FrozenSet[str]] = frozenset(AppointmentDetails.model_fields)

    def detail_updates(self) -> Dict[str, Any]:
        return self.model_dump(include=set(self.DETAIL_FIELDS), exclude_none=True)

    @property
    def changes_time(self) -> bool:
        return any(v is not None for v in (self.start, self.preferred_date, self.preferred_time))
