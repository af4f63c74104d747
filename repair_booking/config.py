"""Configuration for the repair shop booking service.

Business rules (hours, slot length, buffer, working days) live in
BusinessHoursConfig; service wiring (calendar, credentials, timeouts) in
Settings. Both are immutable for the lifetime of the process.
"""
import os
from datetime import timedelta
from typing import FrozenSet, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

TIMEZONE = "Europe/Bratislava"

BUSINESS_HOURS = {
    "start": 8,   # 8:00
    "end": 17,    # 17:00
}
APPOINTMENT_DURATION_MINUTES = 60
BUFFER_MINUTES = 15
WORKING_DAYS = frozenset({0, 1, 2, 3, 4})  # Monday..Friday (date.weekday())

SEARCH_DAYS = 14
GATEWAY_TIMEOUT_SECONDS = 15
FALLBACK_PHONE = "+421910223761"

DAY_NAMES = ["mon", "tue", "wed", "thu", "fri", "sat", "sun"]


class BusinessHoursConfig(BaseModel):
    """Opening hours and slot geometry of the shop."""

    model_config = ConfigDict(frozen=True)

    start_hour: int = Field(default=BUSINESS_HOURS["start"], ge=0, le=23)
    end_hour: int = Field(default=BUSINESS_HOURS["end"], ge=1, le=24)
    appointment_duration_minutes: int = Field(default=APPOINTMENT_DURATION_MINUTES, gt=0, le=24 * 60)
    buffer_minutes: int = Field(default=BUFFER_MINUTES, ge=0)
    working_days: FrozenSet[int] = Field(default=WORKING_DAYS)
    timezone: str = TIMEZONE

    @field_validator("working_days")
    @classmethod
    def validate_working_days(cls, v):
        if any(day < 0 or day > 6 for day in v):
            raise ValueError("working_days must contain weekday numbers 0 (Monday) to 6 (Sunday)")
        return frozenset(v)

    @field_validator("timezone")
    @classmethod
    def validate_timezone(cls, v):
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ValueError(f"Unknown timezone: {v}") from e
        return v

    @model_validator(mode="after")
    def check_hours_order(self):
        if self.start_hour >= self.end_hour:
            raise ValueError("start_hour must be before end_hour")
        return self

    @property
    def tz(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)

    @property
    def duration(self) -> timedelta:
        return timedelta(minutes=self.appointment_duration_minutes)

    @property
    def stride(self) -> timedelta:
        """Distance between two consecutive candidate slot starts."""
        return timedelta(minutes=self.appointment_duration_minutes + self.buffer_minutes)


class Settings(BaseModel):
    """Service-level settings loaded from the environment."""

    model_config = ConfigDict(frozen=True)

    calendar_id: str = "primary"
    service_account_json: Optional[str] = None
    service_account_key_path: str = "google-credentials.json"
    search_days: int = Field(default=SEARCH_DAYS, ge=1, le=366)
    gateway_timeout_seconds: float = Field(default=GATEWAY_TIMEOUT_SECONDS, gt=0)
    circuit_failure_threshold: int = Field(default=5, ge=1)
    circuit_reset_timeout: float = Field(default=60, gt=0)
    fallback_phone: str = FALLBACK_PHONE
    default_language: str = "sk"
    log_level: str = "INFO"
    business_hours: BusinessHoursConfig = Field(default_factory=BusinessHoursConfig)


def _parse_working_days(raw: str) -> FrozenSet[int]:
    # WORKING_DAYS=mon,tue,wed,thu,fri  or  WORKING_DAYS=0,1,2,3,4
    days = set()
    for part in raw.split(","):
        part = part.strip().lower()
        if not part:
            continue
        if part.isdigit():
            days.add(int(part))
        elif part[:3] in DAY_NAMES:
            days.add(DAY_NAMES.index(part[:3]))
        else:
            raise ValueError(f"Invalid WORKING_DAYS value: {part!r}")
    if not days:
        raise ValueError("WORKING_DAYS is empty. Provide at least one working day.")
    return frozenset(days)


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError as e:
        raise ValueError(f"Invalid integer for {name}: {raw!r}") from e


def _float_env(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError as e:
        raise ValueError(f"Invalid number for {name}: {raw!r}") from e


def load_settings(dotenv_path: Optional[str] = None) -> Settings:
    """
    Build Settings from environment variables (and .env if present).

    Args:
        dotenv_path: Explicit .env file (tests); defaults to .env lookup

    Returns:
        Settings instance

    Raises:
        ValueError: If a variable is malformed
    """
    load_dotenv(dotenv_path=dotenv_path, override=False)

    working_days_raw = os.getenv("WORKING_DAYS")
    business_hours = BusinessHoursConfig(
        start_hour=_int_env("BUSINESS_START_HOUR", BUSINESS_HOURS["start"]),
        end_hour=_int_env("BUSINESS_END_HOUR", BUSINESS_HOURS["end"]),
        appointment_duration_minutes=_int_env("APPOINTMENT_DURATION_MINUTES", APPOINTMENT_DURATION_MINUTES),
        buffer_minutes=_int_env("BUFFER_MINUTES", BUFFER_MINUTES),
        working_days=_parse_working_days(working_days_raw) if working_days_raw else WORKING_DAYS,
        timezone=os.getenv("BUSINESS_TIMEZONE", TIMEZONE),
    )

    return Settings(
        calendar_id=os.getenv("GOOGLE_CALENDAR_ID", "primary"),
        service_account_json=os.getenv("GOOGLE_SERVICE_ACCOUNT_JSON") or None,
        service_account_key_path=os.getenv("GOOGLE_SERVICE_ACCOUNT_KEY_PATH", "google-credentials.json"),
        search_days=_int_env("SEARCH_DAYS", SEARCH_DAYS),
        gateway_timeout_seconds=_float_env("GATEWAY_TIMEOUT_SECONDS", GATEWAY_TIMEOUT_SECONDS),
        circuit_failure_threshold=_int_env("CIRCUIT_FAILURE_THRESHOLD", 5),
        circuit_reset_timeout=_float_env("CIRCUIT_RESET_TIMEOUT", 60),
        fallback_phone=os.getenv("FALLBACK_PHONE", FALLBACK_PHONE),
        default_language=os.getenv("DEFAULT_LANGUAGE", "sk"),
        log_level=os.getenv("LOG_LEVEL", "INFO"),
        business_hours=business_hours,
    )
