"""FastAPI dependency injection functions."""
from functools import lru_cache
from typing import Optional

from fastapi import Depends, Header, Query

from repair_booking.config import Settings, load_settings
from repair_booking.messages import pick_language
from repair_booking.orchestrator import BookingOrchestrator


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Settings are read once per process."""
    return load_settings()


@lru_cache(maxsize=1)
def get_orchestrator() -> BookingOrchestrator:
    """
    Get the booking orchestrator (cached singleton).

    Pattern: Build the calendar client once, reuse across requests.

    Returns:
        BookingOrchestrator bound to the configured Google calendar
    """
    return BookingOrchestrator.from_settings(get_settings())


def get_language(
    lang: Optional[str] = Query(None, description="Response language: sk or en"),
    accept_language: Optional[str] = Header(None),
    settings: Settings = Depends(get_settings),
) -> str:
    """Response language from ?lang=, then Accept-Language, then settings."""
    return pick_language(lang, accept_language, settings.default_language)
