"""Calendar gateway: the only way the service talks to the shared calendar.

The booking core depends on the CalendarGateway protocol. The Google
implementation authenticates with a service account, applies a per-call
timeout and sits behind a circuit breaker. Google errors are translated:
- 404 / 410          -> NotFound
- 409 on insert/update -> SlotConflict
- anything else      -> GatewayUnavailable
"""
import json
import logging
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Protocol

import httplib2
from google.auth.exceptions import GoogleAuthError
from google.oauth2 import service_account
from google_auth_httplib2 import AuthorizedHttp
from googleapiclient.discovery import build
from googleapiclient.errors import Error as GoogleApiClientError
from googleapiclient.errors import HttpError

from repair_booking.circuit_breaker import CircuitBreaker
from repair_booking.config import Settings
from repair_booking.errors import GatewayUnavailable, NotFound, SlotConflict
from repair_booking.models import BusyInterval, parse_instant

logger = logging.getLogger(__name__)

SCOPES = [
    "https://www.googleapis.com/auth/calendar",
    "https://www.googleapis.com/auth/calendar.events",
]


@dataclass(frozen=True)
class ConnectionStatus:
    """Outcome of connect() / ensure_ready()."""
    ready: bool
    service_account_email: Optional[str] = None
    error: Optional[str] = None


class CalendarGateway(Protocol):
    """Operations the booking core needs from a calendar."""

    calendar_id: str

    def ensure_ready(self) -> ConnectionStatus: ...

    def query_free_busy(self, time_min: datetime, time_max: datetime) -> List[BusyInterval]: ...

    def insert_event(self, event: Dict[str, Any]) -> Dict[str, Any]: ...

    def get_event(self, event_id: str) -> Dict[str, Any]: ...

    def update_event(self, event_id: str, event: Dict[str, Any]) -> Dict[str, Any]: ...

    def delete_event(self, event_id: str) -> None: ...

    def list_events(self, time_min: datetime, time_max: datetime) -> List[Dict[str, Any]]: ...


class GoogleCalendarGateway:
    """Google Calendar v3 backed gateway."""

    def __init__(
        self,
        settings: Settings,
        service: Any = None,
        breaker: Optional[CircuitBreaker] = None,
    ):
        """
        Args:
            settings: Service settings (calendar id, credentials, timeout)
            service: Prebuilt Calendar API resource (tests)
            breaker: Circuit breaker; built from settings if omitted
        """
        self.settings = settings
        self.calendar_id = settings.calendar_id
        self.timezone = settings.business_hours.timezone
        self.tz = settings.business_hours.tz
        self.service: Any = service
        self.service_account_email: Optional[str] = None
        self.breaker = breaker or CircuitBreaker(
            failure_threshold=settings.circuit_failure_threshold,
            timeout=settings.circuit_reset_timeout,
            excluded_exceptions=(NotFound, SlotConflict),
        )

    def _get_credentials(self) -> service_account.Credentials:
        """Load service account credentials: inline JSON first, then key file."""
        if self.settings.service_account_json:
            info = json.loads(self.settings.service_account_json)
            return service_account.Credentials.from_service_account_info(info, scopes=SCOPES)

        key_path = Path(self.settings.service_account_key_path)
        if not key_path.exists():
            raise GatewayUnavailable(
                "Google Calendar credentials not found. Set GOOGLE_SERVICE_ACCOUNT_JSON "
                "or GOOGLE_SERVICE_ACCOUNT_KEY_PATH."
            )
        return service_account.Credentials.from_service_account_file(str(key_path), scopes=SCOPES)

    def connect(self) -> ConnectionStatus:
        """Build the Calendar API client. Never raises; reports the outcome."""
        try:
            creds = self._get_credentials()
            http = AuthorizedHttp(
                creds,
                http=httplib2.Http(timeout=self.settings.gateway_timeout_seconds),
            )
            self.service = build("calendar", "v3", http=http, cache_discovery=False)
            self.service_account_email = getattr(creds, "service_account_email", None)
        except (GatewayUnavailable, GoogleAuthError, GoogleApiClientError, ValueError, OSError) as e:
            self.service = None
            logger.error(f"Failed to initialize Google Calendar API: {e}")
            return ConnectionStatus(ready=False, error=str(e))

        logger.info(f"Google Calendar API initialized (service account: {self.service_account_email})")
        return ConnectionStatus(ready=True, service_account_email=self.service_account_email)

    def ensure_ready(self) -> ConnectionStatus:
        """Reuse the existing client or connect."""
        if self.service is not None:
            return ConnectionStatus(ready=True, service_account_email=self.service_account_email)
        return self.connect()

    def _require_service(self) -> Any:
        status = self.ensure_ready()
        if not status.ready:
            raise GatewayUnavailable(status.error or "Google Calendar not initialized")
        return self.service

    def _execute(
        self,
        operation: str,
        make_request: Callable[[Any], Any],
        event_id: Optional[str] = None,
        conflict_on_409: bool = False,
    ) -> Any:
        """Run one API request through the breaker and translate its errors."""

        def run():
            service = self._require_service()
            try:
                return make_request(service).execute()
            except HttpError as e:
                status = e.resp.status
                if status in (404, 410) and event_id is not None:
                    raise NotFound(event_id) from e
                if status == 409 and conflict_on_409:
                    raise SlotConflict("Calendar reported a scheduling conflict") from e
                logger.warning(f"Calendar {operation} failed with HTTP {status}: {e}")
                raise GatewayUnavailable(f"Calendar {operation} failed (HTTP {status})") from e
            except (GoogleAuthError, httplib2.HttpLib2Error, OSError) as e:
                logger.warning(f"Calendar {operation} failed: {e}")
                raise GatewayUnavailable(f"Calendar {operation} failed: {e}") from e

        return self.breaker.call(run)

    def query_free_busy(self, time_min: datetime, time_max: datetime) -> List[BusyInterval]:
        body = {
            "timeMin": time_min.isoformat(),
            "timeMax": time_max.isoformat(),
            "timeZone": self.timezone,
            "items": [{"id": self.calendar_id}],
        }
        response = self._execute("freebusy", lambda s: s.freebusy().query(body=body))

        calendar = response.get("calendars", {}).get(self.calendar_id, {})
        if calendar.get("errors"):
            reasons = ", ".join(err.get("reason", "unknown") for err in calendar["errors"])
            # Usually the calendar is not shared with the service account.
            raise GatewayUnavailable(f"Free/busy query rejected for calendar: {reasons}")

        return [
            BusyInterval(start=parse_instant(b["start"], self.tz), end=parse_instant(b["end"], self.tz))
            for b in calendar.get("busy", [])
        ]

    def insert_event(self, event: Dict[str, Any]) -> Dict[str, Any]:
        created = self._execute(
            "insert",
            lambda s: s.events().insert(calendarId=self.calendar_id, body=event),
            conflict_on_409=True,
        )
        logger.info(f"Created calendar event: {created.get('id')}")
        return created

    def get_event(self, event_id: str) -> Dict[str, Any]:
        return self._execute(
            "get",
            lambda s: s.events().get(calendarId=self.calendar_id, eventId=event_id),
            event_id=event_id,
        )

    def update_event(self, event_id: str, event: Dict[str, Any]) -> Dict[str, Any]:
        updated = self._execute(
            "update",
            lambda s: s.events().update(calendarId=self.calendar_id, eventId=event_id, body=event),
            event_id=event_id,
            conflict_on_409=True,
        )
        logger.info(f"Updated calendar event: {event_id}")
        return updated

    def delete_event(self, event_id: str) -> None:
        self._execute(
            "delete",
            lambda s: s.events().delete(calendarId=self.calendar_id, eventId=event_id),
            event_id=event_id,
        )
        logger.info(f"Deleted calendar event: {event_id}")

    def list_events(self, time_min: datetime, time_max: datetime) -> List[Dict[str, Any]]:
        items: List[Dict[str, Any]] = []
        page_token = None
        while True:
            response = self._execute(
                "list",
                lambda s: s.events().list(
                    calendarId=self.calendar_id,
                    timeMin=time_min.isoformat(),
                    timeMax=time_max.isoformat(),
                    singleEvents=True,
                    orderBy="startTime",
                    pageToken=page_token,
                ),
            )
            items.extend(response.get("items", []))
            page_token = response.get("nextPageToken")
            if not page_token:
                return items
