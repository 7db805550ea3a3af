"""
HTTP client for the Calendar Agent.

The Calendar Agent runs separately, fronts the Google and Microsoft
calendars, and exposes a REST API for:
- Finding available slots on a date
- Creating appointments

Reads are retried on transient failures. Appointment creation is sent
exactly once per call.
"""

import logging
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Optional

import httpx

from voice_agent.config import get_settings
from voice_agent.core.intelligence.slots.datetime_parser import format_date, is_weekend
from voice_agent.core.intelligence.slots.types import TimeSlot
from voice_agent.infra.http import request_with_retry

logger = logging.getLogger(__name__)


class CalendarClientError(Exception):
    """Raised when the Calendar Agent answers with an unusable payload."""


@dataclass
class AvailabilityResult:
    """Open slots on one date."""

    success: bool
    date: Optional[str] = None
    available_slots: list[TimeSlot] = field(default_factory=list)
    message: Optional[str] = None


@dataclass
class NextAvailableResult:
    """First business day with open slots, searching forward from a date."""

    success: bool
    date: Optional[str] = None
    formatted_date: Optional[str] = None
    available_slots: list[TimeSlot] = field(default_factory=list)
    days_from_start: Optional[int] = None
    message: Optional[str] = None


@dataclass
class BookingResult:
    """Result of a booking attempt."""

    success: bool
    event_id: Optional[str] = None
    event_link: Optional[str] = None
    message: Optional[str] = None
    error_code: Optional[str] = None


def _parse_slots(data) -> list[TimeSlot]:
    """Pull slot dicts out of a response body."""
    if isinstance(data, list):
        raw = data
    elif isinstance(data, dict):
        raw = data.get("available_slots", data.get("availableSlots", data.get("slots", [])))
    else:
        raise CalendarClientError(f"Unexpected availability payload: {type(data).__name__}")

    if not isinstance(raw, list):
        raise CalendarClientError("Availability payload has no slot list")

    slots = [TimeSlot.from_dict(s) for s in raw if isinstance(s, dict)]
    return [slot for slot in slots if slot.start]


class CalendarAgentClient:
    """
    HTTP client for Calendar Agent API.

    Calendar Agent exposes:
    - POST /api/slots/find - Open slots on a date
    - POST /api/appointments - Create appointment
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        max_attempts: Optional[int] = None,
    ):
        """Initialize client.

        Args:
            base_url: Calendar Agent base URL (defaults to settings)
            timeout: Request timeout in seconds
            max_attempts: Attempts for read requests
        """
        settings = get_settings()
        self.base_url = base_url or settings.calendar_agent_url
        self.timeout = timeout or settings.calendar_timeout
        self.max_attempts = max_attempts or settings.calendar_max_retries
        self.duration_minutes = settings.appointment_duration_minutes
        self.search_horizon_days = settings.slot_search_horizon_days
        self._client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
            )
        return self._client

    async def close(self) -> None:
        """Close HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    def _headers(self, tenant_id: Optional[str]) -> dict:
        return {"X-Tenant-ID": tenant_id} if tenant_id else {}

    # === Availability ===

    async def find_available_slots(
        self,
        date_iso: str,
        calendar_type: Optional[str] = None,
        tenant_id: Optional[str] = None,
    ) -> AvailabilityResult:
        """Find open slots on a date.

        Args:
            date_iso: Date (YYYY-MM-DD)
            calendar_type: "google" or "microsoft" (agent default when None)
            tenant_id: Tenant identifier

        Returns:
            AvailabilityResult; success=False with no slots on failure
        """
        client = await self._get_client()

        payload: dict = {
            "date": date_iso,
            "duration_minutes": self.duration_minutes,
        }
        if calendar_type:
            payload["calendar"] = calendar_type

        try:
            response = await request_with_retry(
                client,
                "POST",
                "/api/slots/find",
                max_attempts=self.max_attempts,
                json=payload,
                headers=self._headers(tenant_id),
            )
            response.raise_for_status()

            slots = _parse_slots(response.json())
            logger.info(f"Found {len(slots)} available slots on {date_iso}")
            return AvailabilityResult(success=True, date=date_iso, available_slots=slots)

        except (httpx.HTTPError, CalendarClientError, ValueError) as e:
            logger.error(f"Failed to find slots for {date_iso}: {e}")
            return AvailabilityResult(success=False, date=date_iso, message=str(e))

    async def find_next_available_slot(
        self,
        start_date: str,
        calendar_type: Optional[str] = None,
        tenant_id: Optional[str] = None,
        days_to_search: Optional[int] = None,
    ) -> NextAvailableResult:
        """Find the first business day with open slots, starting at start_date.

        Weekends are skipped without a request. The search stops at the first
        failed read.

        Args:
            start_date: First date to consider (YYYY-MM-DD)
            calendar_type: "google" or "microsoft"
            tenant_id: Tenant identifier
            days_to_search: Search horizon in calendar days

        Returns:
            NextAvailableResult; success=False when nothing is open in the horizon
            or the Calendar Agent is unreachable ("Calendar unavailable")
        """
        horizon = days_to_search or self.search_horizon_days
        start = date.fromisoformat(start_date)

        for offset in range(horizon):
            candidate = start + timedelta(days=offset)
            if is_weekend(candidate):
                continue

            result = await self.find_available_slots(candidate.isoformat(), calendar_type, tenant_id)
            if not result.success:
                logger.warning(f"Stopping slot search at {candidate.isoformat()}: calendar unavailable")
                return NextAvailableResult(success=False, message="Calendar unavailable")
            if result.available_slots:
                return NextAvailableResult(
                    success=True,
                    date=candidate.isoformat(),
                    formatted_date=format_date(candidate),
                    available_slots=result.available_slots,
                    days_from_start=offset,
                )

        logger.info(f"No availability within {horizon} days of {start_date}")
        return NextAvailableResult(
            success=False,
            message=f"No available slots found in the next {horizon} days.",
        )

    # === Appointments ===

    async def create_appointment(
        self,
        details: dict,
        customer_email: str,
        customer_name: str,
        calendar_type: Optional[str] = None,
        tenant_id: Optional[str] = None,
    ) -> BookingResult:
        """Create an appointment. Never retried.

        Args:
            details: {title, description, date, time, duration_minutes}
            customer_email: Caller's email
            customer_name: Caller's name
            calendar_type: "google" or "microsoft"
            tenant_id: Tenant identifier

        Returns:
            BookingResult with success status
        """
        client = await self._get_client()

        payload: dict = {
            "appointment": {
                "title": details.get("title"),
                "description": details.get("description"),
                "date": details.get("date"),
                "time": details.get("time"),
                "duration_minutes": details.get("duration_minutes", self.duration_minutes),
            },
            "customer": {"name": customer_name, "email": customer_email},
        }
        if calendar_type:
            payload["calendar"] = calendar_type

        try:
            response = await client.post(
                "/api/appointments",
                json=payload,
                headers=self._headers(tenant_id),
            )

            data = response.json()
            if not isinstance(data, dict):
                raise CalendarClientError(f"Unexpected booking payload: {type(data).__name__}")

            if response.status_code in (200, 201):
                logger.info(f"Appointment created on {details.get('date')} at {details.get('time')}")
                return BookingResult(
                    success=True,
                    event_id=data.get("event_id", data.get("eventId")),
                    event_link=data.get("event_link", data.get("eventLink")),
                    message=data.get("message", "Appointment created"),
                )
            else:
                logger.warning(f"Appointment rejected ({response.status_code}): {data}")
                return BookingResult(
                    success=False,
                    error_code=data.get("error_code", "booking_failed"),
                    message=data.get("message", data.get("error", "Booking failed")),
                )

        except CalendarClientError as e:
            logger.error(f"Failed to create appointment: {e}")
            return BookingResult(
                success=False,
                error_code="invalid_response",
                message="Scheduling system returned an unexpected response",
            )

        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"Failed to create appointment: {e}")
            return BookingResult(
                success=False,
                error_code="connection_error",
                message="Unable to connect to scheduling system",
            )

    async def health_check(self) -> bool:
        """Check Calendar Agent reachability."""
        client = await self._get_client()
        try:
            response = await client.get("/health")
            return response.status_code == 200
        except httpx.HTTPError as e:
            logger.warning(f"Calendar Agent health check failed: {e}")
            return False


# Singleton
_client: Optional[CalendarAgentClient] = None


def get_calendar_client() -> CalendarAgentClient:
    """Get singleton CalendarAgentClient."""
    global _client
    if _client is None:
        _client = CalendarAgentClient()
    return _client
