"""
Google Calendar client
Busy-interval queries (freeBusy) and event creation (events.insert)
"""
import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, Optional, Protocol

import httpx

from tutor_scheduler.auth.google_credentials import GoogleAuthError, GoogleCredentials, load_credentials
from tutor_scheduler.core import config
from tutor_scheduler.core.clock import parse_rfc3339, to_business_time
from tutor_scheduler.core.errors import BusyIntervalSourceUnavailable, CalendarServiceError
from tutor_scheduler.models.scheduling import BusyInterval, CreatedEvent, Slot

logger = logging.getLogger(__name__)

GOOGLE_CALENDAR_API = "https://www.googleapis.com/calendar/v3"
EMAIL_REMINDER_MINUTES = 24 * 60
POPUP_REMINDER_MINUTES = 30


class BusyIntervalSource(Protocol):
    async def get_busy_intervals(
        self, calendar_id: str, range_start: datetime, range_end: datetime
    ) -> list[BusyInterval]:
        ...


class CalendarEventSink(Protocol):
    async def create_event(
        self, calendar_id: str, slot: Slot, attendees: list[dict], metadata: dict
    ) -> CreatedEvent:
        ...


def extract_meeting_reference(event: dict) -> Optional[str]:
    entry_points = (event.get("conferenceData") or {}).get("entryPoints") or []
    for entry_point in entry_points:
        if entry_point.get("entryPointType") == "video" and entry_point.get("uri"):
            return entry_point["uri"]
    if entry_points and entry_points[0].get("uri"):
        return entry_points[0]["uri"]
    return event.get("hangoutLink")


class GoogleCalendarClient:
    def __init__(
        self,
        credentials: Optional[GoogleCredentials] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        base_url: str = GOOGLE_CALENDAR_API,
        timeout: float = 10.0,
    ):
        self._credentials = credentials
        self._http_client = http_client
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    @asynccontextmanager
    async def _client(self):
        if self._http_client is not None:
            yield self._http_client
            return
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            yield client

    async def _auth_headers(self, client: httpx.AsyncClient) -> dict[str, str]:
        if self._credentials is None:
            self._credentials = load_credentials()
        access_token = await self._credentials.get_access_token(client)
        return {"Authorization": f"Bearer {access_token}"}

    async def get_busy_intervals(
        self, calendar_id: str, range_start: datetime, range_end: datetime
    ) -> list[BusyInterval]:
        """
        Query freeBusy for one calendar.
        Raises BusyIntervalSourceUnavailable on any network, auth or API error.
        """
        request_body = {
            "timeMin": range_start.isoformat(),
            "timeMax": range_end.isoformat(),
            "timeZone": config.BUSINESS_TIMEZONE,
            "items": [{"id": calendar_id}],
        }

        try:
            async with self._client() as client:
                headers = await self._auth_headers(client)
                response = await client.post(f"{self.base_url}/freeBusy", headers=headers, json=request_body)
        except (httpx.HTTPError, GoogleAuthError) as exc:
            logger.error("Busy-interval query failed: %s", exc)
            raise BusyIntervalSourceUnavailable("Calendar could not be queried.") from exc

        if response.status_code != 200:
            logger.error("Busy-interval query returned %s: %s", response.status_code, response.text)
            raise BusyIntervalSourceUnavailable(f"Calendar query failed with status {response.status_code}.")

        try:
            payload = response.json()
        except ValueError as exc:
            logger.error("Busy-interval query returned a non-JSON body: %s", response.text[:200])
            raise BusyIntervalSourceUnavailable("Calendar returned an unreadable response.") from exc
        if not isinstance(payload, dict):
            raise BusyIntervalSourceUnavailable("Calendar returned an unexpected response.")

        calendars = payload.get("calendars")
        calendar = calendars.get(calendar_id) if isinstance(calendars, dict) else None
        if not isinstance(calendar, dict):
            raise BusyIntervalSourceUnavailable(f"Calendar {calendar_id} missing from freeBusy response.")
        if calendar.get("errors"):
            reasons = ", ".join(error.get("reason", "unknown") for error in calendar["errors"])
            raise BusyIntervalSourceUnavailable(f"Calendar {calendar_id} reported errors: {reasons}.")

        busy_intervals: list[BusyInterval] = []
        for busy in calendar.get("busy") or []:
            try:
                start = to_business_time(parse_rfc3339(busy["start"]))
                end = to_business_time(parse_rfc3339(busy["end"]))
            except (KeyError, TypeError, ValueError) as exc:
                raise BusyIntervalSourceUnavailable("Calendar returned a malformed busy interval.") from exc
            if end > start:
                busy_intervals.append(BusyInterval(start, end))

        logger.debug("Fetched %d busy intervals for %s.", len(busy_intervals), calendar_id)
        return busy_intervals

    def build_event_body(self, slot: Slot, attendees: list[dict], metadata: dict) -> dict[str, Any]:
        event_data: dict[str, Any] = {
            "summary": metadata.get("summary", "Consultation"),
            "description": metadata.get("description", ""),
            "start": {"dateTime": slot.start.isoformat(), "timeZone": config.BUSINESS_TIMEZONE},
            "end": {"dateTime": slot.end.isoformat(), "timeZone": config.BUSINESS_TIMEZONE},
            "attendees": attendees,
            "reminders": {
                "useDefault": False,
                "overrides": [
                    {"method": "email", "minutes": EMAIL_REMINDER_MINUTES},
                    {"method": "popup", "minutes": POPUP_REMINDER_MINUTES},
                ],
            },
        }
        if metadata.get("conference_request_id"):
            event_data["conferenceData"] = {
                "createRequest": {
                    "requestId": metadata["conference_request_id"],
                    "conferenceSolutionKey": {"type": "hangoutsMeet"},
                }
            }
        return event_data

    async def create_event(
        self, calendar_id: str, slot: Slot, attendees: list[dict], metadata: dict
    ) -> CreatedEvent:
        """
        Insert one event. Never retried here: a blind retry can duplicate the event.
        """
        event_data = self.build_event_body(slot, attendees, metadata)
        params = {"sendUpdates": "all"}
        if "conferenceData" in event_data:
            params["conferenceDataVersion"] = "1"

        try:
            async with self._client() as client:
                headers = await self._auth_headers(client)
                response = await client.post(
                    f"{self.base_url}/calendars/{calendar_id}/events",
                    headers=headers,
                    params=params,
                    json=event_data,
                )
        except (httpx.HTTPError, GoogleAuthError) as exc:
            logger.error("Failed to create calendar event: %s", exc)
            raise CalendarServiceError("Calendar event could not be created.") from exc

        if response.status_code not in (200, 201):
            logger.error("Failed to create calendar event (%s): %s", response.status_code, response.text)
            raise CalendarServiceError(f"Calendar event creation failed with status {response.status_code}.")

        try:
            event = response.json()
        except ValueError as exc:
            logger.error("Event insert returned a non-JSON body; the event may have been created: %s", response.text[:200])
            raise CalendarServiceError("Calendar service returned an unreadable response.") from exc
        event_id = event.get("id") if isinstance(event, dict) else None
        if not event_id:
            raise CalendarServiceError("Calendar service returned an event without an id.")

        logger.info("Calendar event created: %s", event_id)
        return CreatedEvent(event_id=event_id, meeting_reference=extract_meeting_reference(event))


calendar_client = GoogleCalendarClient(
    timeout=max(config.BUSY_SOURCE_TIMEOUT_SECONDS, config.CALENDAR_EVENT_TIMEOUT_SECONDS)
)


def get_calendar_client() -> GoogleCalendarClient:
    return calendar_client
