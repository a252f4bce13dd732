"""Minimal Google OAuth + Calendar REST client for booking events."""

from __future__ import annotations

from datetime import datetime
import json
import logging
from typing import Any, Dict, List, Optional
from urllib.parse import urlencode
from uuid import uuid4

import httpx
from pydantic import SecretStr

from ..core.constants import (
    GOOGLE_CALENDAR_API_BASE,
    GOOGLE_CALENDAR_SCOPES,
    GOOGLE_OAUTH_AUTH_URL,
    GOOGLE_OAUTH_TOKEN_URL,
)

logger = logging.getLogger(__name__)

# Google Calendar colour ids
PENDING_COLOR_ID = "2"
CONFIRMED_COLOR_ID = "10"
CANCELLED_COLOR_ID = "8"

_BYDAY = ("SU", "MO", "TU", "WE", "TH", "FR", "SA")


class GoogleCalendarError(RuntimeError):
    """Raised when Google OAuth or Calendar responds with an error."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        *,
        error_body: Any | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.error_body = error_body


def conference_request_id(prefix: str = "booking") -> str:
    return f"{prefix}-{uuid4().hex[:16]}"


def extract_meet_link(event: Dict[str, Any]) -> Optional[str]:
    entry_points = (event.get("conferenceData") or {}).get("entryPoints") or []
    for entry in entry_points:
        if entry.get("entryPointType") == "video":
            return entry.get("uri")
    return event.get("hangoutLink")


def _event_time(value: datetime) -> Dict[str, str]:
    return {"dateTime": value.isoformat(), "timeZone": "UTC"}


def build_pending_event(
    *,
    client_name: str,
    practitioner_email: str,
    start: datetime,
    end: datetime,
    location: Optional[str] = None,
) -> Dict[str, Any]:
    """Placeholder holding the slot while payment is outstanding. Only the practitioner attends."""
    body: Dict[str, Any] = {
        "summary": f"{client_name} - Pending",
        "description": "Pending payment confirmation. This appointment is not yet confirmed.",
        "start": _event_time(start),
        "end": _event_time(end),
        "colorId": PENDING_COLOR_ID,
        "attendees": [{"email": practitioner_email, "responseStatus": "accepted"}],
        "guestsCanModify": False,
        "guestsCanInviteOthers": False,
        "guestsCanSeeOtherGuests": False,
    }
    if location:
        body["location"] = location
    return body


def build_confirmed_event(
    *,
    client_name: str,
    client_email: Optional[str],
    practitioner_name: str,
    practitioner_email: str,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    location: Optional[str] = None,
    include_meet: bool = True,
    notes: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Full appointment body with the client invited.

    Without ``start``/``end`` the body is a patch that keeps the event's times.
    """
    attendees: List[Dict[str, str]] = [{"email": practitioner_email, "responseStatus": "accepted"}]
    if client_email:
        attendees.append({"email": client_email, "responseStatus": "needsAction"})
    description = "Consultation appointment confirmed."
    if notes:
        description = f"{description}\n\nNotes: {notes}"
    body: Dict[str, Any] = {
        "summary": f"{client_name} - {practitioner_name}",
        "description": description,
        "colorId": CONFIRMED_COLOR_ID,
        "attendees": attendees,
        "guestsCanModify": False,
        "guestsCanInviteOthers": False,
        "guestsCanSeeOtherGuests": False,
    }
    if start is not None and end is not None:
        body["start"] = _event_time(start)
        body["end"] = _event_time(end)
    if location:
        body["location"] = location
    if include_meet:
        body["conferenceData"] = {
            "createRequest": {
                "requestId": conference_request_id("confirmed"),
                "conferenceSolutionKey": {"type": "hangoutsMeet"},
            }
        }
    return body


def build_cancelled_patch(current: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "summary": f"CANCELLED - {current.get('summary') or ''}",
        "description": (
            "This appointment has been cancelled.\n\n"
            f"Original description: {current.get('description') or 'No description'}"
        ),
        "status": "cancelled",
        "colorId": CANCELLED_COLOR_ID,
    }


def build_recurring_master_event(
    *,
    client_name: str,
    client_email: Optional[str],
    practitioner_name: Optional[str],
    timezone: str,
    dtstart_local: str,
    dtend_local: str,
    interval_weeks: int,
    by_weekday: int,
    mode: Optional[str],
    location_text: Optional[str] = None,
) -> Dict[str, Any]:
    """Weekly RRULE master event. Wall-clock times are interpreted in ``timezone``."""
    in_person = mode == "in_person"
    label = practitioner_name or ("Consultation" if in_person else "Consultation (Online)")
    body: Dict[str, Any] = {
        "summary": f"{client_name} - {label}",
        "description": "",
        "start": {"dateTime": dtstart_local, "timeZone": timezone},
        "end": {"dateTime": dtend_local, "timeZone": timezone},
        "recurrence": [f"RRULE:FREQ=WEEKLY;INTERVAL={interval_weeks};BYDAY={_BYDAY[by_weekday % 7]}"],
        "attendees": [{"email": client_email}] if client_email else [],
    }
    if in_person:
        if location_text:
            body["location"] = location_text
    else:
        body["conferenceData"] = {
            "createRequest": {
                "requestId": conference_request_id("series"),
                "conferenceSolutionKey": {"type": "hangoutsMeet"},
            }
        }
    return body


class GoogleCalendarClient:
    """Thin client for the Google OAuth token endpoint and Calendar v3 events API."""

    def __init__(
        self,
        *,
        client_id: str,
        client_secret: str | SecretStr,
        redirect_uri: str,
        api_base: str = GOOGLE_CALENDAR_API_BASE,
        timeout: float = 15.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        secret_value = (
            client_secret.get_secret_value() if isinstance(client_secret, SecretStr) else client_secret
        )
        self._client_id = client_id
        self._client_secret = secret_value
        self._redirect_uri = redirect_uri
        self._api_base = api_base.rstrip("/")
        self._timeout = timeout
        self._transport = transport

    # ------------------------------------------------------------------ OAuth

    def build_authorization_url(self, state: str) -> str:
        """Consent URL requesting offline access so a refresh token is issued."""
        if not self._client_id:
            raise ValueError("Google client id must be configured")
        params = {
            "client_id": self._client_id,
            "redirect_uri": self._redirect_uri,
            "response_type": "code",
            "scope": " ".join(GOOGLE_CALENDAR_SCOPES),
            "access_type": "offline",
            "prompt": "consent",
            "include_granted_scopes": "true",
            "state": state,
        }
        return f"{GOOGLE_OAUTH_AUTH_URL}?{urlencode(params)}"

    def exchange_code(self, code: str) -> Dict[str, Any]:
        """Trade an authorization code for access/refresh tokens."""
        if not code:
            raise ValueError("code must be provided")
        return self._token_request(
            {
                "code": code,
                "client_id": self._client_id,
                "client_secret": self._client_secret,
                "redirect_uri": self._redirect_uri,
                "grant_type": "authorization_code",
            }
        )

    def refresh_access_token(self, refresh_token: str) -> Dict[str, Any]:
        if not refresh_token:
            raise ValueError("refresh_token must be provided")
        return self._token_request(
            {
                "refresh_token": refresh_token,
                "client_id": self._client_id,
                "client_secret": self._client_secret,
                "grant_type": "refresh_token",
            }
        )

    def _token_request(self, form: Dict[str, str]) -> Dict[str, Any]:
        with httpx.Client(timeout=self._timeout, transport=self._transport) as client:
            try:
                response = client.post(GOOGLE_OAUTH_TOKEN_URL, data=form)
                response.raise_for_status()
            except httpx.HTTPStatusError as exc:
                raise self._error_from_response(exc, "POST", "/token") from exc
            except httpx.HTTPError as exc:
                logger.error("Google OAuth transport error: %s", exc)
                raise GoogleCalendarError(f"Google OAuth request failed: {exc}") from exc
            return response.json()

    # ----------------------------------------------------------------- Events

    def get_event(self, access_token: str, calendar_id: str, event_id: str) -> Dict[str, Any]:
        return self.request("GET", access_token, f"/calendars/{calendar_id}/events/{event_id}")

    def insert_event(
        self,
        access_token: str,
        calendar_id: str,
        body: Dict[str, Any],
        *,
        send_updates: str = "none",
    ) -> Dict[str, Any]:
        params: Dict[str, Any] = {"sendUpdates": send_updates}
        if "conferenceData" in body:
            params["conferenceDataVersion"] = 1
        return self.request(
            "POST", access_token, f"/calendars/{calendar_id}/events", json_body=body, params=params
        )

    def patch_event(
        self,
        access_token: str,
        calendar_id: str,
        event_id: str,
        body: Dict[str, Any],
        *,
        send_updates: str = "all",
    ) -> Dict[str, Any]:
        params: Dict[str, Any] = {"sendUpdates": send_updates}
        if "conferenceData" in body:
            params["conferenceDataVersion"] = 1
        return self.request(
            "PATCH",
            access_token,
            f"/calendars/{calendar_id}/events/{event_id}",
            json_body=body,
            params=params,
        )

    def delete_event(
        self,
        access_token: str,
        calendar_id: str,
        event_id: str,
        *,
        send_updates: str = "none",
    ) -> None:
        self.request(
            "DELETE",
            access_token,
            f"/calendars/{calendar_id}/events/{event_id}",
            params={"sendUpdates": send_updates},
        )

    def request(
        self,
        method: str,
        access_token: str,
        path: str,
        *,
        json_body: Dict[str, Any] | None = None,
        params: Dict[str, Any] | None = None,
    ) -> Dict[str, Any]:
        """Perform a Calendar API request and return the parsed JSON payload."""

        url = f"{self._api_base}{path}"
        with httpx.Client(
            timeout=self._timeout,
            transport=self._transport,
            headers={"Accept": "application/json", "Authorization": f"Bearer {access_token}"},
        ) as client:
            try:
                response = client.request(method, url, json=json_body, params=params)
                response.raise_for_status()
            except httpx.HTTPStatusError as exc:
                raise self._error_from_response(exc, method, path) from exc
            except httpx.HTTPError as exc:
                logger.error("Google Calendar transport error for %s %s: %s", method, path, exc)
                raise GoogleCalendarError(f"Google Calendar request failed: {exc}") from exc

            if response.status_code == 204 or not response.content:
                return {}
            return response.json()

    @staticmethod
    def _error_from_response(exc: httpx.HTTPStatusError, method: str, path: str) -> GoogleCalendarError:
        status = exc.response.status_code
        try:
            error_payload: Any = exc.response.json()
        except json.JSONDecodeError:
            error_payload = exc.response.text
        logger.error("Google API error %s for %s %s: %s", status, method, path, error_payload)
        return GoogleCalendarError(
            f"Google API request failed with status {status}",
            status_code=status,
            error_body=error_payload,
        )


__all__ = [
    "GoogleCalendarClient",
    "GoogleCalendarError",
    "build_cancelled_patch",
    "build_confirmed_event",
    "build_pending_event",
    "build_recurring_master_event",
    "extract_meet_link",
]
