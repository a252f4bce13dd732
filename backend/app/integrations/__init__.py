"""External service integrations for the practice billing backend."""

from .google_calendar_client import GoogleCalendarClient, GoogleCalendarError

__all__ = ["GoogleCalendarClient", "GoogleCalendarError"]
