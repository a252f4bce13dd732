# backend/app/routes/calendar_auth.py
"""
Google Calendar OAuth routes

The practitioner is sent to Google's consent screen with a short-lived
signed state carrying their id and where they started (settings page or
onboarding). The callback stores the encrypted tokens and redirects back.

Endpoints:
    GET /google-calendar - Start the consent flow (redirect)
    GET /callback/calendar - OAuth callback (redirect)
"""

import asyncio
import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.responses import RedirectResponse
import jwt

from ..api.dependencies import get_calendar_sync_service, get_current_user
from ..auth import create_oauth_state, decode_oauth_state
from ..core.config import settings
from ..core.exceptions import DomainException
from ..integrations.google_calendar_client import GoogleCalendarError
from ..models.profile import Profile
from ..services.calendar_sync_service import CalendarSyncService

logger = logging.getLogger(__name__)

router = APIRouter(tags=["calendar-auth"])

SOURCE_SETTINGS = "settings"
SOURCE_ONBOARDING = "onboarding"


def _callback_path(source: str, connected: bool, full_access: bool = True) -> str:
    if source == SOURCE_ONBOARDING:
        if not connected:
            return "/onboarding?step=2&calendar_connected=false"
        if not full_access:
            return "/onboarding?step=2&calendar_connected=partial"
        return "/onboarding?step=3&calendar_connected=true"
    return f"/settings?tab=calendar&calendar_connected={'true' if connected and full_access else 'false'}"


def _redirect(path: str) -> RedirectResponse:
    return RedirectResponse(url=f"{settings.frontend_url}{path}", status_code=status.HTTP_302_FOUND)


@router.get("/google-calendar")
async def start_google_calendar_auth(
    source: str = Query(SOURCE_SETTINGS),
    current_user: Profile = Depends(get_current_user),
    calendar_service: CalendarSyncService = Depends(get_calendar_sync_service),
) -> RedirectResponse:
    state = create_oauth_state(current_user.id, source if source == SOURCE_ONBOARDING else SOURCE_SETTINGS)
    try:
        url = calendar_service.client.build_authorization_url(state)
    except ValueError as e:
        logger.error(f"Google Calendar OAuth not configured: {str(e)}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Google Calendar is not configured"
        )
    return RedirectResponse(url=url, status_code=status.HTTP_302_FOUND)


@router.get("/callback/calendar")
async def google_calendar_callback(
    code: Optional[str] = Query(None),
    state: Optional[str] = Query(None),
    error: Optional[str] = Query(None),
    calendar_service: CalendarSyncService = Depends(get_calendar_sync_service),
) -> RedirectResponse:
    """
    Store tokens for the practitioner named in ``state``.

    A consent that grants fewer scopes than requested is reported as a
    partial connection on the onboarding flow.
    """
    if not state:
        return _redirect(_callback_path(SOURCE_SETTINGS, connected=False))
    try:
        payload = decode_oauth_state(state)
    except jwt.PyJWTError as e:
        logger.warning(f"Rejected Google OAuth state: {str(e)}")
        return _redirect(_callback_path(SOURCE_SETTINGS, connected=False))

    source = payload.get("source") or SOURCE_SETTINGS
    if error or not code:
        logger.info(f"Google consent not granted: {error}")
        return _redirect(_callback_path(source, connected=False))

    try:
        full_access = await asyncio.to_thread(calendar_service.save_oauth_tokens, payload["sub"], code)
    except (GoogleCalendarError, DomainException) as e:
        logger.error(f"Google Calendar token exchange failed: {str(e)}")
        return _redirect(_callback_path(source, connected=False))

    if full_access:
        try:
            result = await asyncio.to_thread(calendar_service.reconcile_missing_events, payload["sub"])
            logger.info(f"Calendar reconciliation after connect: {result}")
        except DomainException as e:
            logger.warning(f"Calendar reconciliation failed: {e.message}")
    return _redirect(_callback_path(source, connected=True, full_access=full_access))
