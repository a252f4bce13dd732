# backend/app/core/constants.py
"""
Shared constants for the practice billing backend.
"""

BRAND_NAME = "Practice Billing"

API_TITLE = f"{BRAND_NAME} API"
API_DESCRIPTION = "Bookings, billing, invoicing and payments for independent practitioners"
API_VERSION = "0.1.0"

DEFAULT_CURRENCY = "EUR"
SUPPORTED_CURRENCIES = frozenset({"EUR"})
DEFAULT_TIMEZONE = "Europe/Madrid"

# Billing schedule
DEFAULT_MAX_RETRIES = 3
PAST_DUE_GRACE_HOURS = 2
PAYMENT_REMINDER_OFFSET_DAYS = 1
OVERDUE_NOTICE_OFFSET_DAYS = 7

# Scheduled bill emails
SCHEDULED_BILLS_BATCH_SIZE = 25
EMAIL_LOCK_TIMEOUT_MINUTES = 15

# Series materialization
SERIES_DEFAULT_MAX_OCCURRENCES = 2
SERIES_EXTEND_HORIZON_WEEKS = 4
SERIES_FAST_FORWARD_LIMIT_WEEKS = 104

# Google Calendar
GOOGLE_OAUTH_AUTH_URL = "https://accounts.google.com/o/oauth2/v2/auth"
GOOGLE_OAUTH_TOKEN_URL = "https://oauth2.googleapis.com/token"
GOOGLE_CALENDAR_API_BASE = "https://www.googleapis.com/calendar/v3"
GOOGLE_CALENDAR_SCOPES = (
    "https://www.googleapis.com/auth/calendar.events",
    "https://www.googleapis.com/auth/userinfo.email",
)
CALENDAR_TOKEN_REFRESH_MARGIN_MINUTES = 5
# Reconciliation gives up when more bookings than this lack an event
CALENDAR_RECONCILE_LIMIT = 50

# Stripe
STRIPE_TIMEOUT_SECONDS = 8
STRIPE_MAX_NETWORK_RETRIES = 1

# Copy shown in API responses
CALENDAR_RESCHEDULE_WARNING = (
    "Calendar event could not be updated. Please check your Google Calendar manually."
)
