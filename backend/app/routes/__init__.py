from . import (
    billing as billing,
    booking_series as booking_series,
    bookings as bookings,
    calendar_auth as calendar_auth,
    cron as cron,
    invoices as invoices,
    payments as payments,
    stripe_webhooks as stripe_webhooks,
)
