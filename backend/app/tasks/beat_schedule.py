# backend/app/tasks/beat_schedule.py
"""
Celery Beat schedule for the billing jobs.

Times are in the Celery timezone (the practice's local time).
"""

from typing import Any, Dict

from celery.schedules import crontab

BILLING_BEAT_SCHEDULE: Dict[str, Dict[str, Any]] = {
    # Consultation bills due today, sent before the working day starts
    "process-consultation-billing": {
        "task": "app.tasks.billing_tasks.process_consultation_billing",
        "schedule": crontab(hour=8, minute=0),
    },
    "send-scheduled-bills": {
        "task": "app.tasks.billing_tasks.send_scheduled_bills",
        "schedule": crontab(minute=5),
    },
    # Previous month consolidated on the 1st
    "run-monthly-invoicing": {
        "task": "app.tasks.billing_tasks.run_monthly_invoicing",
        "schedule": crontab(day_of_month=1, hour=6, minute=0),
    },
    "extend-booking-series": {
        "task": "app.tasks.billing_tasks.extend_booking_series",
        "schedule": crontab(hour=3, minute=0),
    },
    # Same-day reminders, early enough for morning appointments
    "send-appointment-reminders": {
        "task": "app.tasks.billing_tasks.send_appointment_reminders",
        "schedule": crontab(hour=7, minute=0),
    },
}


def get_beat_schedule() -> Dict[str, Dict[str, Any]]:
    return dict(BILLING_BEAT_SCHEDULE)
