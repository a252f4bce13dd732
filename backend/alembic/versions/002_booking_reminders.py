# backend/alembic/versions/002_booking_reminders.py
"""Booking reminder tracking

Revision ID: 002_booking_reminders
Revises: 001_initial_schema
Create Date: 2026-10-19 00:00:00.000000

Adds bookings.reminder_sent_at so the daily reminder run skips bookings
already reminded.
"""
from typing import Sequence, Union

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "002_booking_reminders"
down_revision: Union[str, None] = "001_initial_schema"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.add_column("bookings", sa.Column("reminder_sent_at", sa.DateTime(timezone=True), nullable=True))


def downgrade() -> None:
    op.drop_column("bookings", "reminder_sent_at")
