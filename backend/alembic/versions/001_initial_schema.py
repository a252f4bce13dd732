# backend/alembic/versions/001_initial_schema.py
"""Initial schema - practice billing

Revision ID: 001_initial_schema
Revises:
Create Date: 2026-03-02 00:00:00.000000

Creates profiles, clients, bookings and recurring series, billing settings
and the billing schedule queue, bills, invoices with their numbering
counters, Stripe payment mirrors and Google Calendar tables.

Status columns are VARCHAR; allowed values live in app.core.enums.
"""
from typing import Sequence, Union

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "001_initial_schema"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _money(name: str, nullable: bool = False, **kwargs) -> sa.Column:
    return sa.Column(name, sa.Numeric(10, 2), nullable=nullable, **kwargs)


def _timestamps() -> list:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    ]


def upgrade() -> None:
    """Create the practice billing schema."""
    print("Creating practice billing schema...")

    op.create_table(
        "profiles",
        sa.Column("id", sa.String(26), nullable=False),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("name", sa.String(120), nullable=True),
        sa.Column("last_name", sa.String(120), nullable=True),
        sa.Column("timezone", sa.String(64), nullable=False, server_default="Europe/Madrid"),
        sa.Column("tax_id", sa.String(32), nullable=True),
        sa.Column("fiscal_address", sa.String(500), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("email"),
    )
    op.create_index("ix_profiles_email", "profiles", ["email"])

    op.create_table(
        "clients",
        sa.Column("id", sa.String(26), nullable=False),
        sa.Column("user_id", sa.String(26), nullable=False),
        sa.Column("name", sa.String(120), nullable=False),
        sa.Column("last_name", sa.String(120), nullable=True),
        sa.Column("email", sa.String(255), nullable=True),
        sa.Column("phone", sa.String(40), nullable=True),
        sa.Column("tax_id", sa.String(32), nullable=True),
        sa.Column("address", sa.String(500), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["user_id"], ["profiles.id"], ondelete="CASCADE"),
    )
    op.create_index("ix_clients_user_id", "clients", ["user_id"])

    op.create_table(
        "billing_settings",
        sa.Column("id", sa.String(26), nullable=False),
        sa.Column("user_id", sa.String(26), nullable=False),
        sa.Column("client_id", sa.String(26), nullable=True),
        sa.Column("booking_id", sa.String(26), nullable=True),
        sa.Column("is_default", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("billing_type", sa.String(30), nullable=False),
        sa.Column("billing_frequency", sa.String(20), nullable=True),
        sa.Column("billing_trigger", sa.String(30), nullable=True),
        sa.Column("billing_advance_days", sa.Integer(), nullable=False, server_default="0"),
        _money("billing_amount"),
        sa.Column("currency", sa.String(3), nullable=False, server_default="EUR"),
        _money("first_consultation_amount", nullable=True),
        sa.Column("vat_rate", sa.Numeric(5, 2), nullable=True),
        sa.Column("suppress_email", sa.Boolean(), nullable=False, server_default=sa.false()),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["user_id"], ["profiles.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["client_id"], ["clients.id"], ondelete="CASCADE"),
    )
    op.create_index("ix_billing_settings_user_id", "billing_settings", ["user_id"])
    op.create_index("ix_billing_settings_client_id", "billing_settings", ["client_id"])
    op.create_index("ix_billing_settings_booking_id", "billing_settings", ["booking_id"])

    op.create_table(
        "booking_series",
        sa.Column("id", sa.String(26), nullable=False),
        sa.Column("user_id", sa.String(26), nullable=False),
        sa.Column("client_id", sa.String(26), nullable=False),
        sa.Column("timezone", sa.String(64), nullable=False),
        sa.Column("dtstart_local", sa.String(19), nullable=False, comment="YYYY-MM-DDTHH:MM:SS"),
        sa.Column("duration_min", sa.Integer(), nullable=False),
        sa.Column("interval_weeks", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("by_weekday", sa.Integer(), nullable=False, comment="0=Sunday..6=Saturday"),
        sa.Column("mode", sa.String(20), nullable=False, server_default="online"),
        sa.Column("location_text", sa.String(500), nullable=True),
        sa.Column("consultation_type", sa.String(20), nullable=True),
        sa.Column("billing_type", sa.String(20), nullable=False, server_default="monthly"),
        _money("amount"),
        sa.Column("currency", sa.String(3), nullable=False, server_default="EUR"),
        sa.Column("status", sa.String(20), nullable=False, server_default="active"),
        sa.Column("master_event_id", sa.String(255), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["user_id"], ["profiles.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["client_id"], ["clients.id"], ondelete="CASCADE"),
    )
    op.create_index("ix_booking_series_user_id", "booking_series", ["user_id"])

    op.create_table(
        "bookings",
        sa.Column("id", sa.String(26), nullable=False),
        sa.Column("user_id", sa.String(26), nullable=False),
        sa.Column("client_id", sa.String(26), nullable=False),
        sa.Column("start_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("end_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("mode", sa.String(20), nullable=False, server_default="online"),
        sa.Column("location_text", sa.String(500), nullable=True),
        sa.Column("consultation_type", sa.String(20), nullable=True),
        sa.Column("notes", sa.String(2000), nullable=True),
        sa.Column("billing_settings_id", sa.String(26), nullable=True),
        sa.Column("billing_status", sa.String(20), nullable=True),
        sa.Column("series_id", sa.String(26), nullable=True),
        sa.Column("occurrence_index", sa.Integer(), nullable=True),
        sa.Column("archived_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["user_id"], ["profiles.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["client_id"], ["clients.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["billing_settings_id"], ["billing_settings.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["series_id"], ["booking_series.id"], ondelete="SET NULL"),
        sa.UniqueConstraint("series_id", "occurrence_index", name="uq_bookings_series_occurrence"),
    )
    op.create_index("ix_bookings_user_id", "bookings", ["user_id"])
    op.create_index("ix_bookings_client_id", "bookings", ["client_id"])
    op.create_index("ix_bookings_start_time", "bookings", ["start_time"])
    op.create_index("ix_bookings_series_id", "bookings", ["series_id"])

    op.create_table(
        "invoices",
        sa.Column("id", sa.String(26), nullable=False),
        sa.Column("user_id", sa.String(26), nullable=False),
        sa.Column("client_id", sa.String(26), nullable=True),
        sa.Column("document_kind", sa.String(20), nullable=False, server_default="invoice"),
        sa.Column("series", sa.String(16), nullable=True),
        sa.Column("number", sa.Integer(), nullable=True),
        sa.Column("year", sa.Integer(), nullable=True),
        sa.Column("month", sa.Integer(), nullable=True),
        sa.Column("billing_period_start", sa.DateTime(timezone=True), nullable=True),
        sa.Column("billing_period_end", sa.DateTime(timezone=True), nullable=True),
        sa.Column("currency", sa.String(3), nullable=False, server_default="EUR"),
        _money("subtotal", server_default="0"),
        _money("tax_total", server_default="0"),
        _money("total", server_default="0"),
        sa.Column("status", sa.String(20), nullable=False, server_default="draft"),
        sa.Column("issued_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("paid_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("canceled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("legacy_bill_id", sa.String(26), nullable=True),
        sa.Column("rectifies_invoice_id", sa.String(26), nullable=True),
        sa.Column("reason", sa.String(500), nullable=True),
        sa.Column("stripe_payment_intent_id", sa.String(255), nullable=True),
        sa.Column("stripe_receipt_url", sa.String(500), nullable=True),
        sa.Column("stripe_refund_id", sa.String(255), nullable=True),
        sa.Column("pdf_url", sa.String(500), nullable=True),
        sa.Column("pdf_sha256", sa.String(64), nullable=True),
        sa.Column("client_name_snapshot", sa.String(255), nullable=True),
        sa.Column("client_email_snapshot", sa.String(255), nullable=True),
        sa.Column("client_tax_id_snapshot", sa.String(32), nullable=True),
        sa.Column("issuer_name_snapshot", sa.String(255), nullable=True),
        sa.Column("issuer_tax_id_snapshot", sa.String(32), nullable=True),
        sa.Column("issuer_address_snapshot", sa.String(500), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["user_id"], ["profiles.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["client_id"], ["clients.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["rectifies_invoice_id"], ["invoices.id"], ondelete="SET NULL"),
        sa.UniqueConstraint("user_id", "series", "number", name="uq_invoices_user_series_number"),
    )
    op.create_index("ix_invoices_user_id", "invoices", ["user_id"])
    op.create_index("ix_invoices_client_id", "invoices", ["client_id"])
    op.create_index("ix_invoices_status", "invoices", ["status"])
    op.create_index("ix_invoices_legacy_bill_id", "invoices", ["legacy_bill_id"])

    op.create_table(
        "invoice_counters",
        sa.Column("id", sa.String(26), nullable=False),
        sa.Column("user_id", sa.String(26), nullable=False),
        sa.Column("series", sa.String(16), nullable=False),
        sa.Column("next_number", sa.Integer(), nullable=False, server_default="1"),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["user_id"], ["profiles.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("user_id", "series", name="uq_invoice_counters_user_series"),
    )

    op.create_table(
        "bills",
        sa.Column("id", sa.String(26), nullable=False),
        sa.Column("booking_id", sa.String(26), nullable=True),
        sa.Column("user_id", sa.String(26), nullable=False),
        sa.Column("client_id", sa.String(26), nullable=True),
        sa.Column("invoice_id", sa.String(26), nullable=True),
        _money("amount"),
        _money("tax_amount", server_default="0"),
        sa.Column("currency", sa.String(3), nullable=False, server_default="EUR"),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("billing_type", sa.String(30), nullable=False),
        sa.Column("client_name", sa.String(255), nullable=True),
        sa.Column("client_email", sa.String(255), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("sent_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("paid_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("email_scheduled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("email_locked_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("stripe_receipt_url", sa.String(500), nullable=True),
        sa.Column("stripe_refund_id", sa.String(255), nullable=True),
        sa.Column("refund_reason", sa.String(500), nullable=True),
        sa.Column("refunded_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["booking_id"], ["bookings.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["user_id"], ["profiles.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["client_id"], ["clients.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["invoice_id"], ["invoices.id"], ondelete="SET NULL"),
    )
    op.create_index("ix_bills_booking_id", "bills", ["booking_id"])
    op.create_index("ix_bills_user_id", "bills", ["user_id"])
    op.create_index("ix_bills_client_id", "bills", ["client_id"])
    op.create_index("ix_bills_invoice_id", "bills", ["invoice_id"])
    op.create_index("ix_bills_status", "bills", ["status"])
    # Scheduled email sweep
    op.create_index(
        "ix_bills_email_due",
        "bills",
        ["email_scheduled_at"],
        postgresql_where=sa.text("sent_at IS NULL AND email_scheduled_at IS NOT NULL"),
    )

    op.create_table(
        "billing_schedule",
        sa.Column("id", sa.String(26), nullable=False),
        sa.Column("booking_id", sa.String(26), nullable=False),
        sa.Column("user_id", sa.String(26), nullable=False),
        sa.Column("client_id", sa.String(26), nullable=False),
        sa.Column("billing_settings_id", sa.String(26), nullable=True),
        sa.Column("action_type", sa.String(30), nullable=False),
        sa.Column("scheduled_date", sa.Date(), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("retry_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("max_retries", sa.Integer(), nullable=False, server_default="3"),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_error", sa.Text(), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["booking_id"], ["bookings.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["user_id"], ["profiles.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["client_id"], ["clients.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["billing_settings_id"], ["billing_settings.id"], ondelete="SET NULL"),
    )
    op.create_index("ix_billing_schedule_booking_id", "billing_schedule", ["booking_id"])
    op.create_index("ix_billing_schedule_scheduled_date", "billing_schedule", ["scheduled_date"])
    op.create_index("ix_billing_schedule_status", "billing_schedule", ["status"])

    op.create_table(
        "stripe_accounts",
        sa.Column("id", sa.String(26), nullable=False),
        sa.Column("user_id", sa.String(26), nullable=False),
        sa.Column("stripe_account_id", sa.String(255), nullable=False),
        sa.Column("onboarding_completed", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("payments_enabled", sa.Boolean(), nullable=False, server_default=sa.false()),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["user_id"], ["profiles.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("user_id"),
        sa.UniqueConstraint("stripe_account_id"),
    )

    op.create_table(
        "payment_sessions",
        sa.Column("id", sa.String(26), nullable=False),
        sa.Column("booking_id", sa.String(26), nullable=True),
        sa.Column("invoice_id", sa.String(26), nullable=True),
        sa.Column("stripe_session_id", sa.String(255), nullable=False),
        sa.Column("stripe_payment_intent_id", sa.String(255), nullable=True),
        sa.Column("stripe_account_id", sa.String(255), nullable=True),
        _money("amount"),
        sa.Column("currency", sa.String(3), nullable=False, server_default="EUR"),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("checkout_url", sa.String(1000), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["booking_id"], ["bookings.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["invoice_id"], ["invoices.id"], ondelete="SET NULL"),
        sa.UniqueConstraint("stripe_session_id"),
    )
    op.create_index("ix_payment_sessions_booking_id", "payment_sessions", ["booking_id"])
    op.create_index("ix_payment_sessions_invoice_id", "payment_sessions", ["invoice_id"])

    op.create_table(
        "calendar_tokens",
        sa.Column("id", sa.String(26), nullable=False),
        sa.Column("user_id", sa.String(26), nullable=False),
        sa.Column("access_token", sa.Text(), nullable=False),
        sa.Column("refresh_token", sa.Text(), nullable=True),
        sa.Column("expiry", sa.DateTime(timezone=True), nullable=True),
        sa.Column("scope", sa.Text(), nullable=True),
        sa.Column("calendar_id", sa.String(255), nullable=False, server_default="primary"),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["user_id"], ["profiles.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("user_id"),
    )

    op.create_table(
        "calendar_events",
        sa.Column("id", sa.String(26), nullable=False),
        sa.Column("booking_id", sa.String(26), nullable=False),
        sa.Column("user_id", sa.String(26), nullable=False),
        sa.Column("google_event_id", sa.String(255), nullable=False),
        sa.Column("google_meet_link", sa.String(500), nullable=True),
        sa.Column("event_type", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("event_status", sa.String(20), nullable=False, server_default="created"),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["booking_id"], ["bookings.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["user_id"], ["profiles.id"], ondelete="CASCADE"),
    )
    op.create_index("ix_calendar_events_booking_id", "calendar_events", ["booking_id"])

    print("Practice billing schema created")


def downgrade() -> None:
    """Drop the practice billing schema."""
    print("Dropping practice billing schema...")

    op.drop_table("calendar_events")
    op.drop_table("calendar_tokens")
    op.drop_table("payment_sessions")
    op.drop_table("stripe_accounts")
    op.drop_table("billing_schedule")
    op.drop_index("ix_bills_email_due", table_name="bills")
    op.drop_table("bills")
    op.drop_table("invoice_counters")
    op.drop_table("invoices")
    op.drop_table("bookings")
    op.drop_table("booking_series")
    op.drop_table("billing_settings")
    op.drop_table("clients")
    op.drop_table("profiles")

    print("Practice billing schema dropped")
