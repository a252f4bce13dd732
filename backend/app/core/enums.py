# backend/app/core/enums.py
"""
String enums for persisted status and type columns.

Values are stored as plain strings; the enums keep comparisons typo-free.
"""

from enum import Enum


class BookingStatus(str, Enum):
    PENDING = "pending"
    SCHEDULED = "scheduled"
    COMPLETED = "completed"
    CANCELED = "canceled"


class BookingMode(str, Enum):
    ONLINE = "online"
    IN_PERSON = "in_person"


class ConsultationType(str, Enum):
    FIRST = "first"
    FOLLOWUP = "followup"


class BillingType(str, Enum):
    RECURRING = "recurring"
    CONSULTATION_BASED = "consultation_based"


class BillingFrequency(str, Enum):
    WEEKLY = "weekly"
    MONTHLY = "monthly"


class BillingTrigger(str, Enum):
    BEFORE_CONSULTATION = "before_consultation"
    AFTER_CONSULTATION = "after_consultation"


class BookingBillingStatus(str, Enum):
    PENDING = "pending"
    BILLED = "billed"


class ScheduleActionType(str, Enum):
    SEND_BILL = "send_bill"
    PAYMENT_REMINDER = "payment_reminder"
    OVERDUE_NOTICE = "overdue_notice"


class ScheduleStatus(str, Enum):
    PENDING = "pending"
    PROCESSED = "processed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class BillStatus(str, Enum):
    SCHEDULED = "scheduled"
    PENDING = "pending"
    SENT = "sent"
    PAID = "paid"
    DISPUTED = "disputed"
    CANCELED = "canceled"
    REFUNDED = "refunded"


PAYABLE_BILL_STATUSES = (BillStatus.PENDING.value, BillStatus.SENT.value)


class InvoiceStatus(str, Enum):
    DRAFT = "draft"
    ISSUED = "issued"
    PAID = "paid"
    CANCELED = "canceled"
    REFUNDED = "refunded"
    DISPUTED = "disputed"


class DocumentKind(str, Enum):
    INVOICE = "invoice"
    CREDIT_NOTE = "credit_note"


class PaymentSessionStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"
    EXPIRED = "expired"


class CalendarEventType(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"


class CalendarEventStatus(str, Enum):
    CREATED = "created"
    UPDATED = "updated"
    CANCELLED = "cancelled"


class SeriesStatus(str, Enum):
    ACTIVE = "active"
    CANCELED = "canceled"


class SeriesBillingPolicy(str, Enum):
    MONTHLY = "monthly"
    RIGHT_AFTER = "right_after"
    HOURS_24_BEFORE = "24h_before"


class BillCadence(str, Enum):
    """Billing cadence snapshotted onto each bill."""

    IN_ADVANCE = "in_advance"
    RIGHT_AFTER = "right_after"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
