# backend/tests/conftest.py
"""
Pytest configuration for the backend test suite.

Every test gets a fresh schema on an in-memory SQLite database. Outbound
email is patched for the whole suite; Stripe and Google Calendar calls are
patched by the tests that exercise them.
"""

import os

# Set BEFORE any app import so Settings picks them up
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["IS_TESTING"] = "true"
os.environ["SECRET_KEY"] = "test-secret-key"
os.environ["EMAIL_BATCH_DELAY_SECONDS"] = "0"
os.environ["CRON_SECRET"] = "test-cron-secret"
os.environ["STRIPE_SECRET_KEY"] = "sk_test_123"
os.environ["STRIPE_WEBHOOK_SECRET"] = "whsec_test_secret"
os.environ["GOOGLE_CLIENT_ID"] = "test-google-client-id"
os.environ["CALENDAR_TOKEN_ENCRYPTION_KEY"] = "MDEyMzQ1Njc4OTAxMjM0NTY3ODkwMTIzNDU2Nzg5MDE="
os.environ.pop("SENTRY_DSN", None)

from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from typing import Generator
from unittest.mock import patch

from fastapi.testclient import TestClient
import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool
import ulid

from app.api.dependencies.auth import get_current_user
from app.api.dependencies.database import get_db
from app.auth import create_access_token
from app.core.enums import BillStatus, BookingBillingStatus, BookingStatus
from app.database import Base
from app.main import app as fastapi_app
from app.models import Bill, BillingSettings, Booking, Client, Profile, StripeAccount

test_engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=test_engine, expire_on_commit=False)


# ============================================================================
# Database
# ============================================================================


@pytest.fixture
def db() -> Generator[Session, None, None]:
    """Fresh schema per test."""
    Base.metadata.create_all(bind=test_engine)
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=test_engine)


# ============================================================================
# External services
# ============================================================================


@pytest.fixture(autouse=True)
def mock_resend():
    """No test ever reaches the Resend API."""
    with patch("resend.Emails.send") as mocked_send:
        mocked_send.return_value = {"id": "test-email-id"}
        yield mocked_send


@pytest.fixture
def mock_checkout():
    """Patch Checkout session creation; each call returns a new session id."""
    calls = {"count": 0}

    def _create(**kwargs):
        calls["count"] += 1
        session_id = f"cs_test_{calls['count']}"
        return SimpleNamespace(id=session_id, url=f"https://checkout.stripe.com/c/pay/{session_id}")

    with patch("stripe.checkout.Session.create", side_effect=_create) as mocked_create:
        yield mocked_create


# ============================================================================
# Factories
# ============================================================================


@pytest.fixture
def practitioner(db: Session) -> Profile:
    profile = Profile(
        id=str(ulid.ULID()),
        email=f"practitioner_{ulid.ULID()}@example.com",
        name="Laura",
        last_name="Martin",
        tax_id="12345678Z",
        fiscal_address="Calle Mayor 1, Madrid",
    )
    db.add(profile)
    db.commit()
    return profile


@pytest.fixture
def client_row(db: Session, practitioner: Profile) -> Client:
    client = Client(
        id=str(ulid.ULID()),
        user_id=practitioner.id,
        name="Ana",
        last_name="Ruiz",
        email="ana.ruiz@example.com",
    )
    db.add(client)
    db.commit()
    return client


@pytest.fixture
def create_settings(db: Session):
    """Create a billing settings row; defaults to consultation based, billed after."""

    def _create(user_id: str, client_id=None, booking_id=None, **overrides) -> BillingSettings:
        values = {
            "billing_type": "consultation_based",
            "billing_trigger": "after_consultation",
            "billing_frequency": None,
            "billing_advance_days": 0,
            "billing_amount": 60.0,
            "currency": "EUR",
        }
        values.update(overrides)
        row = BillingSettings(
            user_id=user_id,
            client_id=client_id,
            booking_id=booking_id,
            is_default=client_id is None and booking_id is None,
            **values,
        )
        db.add(row)
        db.commit()
        return row

    return _create


@pytest.fixture
def create_booking(db: Session, practitioner: Profile, client_row: Client):
    """Insert a booking with one bill, bypassing the booking service."""

    def _create(
        start: datetime = None,
        duration_minutes: int = 50,
        status: str = BookingStatus.SCHEDULED.value,
        bill_status: str = BillStatus.PENDING.value,
        amount: float = 60.0,
        cadence: str = "right_after",
        **extra,
    ):
        start = start or datetime.now(timezone.utc) + timedelta(days=3)
        booking = Booking(
            user_id=practitioner.id,
            client_id=client_row.id,
            start_time=start,
            end_time=start + timedelta(minutes=duration_minutes),
            status=status,
            billing_status=BookingBillingStatus.PENDING.value,
            **extra,
        )
        db.add(booking)
        db.flush()
        bill = Bill(
            booking_id=booking.id,
            user_id=practitioner.id,
            client_id=client_row.id,
            amount=amount,
            currency="EUR",
            status=bill_status,
            billing_type=cadence,
            client_name=client_row.full_name,
            client_email=client_row.email,
        )
        db.add(bill)
        db.commit()
        return booking, bill

    return _create


@pytest.fixture
def stripe_account(db: Session, practitioner: Profile) -> StripeAccount:
    account = StripeAccount(
        user_id=practitioner.id,
        stripe_account_id="acct_test_123",
        onboarding_completed=True,
        payments_enabled=True,
    )
    db.add(account)
    db.commit()
    return account


# ============================================================================
# HTTP
# ============================================================================


@pytest.fixture
def auth_headers(practitioner: Profile) -> dict:
    token = create_access_token({"sub": practitioner.id})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def client(db: Session) -> Generator[TestClient, None, None]:
    """TestClient sharing the test session."""

    def override_get_db():
        yield db

    fastapi_app.dependency_overrides[get_db] = override_get_db
    with TestClient(fastapi_app) as test_client:
        yield test_client
    fastapi_app.dependency_overrides.clear()


@pytest.fixture
def authed_client(client: TestClient, practitioner: Profile) -> TestClient:
    """TestClient whose requests are authenticated as ``practitioner``."""
    fastapi_app.dependency_overrides[get_current_user] = lambda: practitioner
    return client
