"""
Tests for Stripe Connect onboarding, checkout creation and public pay links.
"""

from types import SimpleNamespace
from unittest.mock import patch

import pytest
import stripe
from sqlalchemy.orm import Session

from app.core.enums import BillStatus, BookingStatus, InvoiceStatus
from app.core.exceptions import (
    ForbiddenException,
    NotFoundException,
    PaymentAccountNotReadyException,
    ServiceException,
    ValidationException,
)
from app.models import Invoice, PaymentSession, Profile, StripeAccount
from app.services.payment_orchestration_service import (
    PaymentOrchestrationService,
    booking_payment_link,
    onboarding_incomplete_reason,
    payment_error_url,
)
from app.services.stripe_service import StripeService, account_payments_enabled, to_cents


@pytest.fixture
def service(db: Session) -> PaymentOrchestrationService:
    return PaymentOrchestrationService(db)


class TestHelpers:
    def test_to_cents_rounds(self):
        assert to_cents(19.99) == 1999
        assert to_cents(60) == 6000

    def test_account_with_requirements_due_is_not_ready(self):
        account = {
            "charges_enabled": True,
            "payouts_enabled": True,
            "details_submitted": True,
            "requirements": {"currently_due": ["individual.id_number"]},
        }

        assert account_payments_enabled(account) is False

    @pytest.mark.parametrize(
        "status, reason",
        [
            ({"details_submitted": False}, "form_incomplete"),
            ({"details_submitted": True, "currently_due": ["x"]}, "verification_needed"),
            ({"details_submitted": True, "charges_enabled": False}, "charges_disabled"),
        ],
    )
    def test_incomplete_reason(self, status, reason):
        assert onboarding_incomplete_reason(status) == reason

    def test_pay_link_uses_api_base(self):
        assert booking_payment_link("b1").endswith("/api/payments/b1")


class TestOnboarding:
    def test_account_is_created_once(self, service, db, practitioner):
        with patch("stripe.Account.create", return_value=SimpleNamespace(id="acct_new")) as mocked_create:
            first = service.create_account_for_user(practitioner)
            second = service.create_account_for_user(practitioner)

        assert first == {"accountExists": False, "accountId": "acct_new"}
        assert second == {"accountExists": True, "accountId": "acct_new"}
        mocked_create.assert_called_once()
        assert db.query(StripeAccount).one().payments_enabled is False

    def test_onboarding_link_needs_an_account(self, service, practitioner):
        with pytest.raises(NotFoundException):
            service.create_onboarding_link_for_user(practitioner)

    def test_onboarding_link_points_back_to_callback(self, service, db, practitioner):
        db.add(StripeAccount(user_id=practitioner.id, stripe_account_id="acct_new"))
        db.commit()

        with patch("stripe.AccountLink.create", return_value=SimpleNamespace(url="https://connect.stripe.com/x")) as mocked:
            result = service.create_onboarding_link_for_user(practitioner)

        assert result == {"url": "https://connect.stripe.com/x"}
        assert f"onboarding-callback?user_id={practitioner.id}" in mocked.call_args.kwargs["return_url"]

    def test_finished_onboarding_rejects_new_link(self, service, practitioner, stripe_account):
        with pytest.raises(ValidationException):
            service.create_onboarding_link_for_user(practitioner)

    def test_callback_enables_ready_account(self, service, db, practitioner):
        account = StripeAccount(user_id=practitioner.id, stripe_account_id="acct_new")
        db.add(account)
        db.commit()
        retrieved = {
            "charges_enabled": True,
            "payouts_enabled": True,
            "details_submitted": True,
            "requirements": {"currently_due": []},
        }

        with patch("stripe.Account.retrieve", return_value=retrieved):
            path = service.handle_onboarding_callback(practitioner.id)

        assert path == "/onboarding?step=5&stripe_ready=true"
        assert account.payments_enabled is True

    def test_callback_reports_incomplete_account(self, service, db, practitioner):
        db.add(StripeAccount(user_id=practitioner.id, stripe_account_id="acct_new"))
        db.commit()

        with patch("stripe.Account.retrieve", return_value={"details_submitted": False}):
            path = service.handle_onboarding_callback(practitioner.id)

        assert path.endswith("stripe_incomplete=true&reason=form_incomplete")

    def test_callback_without_user(self, service):
        assert service.handle_onboarding_callback(None) == "/onboarding?step=4&stripe_error=missing_user"

    def test_status_without_account(self, service, practitioner):
        assert service.get_onboarding_status(practitioner.id)["hasAccount"] is False


class TestCheckout:
    def test_checkout_defaults_to_payable_bill(self, service, db, practitioner, create_booking, stripe_account, mock_checkout):
        booking, _ = create_booking(status=BookingStatus.PENDING.value, amount=75.0)

        result = service.create_checkout_for_user(practitioner, booking.id)

        assert result["amount"] == 75.0
        assert result["currency"] == "EUR"
        assert result["url"].startswith("https://checkout.stripe.com/")
        kwargs = mock_checkout.call_args.kwargs
        assert kwargs["line_items"][0]["price_data"]["unit_amount"] == 7500
        assert kwargs["metadata"]["booking_id"] == booking.id
        assert kwargs["idempotency_key"].startswith(f"booking:{booking.id}:7500:")

    def test_checkout_requires_ready_account(self, service, practitioner, create_booking, mock_checkout):
        booking, _ = create_booking()

        with pytest.raises(PaymentAccountNotReadyException):
            service.create_checkout_for_user(practitioner, booking.id)
        mock_checkout.assert_not_called()

    def test_checkout_for_foreign_booking(self, service, db, create_booking):
        booking, _ = create_booking()
        stranger = Profile(email="stranger@example.com", name="Stranger")
        db.add(stranger)
        db.commit()

        with pytest.raises(ForbiddenException):
            service.create_checkout_for_user(stranger, booking.id)

    def test_checkout_without_payable_bill(self, service, practitioner, create_booking, stripe_account):
        booking, _ = create_booking(bill_status=BillStatus.PAID.value)

        with pytest.raises(ValidationException):
            service.create_checkout_for_user(practitioner, booking.id)

    def test_unconfigured_stripe_raises_service_error(self, db, monkeypatch):
        stripe_service = StripeService(db)
        monkeypatch.setattr(stripe_service, "stripe_configured", False)

        with pytest.raises(ServiceException):
            stripe_service.create_connect_account("someone@example.com")

    def test_http_client_uses_timeout_and_retries(self, db):
        stripe_service = StripeService(db)

        assert stripe_service.stripe_configured is True
        assert isinstance(stripe.default_http_client, stripe.HTTPXClient)
        assert stripe.max_network_retries == 1

    def test_http_client_customization_is_not_fatal(self, db):
        with patch("stripe.HTTPXClient", side_effect=AttributeError("HTTPXClient")):
            stripe_service = StripeService(db)

        assert stripe_service.stripe_configured is True


class TestPayLinks:
    def test_booking_link_redirects_to_checkout(self, service, db, create_booking, stripe_account, mock_checkout):
        booking, _ = create_booking(status=BookingStatus.PENDING.value)

        target = service.checkout_for_booking_link(booking.id)

        assert target == "https://checkout.stripe.com/c/pay/cs_test_1"
        assert db.query(PaymentSession).filter_by(booking_id=booking.id).count() == 1

    def test_paid_booking_lands_on_success(self, service, create_booking):
        booking, _ = create_booking(bill_status=BillStatus.PAID.value)

        assert "/payment/success?booking_id=" in service.checkout_for_booking_link(booking.id)

    def test_unknown_booking(self, service):
        assert service.checkout_for_booking_link("missing") == payment_error_url("booking_not_found")

    def test_canceled_booking(self, service, create_booking):
        booking, _ = create_booking(status=BookingStatus.CANCELED.value)

        assert service.checkout_for_booking_link(booking.id) == payment_error_url("booking_canceled")

    def test_checkout_failure_lands_on_error_page(self, service, create_booking):
        booking, _ = create_booking()

        assert service.checkout_for_booking_link(booking.id) == payment_error_url("checkout_creation_failed")

    def test_invoice_link_issues_draft(self, service, db, practitioner, client_row, stripe_account, mock_checkout):
        invoice = Invoice(
            user_id=practitioner.id,
            client_id=client_row.id,
            status=InvoiceStatus.DRAFT.value,
            total=120.0,
            client_email_snapshot=client_row.email,
        )
        db.add(invoice)
        db.commit()

        target = service.checkout_for_invoice_link(invoice.id)

        assert target.startswith("https://checkout.stripe.com/")
        assert invoice.status == InvoiceStatus.ISSUED.value
        assert invoice.number == 1
        assert mock_checkout.call_args.kwargs["metadata"] == {"invoice_id": invoice.id, "user_id": practitioner.id}

    def test_empty_invoice_cannot_be_paid(self, service, db, practitioner, stripe_account):
        invoice = Invoice(user_id=practitioner.id, status=InvoiceStatus.DRAFT.value, total=0)
        db.add(invoice)
        db.commit()

        assert service.checkout_for_invoice_link(invoice.id) == payment_error_url("checkout_creation_failed")
