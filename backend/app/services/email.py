# backend/app/services/email.py
"""
Email Service

Sends transactional billing emails through the Resend API. Templates are
rendered with TemplateService. Domain-specific senders never raise: they
return False on failure so the booking or payment flow that triggered them
carries on.
"""

from datetime import datetime
import logging
import re
import time
from typing import Any, Dict, List, Optional

import resend
from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.constants import BRAND_NAME
from ..core.exceptions import ServiceException
from ..monitoring.prometheus_metrics import prometheus_metrics
from .base import BaseService
from .template_registry import TemplateRegistry
from .template_service import TemplateService, format_money

logger = logging.getLogger(__name__)


class EmailService(BaseService):
    """Service for sending emails using Resend API."""

    def __init__(self, db: Session, template_service: Optional[TemplateService] = None):
        super().__init__(db)
        resend.api_key = settings.resend_api_key or ""
        self.from_email = settings.from_email
        self.template_service = template_service or TemplateService(db)

    def _html_to_text(self, html_content: str) -> str:
        """Convert HTML content to plain text for better deliverability"""
        text = re.sub(r"<[^>]+>", "", html_content)
        text = re.sub(r"\s+", " ", text)
        return text.strip()

    @BaseService.measure_operation("send_email")
    def send_email(
        self,
        to_email: str,
        subject: str,
        html_content: str,
        text_content: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Send a generic email using Resend.

        Returns:
            Dict containing the Resend API response (empty when email is disabled)

        Raises:
            ServiceException: If email sending fails
        """
        if not settings.email_enabled:
            self.log_operation("email_skipped", to_email=to_email, subject=subject)
            return {}

        try:
            email_data = {
                "from": self.from_email,
                "to": to_email,
                "subject": subject,
                "html": html_content,
                "text": text_content or self._html_to_text(html_content),
            }
            response = resend.Emails.send(email_data)
            self.logger.info(f"Email sent successfully to {to_email} - Subject: {subject}")
            self.log_operation("email_sent", to_email=to_email, subject=subject)
            return response
        except Exception as e:
            error_msg = str(e) if e else "Unknown error"
            self.logger.error(f"Failed to send email to {to_email}: {error_msg}")
            self.log_operation("email_failed", to_email=to_email, subject=subject, error=error_msg)
            raise ServiceException(f"Email sending failed: {error_msg}")

    def _send_template(
        self,
        template: TemplateRegistry,
        to_email: Optional[str],
        subject: str,
        context: Dict[str, Any],
        text_content: Optional[str] = None,
    ) -> bool:
        if not to_email:
            self.logger.warning("Skipping email without recipient", extra={"template": template.value})
            return False
        try:
            html_content = self.template_service.render_template(template, context=context)
            self.send_email(to_email, subject, html_content, text_content=text_content)
            prometheus_metrics.record_email(template.name.lower(), True)
            return True
        except ServiceException:
            # Already logged in send_email
            prometheus_metrics.record_email(template.name.lower(), False)
            return False
        except Exception as e:
            self.logger.error(f"Unexpected error rendering/sending {template.value} to {to_email}: {str(e)}")
            prometheus_metrics.record_email(template.name.lower(), False)
            return False

    @BaseService.measure_operation("send_consultation_bill")
    def send_consultation_bill(
        self,
        to_email: Optional[str],
        client_name: str,
        practitioner_name: str,
        amount: float,
        currency: str,
        consultation_date: datetime,
        payment_url: Optional[str],
    ) -> bool:
        subject = f"Payment request from {practitioner_name}"
        text = (
            f"{practitioner_name} requests {format_money(amount, currency)} for your consultation. "
            f"Pay here: {payment_url}"
            if payment_url
            else None
        )
        return self._send_template(
            TemplateRegistry.BILLING_CONSULTATION_BILL,
            to_email,
            subject,
            {
                "client_name": client_name,
                "practitioner_name": practitioner_name,
                "amount": amount,
                "currency": currency,
                "consultation_date": consultation_date,
                "payment_url": payment_url,
            },
            text_content=text,
        )

    @BaseService.measure_operation("send_monthly_bill")
    def send_monthly_bill(
        self,
        to_email: Optional[str],
        client_name: str,
        practitioner_name: str,
        amount: float,
        currency: str,
        month_label: str,
        payment_url: str,
        sessions: Optional[List[Dict[str, Any]]] = None,
    ) -> bool:
        return self._send_template(
            TemplateRegistry.BILLING_MONTHLY_BILL,
            to_email,
            f"{practitioner_name}: your invoice for {month_label}",
            {
                "client_name": client_name,
                "practitioner_name": practitioner_name,
                "amount": amount,
                "currency": currency,
                "month_label": month_label,
                "payment_url": payment_url,
                "sessions": sessions or [],
            },
        )

    @BaseService.measure_operation("send_payment_receipt")
    def send_payment_receipt(
        self,
        to_email: Optional[str],
        client_name: str,
        practitioner_name: str,
        amount: float,
        currency: str,
        consultation_date: Optional[datetime] = None,
        receipt_url: Optional[str] = None,
    ) -> bool:
        return self._send_template(
            TemplateRegistry.PAYMENT_RECEIPT,
            to_email,
            f"Payment received - {BRAND_NAME}",
            {
                "client_name": client_name,
                "practitioner_name": practitioner_name,
                "amount": amount,
                "currency": currency,
                "consultation_date": consultation_date,
                "receipt_url": receipt_url,
            },
        )

    @BaseService.measure_operation("send_invoice_receipt")
    def send_invoice_receipt(
        self,
        to_email: Optional[str],
        client_name: str,
        practitioner_name: str,
        amount: float,
        currency: str,
        invoice_number: Optional[str] = None,
        receipt_url: Optional[str] = None,
    ) -> bool:
        return self._send_template(
            TemplateRegistry.PAYMENT_INVOICE_RECEIPT,
            to_email,
            f"Invoice paid - {BRAND_NAME}",
            {
                "client_name": client_name,
                "practitioner_name": practitioner_name,
                "amount": amount,
                "currency": currency,
                "invoice_number": invoice_number,
                "receipt_url": receipt_url,
            },
        )

    @BaseService.measure_operation("send_refund_notification")
    def send_refund_notification(
        self,
        to_email: Optional[str],
        client_name: str,
        practitioner_name: str,
        amount: float,
        currency: str,
        consultation_date: datetime,
        reason: Optional[str] = None,
    ) -> bool:
        return self._send_template(
            TemplateRegistry.PAYMENT_REFUND,
            to_email,
            f"Refund issued by {practitioner_name}",
            {
                "client_name": client_name,
                "practitioner_name": practitioner_name,
                "amount": amount,
                "currency": currency,
                "consultation_date": consultation_date,
                "reason": reason,
            },
        )

    @BaseService.measure_operation("send_cancellation_notification")
    def send_cancellation_notification(
        self,
        to_email: Optional[str],
        client_name: str,
        practitioner_name: str,
        consultation_date: datetime,
        will_refund: bool = False,
    ) -> bool:
        return self._send_template(
            TemplateRegistry.BOOKING_CANCELLATION,
            to_email,
            f"Appointment canceled - {practitioner_name}",
            {
                "client_name": client_name,
                "practitioner_name": practitioner_name,
                "consultation_date": consultation_date,
                "will_refund": will_refund,
            },
        )

    @BaseService.measure_operation("send_appointment_reminder")
    def send_appointment_reminder(
        self,
        to_email: Optional[str],
        client_name: str,
        practitioner_name: str,
        consultation_date: datetime,
        meeting_link: Optional[str] = None,
        location: Optional[str] = None,
        payment_url: Optional[str] = None,
    ) -> bool:
        return self._send_template(
            TemplateRegistry.BOOKING_REMINDER,
            to_email,
            f"Reminder: appointment with {practitioner_name}",
            {
                "client_name": client_name,
                "practitioner_name": practitioner_name,
                "consultation_date": consultation_date,
                "meeting_link": meeting_link,
                "location": location,
                "payment_url": payment_url,
            },
        )

    @BaseService.measure_operation("send_bulk_consultation_bills")
    def send_bulk_consultation_bills(
        self,
        items: List[Dict[str, Any]],
        delay_seconds: Optional[float] = None,
    ) -> List[Dict[str, Any]]:
        """
        Send consultation bills one after another.

        Each item carries the keyword arguments of ``send_consultation_bill``
        plus an ``id`` echoed back in the result. A fixed pause between sends
        keeps the provider's rate limit happy.
        """
        delay = settings.email_batch_delay_seconds if delay_seconds is None else delay_seconds
        results = []
        for index, item in enumerate(items):
            if index and delay > 0:
                time.sleep(delay)
            payload = {k: v for k, v in item.items() if k != "id"}
            success = self.send_consultation_bill(**payload)
            results.append(
                {
                    "id": item.get("id"),
                    "to": item.get("to_email"),
                    "success": success,
                    "error": None if success else "email_failed",
                }
            )
        return results
