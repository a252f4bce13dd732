# backend/app/core/exceptions.py
"""
Domain-specific exceptions for the practice billing backend.

Services raise these; routes convert them to HTTP responses through
``to_http_exception``.
"""

from typing import Any, Dict, Optional

from fastapi import HTTPException, status

HTTP_422_UNPROCESSABLE: int = getattr(status, "HTTP_422_UNPROCESSABLE_CONTENT", 422)


class DomainException(Exception):
    """Base exception for all domain-specific errors."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.message = message
        self.code = code or self.__class__.__name__
        self.details = details or {}
        super().__init__(self.message)

    def to_detail(self) -> Dict[str, Any]:
        return {
            "message": self.message,
            "code": self.code,
            "details": self.details,
        }

    def to_http_exception(self) -> HTTPException:
        return HTTPException(status_code=self.status_code, detail=self.to_detail())


class ValidationException(DomainException):
    """Raised when business validation fails."""

    status_code = status.HTTP_400_BAD_REQUEST


class NotFoundException(DomainException):
    """Raised when a requested resource is not found."""

    status_code = status.HTTP_404_NOT_FOUND


class ConflictException(DomainException):
    """Raised when there's a conflict with existing data."""

    status_code = status.HTTP_409_CONFLICT


class BusinessRuleException(DomainException):
    """Raised when a business rule is violated."""

    status_code = HTTP_422_UNPROCESSABLE


class UnauthorizedException(DomainException):
    """Raised when user is not authenticated."""

    status_code = status.HTTP_401_UNAUTHORIZED


class ForbiddenException(DomainException):
    """Raised when user lacks permission for an action."""

    status_code = status.HTTP_403_FORBIDDEN


class ServiceException(DomainException):
    """Raised when a service operation fails."""

    def to_http_exception(self) -> HTTPException:
        return HTTPException(
            status_code=self.status_code,
            detail={
                "message": self.message or "An error occurred processing your request",
                "code": self.code,
                "details": self.details if self.details else {},
            },
        )


class ExternalServiceException(ServiceException):
    """Raised when an upstream provider (Stripe, Google) rejects a required call."""

    status_code = status.HTTP_502_BAD_GATEWAY


# Specific business exceptions


class BillingSettingsNotFoundException(BusinessRuleException):
    """Raised when no booking, client or default billing settings exist."""

    def __init__(self, user_id: str, client_id: Optional[str] = None) -> None:
        super().__init__(
            "No billing settings found. Configure default billing settings first.",
            code="BILLING_SETTINGS_NOT_FOUND",
            details={"user_id": user_id, "client_id": client_id},
        )


class PaymentAccountNotReadyException(BusinessRuleException):
    """Raised when a practitioner cannot accept card payments yet."""


class NoPaidBillException(ValidationException):
    """Raised when a refund is requested for a booking without a paid bill."""

    def __init__(self, booking_id: str) -> None:
        super().__init__(
            "No paid bill found for this booking",
            code="NO_PAID_BILL",
            details={"booking_id": booking_id},
        )


class RepositoryException(Exception):
    """Raised when a repository operation fails."""
