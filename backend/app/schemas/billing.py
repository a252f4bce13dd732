# backend/app/schemas/billing.py
"""
Billing settings and billing-run schemas.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import ConfigDict, Field, field_validator, model_validator

from ..core.enums import BillingFrequency, BillingTrigger, BillingType
from .base import StandardizedModel, StrictRequestModel, round_money


class BillingSettingsPayload(StrictRequestModel):
    """Amount and cadence for any scope (default, client or booking)."""

    billing_type: BillingType
    billing_frequency: Optional[BillingFrequency] = None
    billing_trigger: Optional[BillingTrigger] = None
    billing_advance_days: int = Field(0, ge=0, le=60)
    billing_amount: float = Field(..., ge=0)
    currency: str = Field("EUR", min_length=3, max_length=3)
    first_consultation_amount: Optional[float] = Field(None, ge=0)
    vat_rate: Optional[float] = Field(None, ge=0, le=100)
    suppress_email: bool = False

    @field_validator("billing_amount", "first_consultation_amount")
    @classmethod
    def _round_amounts(cls, v: Optional[float]) -> Optional[float]:
        return round_money(v) if v is not None else v

    @field_validator("currency")
    @classmethod
    def _upper_currency(cls, v: str) -> str:
        return v.upper()

    @model_validator(mode="after")
    def _check_cadence(self) -> "BillingSettingsPayload":
        if self.billing_type == BillingType.RECURRING.value and not self.billing_frequency:
            raise ValueError("billing_frequency is required for recurring billing")
        if self.billing_type == BillingType.CONSULTATION_BASED.value and not self.billing_trigger:
            raise ValueError("billing_trigger is required for consultation based billing")
        return self


class BillingSettingsResponse(StandardizedModel):
    id: str
    user_id: str
    client_id: Optional[str] = None
    booking_id: Optional[str] = None
    is_default: bool
    billing_type: str
    billing_frequency: Optional[str] = None
    billing_trigger: Optional[str] = None
    billing_advance_days: int
    billing_amount: float
    currency: str
    first_consultation_amount: Optional[float] = None
    vat_rate: Optional[float] = None
    suppress_email: bool
    updated_at: Optional[datetime] = None


class MonthlyRunRequest(StrictRequestModel):
    period: Optional[str] = Field(None, description="YYYY-MM; defaults to last month")
    dry_run: bool = Field(False, alias="dryRun")

    model_config = ConfigDict(extra="forbid", populate_by_name=True)


class MonthlyRunSummary(StandardizedModel):
    groupsProcessed: int
    invoicesCreated: int
    invoicesReused: int
    itemsLinked: int
    itemsUnlinked: int
    emailsSent: int
    draftsDeleted: int
    errors: List[Dict[str, Any]]


class MonthlyRunResponse(StandardizedModel):
    ok: bool = True
    period: str
    dryRun: bool
    summary: MonthlyRunSummary


class ConsultationRunResponse(StandardizedModel):
    success: bool
    message: Optional[str] = None
    total: int = 0
    emails_sent: int = 0
    emails_failed: int = 0
    skipped: int = 0
    results: List[Dict[str, Any]] = Field(default_factory=list)
    errors: List[Dict[str, Any]] = Field(default_factory=list)
