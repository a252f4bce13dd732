# backend/app/repositories/billing_repository.py
"""
Billing Repository

Data access for billing settings and the billing schedule queue.
"""

from datetime import date
from typing import List, Optional

from sqlalchemy.orm import Query, Session, joinedload

from ..core.enums import ScheduleStatus
from ..models.billing import BillingSchedule, BillingSettings
from .base_repository import BaseRepository


class BillingSettingsRepository(BaseRepository[BillingSettings]):
    def __init__(self, db: Session):
        super().__init__(db, BillingSettings)

    def get_user_default(self, user_id: str) -> Optional[BillingSettings]:
        query = (
            self._build_query()
            .filter(
                BillingSettings.user_id == user_id,
                BillingSettings.client_id.is_(None),
                BillingSettings.booking_id.is_(None),
                BillingSettings.is_default.is_(True),
            )
            .order_by(BillingSettings.created_at.desc())
        )
        return self._execute_first(query)

    def get_client_override(self, user_id: str, client_id: str) -> Optional[BillingSettings]:
        query = self._build_query().filter(
            BillingSettings.user_id == user_id,
            BillingSettings.client_id == client_id,
            BillingSettings.booking_id.is_(None),
        )
        return self._execute_first(query)

    def get_for_booking(self, booking_id: str) -> Optional[BillingSettings]:
        return self.find_one_by(booking_id=booking_id)


class BillingScheduleRepository(BaseRepository[BillingSchedule]):
    def __init__(self, db: Session):
        super().__init__(db, BillingSchedule)

    def _apply_eager_loading(self, query: Query) -> Query:
        return query.options(
            joinedload(BillingSchedule.booking),
            joinedload(BillingSchedule.client),
            joinedload(BillingSchedule.practitioner),
            joinedload(BillingSchedule.billing_settings),
        )

    def get_due(self, today: date, action_type: Optional[str] = None) -> List[BillingSchedule]:
        """Rows with ``scheduled_date <= today`` still pending, oldest first."""
        query = self._apply_eager_loading(self._build_query()).filter(
            BillingSchedule.scheduled_date <= today,
            BillingSchedule.status == ScheduleStatus.PENDING.value,
        )
        if action_type:
            query = query.filter(BillingSchedule.action_type == action_type)
        return self._execute_query(query.order_by(BillingSchedule.scheduled_date.asc()))

    def get_pending_for_booking(self, booking_id: str) -> List[BillingSchedule]:
        return self.find_by(booking_id=booking_id, status=ScheduleStatus.PENDING.value)
