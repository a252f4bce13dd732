# backend/app/services/template_service.py
"""
Template rendering service.

Renders the Jinja2 email templates under ``app/templates`` with a shared
set of common context variables and money/date filters.
"""

from datetime import datetime
import logging
from pathlib import Path
from typing import Any, Dict, Optional

from jinja2 import Environment, FileSystemLoader, TemplateNotFound
from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.constants import BRAND_NAME
from .base import BaseService

logger = logging.getLogger(__name__)

_CURRENCY_SYMBOLS = {"EUR": "€", "USD": "$", "GBP": "£"}


def format_money(value: Any, currency: str = "EUR") -> str:
    """``12.5, 'EUR'`` -> ``'12.50 €'``."""
    amount = float(value or 0)
    symbol = _CURRENCY_SYMBOLS.get((currency or "").upper(), (currency or "").upper())
    return f"{amount:,.2f} {symbol}"


class TemplateService(BaseService):
    """Centralized template rendering service using Jinja2."""

    def __init__(self, db: Session):
        super().__init__(db)

        template_dir = Path(__file__).parent.parent / "templates"
        self.env = Environment(
            loader=FileSystemLoader(template_dir),
            autoescape=True,
            trim_blocks=True,
            lstrip_blocks=True,
        )
        self._register_custom_filters()

    def _register_custom_filters(self):
        self.env.filters["currency"] = format_money

        def format_date(value: datetime, format_str: str = "%d/%m/%Y") -> str:
            if value is None:
                return ""
            if isinstance(value, str):
                return value
            return value.strftime(format_str)

        self.env.filters["format_date"] = format_date

        def format_time(value: datetime, format_str: str = "%H:%M") -> str:
            if value is None:
                return ""
            if isinstance(value, str):
                return value
            return value.strftime(format_str)

        self.env.filters["format_time"] = format_time

    def get_common_context(self) -> Dict[str, Any]:
        return {
            "brand_name": BRAND_NAME,
            "current_year": datetime.now().year,
            "frontend_url": settings.frontend_url,
        }

    @BaseService.measure_operation("render_template")
    def render_template(self, template_name: str, context: Optional[Dict[str, Any]] = None, **kwargs) -> str:
        """
        Render a template with the given context.

        Raises:
            TemplateNotFound: If template doesn't exist
        """
        try:
            template = self.env.get_template(str(getattr(template_name, "value", template_name)))
            full_context = self.get_common_context()
            if context:
                full_context.update(context)
            full_context.update(kwargs)
            return template.render(full_context)
        except TemplateNotFound:
            self.logger.error(f"Template not found: {template_name}")
            raise
