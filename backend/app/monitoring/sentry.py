# backend/app/monitoring/sentry.py
"""
Sentry initialisation for the API and the Celery worker.

Disabled unless SENTRY_DSN is set. Health and metrics probes are never
traced.
"""

import logging
from typing import Any, Mapping, Optional

import sentry_sdk
from sentry_sdk.integrations.celery import CeleryIntegration
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.logging import LoggingIntegration

from ..core.config import settings

logger = logging.getLogger(__name__)

DEFAULT_TRACES_SAMPLE_RATE = 0.1
FAILED_REQUEST_STATUS_CODES = {403, *range(500, 600)}

_UNTRACED_PATHS = ("/health", "/metrics")


def _extract_sampling_path(sampling_context: Mapping[str, Any]) -> Optional[str]:
    asgi_scope = sampling_context.get("asgi_scope")
    if isinstance(asgi_scope, Mapping):
        path = asgi_scope.get("path")
        if isinstance(path, str):
            return path
    return None


def _traces_sampler(sampling_context: Mapping[str, Any]) -> float:
    path = _extract_sampling_path(sampling_context)
    if path and path.rstrip("/").endswith(_UNTRACED_PATHS):
        return 0.0
    return DEFAULT_TRACES_SAMPLE_RATE


def init_sentry() -> bool:
    dsn = (settings.sentry_dsn or "").strip()
    if not dsn:
        logger.debug("Sentry disabled: SENTRY_DSN not set")
        return False

    sentry_sdk.init(
        dsn=dsn,
        environment=settings.environment,
        integrations=[
            LoggingIntegration(level=logging.INFO, event_level=logging.ERROR),
            FastApiIntegration(
                transaction_style="endpoint",
                failed_request_status_codes=FAILED_REQUEST_STATUS_CODES,
            ),
            CeleryIntegration(monitor_beat_tasks=True),
        ],
        send_default_pii=False,
        traces_sampler=_traces_sampler,
    )
    logger.info("Sentry initialized")
    return True
