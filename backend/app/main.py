# backend/app/main.py
"""
FastAPI application.

Routers are mounted under /api; /health and /metrics stay at the root.
"""

import logging

from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .core.config import settings
from .core.constants import API_DESCRIPTION, API_TITLE, API_VERSION
from .core.exceptions import DomainException
from .middleware.prometheus_middleware import PrometheusMiddleware
from .monitoring.prometheus_metrics import prometheus_metrics
from .monitoring.sentry import init_sentry
from .routes import (
    billing,
    booking_series,
    bookings,
    calendar_auth,
    cron,
    invoices,
    payments,
    stripe_webhooks,
)

# Configure logging
logging.basicConfig(
    level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)

logger = logging.getLogger(__name__)

init_sentry()

app = FastAPI(
    title=API_TITLE,
    description=API_DESCRIPTION,
    version=API_VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[settings.frontend_url],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(PrometheusMiddleware)


@app.exception_handler(DomainException)
async def domain_exception_handler(request: Request, exc: DomainException) -> JSONResponse:
    """Domain errors that escape a route keep their status and error body."""
    http_exc = exc.to_http_exception()
    return JSONResponse(status_code=http_exc.status_code, content={"detail": http_exc.detail})


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error(f"Unhandled error on {request.method} {request.url.path}: {str(exc)}", exc_info=exc)
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


app.include_router(bookings.router, prefix="/api/bookings")
app.include_router(booking_series.router, prefix="/api/booking-series")
app.include_router(billing.router, prefix="/api/billing")
app.include_router(invoices.router, prefix="/api/invoices")
app.include_router(payments.router, prefix="/api/payments")
app.include_router(stripe_webhooks.router, prefix="/api/webhooks/stripe")
app.include_router(calendar_auth.router, prefix="/api/auth")
app.include_router(cron.router, prefix="/api/cron")


@app.get("/health")
def health_check() -> dict:
    return {"status": "healthy", "service": API_TITLE, "version": API_VERSION}


@app.get("/metrics", include_in_schema=False)
def metrics() -> Response:
    """Prometheus exposition of the app registry."""
    return Response(content=prometheus_metrics.get_metrics(), media_type=prometheus_metrics.get_content_type())
