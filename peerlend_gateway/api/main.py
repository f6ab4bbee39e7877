"""FastAPI application factory"""

import asyncio
from contextlib import asynccontextmanager

from fastapi import FastAPI
from prometheus_client import generate_latest, CONTENT_TYPE_LATEST
from starlette.responses import Response

from peerlend_gateway.api.middleware import RequestIDMiddleware, MetricsMiddleware
from peerlend_gateway.api.v1 import loans, payments, schedule
from peerlend_gateway.infrastructure.clients.notifications import NotificationClient
from peerlend_gateway.infrastructure.database.session import SessionLocal
from peerlend_gateway.infrastructure.observability.logging import setup_logging
from peerlend_gateway.services.expiry import run_expiry_sweeper
from peerlend_gateway.config import settings

# Setup structured logging
setup_logging(settings.log_level)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Run the pending payment expiry sweep alongside request handling"""
    stop_event = asyncio.Event()
    sweeper = None
    if settings.expiry_sweep_enabled:
        sweeper = asyncio.create_task(run_expiry_sweeper(SessionLocal, NotificationClient(), stop_event))

    yield

    stop_event.set()
    if sweeper is not None:
        await sweeper


def create_app() -> FastAPI:
    """Create and configure FastAPI application"""
    app = FastAPI(
        title="PeerLend Gateway",
        description="Loan offers, amortization schedules and repayment tracking",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    # Add middleware (order matters: last added = first executed)
    app.add_middleware(MetricsMiddleware)
    app.add_middleware(RequestIDMiddleware)

    # Health check endpoint
    @app.get("/health")
    def health_check():
        return {"status": "ok", "service": settings.service_name}

    # Prometheus metrics endpoint
    @app.get("/metrics")
    def metrics():
        return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

    # Register API routers
    app.include_router(schedule.router, prefix="/v1", tags=["schedules"])
    app.include_router(loans.router, prefix="/v1", tags=["loans"])
    app.include_router(payments.router, prefix="/v1", tags=["payments"])

    return app


app = create_app()
