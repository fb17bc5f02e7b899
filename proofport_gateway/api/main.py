"""FastAPI application factory"""

from contextlib import asynccontextmanager

from fastapi import FastAPI
from prometheus_client import generate_latest, CONTENT_TYPE_LATEST
from starlette.responses import Response

from proofport_gateway.api.middleware import RequestIDMiddleware, MetricsMiddleware
from proofport_gateway.api.v1 import orders, sweep
from proofport_gateway.infrastructure.observability.logging import setup_logging
from proofport_gateway.workers.scheduler import get_scheduler
from proofport_gateway.config import settings

# Setup structured logging
setup_logging(settings.log_level)


@asynccontextmanager
async def lifespan(app: FastAPI):
    scheduler = None
    if settings.scheduler_enabled:
        scheduler = get_scheduler()
        scheduler.start()
    try:
        yield
    finally:
        if scheduler is not None:
            scheduler.shutdown(wait=False)


def create_app() -> FastAPI:
    """Create and configure FastAPI application"""
    app = FastAPI(
        title="ProofPort Gateway",
        description="Order lifecycle and risk gate for proof-of-travel documents",
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

    # Register API routers; the sweep route must precede /orders/{order_id} patterns
    app.include_router(sweep.router, prefix="/v1", tags=["sweeps"])
    app.include_router(orders.router, prefix="/v1", tags=["orders"])

    return app


app = create_app()
