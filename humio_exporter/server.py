#!/usr/bin/env python3
"""
humio_exporter HTTP surface - metrics exposition and health probes
"""

from fastapi import APIRouter, FastAPI
from fastapi.responses import PlainTextResponse, Response
from prometheus_client import CONTENT_TYPE_LATEST

from .registry import MetricRegistry


def create_routes(registry: MetricRegistry) -> APIRouter:
    """Create router serving the registry and the health probes."""
    router = APIRouter()

    @router.get("/metrics")
    def metrics():
        """Prometheus scrape endpoint."""
        return Response(content=registry.expose(), media_type=CONTENT_TYPE_LATEST)

    @router.get("/health/live", response_class=PlainTextResponse)
    def liveness():
        return "OK"

    @router.get("/health/ready", response_class=PlainTextResponse)
    def readiness():
        return "OK"

    return router


def create_app(registry: MetricRegistry) -> FastAPI:
    """Create FastAPI app exposing the given registry."""
    app = FastAPI(title="humio_exporter", docs_url=None, redoc_url=None, openapi_url=None)
    app.include_router(create_routes(registry))
    return app
