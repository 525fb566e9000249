from __future__ import annotations

import logging
import time
from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware

from server.src.core.logging import get_logger

from ..api.routes import dashboard, health, updates
from ..config import Settings
from ..database import configure_database, init_database
from ..services.availability import AvailabilityProber
from ..services.cache import CacheStore, DatabaseCacheStore, MemoryCacheStore
from ..services.dashboard_cycle import DashboardCycleService
from ..services.node_api import NodeApiClient
from ..services.notifier import Broadcaster, WebSocketBroadcaster
from ..services.snapshot_builder import build_node_builders

logger = get_logger(__name__)


def build_cache_store(settings: Settings) -> CacheStore:
    if settings.cache_backend == "memory":
        return MemoryCacheStore()
    return DatabaseCacheStore()


def build_dashboard_service(
    settings: Settings,
    *,
    store: CacheStore,
    broadcaster: Broadcaster,
    client: httpx.AsyncClient,
) -> DashboardCycleService:
    """Wire the node adapters, builders and prober into a refresh service."""
    mainchain_source = NodeApiClient(
        settings.mainchain_node_url,
        client=client,
        history_max_entries=settings.wallet_history_max_entries,
    )
    sidechain_source = NodeApiClient(
        settings.sidechain_node_url,
        client=client,
        history_max_entries=settings.wallet_history_max_entries,
    )
    return DashboardCycleService(
        settings,
        builders=build_node_builders(settings, mainchain_source, sidechain_source),
        prober=AvailabilityProber(timeout=settings.probe_timeout_seconds),
        store=store,
        broadcaster=broadcaster,
    )


class RequestFinishMiddleware(BaseHTTPMiddleware):
    """Log each finished request on the `api.call` logger when it is enabled for DEBUG."""

    async def dispatch(self, request, call_next):
        start = time.time()
        response = await call_next(request)
        access_logger = logging.getLogger("api.call")
        if access_logger.isEnabledFor(logging.DEBUG):
            client = request.client
            full_path = request.url.path or "/"
            if request.url.query:
                full_path = f"{full_path}?{request.url.query}"
            access_logger.debug(
                "Finished %s %s %s %s in %.3fms",
                client.host if client else "-",
                request.method,
                full_path,
                response.status_code,
                (time.time() - start) * 1000.0,
            )
        return response


def create_app(settings: Settings | None = None) -> FastAPI:
    """Construct the FastAPI application with configured lifespan hooks."""
    settings = settings or Settings()
    if settings.cache_backend == "database":
        configure_database(settings)

    store = build_cache_store(settings)
    broadcaster = WebSocketBroadcaster()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        app.state.settings = settings
        if settings.cache_backend == "database":
            await init_database(settings)

        client = httpx.AsyncClient(
            timeout=settings.node_request_timeout_seconds, follow_redirects=True
        )
        service = build_dashboard_service(
            settings, store=store, broadcaster=broadcaster, client=client
        )
        await service.start()
        app.state.dashboard_service = service

        try:
            yield
        finally:
            await service.stop()
            await client.aclose()

    app = FastAPI(
        title="Federated Sidechain Admin Dashboard",
        lifespan=lifespan,
        docs_url="/api/docs",
        redoc_url="/api/redoc",
        openapi_url="/api/openapi.json",
    )
    app.add_middleware(RequestFinishMiddleware)

    # Expose collaborators early so handlers work even when lifespan hooks are
    # bypassed (e.g. ASGITransport in tests).
    app.state.settings = settings
    app.state.cache_store = store
    app.state.broadcaster = broadcaster

    if settings.cors_allow_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=settings.cors_allow_origins,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    app.include_router(health.router)
    app.include_router(dashboard.router)
    app.include_router(updates.router)

    logger.info(
        "Dashboard configured for %s mode (mainchain=%s, sidechain=%s)",
        settings.deployment_mode.value,
        settings.mainchain_node_url,
        settings.sidechain_node_url,
    )
    return app
