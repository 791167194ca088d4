"""FastAPI application factory for Entitlement-Engine."""

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from entitlement_engine.common.config import get_settings
from entitlement_engine.common.logging import setup_logging
from entitlement_engine.common.schemas import HealthResponse


def create_app() -> FastAPI:
    settings = get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Startup
        from entitlement_engine.deps import get_db, get_gateway, get_scanner
        from entitlement_engine.reconciliation.scheduler import ReconciliationScheduler

        setup_logging(settings.log_level)
        db = get_db()
        await db.init()
        await db.create_all()

        scheduler = None
        if settings.reconcile_interval > 0:
            scheduler = ReconciliationScheduler(get_scanner(), settings.reconcile_interval)
            scheduler.start()
        app.state.scheduler = scheduler
        yield
        # Shutdown
        if scheduler is not None:
            await scheduler.stop()
        await get_gateway().aclose()
        await db.close()

    app = FastAPI(
        title=settings.api_title,
        version=settings.api_version,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/health", response_model=HealthResponse)
    async def health():
        return HealthResponse(version=settings.api_version)

    # Mount routers
    from entitlement_engine.provisioning.router import router as provisioning_router
    from entitlement_engine.provisioning.router import checkout_router
    from entitlement_engine.reconciliation.router import router as reconciliation_router
    from entitlement_engine.entitlements.router import router as entitlements_router

    prefix = settings.api_prefix
    app.include_router(provisioning_router, prefix=prefix, tags=["provisioning"])
    app.include_router(checkout_router, prefix=prefix, tags=["checkout"])
    app.include_router(reconciliation_router, prefix=prefix, tags=["reconciliation"])
    app.include_router(entitlements_router, prefix=prefix, tags=["entitlements"])

    return app
