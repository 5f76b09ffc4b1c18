from __future__ import annotations

from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI

from app.core.config import get_settings
from app.core.logging import configure_logging, request_id_middleware
from app.payments.cache import get_orchestrator_cache
from app.payments.errors import PaymentError
from app.payments.router import payment_error_handler
from app.payments.router import router as payments_router
from app.tenants.store import get_tenant_store

logger = structlog.get_logger(__name__)

settings = get_settings()
configure_logging(settings.ENV, settings.LOG_LEVEL)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application lifespan events."""
    store = get_tenant_store()
    logger.info(
        "app.startup",
        env=settings.ENV,
        tenants=len(store),
        tenants_file=settings.TENANTS_FILE,
    )

    yield

    cache = get_orchestrator_cache()
    logger.info("app.shutdown", cached_orchestrators=len(cache))
    await cache.aclose()


app = FastAPI(title="Tenant Payment Orchestrator", version="0.1.0", lifespan=lifespan)
app.middleware("http")(request_id_middleware)
app.add_exception_handler(PaymentError, payment_error_handler)
app.include_router(payments_router)


@app.get("/healthz")
def healthz():
    return {"status": "healthy", "env": settings.ENV}
