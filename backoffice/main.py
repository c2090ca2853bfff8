"""
FastAPI Application — entry point.
"""

import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from backoffice.config import settings
from backoffice.database import init_db, close_db, async_session
from backoffice.errors import BackofficeError
from backoffice.routes import router, VERSION
from backoffice.services.reconciler import reconcile

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s  %(levelname)-8s  %(name)s  %(message)s",
)

logger = logging.getLogger(__name__)


async def periodic_reconcile(interval: int = 600) -> None:
    """Repair settlement drift every ``interval`` seconds."""
    while True:
        try:
            await asyncio.sleep(interval)
            async with async_session() as session:
                corrections = await reconcile(session)
            if corrections:
                logger.info("🔄 Periodic reconcile applied %d correction(s)", len(corrections))
        except asyncio.CancelledError:
            break
        except Exception as e:
            logger.error("Reconcile error: %s", e)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup / shutdown hook."""
    logger.info("🚀 Starting %s v%s", settings.app_name, VERSION)
    await init_db()
    logger.info("✅ Database ready")

    reconcile_task = None
    if settings.reconcile_enabled:
        reconcile_task = asyncio.create_task(
            periodic_reconcile(interval=settings.reconcile_interval)
        )
    else:
        logger.info("ℹ️ Periodic reconciliation disabled")

    yield

    # Shutdown
    if reconcile_task is not None:
        reconcile_task.cancel()
        try:
            await reconcile_task
        except asyncio.CancelledError:
            pass
    await close_db()
    logger.info("👋 Shutdown complete")


app = FastAPI(
    title="Studio Back-Office API",
    description=(
        "Budget → contract → payment → project lifecycle for a web studio: "
        "proposals, signed contracts, Stripe settlement and delivery."
    ),
    version=VERSION,
    lifespan=lifespan,
)

# CORS: the dashboard is a separate static site
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(BackofficeError)
async def backoffice_error_handler(request: Request, exc: BackofficeError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


app.include_router(router, prefix="/api/v1")

# Feature routers
from backoffice.routes.activity import activity_router
from backoffice.routes.budgets import router as budget_router, approval_router
from backoffice.routes.clients import router as client_router
from backoffice.routes.dashboard import router as dashboard_router
from backoffice.routes.contracts import router as contract_router, public_router as contract_public_router
from backoffice.routes.notifications import router as notification_router
from backoffice.routes.payments import router as payment_router
from backoffice.routes.projects import router as project_router, evaluation_router

app.include_router(budget_router, prefix="/api/v1")
app.include_router(approval_router, prefix="/api/v1")
app.include_router(contract_router, prefix="/api/v1")
app.include_router(contract_public_router, prefix="/api/v1")
app.include_router(payment_router, prefix="/api/v1")
app.include_router(project_router, prefix="/api/v1")
app.include_router(evaluation_router, prefix="/api/v1")
app.include_router(client_router, prefix="/api/v1")
app.include_router(dashboard_router, prefix="/api/v1")
app.include_router(notification_router, prefix="/api/v1")
app.include_router(activity_router, prefix="/api/v1")


@app.get("/", include_in_schema=False)
async def root():
    return {
        "service": settings.app_name,
        "version": VERSION,
        "docs": "/docs",
    }
