"""
FastAPI application entry point for the billing reconciliation service.

Authentication is handled upstream: the auth layer sets
request.state.tenant_id (and request.state.admin_id for operators) before
these routes run.
"""

import os
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from shift_billing.api.routes import billing
from shift_billing.api.routes import webhooks_billing
from shift_billing.config.billing_settings import get_billing_settings

# Configure structured logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    logger.info("Starting billing reconciliation API")

    settings = get_billing_settings()
    logger.info("Billing settings loaded", extra=settings.get_all())

    if not settings.webhook_secret:
        logger.warning(
            "BILLING_WEBHOOK_SECRET is not set. The webhook endpoint will return 503."
        )

    database_url = os.getenv("DATABASE_URL")
    if not database_url:
        logger.error("DATABASE_URL is not set. Database-backed endpoints will return 503.")
        app.state.database_configured = False
    else:
        # Mask credentials for safe logging
        masked = database_url.split("@")[-1] if "@" in database_url else "(no credentials)"
        logger.info("DATABASE_URL configured", extra={"host_db": masked})
        app.state.database_configured = True

    yield

    logger.info("Shutting down billing reconciliation API")


app = FastAPI(
    title="Shift Billing API",
    description="Billing reconciliation for the shift-scheduling platform",
    version="0.1.0",
    lifespan=lifespan,
)

app.include_router(webhooks_billing.router)
app.include_router(billing.router)
app.include_router(billing.admin_router)


@app.get("/health")
async def health():
    return {"status": "ok"}


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Handle unhandled exceptions with proper logging."""
    logger.error(
        "Unhandled exception",
        extra={
            "tenant_id": getattr(request.state, "tenant_id", "unknown"),
            "error": str(exc),
            "error_type": type(exc).__name__,
            "path": request.url.path
        },
        exc_info=True
    )

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error": "Internal server error",
            "detail": "An unexpected error occurred"
        }
    )


if __name__ == "__main__":
    import uvicorn

    port = int(os.getenv("PORT", 8000))
    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=port,
        reload=os.getenv("ENV") == "development"
    )
