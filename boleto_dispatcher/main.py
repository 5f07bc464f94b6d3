"""FastAPI application — main entry point."""

import structlog
from contextlib import asynccontextmanager

from fastapi import FastAPI

from boleto_dispatcher.config import get_settings
from boleto_dispatcher.core.exceptions import AppError, global_exception_handler
from boleto_dispatcher.core.logging import configure_logging
from boleto_dispatcher.core.middleware import setup_middleware
from boleto_dispatcher.infrastructure.database import init_db

# Import routers
from boleto_dispatcher.interfaces.api.cron import router as cron_router
from boleto_dispatcher.interfaces.api.notifications import router as notifications_router

settings = get_settings()

# Configure logging immediately
configure_logging()
logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan — startup and shutdown events."""
    logger.info("Starting Boleto Dispatcher...", env=settings.ENVIRONMENT)

    init_db()
    logger.info("Cache tables created/verified")

    from boleto_dispatcher.scheduler.jobs import start_scheduler
    start_scheduler()

    yield

    from boleto_dispatcher.scheduler.jobs import stop_scheduler
    stop_scheduler()
    logger.info("Boleto Dispatcher stopped")


app = FastAPI(
    title="Boleto Dispatcher",
    description="Cora boleto sync and scheduled WhatsApp notifications",
    version="1.0.0",
    lifespan=lifespan,
)

# Setup Middleware (Correlation ID, Logging)
setup_middleware(app)

# Global Exception Handling
app.add_exception_handler(AppError, global_exception_handler)
app.add_exception_handler(Exception, global_exception_handler)

app.include_router(cron_router)
app.include_router(notifications_router)


@app.get("/")
def root():
    return {
        "name": "Boleto Dispatcher",
        "version": "1.0.0",
        "status": "running",
        "docs": "/docs",
    }


@app.get("/health")
def health():
    return {"status": "healthy"}
