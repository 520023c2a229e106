"""School bursary FastAPI application."""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError
from sqlalchemy.exc import SQLAlchemyError

from bursary.core.config import settings
from bursary.core.exceptions import AppException
from bursary.core.exceptions.handlers import (
    app_exception_handler,
    http_exception_handler,
    sqlalchemy_db_error_handler,
    validation_exception_handler,
)
from bursary.modules.arrears.router import router as arrears_router
from bursary.modules.discounts.router import router as discounts_router
from bursary.modules.fees.router import categories_router as fee_categories_router
from bursary.modules.fees.router import definitions_router as fee_definitions_router
from bursary.modules.fees.router import router as fees_router
from bursary.modules.payments.router import router as payments_router

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    logger.info("Starting bursary API (%s)", settings.app_env)
    yield
    logger.info("Shutting down bursary API")


def create_app() -> FastAPI:
    """Create and configure FastAPI application."""
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    app = FastAPI(
        title="School Bursary",
        description="Payment allocation engine for school fees and arrears",
        version="0.1.0",
        debug=settings.debug,
        lifespan=lifespan,
    )

    # Exception handlers
    app.add_exception_handler(AppException, app_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(SQLAlchemyError, sqlalchemy_db_error_handler)

    @app.get("/health")
    async def health_check():
        return {"status": "healthy"}

    # Routers
    app.include_router(discounts_router, prefix="/api/v1")
    app.include_router(fee_categories_router, prefix="/api/v1")
    app.include_router(fee_definitions_router, prefix="/api/v1")
    app.include_router(fees_router, prefix="/api/v1")
    app.include_router(arrears_router, prefix="/api/v1")
    app.include_router(payments_router, prefix="/api/v1")

    return app


app = create_app()
