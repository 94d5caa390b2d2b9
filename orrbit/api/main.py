"""
Main FastAPI application entry point.
"""

from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

import structlog

from orrbit.api.dependencies import get_session_factory
from orrbit.api.middleware import add_middleware
from orrbit.api.routes import platform, subscriptions, transactions, webhooks
from orrbit.api.schemas.common import HealthCheckResponse, create_error_response
from orrbit.cache.redis_client import close_redis_client
from orrbit.core.config import settings
from orrbit.core.database import close_database, init_database
from orrbit.core.exceptions import (
    AuthenticationError,
    ConflictError,
    ExternalServiceError,
    NotFoundError,
    OrrbitException,
    PaymentVerificationError,
    ValidationError,
)
from orrbit.core.logging import setup_logging
from orrbit.notifications.websocket_handler import websocket_router

logger = structlog.get_logger(__name__)

# Most specific first
STATUS_BY_EXCEPTION = (
    (PaymentVerificationError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (ConflictError, status.HTTP_409_CONFLICT),
    (AuthenticationError, status.HTTP_401_UNAUTHORIZED),
    (ValidationError, status.HTTP_400_BAD_REQUEST),
    (ExternalServiceError, status.HTTP_502_BAD_GATEWAY),
)


def status_code_for(exc: OrrbitException) -> int:
    for exc_type, status_code in STATUS_BY_EXCEPTION:
        if isinstance(exc, exc_type):
            return status_code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


async def orrbit_exception_handler(request: Request, exc: OrrbitException) -> JSONResponse:
    status_code = status_code_for(exc)
    log = logger.bind(path=request.url.path, error_code=exc.code, status_code=status_code)
    if status_code >= 500:
        log.error("Request failed", error=exc.message)
    else:
        log.info("Request rejected", error=exc.message)

    body = create_error_response(exc.message, exc.code, exc.details or None)
    return JSONResponse(status_code=status_code, content=body.model_dump(mode="json"))


def create_app(manage_database: bool = True) -> FastAPI:
    """
    Build the application.

    Args:
        manage_database: open and close the global engine in the lifespan
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Starting Orrbit billing API", version=settings.app_version)
        if manage_database:
            await init_database()
        logger.info("Application startup complete")

        yield

        logger.info("Shutting down application")
        try:
            await close_redis_client()
            if manage_database:
                await close_database()
        except Exception as e:
            logger.error("Shutdown error", error=str(e))
        logger.info("Application shutdown complete")

    app = FastAPI(
        title="Orrbit Billing API",
        version=settings.app_version,
        description="""
    Billing reconciliation for creator subscriptions paid on Stellar.

    ## Authentication

    Use your Stellar account id as a Bearer token:
    ```
    Authorization: Bearer <G... account id>
    ```

    Internal endpoints take `X-API-Key`.
    """,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        lifespan=lifespan
    )

    add_middleware(app)
    app.add_exception_handler(OrrbitException, orrbit_exception_handler)

    @app.get(
        "/health",
        response_model=HealthCheckResponse,
        tags=["System"],
        summary="Health Check",
    )
    async def health_check(
        session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    ):
        try:
            async with session_factory() as session:
                await session.execute(text("SELECT 1"))
        except Exception as e:
            logger.error("Health check failed", error=str(e))
            return JSONResponse(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                content={
                    "status": "unhealthy",
                    "version": settings.app_version,
                    "services": {"database": "unhealthy", "api": "healthy"},
                    "error": str(e)
                }
            )

        return HealthCheckResponse(
            status="healthy",
            version=settings.app_version,
            services={"database": "healthy", "api": "healthy"}
        )

    prefix = settings.api_v1_prefix
    app.include_router(subscriptions.router, prefix=f"{prefix}/subscriptions", tags=["Subscriptions"])
    app.include_router(transactions.router, prefix=f"{prefix}/transactions", tags=["Transactions"])
    app.include_router(webhooks.router, prefix=f"{prefix}/webhooks", tags=["Webhooks"])
    app.include_router(platform.router, prefix=f"{prefix}/platform", tags=["Platform"])
    app.include_router(websocket_router, tags=["WebSocket"])

    return app


def run() -> None:
    import uvicorn

    setup_logging()
    uvicorn.run(
        "orrbit.api.main:create_app",
        factory=True,
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        log_level=settings.log_level.lower()
    )


if __name__ == "__main__":
    run()
