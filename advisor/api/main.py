"""
FastAPI Main Application
Allocation advisor HTTP surface
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from advisor.api.container import ServiceContainer, build_container
from advisor.api.routes import health, market_data, recommendations
from advisor.config import settings
from advisor.core.errors import AdvisorError, ErrorCode
from advisor.core.logging import setup_logging

logger = logging.getLogger(__name__)


def create_app(container: Optional[ServiceContainer] = None) -> FastAPI:
    """
    Build the application.

    A container passed in is used as is (tests); otherwise one is built
    from settings during startup.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator:
        # ===================
        # STARTUP
        # ===================
        if getattr(app.state, "container", None) is None:
            setup_logging(settings.LOG_LEVEL)
            app.state.container = build_container(settings)
        active: ServiceContainer = app.state.container
        await active.startup()
        logger.info("Allocation advisor started (env=%s)", active.settings.APP_ENV)

        yield

        # ===================
        # SHUTDOWN
        # ===================
        await active.shutdown()
        logger.info("Allocation advisor shutdown complete")

    app = FastAPI(
        title="Allocation Advisor",
        description="Contribution allocation recommendations over resilient market data",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.container = container

    @app.exception_handler(AdvisorError)
    async def advisor_error_handler(request: Request, exc: AdvisorError) -> JSONResponse:
        if exc.http_status >= 500:
            logger.error("%s %s failed: %s (%s)", request.method, request.url.path, exc.message, exc.code)
        return JSONResponse(status_code=exc.http_status, content=exc.to_dict())

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        errors = [
            {"field": ".".join(str(p) for p in err.get("loc", ())), "message": err.get("msg", "")}
            for err in exc.errors()
        ]
        return JSONResponse(
            status_code=400,
            content={
                "error": "Invalid request",
                "code": ErrorCode.VALIDATION_ERROR,
                "details": {"errors": errors},
            },
        )

    app.include_router(health.router, prefix="/api/v1/health", tags=["Health"])
    app.include_router(recommendations.router, prefix="/api/v1/recommendations", tags=["Recommendations"])
    app.include_router(market_data.router, prefix="/api/v1/data", tags=["Market Data"])
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "advisor.api.main:app",
        host=settings.API_HOST,
        port=settings.API_PORT,
        reload=settings.DEBUG,
    )
