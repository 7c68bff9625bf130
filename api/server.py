"""FastAPI server for the Dilovod export bridge.

Main entry point for the API server.
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from api.dependencies import AppServices, build_services
from api.routes import health, orders, settings
from core.config import load_config
from core.observability import configure_logging, get_logger
from export_engine.errors import (
    ConcurrentRunError,
    CriticalConfigurationError,
    ExportEngineError,
    NetworkError,
)


logger = get_logger(__name__)


def _status_code(error: ExportEngineError) -> int:
    if isinstance(error, CriticalConfigurationError):
        return 422
    if isinstance(error, NetworkError):
        return 502
    if isinstance(error, ConcurrentRunError):
        return 409
    return 400


def create_app(services: Optional[AppServices] = None) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        services: Prebuilt services (tests). When omitted they are built
            from the environment at startup.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        owned = services is None
        if owned:
            config = load_config()
            configure_logging(level=config.log_level_value, json_format=config.log_json)
            app.state.services = build_services(config)
        current = app.state.services

        if owned and current.runtime is not None:
            await current.runtime.connector.connect()
        if owned and current.storefront is not None:
            await current.storefront.connect()
        logger.info("Dilovod export API starting up...")

        yield

        logger.info("Dilovod export API shutting down...")
        if owned and current.runtime is not None:
            await current.runtime.connector.disconnect()
        if owned and current.storefront is not None:
            await current.storefront.disconnect()

    app = FastAPI(
        title="Dilovod Export API",
        description="Exports SalesDrive storefront orders to the Dilovod ERP",
        version="1.0.0",
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
    )
    if services is not None:
        app.state.services = services

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(ExportEngineError)
    async def export_engine_error_handler(request: Request, error: ExportEngineError) -> JSONResponse:
        return JSONResponse(
            status_code=_status_code(error),
            content={"success": False, **error.to_dict()},
        )

    # Include routers
    app.include_router(health.router, tags=["Health"])
    app.include_router(settings.router, prefix="/settings", tags=["Settings"])
    app.include_router(orders.router, prefix="/orders", tags=["Orders"])

    return app


# Default app instance
app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("api.server:app", host="0.0.0.0", port=8000, reload=True)
