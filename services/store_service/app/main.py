"""FastAPI application for the Store Service."""

from fastapi import FastAPI
from libs.common.errors import register_exception_handlers
from libs.common.logging import configure_logging
from services.store_service.routers import orders_router


def create_app() -> FastAPI:
    """Create and configure the Store Service FastAPI app."""
    configure_logging()
    app = FastAPI(
        title="Marketdotcom Store Service",
        version="0.1.0",
        description="Order placement and settlement for Marketdotcom.",
    )
    register_exception_handlers(app)

    @app.get("/health", tags=["system"])
    async def health_check() -> dict[str, str]:
        """Health check endpoint."""
        return {"status": "ok", "service": "store"}

    app.include_router(orders_router, prefix="/store")

    return app


app = create_app()
