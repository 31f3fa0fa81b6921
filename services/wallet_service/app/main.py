"""FastAPI application for the Wallet Service."""

from fastapi import FastAPI
from libs.common.errors import register_exception_handlers
from libs.common.logging import configure_logging
from services.wallet_service.routers import admin_router, internal_router, wallet_router


def create_app() -> FastAPI:
    """Create and configure the Wallet Service FastAPI app."""
    configure_logging()
    app = FastAPI(
        title="Marketdotcom Wallet Service",
        version="0.1.0",
        description="Wallet, loyalty points and referral ledgers for Marketdotcom.",
    )
    register_exception_handlers(app)

    @app.get("/health", tags=["system"])
    async def health_check() -> dict[str, str]:
        """Health check endpoint."""
        return {"status": "ok", "service": "wallet"}

    # Member-facing routes
    app.include_router(wallet_router)

    # Admin routes
    app.include_router(admin_router)

    # Internal service-to-service routes (not proxied by gateway)
    app.include_router(internal_router)

    return app


app = create_app()
