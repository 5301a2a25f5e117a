"""
Damage Claim Settlement Engine

FastAPI application entry point.
"""
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from damage_claims.api import admin_router, router as claims_router
from damage_claims.config import configure_logging, settings as default_settings
from damage_claims.config.settings import Settings
from damage_claims.engine import ClaimEngine, build_engine

logger = logging.getLogger(__name__)


def create_app(
    settings: Optional[Settings] = None,
    engine: Optional[ClaimEngine] = None,
    run_sweeper: bool = True,
) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        settings: Settings to use (environment-driven defaults if omitted)
        engine: Pre-built engine, e.g. one wired with test doubles
        run_sweeper: Start the periodic deadline sweeper with the app
    """
    settings = settings or (engine.settings if engine else default_settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifecycle management."""
        configure_logging(settings.logging)
        app.state.engine = engine or build_engine(settings)
        logger.info(f"Starting {settings.app_name} v{settings.app_version}")
        if run_sweeper:
            app.state.engine.sweeper.start()
        yield
        if run_sweeper:
            await app.state.engine.sweeper.stop()
        await app.state.engine.monitor.drain()
        logger.info(f"Shutting down {settings.app_name}")

    app = FastAPI(
        title=settings.app_name,
        description="""
    Lifecycle and settlement engine for damage claims filed against kitchen
    and storage bookings.

    ## Workflow

    1. A manager creates a claim with `POST /claims/`, attaches evidence and submits it
    2. The chef accepts (approving the claim) or disputes it (sending it to admin review)
    3. If the chef does not respond in time the claim is auto-approved
    4. Every approval triggers an off-session charge of the chef's saved payment method
    5. Admins can re-charge failed claims and refund charged ones
    """,
        version=settings.app_version,
        lifespan=lifespan,
    )

    # Add CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Include routers
    app.include_router(claims_router)
    app.include_router(admin_router)

    @app.get("/", tags=["root"])
    async def root():
        """Root endpoint with system info."""
        return {
            "system": settings.app_name,
            "version": settings.app_version,
            "status": "operational",
            "docs": "/docs",
        }

    @app.get("/health", tags=["health"])
    async def health_check():
        """Health check endpoint."""
        return {"status": "healthy"}

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("damage_claims.main:app", host="0.0.0.0", port=8000)
